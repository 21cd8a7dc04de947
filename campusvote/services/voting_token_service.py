"""
Voting Token Service - issues, verifies and consumes single-use voting tokens.

Issuing a token provisionally marks the voter as having voted (a
VoteParticipation row). The vote engine consumes the token once the chain
transaction is confirmed, or asks for a compensating reset when it is not.
"""

import logging
import secrets
from datetime import timedelta

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from campusvote.extensions import db
from campusvote.exceptions import (
    AlreadyVotedError, ElectionNotActiveError, InvalidTokenError,
    RecordNotFoundError, VoteAlreadyRecordedError
)
from campusvote.logging_config import log_vote_event
from campusvote.models import Election, VotingToken, VoteParticipation, TokenStatus
from campusvote.time_helpers import utcnow

logger = logging.getLogger(__name__)


class VotingTokenService:
    """Server side of the one-time voting token protocol."""

    TOKEN_BYTES = 36

    @staticmethod
    def _ttl():
        return timedelta(minutes=current_app.config.get('VOTING_TOKEN_TTL_MINUTES', 10))

    @staticmethod
    def get_participation(voter_id, election_id):
        return db.session.scalar(
            select(VoteParticipation).where(
                VoteParticipation.voter_id == voter_id,
                VoteParticipation.election_id == election_id
            )
        )

    @staticmethod
    def get_consumed_token(voter_id, election_id):
        return db.session.scalar(
            select(VotingToken).where(
                VotingToken.voter_id == voter_id,
                VotingToken.election_id == election_id,
                VotingToken.status == TokenStatus.CONSUMED
            )
        )

    @staticmethod
    def has_voted(voter_id, election_id):
        return VotingTokenService.get_participation(voter_id, election_id) is not None

    @staticmethod
    def _expire_stale_tokens(voter_id, election_id, now):
        stale = db.session.scalars(
            select(VotingToken).where(
                VotingToken.voter_id == voter_id,
                VotingToken.election_id == election_id,
                VotingToken.status.in_([TokenStatus.ISSUED, TokenStatus.VERIFIED]),
                VotingToken.expires_at < now
            )
        ).all()
        for token in stale:
            token.transition(TokenStatus.EXPIRED)

    @classmethod
    def issue_token(cls, voter_id, election_id):
        """
        Issue a voting token and provisionally mark the voter as committed.

        Raises:
            RecordNotFoundError: the election does not exist
            ElectionNotActiveError: the election is not accepting votes
            AlreadyVotedError: the voter already holds or used a vote
        """
        election = db.session.get(Election, election_id)
        if election is None:
            raise RecordNotFoundError(f"Election {election_id} not found")
        if not election.is_active:
            raise ElectionNotActiveError(f"Election {election_id} is not active")

        if cls.get_consumed_token(voter_id, election_id) or cls.has_voted(voter_id, election_id):
            log_vote_event('TOKEN_REFUSED', voter_id, election_id, 'already voted')
            raise AlreadyVotedError("You have already voted in this election")

        now = utcnow()
        cls._expire_stale_tokens(voter_id, election_id, now)

        token = VotingToken(
            token=secrets.token_urlsafe(cls.TOKEN_BYTES),
            voter_id=voter_id,
            election_id=election_id,
            status=TokenStatus.ISSUED,
            created_at=now,
            expires_at=now + cls._ttl(),
        )

        try:
            db.session.add(VoteParticipation(voter_id=voter_id, election_id=election_id))
            db.session.add(token)
            db.session.commit()
        except IntegrityError:
            # A concurrent request created the participation row first
            db.session.rollback()
            log_vote_event('TOKEN_REFUSED', voter_id, election_id, 'concurrent request')
            raise AlreadyVotedError("You have already voted in this election")

        logger.info(f"Issued voting token {token.token[:8]}... for voter {voter_id} in election {election_id}")
        log_vote_event('TOKEN_ISSUED', voter_id, election_id, token_prefix=token.token[:8])
        return token

    @staticmethod
    def _load(token_value, election_id):
        return db.session.scalar(
            select(VotingToken).where(
                VotingToken.token == token_value,
                VotingToken.election_id == election_id
            )
        )

    @classmethod
    def verify_token(cls, token_value, election_id, candidate_id=None, voter_id=None):
        """
        Check that a token can still be used for a vote in ``election_id``.

        A usable token is promoted from issued to verified; the promotion is
        idempotent and does not change what later calls return.

        Returns:
            bool: True if the token may be used
        """
        token = cls._load(token_value, election_id)
        if token is None:
            return False

        if voter_id is not None and token.voter_id != voter_id:
            return False

        if token.status in (TokenStatus.CONSUMED, TokenStatus.EXPIRED):
            return False

        if token.is_expired():
            token.transition(TokenStatus.EXPIRED)
            db.session.commit()
            return False

        if token.status == TokenStatus.ISSUED:
            token.transition(TokenStatus.VERIFIED)
            token.verified_at = utcnow()
            db.session.commit()

        return True

    @classmethod
    def consume_token(cls, token_value, election_id, candidate_id, tx_hash, voter_id=None):
        """
        Mark a token consumed after its vote was confirmed on chain.

        Raises:
            InvalidTokenError: unknown token, or already consumed/expired
            AlreadyVotedError: another token for the same voter was consumed
        """
        token = cls._load(token_value, election_id)
        if token is None:
            raise InvalidTokenError("Voting token not found")

        if voter_id is not None and token.voter_id != voter_id:
            raise InvalidTokenError("Voting token belongs to another voter")

        if token.status == TokenStatus.CONSUMED:
            if token.tx_hash == tx_hash:
                return token
            raise InvalidTokenError("Voting token has already been used")

        if token.status == TokenStatus.EXPIRED:
            raise InvalidTokenError("Voting token has expired")

        # Expiry is not enforced here: the chain vote already happened
        other = cls.get_consumed_token(token.voter_id, election_id)
        if other is not None:
            raise AlreadyVotedError("A vote has already been recorded for this election")

        token.transition(TokenStatus.CONSUMED)
        token.consumed_at = utcnow()
        token.candidate_id = candidate_id
        token.tx_hash = tx_hash

        # The flag may have been reset while the transaction was confirming
        if not cls.has_voted(token.voter_id, election_id):
            db.session.add(VoteParticipation(voter_id=token.voter_id, election_id=election_id))

        db.session.commit()

        log_vote_event('TOKEN_CONSUMED', token.voter_id, election_id, tx_hash=tx_hash)
        return token

    @classmethod
    def reset_vote(cls, voter_id, election_id):
        """
        Compensating reset: clear the "has voted" flag after a failed chain vote.

        Raises:
            VoteAlreadyRecordedError: a consumed token proves the vote landed
        """
        if cls.get_consumed_token(voter_id, election_id) is not None:
            raise VoteAlreadyRecordedError(
                "A confirmed vote exists for this election and cannot be reset"
            )

        participation = cls.get_participation(voter_id, election_id)
        if participation is not None:
            db.session.delete(participation)

        outstanding = db.session.scalars(
            select(VotingToken).where(
                VotingToken.voter_id == voter_id,
                VotingToken.election_id == election_id,
                VotingToken.status.in_([TokenStatus.ISSUED, TokenStatus.VERIFIED])
            )
        ).all()
        for token in outstanding:
            token.transition(TokenStatus.EXPIRED)

        db.session.commit()

        logger.info(
            f"Reset vote participation for voter {voter_id} in election {election_id}, "
            f"expired {len(outstanding)} tokens"
        )
        log_vote_event('VOTE_RESET', voter_id, election_id, expired_tokens=len(outstanding))
        return participation is not None
