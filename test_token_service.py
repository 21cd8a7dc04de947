"""
Test script for the voting token service.
Verifies issuance, single use, expiry, consumption and the compensating reset.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from campusvote.extensions import db
from campusvote.exceptions import (
    AlreadyVotedError, ElectionNotActiveError, InvalidTokenError,
    RecordNotFoundError, VoteAlreadyRecordedError
)
from campusvote.models import VotingToken, VoteParticipation, TokenStatus
from campusvote.services import VotingTokenService
from campusvote.time_helpers import utcnow

TX_HASH = '0x' + 'ab' * 32


def _tokens(voter_id, election_id):
    return db.session.scalars(
        select(VotingToken).where(
            VotingToken.voter_id == voter_id, VotingToken.election_id == election_id
        ).order_by(VotingToken.id)
    ).all()


def test_second_token_request_is_refused(seeded):
    """Test that a voter gets one token per election and is then committed."""
    print("\n" + "=" * 80)
    print("TEST: Token Issuance Is Exclusive")
    print("=" * 80)

    token = VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)
    print(f"  - Issued: {token.token[:8]}... ({token.status.value})")

    assert token.status == TokenStatus.ISSUED
    assert token.expires_at > utcnow()
    assert VotingTokenService.has_voted(seeded.voter.id, seeded.senate.id), \
        "Issuing a token should mark the voter as committed"

    with pytest.raises(AlreadyVotedError) as exc_info:
        VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)
    assert exc_info.value.status_code == 409
    assert exc_info.value.reason == 'already_voted'

    assert len(_tokens(seeded.voter.id, seeded.senate.id)) == 1
    print("[PASS] Second request refused with already_voted")


def test_tokens_are_scoped_to_voter_and_election(seeded):
    first = VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)
    other_voter = VotingTokenService.issue_token(seeded.other.id, seeded.senate.id)
    other_election = VotingTokenService.issue_token(seeded.voter.id, seeded.presidential.id)

    assert len({first.token, other_voter.token, other_election.token}) == 3
    assert not VotingTokenService.has_voted(seeded.other.id, seeded.presidential.id)


def test_issue_for_unknown_or_inactive_election(seeded):
    with pytest.raises(RecordNotFoundError):
        VotingTokenService.issue_token(seeded.voter.id, 9999)

    with pytest.raises(ElectionNotActiveError) as exc_info:
        VotingTokenService.issue_token(seeded.voter.id, seeded.upcoming.id)
    assert exc_info.value.reason == 'election_not_active'

    assert not VotingTokenService.has_voted(seeded.voter.id, seeded.upcoming.id)


def test_concurrent_issue_loses_on_unique_constraint(seeded, monkeypatch):
    """Test the race where two requests pass the has-voted check at once."""
    VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)

    # The second request saw no participation row yet
    monkeypatch.setattr(VotingTokenService, 'has_voted', staticmethod(lambda v, e: False))
    monkeypatch.setattr(VotingTokenService, 'get_consumed_token', staticmethod(lambda v, e: None))

    with pytest.raises(AlreadyVotedError):
        VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)

    participations = db.session.scalars(
        select(VoteParticipation).where(VoteParticipation.voter_id == seeded.voter.id)
    ).all()
    assert len(participations) == 1
    assert len(_tokens(seeded.voter.id, seeded.senate.id)) == 1


def test_verify_promotes_and_is_idempotent(seeded):
    token = VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)

    assert VotingTokenService.verify_token(token.token, seeded.senate.id, seeded.ada.id)
    assert token.status == TokenStatus.VERIFIED
    verified_at = token.verified_at

    assert VotingTokenService.verify_token(token.token, seeded.senate.id, seeded.ada.id)
    assert token.status == TokenStatus.VERIFIED
    assert token.verified_at == verified_at


def test_verify_rejects_foreign_and_mismatched_tokens(seeded):
    token = VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)

    assert not VotingTokenService.verify_token('not-a-token', seeded.senate.id)
    assert not VotingTokenService.verify_token(token.token, seeded.presidential.id)
    assert not VotingTokenService.verify_token(token.token, seeded.senate.id, voter_id=seeded.other.id)
    assert VotingTokenService.verify_token(token.token, seeded.senate.id, voter_id=seeded.voter.id)


def test_expired_token_fails_verification(seeded):
    token = VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)
    token.expires_at = utcnow() - timedelta(seconds=1)
    db.session.commit()

    assert not VotingTokenService.verify_token(token.token, seeded.senate.id)
    assert token.status == TokenStatus.EXPIRED

    with pytest.raises(InvalidTokenError):
        VotingTokenService.consume_token(token.token, seeded.senate.id, seeded.ada.id, TX_HASH)


def test_consume_is_single_use(seeded):
    """Test that a consumed token can never be used for a second vote."""
    print("\n" + "=" * 80)
    print("TEST: Token Single Use")
    print("=" * 80)

    token = VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)
    VotingTokenService.verify_token(token.token, seeded.senate.id)

    consumed = VotingTokenService.consume_token(token.token, seeded.senate.id, seeded.ada.id, TX_HASH)
    assert consumed.status == TokenStatus.CONSUMED
    assert consumed.tx_hash == TX_HASH
    assert consumed.candidate_id == seeded.ada.id
    assert consumed.consumed_at is not None

    # Retrying the same confirmation is harmless
    again = VotingTokenService.consume_token(token.token, seeded.senate.id, seeded.ada.id, TX_HASH)
    assert again.id == consumed.id

    with pytest.raises(InvalidTokenError):
        VotingTokenService.consume_token(token.token, seeded.senate.id, seeded.ben.id, '0x' + 'cd' * 32)

    assert not VotingTokenService.verify_token(token.token, seeded.senate.id)

    with pytest.raises(AlreadyVotedError):
        VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)

    consumed_count = sum(
        1 for t in _tokens(seeded.voter.id, seeded.senate.id) if t.status == TokenStatus.CONSUMED
    )
    assert consumed_count == 1
    print("[PASS] Exactly one token consumed")


def test_consume_ignores_ttl_but_restores_participation(seeded):
    token = VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)

    # Reset raced with a slow confirmation; the chain vote still counts
    participation = VotingTokenService.get_participation(seeded.voter.id, seeded.senate.id)
    db.session.delete(participation)
    token.expires_at = utcnow() - timedelta(minutes=1)
    db.session.commit()

    VotingTokenService.consume_token(token.token, seeded.senate.id, seeded.ada.id, TX_HASH)

    assert token.status == TokenStatus.CONSUMED
    assert VotingTokenService.has_voted(seeded.voter.id, seeded.senate.id)


def test_consume_refuses_other_voter(seeded):
    token = VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)

    with pytest.raises(InvalidTokenError):
        VotingTokenService.consume_token(
            token.token, seeded.senate.id, seeded.ada.id, TX_HASH, voter_id=seeded.other.id
        )
    with pytest.raises(InvalidTokenError):
        VotingTokenService.consume_token('missing', seeded.senate.id, seeded.ada.id, TX_HASH)


def test_reset_clears_flag_and_expires_outstanding_tokens(seeded):
    """Test the compensating reset after a failed chain vote."""
    print("\n" + "=" * 80)
    print("TEST: Compensating Reset")
    print("=" * 80)

    token = VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)

    cleared = VotingTokenService.reset_vote(seeded.voter.id, seeded.senate.id)
    print(f"  - Cleared: {cleared}")

    assert cleared is True
    assert not VotingTokenService.has_voted(seeded.voter.id, seeded.senate.id)
    assert token.status == TokenStatus.EXPIRED
    assert not VotingTokenService.verify_token(token.token, seeded.senate.id)

    # The voter can start over with a fresh token
    retry = VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)
    assert retry.token != token.token

    # Resetting twice is harmless
    VotingTokenService.reset_vote(seeded.voter.id, seeded.senate.id)
    assert VotingTokenService.reset_vote(seeded.voter.id, seeded.senate.id) is False
    print("[PASS] Flag cleared and voter may retry")


def test_reset_refused_after_confirmed_vote(seeded):
    token = VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)
    VotingTokenService.consume_token(token.token, seeded.senate.id, seeded.ada.id, TX_HASH)

    with pytest.raises(VoteAlreadyRecordedError) as exc_info:
        VotingTokenService.reset_vote(seeded.voter.id, seeded.senate.id)
    assert exc_info.value.reason == 'vote_already_recorded'

    assert VotingTokenService.has_voted(seeded.voter.id, seeded.senate.id)


def test_token_transitions_never_go_backwards(seeded):
    token = VotingTokenService.issue_token(seeded.voter.id, seeded.senate.id)
    token.transition(TokenStatus.VERIFIED)
    token.transition(TokenStatus.CONSUMED)

    for status in (TokenStatus.ISSUED, TokenStatus.VERIFIED, TokenStatus.EXPIRED):
        with pytest.raises(ValueError):
            token.transition(status)
