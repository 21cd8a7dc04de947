"""
Voting token and vote participation models.

The participation row is the ledger-of-record's "has voted" flag. It is
created provisionally when a token is issued and removed again by the
compensating reset when the chain leg of a vote fails.
"""

import enum

from campusvote.extensions import db
from campusvote.time_helpers import utcnow, isoformat


class TokenStatus(enum.Enum):
    ISSUED = "issued"
    VERIFIED = "verified"
    CONSUMED = "consumed"
    EXPIRED = "expired"


# Allowed forward moves; nothing ever goes back to ISSUED
TOKEN_TRANSITIONS = {
    TokenStatus.ISSUED: {TokenStatus.VERIFIED, TokenStatus.CONSUMED, TokenStatus.EXPIRED},
    TokenStatus.VERIFIED: {TokenStatus.CONSUMED, TokenStatus.EXPIRED},
    TokenStatus.CONSUMED: set(),
    TokenStatus.EXPIRED: set(),
}


class VotingToken(db.Model):
    __tablename__ = 'voting_tokens'

    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(96), unique=True, nullable=False, index=True)

    voter_id = db.Column(db.Integer, db.ForeignKey('student.id'), nullable=False)
    election_id = db.Column(db.Integer, db.ForeignKey('election.id'), nullable=False)

    status = db.Column(db.Enum(TokenStatus), nullable=False, default=TokenStatus.ISSUED)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    verified_at = db.Column(db.DateTime)
    consumed_at = db.Column(db.DateTime)

    # Filled in on consume
    candidate_id = db.Column(db.Integer, nullable=True)
    tx_hash = db.Column(db.String(66), nullable=True)

    __table_args__ = (
        db.Index('idx_voting_token_voter_election', 'voter_id', 'election_id'),
    )

    def __repr__(self):
        return f'<VotingToken {self.token[:8]}... voter={self.voter_id} election={self.election_id} {self.status.value}>'

    def is_expired(self, now=None):
        return self.expires_at < (now or utcnow())

    def transition(self, new_status):
        """Move to ``new_status``; raises ValueError on a backward move."""
        if new_status == self.status:
            return
        if new_status not in TOKEN_TRANSITIONS[self.status]:
            raise ValueError(f"Token cannot move from {self.status.value} to {new_status.value}")
        self.status = new_status

    def to_dict(self):
        return {
            'token': self.token,
            'electionId': self.election_id,
            'status': self.status.value,
            'expiresAt': isoformat(self.expires_at),
        }


class VoteParticipation(db.Model):
    """Tracks who has voted, never who they voted for."""
    __tablename__ = 'vote_participation'

    id = db.Column(db.Integer, primary_key=True)
    voter_id = db.Column(db.Integer, db.ForeignKey('student.id'), nullable=False)
    election_id = db.Column(db.Integer, db.ForeignKey('election.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        # Concurrent token requests for the same pair cannot both succeed
        db.UniqueConstraint('voter_id', 'election_id', name='unique_vote_participation'),
    )

    def __repr__(self):
        return f'<VoteParticipation voter={self.voter_id} election={self.election_id}>'
