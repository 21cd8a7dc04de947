"""
Election, candidate and ticket models (the ledger-of-record side).

Relational ids here are surrogate keys and may be reused after deletes; the
chain is addressed through the natural keys these rows carry: the election's
start time (or its stored ``blockchain_id``), the candidate's student id, and
the president/VP student id pair of a ticket.
"""

import enum

from campusvote.extensions import db
from campusvote.time_helpers import utcnow, isoformat, to_unix_seconds


class ElectionType(enum.Enum):
    SENATOR = "senator"
    PRESIDENT_VP = "president_vp"


class ElectionStatus(enum.Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"


class Election(db.Model):
    __tablename__ = 'election'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    position = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    election_type = db.Column(db.Enum(ElectionType), nullable=False, default=ElectionType.SENATOR)
    status = db.Column(db.Enum(ElectionStatus), nullable=False, default=ElectionStatus.UPCOMING, index=True)

    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)

    # Chain election id, written once when the election is deployed
    blockchain_id = db.Column(db.BigInteger, nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    candidates = db.relationship(
        'ElectionCandidate', backref='election', lazy='dynamic', cascade='all, delete-orphan'
    )
    tickets = db.relationship(
        'Ticket', backref='election', lazy='dynamic', cascade='all, delete-orphan'
    )

    def __repr__(self):
        return f'<Election {self.id}: {self.name}>'

    @property
    def is_deployed(self):
        return self.blockchain_id is not None

    @property
    def is_active(self):
        return self.status == ElectionStatus.ACTIVE

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'position': self.position,
            'description': self.description,
            'electionType': self.election_type.value,
            'status': self.status.value,
            'startDate': isoformat(self.start_date),
            'endDate': isoformat(self.end_date),
            'startTimestamp': to_unix_seconds(self.start_date),
            'blockchainId': self.blockchain_id,
            'isDeployed': self.is_deployed,
        }


class Candidate(db.Model):
    __tablename__ = 'candidate'

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(200), nullable=False)
    # Natural key shared with the chain's candidate registry
    student_id = db.Column(db.String(32), unique=True, nullable=False, index=True)
    faculty = db.Column(db.String(120), nullable=False)
    position = db.Column(db.String(50), nullable=False)  # President, Vice President, Senator
    status = db.Column(db.String(20), nullable=False, default='inactive')

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f'<Candidate {self.student_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'fullName': self.full_name,
            'studentId': self.student_id,
            'faculty': self.faculty,
            'position': self.position,
            'status': self.status,
        }


class ElectionCandidate(db.Model):
    __tablename__ = 'election_candidates'

    id = db.Column(db.Integer, primary_key=True)
    election_id = db.Column(db.Integer, db.ForeignKey('election.id'), nullable=False, index=True)
    candidate_id = db.Column(db.Integer, db.ForeignKey('candidate.id'), nullable=False)
    # President/VP pairs only; NULL for senator elections
    running_mate_id = db.Column(db.Integer, db.ForeignKey('candidate.id'), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    candidate = db.relationship('Candidate', foreign_keys=[candidate_id])
    running_mate = db.relationship('Candidate', foreign_keys=[running_mate_id])

    __table_args__ = (
        db.UniqueConstraint('election_id', 'candidate_id', name='unique_election_candidate'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'electionId': self.election_id,
            'candidateId': self.candidate_id,
            'runningMateId': self.running_mate_id,
            'studentId': self.candidate.student_id if self.candidate else None,
            'fullName': self.candidate.full_name if self.candidate else None,
        }


class Ticket(db.Model):
    """A president + vice president pairing inside one election."""
    __tablename__ = 'ticket'

    id = db.Column(db.Integer, primary_key=True)
    election_id = db.Column(db.Integer, db.ForeignKey('election.id'), nullable=False, index=True)
    president_id = db.Column(db.Integer, db.ForeignKey('candidate.id'), nullable=False)
    vp_id = db.Column(db.Integer, db.ForeignKey('candidate.id'), nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    president = db.relationship('Candidate', foreign_keys=[president_id])
    vice_president = db.relationship('Candidate', foreign_keys=[vp_id])

    __table_args__ = (
        db.UniqueConstraint('election_id', 'president_id', 'vp_id', name='unique_ticket'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'electionId': self.election_id,
            'presidentId': self.president_id,
            'vpId': self.vp_id,
            'presidentStudentId': self.president.student_id if self.president else None,
            'vpStudentId': self.vice_president.student_id if self.vice_president else None,
        }
