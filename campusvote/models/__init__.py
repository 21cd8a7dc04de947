# campusvote/models/__init__.py

from campusvote.extensions import db

from .student import Student, VoterCredential
from .election import (
    Election, Candidate, ElectionCandidate, Ticket,
    ElectionType, ElectionStatus
)
from .voting import VotingToken, VoteParticipation, TokenStatus

__all__ = [
    'db',
    'Student', 'VoterCredential',
    'Election', 'Candidate', 'ElectionCandidate', 'Ticket',
    'ElectionType', 'ElectionStatus',
    'VotingToken', 'VoteParticipation', 'TokenStatus',
]
