"""
Student and Voter Credential Models

A student is both a potential voter and, when nominated, a candidate (the
candidate row carries the same student number as its natural key).

Voter credentials identify the student to the JSON API:
- Unique credential string (hashed in database)
- Optional expiration date
- Usage tracking
"""

import hashlib
import secrets
from datetime import timedelta

from campusvote.extensions import db
from campusvote.time_helpers import utcnow


class Student(db.Model):
    """A registered student."""
    __tablename__ = 'student'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    student_number = db.Column(db.String(32), unique=True, nullable=False, index=True)
    faculty = db.Column(db.String(120), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)

    # Wallet the student votes from (checksum address)
    wallet_address = db.Column(db.String(42), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f'<Student {self.student_number}>'

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'studentNumber': self.student_number,
            'faculty': self.faculty,
            'isAdmin': self.is_admin,
            'walletAddress': self.wallet_address,
        }


class VoterCredential(db.Model):
    """Bearer credentials for programmatic access to the voting API."""
    __tablename__ = 'voter_credentials'

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(100), nullable=False)

    # Credential hash (never store raw credential)
    token_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)

    # Prefix for identification (first 8 chars, not sensitive)
    token_prefix = db.Column(db.String(8), nullable=False)

    student_id = db.Column(db.Integer, db.ForeignKey('student.id'), nullable=False, index=True)
    student = db.relationship('Student', backref=db.backref('credentials', lazy='dynamic'))

    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=True)  # NULL = never expires
    last_used_at = db.Column(db.DateTime)
    last_used_ip = db.Column(db.String(45))  # IPv6 max length
    total_requests = db.Column(db.Integer, default=0, nullable=False)

    def __repr__(self):
        return f'<VoterCredential {self.name} ({self.token_prefix}...)>'

    @staticmethod
    def generate_token():
        """
        Generate a secure random credential.

        Returns:
            str: Credential in format 'cv_' + 32 random hex chars (total 35 chars)
        """
        random_part = secrets.token_hex(16)
        return f"cv_{random_part}"

    @staticmethod
    def hash_token(token):
        """SHA-256 hash of a raw credential, as stored in the database."""
        return hashlib.sha256(token.encode()).hexdigest()

    @classmethod
    def create_token(cls, student_id, name, expires_in_days=None):
        """
        Create a new credential.

        Args:
            student_id: Student who owns the credential
            name: Human-readable name
            expires_in_days: Lifetime in days (None = never expires)

        Returns:
            tuple: (VoterCredential object, raw_token_string)
        """
        raw_token = cls.generate_token()

        expires_at = None
        if expires_in_days:
            expires_at = utcnow() + timedelta(days=expires_in_days)

        credential = cls(
            name=name,
            token_hash=cls.hash_token(raw_token),
            token_prefix=raw_token[:8],
            student_id=student_id,
            expires_at=expires_at,
        )

        return credential, raw_token

    @classmethod
    def verify_token(cls, raw_token):
        """
        Verify and retrieve a credential from the database.

        Returns:
            VoterCredential object if valid, None otherwise
        """
        if not raw_token or not raw_token.startswith('cv_'):
            return None

        credential = db.session.scalar(
            db.select(cls).where(cls.token_hash == cls.hash_token(raw_token))
        )

        if not credential or not credential.is_active:
            return None

        if credential.expires_at and credential.expires_at < utcnow():
            return None

        return credential

    def record_usage(self, ip_address=None):
        self.last_used_at = utcnow()
        self.last_used_ip = ip_address
        self.total_requests = (self.total_requests or 0) + 1
        db.session.commit()
