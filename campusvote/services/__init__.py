"""
Service layer for business logic.

Services are stateless classes with static methods that operate on model
instances.
"""

from .voting_token_service import VotingTokenService

__all__ = [
    'VotingTokenService',
]
