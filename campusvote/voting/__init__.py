"""
Vote submission and cross-ledger reconciliation engine.

Talks to the ledger-of-record over its JSON API and to the chain through a
ChainClient and a wallet adapter.
"""
from .settings import EngineSettings
from .clients import TokenServiceClient, LedgerClient
from .identity import ChoiceKind, IdentifierMapper, IdentityMapping, ticket_natural_key
from .fees import FeeSchedule, FeePolicy, RetryPolicy, NonceProvider
from .confirmation import (
    ConfirmationStatus,
    ConfirmationResult,
    ReceiptStrategy,
    InclusionStrategy,
    ConfirmationPipeline,
    Compensator,
    poll_vote_count,
)
from .engine import VoteState, VoteAttempt, VoteResult, VoteSubmissionEngine

__all__ = [
    'EngineSettings',
    'TokenServiceClient',
    'LedgerClient',
    'ChoiceKind',
    'IdentifierMapper',
    'IdentityMapping',
    'ticket_natural_key',
    'FeeSchedule',
    'FeePolicy',
    'RetryPolicy',
    'NonceProvider',
    'ConfirmationStatus',
    'ConfirmationResult',
    'ReceiptStrategy',
    'InclusionStrategy',
    'ConfirmationPipeline',
    'Compensator',
    'poll_vote_count',
    'VoteState',
    'VoteAttempt',
    'VoteResult',
    'VoteSubmissionEngine',
]
