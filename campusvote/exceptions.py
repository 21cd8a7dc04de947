# campusvote/exceptions.py
"""Custom exceptions for the CampusVote service and vote engine."""

from enum import Enum


class CampusVoteException(Exception):
    """Base exception for all application-specific exceptions."""
    pass


# --- Ledger-of-record service exceptions ---

class ServiceError(CampusVoteException):
    """Base for errors the JSON API reports to its callers.

    ``reason`` is the machine-readable code clients switch on; ``status_code``
    is the HTTP status the error handlers answer with.
    """
    status_code = 400
    reason = 'bad_request'

    def __init__(self, message, reason=None, status_code=None):
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason
        if status_code is not None:
            self.status_code = status_code


class AlreadyVotedError(ServiceError):
    """Raised when a voter already holds (or used) a vote in the election."""
    status_code = 409
    reason = 'already_voted'


class ElectionNotActiveError(ServiceError):
    """Raised when a token is requested for an election that is not running."""
    status_code = 409
    reason = 'election_not_active'


class VoteAlreadyRecordedError(ServiceError):
    """Raised when a reset is requested for a vote that was confirmed."""
    status_code = 409
    reason = 'vote_already_recorded'


class InvalidTokenError(ServiceError):
    """Raised when a voting token is unknown, expired or already consumed."""
    status_code = 400
    reason = 'token_invalid'


class RecordNotFoundError(ServiceError):
    """Raised when an election, candidate or ticket does not exist."""
    status_code = 404
    reason = 'not_found'


# --- Vote engine exceptions ---

class VoteErrorKind(Enum):
    """Tagged failure kinds produced at the chain and service boundaries."""
    ALREADY_VOTED = 'already_voted'
    TOKEN_INVALID_OR_EXPIRED = 'token_invalid_or_expired'
    WALLET_UNAVAILABLE = 'wallet_unavailable'
    NETWORK_MISMATCH = 'network_mismatch'
    USER_REJECTED = 'user_rejected'
    TRANSIENT_BROADCAST_FAILURE = 'transient_broadcast_failure'
    CONFIRMATION_AMBIGUOUS = 'confirmation_ambiguous'
    CONTRACT_REJECTED = 'contract_rejected'
    INSUFFICIENT_FUNDS = 'insufficient_funds'
    TRANSACTION_FAILED = 'transaction_failed'
    NOT_DEPLOYED = 'not_deployed'
    IDENTIFIER_NOT_FOUND = 'identifier_not_found'
    SERVER_ERROR = 'server_error'

    @property
    def retryable(self):
        return self is VoteErrorKind.TRANSIENT_BROADCAST_FAILURE


USER_MESSAGES = {
    VoteErrorKind.ALREADY_VOTED: "You have already voted in this election.",
    VoteErrorKind.TOKEN_INVALID_OR_EXPIRED: (
        "Your voting token is invalid or has expired. Please start again."
    ),
    VoteErrorKind.WALLET_UNAVAILABLE: (
        "No wallet is available. Please install and unlock a wallet to vote."
    ),
    VoteErrorKind.NETWORK_MISMATCH: (
        "Your wallet is connected to the wrong network and could not be switched."
    ),
    VoteErrorKind.USER_REJECTED: "You cancelled the request in your wallet.",
    VoteErrorKind.TRANSIENT_BROADCAST_FAILURE: (
        "The network is congested and the vote could not be sent. Please wait a moment and try again."
    ),
    VoteErrorKind.CONFIRMATION_AMBIGUOUS: (
        "Your vote could not be confirmed on the blockchain. It has not been counted; please try again."
    ),
    VoteErrorKind.CONTRACT_REJECTED: "The voting contract rejected this vote.",
    VoteErrorKind.INSUFFICIENT_FUNDS: (
        "Your wallet does not hold enough funds to pay the network fee. Top it up from a faucet and retry."
    ),
    VoteErrorKind.TRANSACTION_FAILED: (
        "The vote transaction failed on the blockchain. It has not been counted; please try again."
    ),
    VoteErrorKind.NOT_DEPLOYED: "This election has not been deployed to the blockchain yet.",
    VoteErrorKind.IDENTIFIER_NOT_FOUND: (
        "This candidate or ticket is not registered on the blockchain."
    ),
    VoteErrorKind.SERVER_ERROR: "The voting service is unavailable. Please try again later.",
}


class VoteError(CampusVoteException):
    """A classified vote-flow failure. The engine switches on ``kind``."""

    def __init__(self, kind, detail=None, context=None, cause=None):
        self.kind = kind
        self.detail = detail
        self.context = dict(context or {})
        self.cause = cause
        super().__init__(detail or USER_MESSAGES[kind])

    @property
    def user_message(self):
        message = USER_MESSAGES[self.kind]
        if self.kind is VoteErrorKind.CONTRACT_REJECTED and self.context:
            ids = ', '.join(f'{k}={v}' for k, v in sorted(self.context.items()))
            message = f"{message} ({ids})"
        return message

    def with_context(self, **context):
        self.context.update(context)
        return self


class ElectionNotDeployedError(VoteError):
    """Raised when an election has no chain counterpart."""

    def __init__(self, election_ref, detail=None):
        super().__init__(
            VoteErrorKind.NOT_DEPLOYED,
            detail or f"Election {election_ref} is not deployed to the blockchain",
            context={'election': election_ref},
        )


class IdentifierNotFoundError(VoteError):
    """Raised when a candidate or ticket natural key has no chain entry."""

    def __init__(self, entity_kind, natural_key, detail=None):
        super().__init__(
            VoteErrorKind.IDENTIFIER_NOT_FOUND,
            detail or f"No chain {entity_kind} registered for {natural_key!r}",
            context={entity_kind: natural_key},
        )
