"""
Chain error classification.

Everything web3, the wallet provider or the HTTP transport can raise is
mapped to a VoteErrorKind here; the vote engine only ever switches on kinds.
"""

import requests
from web3.exceptions import (
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3RPCError,
)

from campusvote.exceptions import CampusVoteException, VoteError, VoteErrorKind


# EIP-1193 provider error codes
USER_REJECTED_REQUEST = 4001
UNAUTHORIZED = 4100
UNSUPPORTED_METHOD = 4200
DISCONNECTED = 4900
CHAIN_DISCONNECTED = 4901
UNRECOGNIZED_CHAIN = 4902
# JSON-RPC internal error, what wallets report for most node-side failures
INTERNAL_JSON_RPC_ERROR = -32603

_TRANSIENT_MARKERS = (
    'internal json-rpc error',
    'could not be mined',
    'nonce too low',
    'underpriced',
    'already known',
    'transaction pool is full',
    'timeout',
    'timed out',
    'rate limit',
    'too many requests',
    'header not found',
)


class WalletRPCError(CampusVoteException):
    """Error object returned by a wallet provider for an RPC request."""

    def __init__(self, code, message, data=None):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message or ''
        self.data = data

    @classmethod
    def from_response(cls, error):
        if isinstance(error, dict):
            return cls(error.get('code'), error.get('message', ''), error.get('data'))
        return cls(None, str(error))


def _rpc_code_and_message(exc):
    """Pull (code, message) out of wallet and node RPC errors."""
    if isinstance(exc, WalletRPCError):
        return exc.code, exc.message

    if isinstance(exc, Web3RPCError):
        response = getattr(exc, 'rpc_response', None) or {}
        error = response.get('error') if isinstance(response, dict) else None
        if isinstance(error, dict):
            return error.get('code'), str(error.get('message', ''))
        return None, str(exc)

    return None, str(exc)


def classify_chain_error(exc):
    """
    Map an exception raised at the chain boundary to a VoteErrorKind.

    Args:
        exc: Exception from web3, a wallet adapter or the HTTP transport

    Returns:
        VoteErrorKind
    """
    if isinstance(exc, VoteError):
        return exc.kind

    # Reverts come with a decoded reason and are never worth retrying
    if isinstance(exc, ContractLogicError):
        if 'already voted' in str(exc).lower():
            return VoteErrorKind.ALREADY_VOTED
        return VoteErrorKind.CONTRACT_REJECTED

    if isinstance(exc, TimeExhausted):
        return VoteErrorKind.CONFIRMATION_AMBIGUOUS

    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return VoteErrorKind.TRANSIENT_BROADCAST_FAILURE

    code, message = _rpc_code_and_message(exc)
    text = (message or '').lower()

    if code == USER_REJECTED_REQUEST or 'user rejected' in text or 'user denied' in text:
        return VoteErrorKind.USER_REJECTED

    if code == UNRECOGNIZED_CHAIN:
        return VoteErrorKind.NETWORK_MISMATCH

    if code in (UNAUTHORIZED, UNSUPPORTED_METHOD, DISCONNECTED, CHAIN_DISCONNECTED):
        return VoteErrorKind.WALLET_UNAVAILABLE

    if 'insufficient funds' in text:
        return VoteErrorKind.INSUFFICIENT_FUNDS

    if 'already voted' in text:
        return VoteErrorKind.ALREADY_VOTED

    if 'execution reverted' in text:
        return VoteErrorKind.CONTRACT_REJECTED

    if code == INTERNAL_JSON_RPC_ERROR or any(marker in text for marker in _TRANSIENT_MARKERS):
        return VoteErrorKind.TRANSIENT_BROADCAST_FAILURE

    if isinstance(exc, TransactionNotFound):
        return VoteErrorKind.CONFIRMATION_AMBIGUOUS

    return VoteErrorKind.TRANSACTION_FAILED


def to_vote_error(exc, **context):
    """Wrap ``exc`` in a VoteError carrying its classified kind and context."""
    if isinstance(exc, VoteError):
        return exc.with_context(**context)

    return VoteError(classify_chain_error(exc), detail=str(exc), context=context, cause=exc)
