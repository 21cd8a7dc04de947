"""
Vote submission engine.

Drives one vote from token request to chain confirmation:

    idle -> requesting-token -> token-received -> connecting-wallet
         -> submitting-vote -> recording-vote -> idle

Any unrecoverable error goes straight back to idle. Once a voting token has
been issued, every failure triggers a compensating reset of the voter's
"has voted" flag, so the ledger-of-record only says "voted" when the chain
holds the vote.
"""

import enum
import logging
import threading
import time
from dataclasses import dataclass

from campusvote.exceptions import VoteError, VoteErrorKind
from campusvote.logging_config import log_vote_event
from campusvote.blockchain.errors import WalletRPCError, to_vote_error
from campusvote.blockchain.wallet import ensure_network
from .clients import TokenServiceClient, LedgerClient
from .confirmation import ConfirmationPipeline, ConfirmationStatus, Compensator, poll_vote_count
from .fees import FeeSchedule, NonceProvider, RetryPolicy
from .identity import ChoiceKind, IdentifierMapper

logger = logging.getLogger(__name__)


class VoteState(enum.Enum):
    IDLE = 'idle'
    REQUESTING_TOKEN = 'requesting-token'
    TOKEN_RECEIVED = 'token-received'
    CONNECTING_WALLET = 'connecting-wallet'
    SUBMITTING_VOTE = 'submitting-vote'
    RECORDING_VOTE = 'recording-vote'


@dataclass
class VoteAttempt:
    """Working state of one submission; discarded when the engine returns to idle."""
    election_id: int
    choice_id: int
    kind: ChoiceKind
    state: VoteState = VoteState.IDLE
    token: str = None
    chain_election_id: int = None
    chain_choice_id: int = None
    nonce: int = None
    fees: FeeSchedule = None
    attempt_count: int = 0
    tx_hash: str = None
    before_vote_count: int = None
    compensated: bool = False


@dataclass(frozen=True)
class VoteResult:
    success: bool
    tx_hash: str = None
    vote_count: int = None
    error: VoteError = None

    @property
    def error_kind(self):
        return self.error.kind if self.error is not None else None

    @property
    def message(self):
        if self.error is not None:
            return self.error.user_message
        return "Your vote has been recorded on the blockchain."


class VoteSubmissionEngine:
    """
    Submits votes for one voter.

    Collaborators are injected; ``from_settings`` wires the default ones.
    ``sleep`` is used for every wait (retry backoff, polling) so tests can
    run without delays.
    """

    def __init__(self, token_client, chain, wallet, mapper, settings,
                 retry_policy=None, confirmation=None, nonce_provider=None,
                 compensator=None, on_progress=None, sleep=time.sleep):
        self.token_client = token_client
        self.chain = chain
        self.wallet = wallet
        self.mapper = mapper
        self.settings = settings
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self.confirmation = confirmation or ConfirmationPipeline.from_settings(chain, settings, sleep=sleep)
        self.nonce_provider = nonce_provider or NonceProvider(chain)
        self.compensator = compensator or Compensator(token_client, chain)
        self.on_progress = on_progress
        self.sleep = sleep

        self._state = VoteState.IDLE
        self._attempt = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings, credential, chain, wallet, cache=None,
                      session=None, on_progress=None, sleep=time.sleep):
        """
        Wire an engine from EngineSettings.

        Args:
            settings: EngineSettings
            credential: The voter's bearer credential for the JSON API
            chain: Connected ChainClient
            wallet: InjectedWallet or LocalAccountWallet
            cache: Identity cache (cachelib API); process-local by default
            session: requests-compatible session shared by both API clients
        """
        token_client = TokenServiceClient(settings.api_url, credential, settings.api_timeout, session)
        ledger = LedgerClient(settings.api_url, credential, settings.api_timeout, session)
        mapper = IdentifierMapper(
            chain, ledger, cache=cache,
            scan_limit=settings.election_scan_limit,
            register_missing=settings.register_missing_candidates,
        )
        return cls(token_client, chain, wallet, mapper, settings, on_progress=on_progress, sleep=sleep)

    @property
    def state(self):
        return self._state

    @property
    def current_attempt(self):
        return self._attempt

    def _set_state(self, state, callback=None):
        self._state = state
        if self._attempt is not None:
            self._attempt.state = state
        callback = callback or self.on_progress
        if callback is None:
            return
        # Progress reporting only
        try:
            callback(state)
        except Exception as e:
            logger.warning(f"Progress callback failed on {state.value}: {e}", exc_info=True)

    # ==================== Entry point ====================

    def submit_vote(self, election_id, choice_id, kind, on_progress=None):
        """
        Cast a vote for ``choice_id`` in ``election_id``.

        Args:
            election_id: Relational election id
            choice_id: Relational candidate id, or ticket id for tickets
            kind: ChoiceKind (or its value)
            on_progress: Called with every VoteState entered

        Returns:
            VoteResult, or None if a submission is already in progress
        """
        if not self._lock.acquire(blocking=False):
            logger.warning(f"Vote for election {election_id} ignored: a submission is in progress")
            return None

        try:
            attempt = VoteAttempt(election_id=election_id, choice_id=choice_id, kind=ChoiceKind(kind))
            self._attempt = attempt
            return self._run(attempt, on_progress)
        finally:
            self._attempt = None
            self._state = VoteState.IDLE
            self._lock.release()
            self._set_state(VoteState.IDLE, on_progress)

    def _run(self, attempt, on_progress):
        voter = None
        try:
            self._set_state(VoteState.REQUESTING_TOKEN, on_progress)
            attempt.token = self.token_client.request_token(attempt.election_id)
            log_vote_event('TOKEN_RECEIVED', None, attempt.election_id)

            self._set_state(VoteState.TOKEN_RECEIVED, on_progress)
            self._verify_token(attempt)

            self._set_state(VoteState.CONNECTING_WALLET, on_progress)
            voter = self._connect_wallet()

            # Undeployed elections and unknown choices stop here, before any chain cost
            attempt.chain_election_id = self.mapper.resolve_election_id(attempt.election_id)
            attempt.chain_choice_id = self.mapper.resolve_choice(
                attempt.election_id, attempt.kind, attempt.choice_id
            )

            self._set_state(VoteState.SUBMITTING_VOTE, on_progress)
            attempt.before_vote_count = self._read_vote_count(attempt)

            attempt.tx_hash = self._broadcast(attempt, voter)

            self._set_state(VoteState.RECORDING_VOTE, on_progress)
            return self._record(attempt, voter)

        except VoteError as e:
            return self._fail(attempt, voter, e)
        except Exception as e:
            logger.error(f"Unexpected error while voting in election {attempt.election_id}: {e}", exc_info=True)
            return self._fail(attempt, voter, to_vote_error(e))

    # ==================== Steps ====================

    def _verify_token(self, attempt):
        if not self.token_client.verify_token(attempt.token, attempt.election_id, attempt.choice_id):
            raise VoteError(
                VoteErrorKind.TOKEN_INVALID_OR_EXPIRED,
                context={'election_id': attempt.election_id}
            )

    def _connect_wallet(self):
        """Returns the voter's address once the wallet is on the right chain."""
        if self.wallet is None:
            raise VoteError(VoteErrorKind.WALLET_UNAVAILABLE, "No wallet provider")

        try:
            accounts = self.wallet.request_accounts()
            if not accounts:
                raise VoteError(VoteErrorKind.WALLET_UNAVAILABLE, "Wallet exposed no accounts")
            ensure_network(self.wallet, self.settings.chain)
        except WalletRPCError as e:
            error = to_vote_error(e)
            if error.kind is not VoteErrorKind.USER_REJECTED:
                error = VoteError(VoteErrorKind.WALLET_UNAVAILABLE, e.message, cause=e)
            raise error

        return accounts[0]

    def _read_vote_count(self, attempt):
        try:
            return self.chain.get_vote_count(attempt.kind.election_type, attempt.chain_choice_id)
        except Exception as e:
            logger.warning(f"Could not read vote count before voting: {e}")
            return None

    def _broadcast(self, attempt, voter):
        """
        Send the vote, retrying transient broadcast failures.

        Each try takes a fresh nonce and escalated fees, and re-verifies the
        token right before the wallet is asked to send.
        """
        policy = self.retry_policy
        context = {'election': attempt.chain_election_id, 'choice': attempt.chain_choice_id}

        for number in range(1, policy.max_attempts + 1):
            attempt.attempt_count = number
            try:
                attempt.nonce = self.nonce_provider.next_nonce(voter)
                attempt.fees = policy.fee_policy.fee_schedule(number)

                self._verify_token(attempt)

                transaction = self.chain.build_vote_transaction(
                    attempt.kind.election_type,
                    attempt.chain_election_id,
                    attempt.chain_choice_id,
                    attempt.nonce,
                    attempt.fees,
                    voter,
                )
                tx_hash = self.wallet.send_transaction(transaction)

            except Exception as e:
                error = to_vote_error(e, **context)
                if not policy.should_retry(error.kind, number):
                    raise error

                delay = policy.backoff(number)
                logger.warning(
                    f"Vote broadcast attempt {number}/{policy.max_attempts} failed "
                    f"({error.kind.value}): {error}; retrying in {delay}s"
                )
                self.sleep(delay)
                continue

            logger.info(
                f"Vote broadcast on attempt {number}: {tx_hash} "
                f"(nonce {attempt.nonce}, gas {attempt.fees.gas_limit})"
            )
            log_vote_event(
                'VOTE_BROADCAST', voter, attempt.election_id,
                tx_hash=tx_hash, attempt=number, nonce=attempt.nonce
            )
            return tx_hash

        # Unreachable: the last attempt either returns or raises
        raise VoteError(VoteErrorKind.TRANSIENT_BROADCAST_FAILURE, context=context)

    def _record(self, attempt, voter):
        result = self.confirmation.confirm(attempt.tx_hash)
        context = {'tx_hash': attempt.tx_hash}

        if result.status is ConfirmationStatus.FAILED:
            raise VoteError(VoteErrorKind.TRANSACTION_FAILED, result.detail, context=context)
        if result.status is not ConfirmationStatus.CONFIRMED:
            raise VoteError(VoteErrorKind.CONFIRMATION_AMBIGUOUS, result.detail, context=context)

        log_vote_event(
            'VOTE_CONFIRMED', voter, attempt.election_id,
            tx_hash=attempt.tx_hash, strategy=result.strategy
        )

        # The chain holds the vote now; a failed consume must not undo that
        if not self._consume(attempt):
            logger.warning(f"Vote {attempt.tx_hash} confirmed but its token was not marked used")

        vote_count = poll_vote_count(
            self.chain,
            attempt.kind.election_type,
            attempt.chain_choice_id,
            attempt.before_vote_count,
            attempts=self.settings.vote_count_poll_attempts,
            delay=self.settings.vote_count_poll_delay,
            sleep=self.sleep,
        )

        return VoteResult(success=True, tx_hash=attempt.tx_hash, vote_count=vote_count)

    def _consume(self, attempt):
        """Mark the token used, retrying with the broadcast backoff."""
        policy = self.retry_policy
        for number in range(1, policy.max_attempts + 1):
            if self.token_client.consume_token(
                    attempt.token, attempt.election_id, attempt.choice_id, attempt.tx_hash):
                return True
            if number < policy.max_attempts:
                self.sleep(policy.backoff(number))
        return False

    def _fail(self, attempt, voter, error):
        logger.warning(
            f"Vote in election {attempt.election_id} failed at {attempt.state.value}: "
            f"{error.kind.value} - {error}"
        )

        if attempt.token is not None:
            self.compensator.compensate(attempt, voter, reason=error.kind.value)

        log_vote_event(
            'VOTE_FAILED', voter, attempt.election_id, error.kind.value,
            tx_hash=attempt.tx_hash, attempts=attempt.attempt_count
        )
        return VoteResult(success=False, tx_hash=attempt.tx_hash, error=error)
