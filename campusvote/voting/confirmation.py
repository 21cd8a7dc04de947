"""
Confirmation and compensation for broadcast vote transactions.

Finality is checked by an ordered list of strategies, each answering
confirmed, failed or unknown. The first conclusive answer wins. When a vote
cannot be confirmed the voter's "has voted" flag in the ledger-of-record is
reset so the two ledgers agree again.
"""

import enum
import logging
import time
from collections import namedtuple

from web3.exceptions import TimeExhausted

from campusvote.exceptions import VoteError
from campusvote.logging_config import log_vote_event

logger = logging.getLogger(__name__)


class ConfirmationStatus(enum.Enum):
    CONFIRMED = 'confirmed'
    FAILED = 'failed'
    UNKNOWN = 'unknown'


ConfirmationResult = namedtuple('ConfirmationResult', 'status strategy receipt detail')


def _receipt_status(receipt):
    status = receipt.get('status') if receipt is not None else None
    return None if status is None else int(status)


class ReceiptStrategy:
    """
    Wait for the transaction receipt.

    A receipt with status 0 is a failure. Other receipts confirm the vote
    when ``lenient`` is set; otherwise only status 1 does.
    """
    name = 'receipt'

    def __init__(self, chain, timeout=120, poll_latency=2.0, lenient=True):
        self.chain = chain
        self.timeout = timeout
        self.poll_latency = poll_latency
        self.lenient = lenient

    def check(self, tx_hash):
        try:
            receipt = self.chain.wait_for_receipt(
                tx_hash, timeout=self.timeout, poll_latency=self.poll_latency
            )
        except TimeExhausted:
            return ConfirmationResult(
                ConfirmationStatus.UNKNOWN, self.name, None,
                f"No receipt within {self.timeout}s"
            )
        except Exception as e:
            logger.warning(f"Receipt lookup for {tx_hash} failed: {e}")
            return ConfirmationResult(ConfirmationStatus.UNKNOWN, self.name, None, str(e))

        status = _receipt_status(receipt)
        if status == 0:
            return ConfirmationResult(ConfirmationStatus.FAILED, self.name, receipt, "Receipt status 0")
        if status == 1 or self.lenient:
            return ConfirmationResult(ConfirmationStatus.CONFIRMED, self.name, receipt, None)
        return ConfirmationResult(
            ConfirmationStatus.UNKNOWN, self.name, receipt, f"Receipt status {status!r}"
        )


class InclusionStrategy:
    """
    Poll for the transaction itself and accept it once it sits in a block.

    Outside lenient mode a mined transaction still needs a receipt with
    status 1.
    """
    name = 'inclusion'

    def __init__(self, chain, attempts=3, delay=3.0, lenient=True, sleep=time.sleep):
        self.chain = chain
        self.attempts = attempts
        self.delay = delay
        self.lenient = lenient
        self.sleep = sleep

    def check(self, tx_hash):
        for i in range(self.attempts):
            try:
                transaction = self.chain.get_transaction(tx_hash)
            except Exception as e:
                logger.warning(f"Transaction lookup for {tx_hash} failed: {e}")
                transaction = None

            if transaction is not None and transaction.get('blockNumber') is not None:
                if self.lenient:
                    return ConfirmationResult(
                        ConfirmationStatus.CONFIRMED, self.name, None,
                        f"Included in block {transaction['blockNumber']}"
                    )
                result = self._check_receipt(tx_hash)
                if result is not None:
                    return result

            if i < self.attempts - 1:
                self.sleep(self.delay)

        return ConfirmationResult(
            ConfirmationStatus.UNKNOWN, self.name, None,
            f"Not included after {self.attempts} checks"
        )

    def _check_receipt(self, tx_hash):
        try:
            receipt = self.chain.get_transaction_receipt(tx_hash)
        except Exception as e:
            logger.warning(f"Receipt lookup for {tx_hash} failed: {e}")
            return None

        status = _receipt_status(receipt)
        if status == 1:
            return ConfirmationResult(ConfirmationStatus.CONFIRMED, self.name, receipt, None)
        if status == 0:
            return ConfirmationResult(ConfirmationStatus.FAILED, self.name, receipt, "Receipt status 0")
        return None


class ConfirmationPipeline:
    """Runs strategies in order until one is conclusive."""

    def __init__(self, strategies):
        self.strategies = list(strategies)

    @classmethod
    def from_settings(cls, chain, settings, sleep=time.sleep):
        return cls([
            ReceiptStrategy(
                chain,
                timeout=settings.receipt_timeout,
                poll_latency=settings.receipt_poll_latency,
                lenient=settings.lenient_receipt_status,
            ),
            InclusionStrategy(
                chain,
                attempts=settings.inclusion_check_attempts,
                delay=settings.inclusion_check_delay,
                lenient=settings.lenient_receipt_status,
                sleep=sleep,
            ),
        ])

    def confirm(self, tx_hash):
        last = ConfirmationResult(ConfirmationStatus.UNKNOWN, None, None, "No strategies configured")
        for strategy in self.strategies:
            result = strategy.check(tx_hash)
            logger.info(f"Confirmation of {tx_hash} via {strategy.name}: {result.status.value}")
            if result.status is not ConfirmationStatus.UNKNOWN:
                return result
            last = result
        return last


def poll_vote_count(chain, election_type, chain_choice_id, before_count,
                    attempts=3, delay=2.0, sleep=time.sleep):
    """
    Read the choice's vote count until it rises above ``before_count``.

    Waits ``delay * (i + 1)`` before read ``i``.

    Returns:
        int or None: The new count, or None if no increase was seen
    """
    for i in range(attempts):
        sleep(delay * (i + 1))
        try:
            count = chain.get_vote_count(election_type, chain_choice_id)
        except Exception as e:
            logger.warning(f"Vote count read {i + 1}/{attempts} failed: {e}")
            continue

        if before_count is None or count > before_count:
            return count

    return None


class Compensator:
    """
    Best-effort compensating reset of the "has voted" flag.

    Runs at most once per vote attempt and never raises. The reset is
    skipped when the chain already records the voter's vote, since the flag
    is then correct.
    """

    def __init__(self, token_client, chain):
        self.token_client = token_client
        self.chain = chain

    def compensate(self, attempt, voter_address=None, reason=None):
        """
        Returns:
            bool: True if the reset was performed
        """
        if attempt.compensated:
            return False
        attempt.compensated = True

        if attempt.chain_election_id is not None and voter_address:
            try:
                if self.chain.check_if_voted(attempt.chain_election_id, voter_address):
                    logger.warning(
                        f"Chain records a vote by {voter_address} in election "
                        f"{attempt.chain_election_id}; keeping the has-voted flag"
                    )
                    log_vote_event(
                        'COMPENSATION_SKIPPED', voter_address, attempt.election_id,
                        'vote present on chain', tx_hash=attempt.tx_hash
                    )
                    return False
            except Exception as e:
                logger.warning(f"checkIfVoted failed before compensation, resetting anyway: {e}")

        try:
            self.token_client.reset_user_vote(attempt.election_id)
        except VoteError as e:
            logger.error(
                f"Compensating reset failed for election {attempt.election_id} "
                f"(tx {attempt.tx_hash}): {e}"
            )
            log_vote_event(
                'COMPENSATION_FAILED', voter_address, attempt.election_id, str(e),
                tx_hash=attempt.tx_hash
            )
            return False

        logger.info(f"Reset has-voted flag for election {attempt.election_id}: {reason}")
        log_vote_event(
            'COMPENSATED', voter_address, attempt.election_id, reason or '',
            tx_hash=attempt.tx_hash
        )
        return True
