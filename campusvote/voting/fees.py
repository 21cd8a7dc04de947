"""
Fee and nonce provisioning for vote transactions.

Every retry gets a fresh contract nonce and a fee schedule that strictly
dominates the previous attempt's.
"""

import logging
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeeSchedule:
    gas_limit: int
    max_priority_fee_gwei: int
    max_fee_gwei: int

    def dominates(self, other):
        """True if every component is strictly higher than ``other``'s."""
        return (
            self.gas_limit > other.gas_limit
            and self.max_priority_fee_gwei > other.max_priority_fee_gwei
            and self.max_fee_gwei > other.max_fee_gwei
        )


class FeePolicy:
    """
    Linear fee escalation: ``base + step * attempt`` per component, capped
    at a ceiling.

    Raises:
        ValueError: a ceiling would be hit within ``max_attempts``, or the
            priority fee could exceed the max fee
    """

    def __init__(self, max_attempts=3,
                 gas_limit_base=500_000, gas_limit_step=50_000, gas_limit_ceiling=1_000_000,
                 priority_fee_base_gwei=15, priority_fee_step_gwei=1, priority_fee_ceiling_gwei=50,
                 max_fee_base_gwei=35, max_fee_step_gwei=2, max_fee_ceiling_gwei=120):
        self.max_attempts = max_attempts
        self._components = {
            'gas_limit': (gas_limit_base, gas_limit_step, gas_limit_ceiling),
            'max_priority_fee_gwei': (priority_fee_base_gwei, priority_fee_step_gwei, priority_fee_ceiling_gwei),
            'max_fee_gwei': (max_fee_base_gwei, max_fee_step_gwei, max_fee_ceiling_gwei),
        }

        for name, (base, step, ceiling) in self._components.items():
            if step <= 0:
                raise ValueError(f"{name} step must be positive, got {step}")
            if base + step * max_attempts > ceiling:
                raise ValueError(
                    f"{name} reaches its ceiling {ceiling} within {max_attempts} attempts"
                )

        for attempt in range(1, max_attempts + 1):
            schedule = self.fee_schedule(attempt)
            if schedule.max_priority_fee_gwei > schedule.max_fee_gwei:
                raise ValueError(f"Priority fee exceeds max fee on attempt {attempt}")

    @classmethod
    def from_settings(cls, settings):
        return cls(
            max_attempts=settings.max_attempts,
            gas_limit_base=settings.gas_limit_base,
            gas_limit_step=settings.gas_limit_step,
            gas_limit_ceiling=settings.gas_limit_ceiling,
            priority_fee_base_gwei=settings.priority_fee_base_gwei,
            priority_fee_step_gwei=settings.priority_fee_step_gwei,
            priority_fee_ceiling_gwei=settings.priority_fee_ceiling_gwei,
            max_fee_base_gwei=settings.max_fee_base_gwei,
            max_fee_step_gwei=settings.max_fee_step_gwei,
            max_fee_ceiling_gwei=settings.max_fee_ceiling_gwei,
        )

    def fee_schedule(self, attempt):
        """Fees for the 1-based ``attempt``."""
        values = {
            name: min(base + step * attempt, ceiling)
            for name, (base, step, ceiling) in self._components.items()
        }
        return FeeSchedule(**values)


class RetryPolicy:
    """Bounded retries with linear backoff: ``min(base * attempt, max_delay)``."""

    def __init__(self, max_attempts=3, base_delay=1.0, max_delay=5.0, fee_policy=None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.fee_policy = fee_policy or FeePolicy(max_attempts=max_attempts)

    @classmethod
    def from_settings(cls, settings):
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            fee_policy=FeePolicy.from_settings(settings),
        )

    def backoff(self, attempt):
        return min(self.base_delay * attempt, self.max_delay)

    def should_retry(self, error_kind, attempt):
        return error_kind.retryable and attempt < self.max_attempts


class NonceProvider:
    """
    Hands out contract replay-protection nonces.

    Each nonce is ``max(chain_nonce, last + 1)`` so no voter ever gets the
    same nonce twice from this process, even when a failed broadcast left
    the chain's counter where it was.
    """

    def __init__(self, chain):
        self.chain = chain
        self._last = {}
        self._lock = threading.Lock()

    def next_nonce(self, voter_address):
        chain_nonce = self.chain.get_next_nonce(voter_address)
        key = voter_address.lower()
        with self._lock:
            last = self._last.get(key)
            nonce = chain_nonce if last is None else max(chain_nonce, last + 1)
            self._last[key] = nonce

        if nonce != chain_nonce:
            logger.debug(f"Chain nonce {chain_nonce} already used for {voter_address}, using {nonce}")
        return nonce

    def last_nonce(self, voter_address):
        return self._last.get(voter_address.lower())
