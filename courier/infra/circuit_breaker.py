# courier/infra/circuit_breaker.py
"""
Circuit breaker gating dispatch attempts.

States:
- CLOSED: failure_count below threshold, attempts allowed
- OPEN: threshold reached, attempts rejected until reset_timeout elapses
  since the last recorded failure; the next check after that closes the
  breaker again and clears the count.

Failures are recorded per exhausted provider (not per retry), so the
threshold counts whole failed delivery sequences.
"""
from __future__ import annotations
import time
from typing import Callable

from courier.infra.logging_config import get_logger
from courier.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


class CircuitBreaker:
    """Two-state breaker with timeout-based reset."""

    CLOSED = "closed"
    OPEN = "open"

    def __init__(
        self,
        failure_threshold: int = 3,
        reset_timeout_ms: int = 10000,
        name: str = "dispatch",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self.name = name
        self._clock = clock

        self.failure_count = 0
        self.last_failure_time: float | None = None

    @property
    def state(self) -> str:
        """Current state without triggering the timeout transition"""
        if self.failure_count < self.failure_threshold:
            return self.CLOSED
        return self.OPEN

    def should_attempt(self) -> bool:
        """Check if the breaker lets a dispatch through"""
        if self.failure_count < self.failure_threshold:
            return True

        elapsed_ms = self._elapsed_since_failure_ms()
        if elapsed_ms is None or elapsed_ms > self.reset_timeout_ms:
            logger.info(
                f"Circuit breaker '{self.name}' closing after {elapsed_ms or 0:.0f}ms "
                f"(timeout={self.reset_timeout_ms}ms)"
            )
            self.reset()
            return True

        return False

    def record_failure(self) -> None:
        """Record an exhausted provider"""
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.failure_count == self.failure_threshold:
            logger.error(
                f"Circuit breaker '{self.name}' opening "
                f"(failures: {self.failure_count}/{self.failure_threshold})"
            )
            DispatchMetrics.breaker_opened()

    def reset(self) -> None:
        self.failure_count = 0

    def snapshot(self) -> dict:
        """State for health endpoints"""
        elapsed_ms = self._elapsed_since_failure_ms()
        return {
            "name": self.name,
            "state": self.state,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "reset_timeout_ms": self.reset_timeout_ms,
            "ms_since_last_failure": None if elapsed_ms is None else round(elapsed_ms),
        }

    def _elapsed_since_failure_ms(self) -> float | None:
        if self.last_failure_time is None:
            return None
        return (self._clock() - self.last_failure_time) * 1000
