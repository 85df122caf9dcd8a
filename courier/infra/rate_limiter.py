# courier/infra/rate_limiter.py
from __future__ import annotations
import asyncio
import time
from typing import Awaitable, Callable

from courier.infra.logging_config import get_logger
from courier.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


class SendRateLimiter:
    """
    Global minimum spacing between dispatches.

    One instance per engine. ``throttle()`` holds a lock across the
    check, the wait and the timestamp update, so concurrent callers are
    spaced one after another instead of both passing the check.
    """

    def __init__(
        self,
        rate_limit_ms: int = 2000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rate_limit_ms = rate_limit_ms
        self._clock = clock
        self._sleep = sleep
        self._last_send_time: float | None = None
        self._lock = asyncio.Lock()

    @property
    def last_send_time(self) -> float | None:
        return self._last_send_time

    async def throttle(self) -> float:
        """Wait until the next send is allowed.

        Returns:
            Seconds spent waiting (0.0 when no wait was needed).
        """
        async with self._lock:
            waited = 0.0
            if self._last_send_time is not None:
                elapsed = self._clock() - self._last_send_time
                min_interval = self.rate_limit_ms / 1000
                if elapsed < min_interval:
                    waited = min_interval - elapsed
                    logger.debug(f"Rate limiting: waiting {waited:.2f}s")
                    DispatchMetrics.rate_limit_wait(waited)
                    await self._sleep(waited)

            self._last_send_time = self._clock()
            return waited
