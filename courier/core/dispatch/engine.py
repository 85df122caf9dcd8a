# courier/core/dispatch/engine.py
"""
Dispatch engine: one message in, one outcome out.

Per call:
1. wait for the global rate limiter
2. ask the circuit breaker (once per call, never per retry)
3. primary provider with exponential-backoff retries
4. fallback provider with a fresh attempt counter
5. record the outcome (calls rejected by the breaker are not recorded)

``dispatch`` never raises for delivery problems; every path ends in a
``DispatchOutcome``.
"""
from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable

from courier.config import DispatchConfig
from courier.core.dispatch.domain import DeliveryError, DispatchOutcome, Message
from courier.core.dispatch.ports import Provider
from courier.infra.circuit_breaker import CircuitBreaker
from courier.infra.logging_config import LogContext, get_logger
from courier.infra.metrics import DispatchMetrics
from courier.infra.rate_limiter import SendRateLimiter

logger = get_logger(__name__)


class DispatchEngine:
    """Delivers messages through a primary provider with one fallback."""

    def __init__(
        self,
        primary: Provider,
        fallback: Provider,
        *,
        config: DispatchConfig | None = None,
        rate_limiter: SendRateLimiter | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        outcome_log_limit: int = 0,
    ):
        self.config = config or DispatchConfig()
        self._providers: tuple[Provider, Provider] = (primary, fallback)
        self._sleep = sleep
        self.rate_limiter = rate_limiter or SendRateLimiter(
            self.config.rate_limit_ms, clock=clock, sleep=sleep,
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=self.config.failure_threshold,
            reset_timeout_ms=self.config.reset_timeout_ms,
            clock=clock,
        )
        self._outcomes: deque[DispatchOutcome] = deque(maxlen=outcome_log_limit or None)

    @property
    def primary(self) -> Provider:
        return self._providers[0]

    @property
    def fallback(self) -> Provider:
        return self._providers[1]

    @property
    def outcomes(self) -> tuple[DispatchOutcome, ...]:
        """Outcome log, oldest first"""
        return tuple(self._outcomes)

    async def dispatch(self, message: Message) -> DispatchOutcome:
        log = LogContext(
            logger,
            request_id=message.metadata.get("request_id"),
            message_id=message.id,
            destination=message.destination,
        )

        with DispatchMetrics.track_dispatch_time():
            await self.rate_limiter.throttle()

            if not self.circuit_breaker.should_attempt():
                # rejected calls stay out of the outcome log
                outcome = DispatchOutcome.circuit_open(message_id=message.id)
                log.warning("Circuit breaker open, skipping dispatch")
                DispatchMetrics.breaker_rejected()
                DispatchMetrics.outcome(outcome.success)
                return outcome

            outcome = await self._send_with_provider(self.primary, message, log)
            if not outcome.success:
                log.warning(
                    f"Falling back to {self.fallback.name} "
                    f"after {outcome.attempt_count} failed attempts on {self.primary.name}"
                )
                DispatchMetrics.fallback(self.primary.name)
                outcome = await self._send_with_provider(self.fallback, message, log)

        self._outcomes.append(outcome)
        DispatchMetrics.outcome(outcome.success)

        if outcome.success:
            log.info(
                f"Dispatch succeeded: provider={outcome.provider_name}, "
                f"attempts={outcome.attempt_count}"
            )
        else:
            log.error(
                f"Dispatch failed: provider={outcome.provider_name}, "
                f"attempts={outcome.attempt_count}, error={outcome.error_message}"
            )
        return outcome

    async def _send_with_provider(
        self, provider: Provider, message: Message, log: LogContext,
    ) -> DispatchOutcome:
        """Try one provider up to ``max_retries`` times with exponential backoff."""
        max_retries = self.config.max_retries
        log = log.bind(provider=provider.name)
        error_message = ""

        for attempt in range(1, max_retries + 1):
            try:
                await provider.send(message)
            except Exception as exc:
                error_message = str(exc) or type(exc).__name__
                DispatchMetrics.attempt(provider.name, ok=False)
                log.warning(
                    f"Attempt {attempt}/{max_retries} failed: {error_message}",
                    extra={"attempt": attempt},
                    exc_info=not isinstance(exc, DeliveryError),
                )
                if attempt < max_retries:
                    await self._sleep(self.config.backoff_ms(attempt) / 1000)
                continue

            DispatchMetrics.attempt(provider.name, ok=True)
            return DispatchOutcome(
                success=True,
                provider_name=provider.name,
                attempt_count=attempt,
                message_id=message.id,
            )

        self.circuit_breaker.record_failure()
        return DispatchOutcome(
            success=False,
            provider_name=provider.name,
            attempt_count=max_retries,
            error_message=error_message,
            message_id=message.id,
        )
