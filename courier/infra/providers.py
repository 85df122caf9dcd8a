# courier/infra/providers.py
"""
Delivery providers.

Only a simulated transport ships: each attempt succeeds with a fixed
probability and otherwise raises ``DeliveryError``. Real transports plug
in by subclassing ``BaseProvider``.

Usage:
    primary, fallback = build_providers(settings)
    await primary.send(message)
"""
from __future__ import annotations

import abc
import asyncio
import random

from courier.config import Settings
from courier.core.dispatch.domain import DeliveryError, Message
from courier.infra.logging_config import get_logger, mask_destination

logger = get_logger(__name__)


class BaseProvider(abc.ABC):
    """Abstract base class for delivery providers"""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Provider name for logging/metrics/outcomes"""
        pass

    @abc.abstractmethod
    async def send(self, message: Message) -> None:
        """
        Attempt delivery once.

        Raises:
            DeliveryError: the attempt failed
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class SimulatedProvider(BaseProvider):
    """
    Provider that succeeds with probability ``success_rate``.

    Pass a seeded ``random.Random`` for reproducible runs.
    """

    def __init__(
        self,
        name: str,
        success_rate: float = 0.7,
        *,
        latency_ms: int = 0,
        rng: random.Random | None = None,
    ) -> None:
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError(f"success_rate must be within [0, 1], got {success_rate}")
        self._name = name
        self.success_rate = success_rate
        self.latency_ms = latency_ms
        self._rng = rng or random.Random()

    @property
    def name(self) -> str:
        return self._name

    async def send(self, message: Message) -> None:
        if self.latency_ms:
            await asyncio.sleep(self.latency_ms / 1000)

        if self._rng.random() >= self.success_rate:
            raise DeliveryError(self._name)

        logger.info(
            f"Message sent via {self._name}: to={mask_destination(message.destination)}",
            extra={"message_id": message.id, "provider": self._name},
        )


def build_providers(
    s: Settings,
    *,
    rng: random.Random | None = None,
) -> tuple[BaseProvider, BaseProvider]:
    """Build the (primary, fallback) pair from settings."""
    primary = SimulatedProvider(
        s.primary_provider_name, s.primary_success_rate, rng=rng,
    )
    fallback = SimulatedProvider(
        s.fallback_provider_name, s.fallback_success_rate, rng=rng,
    )
    logger.info(
        f"Providers configured: primary={primary.name} ({primary.success_rate:.0%}), "
        f"fallback={fallback.name} ({fallback.success_rate:.0%})"
    )
    return primary, fallback
