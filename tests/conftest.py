# tests/conftest.py
"""Pytest configuration and fixtures"""
import asyncio
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from courier.config import DispatchConfig  # noqa: E402
from courier.core.dispatch.domain import DeliveryError, Message  # noqa: E402
from courier.core.dispatch.engine import DispatchEngine  # noqa: E402
from courier.infra.metrics import get_metrics_collector  # noqa: E402
from courier.infra.providers import BaseProvider  # noqa: E402


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        # yield so other tasks can run, like a real sleep would
        await asyncio.sleep(0)


class ScriptedProvider(BaseProvider):
    """
    Provider driven by a script of results.

    ``script`` is consumed one entry per attempt (True = delivered);
    once empty, ``default`` decides. Every attempt is recorded in ``calls``.
    """

    def __init__(self, name: str, script=(), *, default: bool = True, error: Exception | None = None):
        self._name = name
        self.script = list(script)
        self.default = default
        self.error = error
        self.calls: list[Message] = []
        self.on_send = None

    @property
    def name(self) -> str:
        return self._name

    async def send(self, message: Message) -> None:
        self.calls.append(message)
        if self.on_send is not None:
            self.on_send(message)
        ok = self.script.pop(0) if self.script else self.default
        if not ok:
            raise self.error or DeliveryError(self._name)

    @property
    def call_count(self) -> int:
        return len(self.calls)


@pytest.fixture(autouse=True)
def reset_metrics():
    """Metrics are process-global; start every test from zero."""
    get_metrics_collector().reset()
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def primary():
    return ScriptedProvider("primary")


@pytest.fixture
def fallback():
    return ScriptedProvider("fallback")


@pytest.fixture
def make_engine(clock, primary, fallback):
    """Build an engine wired to the fake clock and scripted providers."""
    def _make(config: DispatchConfig | None = None, **kwargs) -> DispatchEngine:
        return DispatchEngine(
            kwargs.pop("primary", primary),
            kwargs.pop("fallback", fallback),
            config=config or DispatchConfig(),
            clock=clock,
            sleep=clock.sleep,
            **kwargs,
        )
    return _make


@pytest.fixture
def message():
    return Message(destination="user@example.com", subject="Test", body="This is a test email")
