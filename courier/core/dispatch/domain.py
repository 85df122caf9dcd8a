# courier/core/dispatch/domain.py
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional


CIRCUIT_OPEN_MESSAGE = "circuit breaker is open"


# ============================================================================
# MESSAGE
# ============================================================================

@dataclass(frozen=True)
class Message:
    """
    A message waiting to be delivered.

    Fields are opaque to the dispatcher: they are handed to the provider
    untouched. ``metadata`` is wrapped in a read-only mapping so the
    message stays immutable once created.
    """
    destination: str
    subject: str = ""
    body: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


# ============================================================================
# OUTCOME
# ============================================================================

@dataclass(frozen=True)
class DispatchOutcome:
    """Result of one top-level dispatch call"""
    success: bool
    provider_name: Optional[str]
    attempt_count: int
    error_message: Optional[str] = None
    message_id: Optional[str] = None

    @classmethod
    def circuit_open(cls, message_id: str | None = None) -> "DispatchOutcome":
        """Outcome for a call rejected before any provider was contacted."""
        return cls(
            success=False,
            provider_name=None,
            attempt_count=0,
            error_message=CIRCUIT_OPEN_MESSAGE,
            message_id=message_id,
        )

    @property
    def rejected(self) -> bool:
        """True when the circuit breaker turned the call away before any provider ran."""
        return self.provider_name is None

    def summary(self) -> str:
        """One-line status, e.g. ``Status: Success | Provider: primary | Attempts: 1``."""
        line = (
            f"Status: {'Success' if self.success else 'Failed'} | "
            f"Provider: {self.provider_name or '-'} | "
            f"Attempts: {self.attempt_count}"
        )
        if self.error_message:
            line += f" | Error: {self.error_message}"
        return line

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "provider_name": self.provider_name,
            "attempt_count": self.attempt_count,
            "message_id": self.message_id,
        }
        if self.error_message is not None:
            data["error_message"] = self.error_message
        return data


# ============================================================================
# ERRORS
# ============================================================================

class DeliveryError(Exception):
    """A single delivery attempt failed.

    Attributes:
        provider_name: Provider that raised it.
    """

    def __init__(self, provider_name: str, message: str | None = None):
        self.provider_name = provider_name
        super().__init__(message or f"Failed to send message via {provider_name}")
