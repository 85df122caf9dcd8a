# courier/transport/schemas.py
from typing import Any

from pydantic import BaseModel, Field


class MessageIn(BaseModel):
    destination: str = Field(min_length=1, max_length=320)
    subject: str = Field(default="", max_length=998)
    body: str = Field(default="")
    metadata: dict[str, Any] = Field(default_factory=dict)


class OutcomeOut(BaseModel):
    success: bool
    provider_name: str | None
    attempt_count: int
    error_message: str | None = None
    message_id: str | None = None


class QueuedOut(BaseModel):
    message_id: str
    queue_size: int
