# courier/core/dispatch/ports.py
from __future__ import annotations
from typing import Protocol, runtime_checkable
from courier.core.dispatch.domain import Message


@runtime_checkable
class Provider(Protocol):
    """Delivery backend.

    ``send`` returns normally on success and raises ``DeliveryError``
    on failure. Providers never retry on their own.
    """

    @property
    def name(self) -> str: ...

    async def send(self, message: Message) -> None: ...
