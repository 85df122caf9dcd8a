# courier/core/dispatch/__init__.py
"""
Dispatch layer: provider-agnostic delivery logic.

- ``domain``: Message, DispatchOutcome, DeliveryError
- ``ports``: Provider protocol implemented by ``courier.infra.providers``
- ``engine``: rate limit → circuit breaker → primary with retries → fallback
- ``queue``: single-worker FIFO in front of the engine

Nothing here imports the HTTP transport.
"""
