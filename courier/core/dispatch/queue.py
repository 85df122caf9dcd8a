# courier/core/dispatch/queue.py
"""
Single-worker FIFO in front of the dispatch engine.

The first ``enqueue`` starts a drain task; the task dispatches messages
one at a time in arrival order and exits once the queue is empty. The
``is_processing`` flag is raised before the task is scheduled, so an
``enqueue`` arriving in between never starts a second drain loop.
"""
from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass

from courier.core.dispatch.domain import DispatchOutcome, Message
from courier.core.dispatch.engine import DispatchEngine
from courier.infra.logging_config import get_logger, mask_destination
from courier.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


@dataclass
class _Pending:
    message: Message
    future: asyncio.Future


class DispatchQueue:
    """Serializes messages through one ``DispatchEngine``."""

    def __init__(self, engine: DispatchEngine):
        self._engine = engine
        self._queue: deque[_Pending] = deque()
        self._processing = False
        self._drain_task: asyncio.Task | None = None

    @property
    def engine(self) -> DispatchEngine:
        return self._engine

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def queue_size(self) -> int:
        """Messages waiting (excludes the one being dispatched)"""
        return len(self._queue)

    def enqueue(self, message: Message) -> asyncio.Future:
        """Add a message; the returned future resolves to its outcome.

        Cancelling the future before the message reaches the front of the
        queue withdraws it; once dispatch has started it runs to completion.

        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._queue.append(_Pending(message, future))
        DispatchMetrics.queued()
        logger.info(
            f"Message queued: id={message.id}, to={mask_destination(message.destination)}, "
            f"queue_size={len(self._queue)}",
            extra={"message_id": message.id},
        )

        if not self._processing:
            self._processing = True
            self._drain_task = loop.create_task(self._drain())

        return future

    async def submit(self, message: Message) -> DispatchOutcome:
        """Enqueue and wait for the outcome."""
        return await self.enqueue(message)

    async def join(self) -> None:
        """Wait until the active drain loop (if any) has finished."""
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.wait({self._drain_task})

    async def _drain(self) -> None:
        logger.debug("Drain loop started")
        processed = 0
        pending: _Pending | None = None
        try:
            while self._queue:
                pending = self._queue.popleft()
                message = pending.message
                if pending.future.cancelled():
                    logger.info(
                        f"Skipping cancelled message: id={message.id}",
                        extra={"message_id": message.id},
                    )
                    continue
                logger.info(
                    f"Processing message to {mask_destination(message.destination)}",
                    extra={"message_id": message.id},
                )
                try:
                    outcome = await self._engine.dispatch(message)
                except Exception as exc:
                    # dispatch converts delivery failures into outcomes;
                    # anything reaching here is a bug in a collaborator
                    logger.error(
                        f"Dispatch raised unexpectedly: id={message.id}, error={exc}",
                        exc_info=True,
                    )
                    if not pending.future.done():
                        pending.future.set_exception(exc)
                else:
                    if not pending.future.done():
                        pending.future.set_result(outcome)
                processed += 1
        except asyncio.CancelledError:
            if pending is not None and not pending.future.done():
                pending.future.cancel()
            for leftover in self._queue:
                leftover.future.cancel()
            self._queue.clear()
            raise
        finally:
            self._processing = False
            logger.debug(f"Drain loop stopped: processed={processed}")

    async def close(self) -> None:
        """Cancel the drain loop and every message still waiting."""
        task = self._drain_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for leftover in self._queue:
            leftover.future.cancel()
        self._queue.clear()
        self._processing = False
