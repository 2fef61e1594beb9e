"""Per-thread ordering for messages read from the source.

Each source thread gets its own lane: messages in a lane are handled one at a
time in arrival order, while lanes of unrelated threads run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict

from core.models import NormalizedMessage
from core.ports import SourceClientPort

LOGGER = logging.getLogger(__name__)

Handler = Callable[[NormalizedMessage], Awaitable[Any]]


class ThreadSequencer:
    """Runs one worker task per thread with queued messages."""

    def __init__(self, handle: Handler) -> None:
        self._handle = handle
        self._queues: Dict[str, Deque[NormalizedMessage]] = {}
        self._workers: Dict[str, asyncio.Task] = {}

    def active_threads(self) -> int:
        return len(self._workers)

    def submit(self, message: NormalizedMessage) -> None:
        queue = self._queues.get(message.thread_id)
        if queue is not None:
            queue.append(message)
            return
        self._queues[message.thread_id] = deque([message])
        self._workers[message.thread_id] = asyncio.create_task(self._drain(message.thread_id))

    async def _drain(self, thread_id: str) -> None:
        queue = self._queues[thread_id]
        try:
            while queue:
                message = queue.popleft()
                try:
                    await self._handle(message)
                except Exception:
                    LOGGER.exception("Error while handling message for thread %s", thread_id)
        finally:
            # No await between the empty check and here, so nothing is lost.
            del self._queues[thread_id]
            del self._workers[thread_id]

    async def join(self) -> None:
        """Wait until every lane is empty."""

        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)


async def pump_messages(source: SourceClientPort, handle: Handler) -> None:
    """Feed every source message to ``handle``, ordered per thread."""

    sequencer = ThreadSequencer(handle)
    try:
        async for message in source.iter_messages():
            sequencer.submit(message)
    except asyncio.CancelledError:
        raise
    except Exception:
        LOGGER.exception("Source message stream stopped")
    finally:
        await sequencer.join()
