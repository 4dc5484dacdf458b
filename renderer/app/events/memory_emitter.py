from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from renderer.app.events.models import RenderEvent, TERMINAL_EVENT_TYPES
from renderer.app.events.emitter import RenderEventEmitter


class MemoryQueueEventEmitter(RenderEventEmitter):
    """
    In-memory async event emitter for progress streaming.

    Properties:
    - single-consumer
    - preserves emission order
    - closes itself on render completion or failure
    """

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Optional[RenderEvent]]" = asyncio.Queue()
        self._closed = False

    async def emit(self, event: RenderEvent) -> None:
        if self._closed:
            return

        await self._queue.put(event)

        if event.event_type in TERMINAL_EVENT_TYPES:
            await self.close()

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._queue.put(None)

    async def stream(self) -> AsyncIterator[RenderEvent]:
        """
        Async generator yielding emitted events in order.
        """
        while True:
            event = await self._queue.get()
            if event is None:
                break
            yield event
