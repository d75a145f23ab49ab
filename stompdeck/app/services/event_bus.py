from __future__ import annotations

import asyncio

from stompdeck.app.models.surface import SurfaceEvent


class SurfaceEventBus:
    def __init__(self) -> None:
        self._queues: set[asyncio.Queue[SurfaceEvent]] = set()
        self._lock = asyncio.Lock()

    async def subscribe(self) -> asyncio.Queue[SurfaceEvent]:
        queue: asyncio.Queue[SurfaceEvent] = asyncio.Queue(maxsize=100)
        async with self._lock:
            self._queues.add(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue[SurfaceEvent]) -> None:
        async with self._lock:
            self._queues.discard(queue)

    async def publish(self, event: SurfaceEvent) -> None:
        async with self._lock:
            queues = list(self._queues)

        for queue in queues:
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            await queue.put(event)
