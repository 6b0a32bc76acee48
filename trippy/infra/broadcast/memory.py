"""In-process broadcaster for single-server deployments and tests."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List

from trippy.core.security import sanitize_for_logging

from .base import Broadcast

logger = logging.getLogger(__name__)


class InMemoryBroadcaster(Broadcast):
    """Fan-out over per-subscriber queues within one event loop."""

    def __init__(self, max_queue: int = 1000) -> None:
        self._channels: Dict[str, List[asyncio.Queue[str]]] = {}
        self._max_queue = max_queue
        self._closed = False

    def subscriber_count(self, channel: str) -> int:
        return len(self._channels.get(channel, []))

    async def publish(self, channel: str, message: str) -> None:
        if self._closed:
            return
        for q in list(self._channels.get(channel, [])):
            try:
                q.put_nowait(message)
            except asyncio.QueueFull:
                # Slow consumer; it will catch up through its next fetch
                logger.warning(
                    "Dropped change event for channel %s: subscriber queue full",
                    sanitize_for_logging(channel),
                )

    @asynccontextmanager
    async def _subscription(self, channel: str) -> AsyncIterator[asyncio.Queue[str]]:
        q: asyncio.Queue[str] = asyncio.Queue(maxsize=self._max_queue)
        self._channels.setdefault(channel, []).append(q)
        try:
            yield q
        finally:
            subs = self._channels.get(channel, [])
            if q in subs:
                subs.remove(q)
            if not subs:
                self._channels.pop(channel, None)

    async def subscribe(self, channel: str) -> AsyncIterator[str]:
        async with self._subscription(channel) as q:
            while not self._closed:
                yield await q.get()

    async def close(self) -> None:
        self._closed = True
        self._channels.clear()
