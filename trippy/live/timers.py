"""
Cancellable timers for the live session engine.

Both run on the current event loop and are owned by exactly one session;
closing the session closes its timers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

AsyncCallback = Callable[[], Awaitable[None]]


class Debouncer:
    """Runs ``callback`` once, ``delay`` seconds after the latest ``trigger()``."""

    def __init__(self, delay: float, callback: AsyncCallback, *, name: str = "debounce") -> None:
        self._delay = delay
        self._callback = callback
        self._name = name
        self._handle: Optional[asyncio.TimerHandle] = None
        self._inflight: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        if self._closed:
            return
        if self._handle is not None:
            self._handle.cancel()
        self._handle = asyncio.get_running_loop().call_later(self._delay, self._fire)

    def cancel(self) -> bool:
        """Drop the pending call. Returns whether one was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    async def flush(self) -> None:
        """Run the pending call now instead of waiting for the delay."""
        if self.cancel():
            await self._callback()

    async def drain(self) -> None:
        """Wait for callbacks that already fired."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def close(self) -> None:
        self._closed = True
        self.cancel()

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.get_running_loop().create_task(self._run(), name=self._name)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run(self) -> None:
        try:
            await self._callback()
        except Exception:
            logger.exception("Debounced callback %s failed", self._name)


class Ticker:
    """Calls ``callback`` every ``interval`` seconds until stopped."""

    def __init__(
        self,
        interval: float,
        callback: AsyncCallback,
        *,
        name: str = "ticker",
        immediate: bool = False,
    ) -> None:
        self._interval = interval
        self._callback = callback
        self._name = name
        self._immediate = immediate
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self._name)

    def stop(self) -> None:
        """
        Stop ticking.

        Safe to call from inside the callback: the loop then exits after the
        current tick instead of cancelling itself mid-callback.
        """
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _loop(self) -> None:
        me = asyncio.current_task()
        if self._immediate:
            await self._tick()
        while self._task is me:
            await asyncio.sleep(self._interval)
            if self._task is not me:
                break
            await self._tick()

    async def _tick(self) -> None:
        try:
            await self._callback()
        except Exception:
            logger.exception("Ticker %s callback failed", self._name)
