"""
Synchronization loop for one group.

Change-feed pushes, the reader's poll ticker, reconnects and manual refreshes
all go through ``refresh_now``: fetch the group's active session and hand it
to the client's reconcile callback. Pushes are only wake-up signals; the
fetched row is what gets applied.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from trippy.core.errors import SyncFetchError
from trippy.core.metrics import sync_refresh_total
from trippy.core.realtime.channels import MESSAGES_TABLE, SESSIONS_TABLE
from trippy.core.realtime.schemas import ChangeEvent
from trippy.infra.store.base import SessionStore
from trippy.infra.store.schemas import SessionRecord
from trippy.live.timers import Ticker

logger = logging.getLogger(__name__)

Reconcile = Callable[[Optional[SessionRecord], str], Awaitable[None]]
EventHandler = Callable[[ChangeEvent], Awaitable[None]]


class SyncLoop:
    def __init__(
        self,
        store: SessionStore,
        group_id: str,
        reconcile: Reconcile,
        *,
        poll_interval: float,
        failure_threshold: int,
        on_persistent_failure: Callable[[SyncFetchError], None],
        on_message: Optional[EventHandler] = None,
    ) -> None:
        self._store = store
        self._group_id = group_id
        self._reconcile = reconcile
        self._failure_threshold = failure_threshold
        self._on_persistent_failure = on_persistent_failure
        self._on_message = on_message
        self._poller = Ticker(poll_interval, self._poll, name=f"poll:{group_id}")
        self._lock = asyncio.Lock()
        self._tasks: List[asyncio.Task] = []
        self.consecutive_failures = 0

    @property
    def polling(self) -> bool:
        return self._poller.running

    async def start(self) -> None:
        """Subscribe to the group's change feed, then run the initial fetch."""
        loop = asyncio.get_running_loop()
        self._tasks.append(loop.create_task(self._consume(SESSIONS_TABLE, self._on_session_event)))
        if self._on_message is not None:
            self._tasks.append(loop.create_task(self._consume(MESSAGES_TABLE, self._on_message)))
        # Let the subscriptions register so no change slips between them and the fetch
        await asyncio.sleep(0)
        await self.refresh_now("initial")

    def start_polling(self) -> None:
        self._poller.start()

    def stop_polling(self) -> None:
        self._poller.stop()

    async def refresh_now(self, trigger: str = "manual") -> bool:
        """Fetch the active session and reconcile. Returns False if the fetch failed."""
        async with self._lock:
            try:
                session = await self._store.get_active_session(self._group_id)
            except Exception as e:
                self._record_failure(trigger, e)
                return False
            self.consecutive_failures = 0
            sync_refresh_total.labels(trigger=trigger, status="ok").inc()
            await self._reconcile(session, trigger)
            return True

    def _record_failure(self, trigger: str, error: Exception) -> None:
        self.consecutive_failures += 1
        sync_refresh_total.labels(trigger=trigger, status="error").inc()
        logger.warning(
            "Session refresh failed (%d in a row): %s",
            self.consecutive_failures,
            error,
            extra={"group_id": self._group_id, "trigger": trigger},
        )
        if self.consecutive_failures == self._failure_threshold:
            self._on_persistent_failure(SyncFetchError(str(error)))

    async def _poll(self) -> None:
        await self.refresh_now("poll")

    async def _on_session_event(self, event: ChangeEvent) -> None:
        logger.debug(
            "Session %s event received", event.kind.value, extra={"group_id": self._group_id}
        )
        await self.refresh_now("push")

    async def _consume(self, table: str, handler: EventHandler) -> None:
        try:
            async for event in self._store.changes(table, self._group_id):
                try:
                    await handler(event)
                except Exception:
                    logger.exception("Change handler for %s failed", table)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Polling and manual refresh keep working without the feed
            logger.error(
                "Change feed for %s stopped: %s", table, e, extra={"group_id": self._group_id}
            )

    async def close(self) -> None:
        self._poller.stop()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
