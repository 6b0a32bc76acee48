"""Fire-and-forget change log writer for structural edits."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Set

from trippy.infra.store.base import SessionStore
from trippy.infra.store.schemas import ChangeLogEntry, ChangeType

logger = logging.getLogger(__name__)


class ChangeAuditLog:
    """
    Appends structural edits to the change log without blocking the edit.

    A failed append is logged and otherwise ignored; the log is never read
    back to rebuild a document.
    """

    def __init__(self, store: SessionStore) -> None:
        self._store = store
        self._tasks: Set[asyncio.Task] = set()

    def record(
        self, session_id: str, user_id: str, change_type: ChangeType, data: Dict[str, Any]
    ) -> asyncio.Task:
        entry = ChangeLogEntry(
            session_id=session_id, user_id=user_id, change_type=change_type, change_data=data
        )
        task = asyncio.get_running_loop().create_task(self._append(entry))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _append(self, entry: ChangeLogEntry) -> None:
        try:
            await self._store.append_change(entry)
        except Exception as e:
            logger.warning(
                "Failed to record %s change: %s",
                entry.change_type.value,
                e,
                extra={"session_id": entry.session_id, "change_type": entry.change_type.value},
            )

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
