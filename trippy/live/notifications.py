"""
Per-group notification flags.

Two booleans per group, ``has_new_messages`` and ``has_active_session``,
are kept in one file and rewritten after every update so they survive a
restart. ``watch`` keeps them current from the change feed.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

from pydantic import BaseModel, ValidationError

from trippy.core.realtime.channels import MESSAGES_TABLE, SESSIONS_TABLE
from trippy.core.realtime.schemas import ChangeEvent, ChangeKind
from trippy.core.settings import settings
from trippy.infra.store.base import SessionStore

logger = logging.getLogger(__name__)


class GroupNotification(BaseModel):
    has_new_messages: bool = False
    has_active_session: bool = False


class NotificationCenter:
    def __init__(self, path: Optional[str | Path] = None) -> None:
        self._path = Path(path or settings.NOTIFICATIONS_PATH)
        self._flags: Dict[str, GroupNotification] = self._load()

    def _load(self) -> Dict[str, GroupNotification]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return {gid: GroupNotification.model_validate(v) for gid, v in raw.items()}
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Ignoring unreadable notifications file %s: %s", self._path, e)
            return {}

    def _persist(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = {gid: flags.model_dump() for gid, flags in self._flags.items()}
        self._path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def get(self, group_id: str) -> GroupNotification:
        return self._flags.get(group_id, GroupNotification()).model_copy()

    def all(self) -> Dict[str, GroupNotification]:
        return {gid: flags.model_copy() for gid, flags in self._flags.items()}

    def update(self, group_id: str, **changes: bool) -> GroupNotification:
        """Apply flag changes for one group and persist."""
        current = self._flags.get(group_id, GroupNotification())
        updated = current.model_copy(update=changes)
        self._flags[group_id] = updated
        self._persist()
        return updated.model_copy()

    def apply(self, event: ChangeEvent, user_id: str, viewing: Optional[str] = None) -> None:
        """Fold one change event into the flags."""
        if event.table == MESSAGES_TABLE:
            sender = (event.new or {}).get("sender_id")
            if event.kind is ChangeKind.INSERT and sender != user_id and viewing != event.group_id:
                self.update(event.group_id, has_new_messages=True)
        elif event.table == SESSIONS_TABLE:
            if event.kind is ChangeKind.DELETE:
                self.update(event.group_id, has_active_session=False)
            else:
                active = (event.new or {}).get("status") == "active"
                self.update(event.group_id, has_active_session=active)

    async def watch(
        self,
        store: SessionStore,
        user_id: str,
        group_ids: Iterable[str],
        viewing: Callable[[], Optional[str]] = lambda: None,
    ) -> None:
        """Follow message and session changes for ``group_ids`` until cancelled."""

        async def follow(table: str, group_id: str) -> None:
            async for event in store.changes(table, group_id):
                self.apply(event, user_id, viewing())

        await asyncio.gather(
            *(follow(table, gid) for gid in group_ids for table in (MESSAGES_TABLE, SESSIONS_TABLE))
        )
