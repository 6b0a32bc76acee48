"""
Session store interface.

A store persists groups, live sessions, participants, the change log and the
chat transcript, and publishes a ChangeEvent on the group's change-feed
channel after each committed write to a feed table.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import ValidationError

from trippy.core.realtime.channels import change_channel
from trippy.core.realtime.schemas import ChangeEvent, ChangeKind
from trippy.core.security import sanitize_for_logging
from trippy.infra.broadcast.base import Broadcast
from trippy.infra.store.schemas import (
    ChangeLogEntry,
    ChatMessage,
    GroupMemberRecord,
    GroupRecord,
    ParticipantRecord,
    SessionRecord,
)

logger = logging.getLogger(__name__)


class SessionStore(abc.ABC):
    def __init__(self, broadcaster: Broadcast) -> None:
        self._broadcast = broadcaster

    # ---- groups ----

    @abc.abstractmethod
    async def get_group(self, group_id: str) -> GroupRecord:
        """Raises GroupNotFoundError."""

    @abc.abstractmethod
    async def list_group_members(self, group_id: str) -> List[GroupMemberRecord]:
        ...

    # ---- sessions ----

    @abc.abstractmethod
    async def get_active_session(self, group_id: str) -> Optional[SessionRecord]:
        ...

    @abc.abstractmethod
    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        ...

    @abc.abstractmethod
    async def create_session(
        self, group_id: str, owner_id: str, itinerary_data: List[Dict[str, Any]]
    ) -> SessionRecord:
        """Insert an active session. Raises SessionConflictError if one exists."""

    @abc.abstractmethod
    async def end_session(self, session_id: str) -> SessionRecord:
        """
        Mark a session ended; ``ended_at`` is set once.

        Raises SessionNotFoundError, or SessionNotActiveError if already ended.
        """

    @abc.abstractmethod
    async def write_document(
        self, session_id: str, itinerary_data: List[Dict[str, Any]]
    ) -> SessionRecord:
        """
        Replace the whole document and bump ``version``.

        Raises SessionNotFoundError, or SessionNotActiveError once ended.
        """

    @abc.abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Remove a session row outright; readers treat this as ended."""

    # ---- participants ----

    @abc.abstractmethod
    async def add_participants(
        self, session_id: str, participants: List[ParticipantRecord]
    ) -> None:
        """Seed participants of an active session."""

    @abc.abstractmethod
    async def upsert_participant(
        self, session_id: str, user_id: str, user_email: Optional[str]
    ) -> ParticipantRecord:
        """
        Insert or refresh ``last_active_at`` for one participant.

        Raises SessionNotFoundError, or SessionNotActiveError once ended.
        """

    @abc.abstractmethod
    async def list_participants(self, session_id: str) -> List[ParticipantRecord]:
        ...

    @abc.abstractmethod
    async def delete_participants(self, session_id: str) -> int:
        ...

    # ---- change log and transcript ----

    @abc.abstractmethod
    async def append_change(self, entry: ChangeLogEntry) -> ChangeLogEntry:
        ...

    @abc.abstractmethod
    async def list_changes(self, session_id: str) -> List[ChangeLogEntry]:
        ...

    @abc.abstractmethod
    async def append_message(self, message: ChatMessage) -> ChatMessage:
        ...

    @abc.abstractmethod
    async def list_messages(self, group_id: str) -> List[ChatMessage]:
        """Messages for a group, oldest first."""

    # ---- change feed ----

    async def _publish(
        self,
        table: str,
        kind: ChangeKind,
        group_id: str,
        new: Optional[Dict[str, Any]] = None,
        old: Optional[Dict[str, Any]] = None,
    ) -> None:
        event = ChangeEvent(table=table, kind=kind, group_id=group_id, new=new, old=old)
        try:
            await self._broadcast.publish(
                change_channel(table, group_id), event.model_dump_json()
            )
        except Exception as e:
            # The write is committed; clients recover through polling
            logger.error(
                "Failed to publish %s %s for group %s: %s",
                kind.value,
                table,
                sanitize_for_logging(group_id),
                e,
            )

    async def changes(self, table: str, group_id: str) -> AsyncIterator[ChangeEvent]:
        """Change events for one group's rows in ``table``, until cancelled."""
        async for raw in self._broadcast.subscribe(change_channel(table, group_id)):
            try:
                yield ChangeEvent.model_validate_json(raw)
            except ValidationError as e:
                logger.warning("Skipping malformed change event on %s: %s", table, e)

    async def close(self) -> None:
        await self._broadcast.close()
