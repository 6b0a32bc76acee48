"""In-memory session store for development and tests."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from trippy.core.errors import (
    GroupNotFoundError,
    SessionConflictError,
    SessionNotActiveError,
    SessionNotFoundError,
)
from trippy.core.realtime.channels import (
    MESSAGES_TABLE,
    PARTICIPANTS_TABLE,
    SESSIONS_TABLE,
)
from trippy.core.realtime.schemas import ChangeKind
from trippy.infra.broadcast.base import Broadcast
from trippy.infra.broadcast.memory import InMemoryBroadcaster
from trippy.infra.store.base import SessionStore
from trippy.infra.store.schemas import (
    ChangeLogEntry,
    ChatMessage,
    GroupMemberRecord,
    GroupRecord,
    ParticipantRecord,
    SessionRecord,
    SessionStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


class InMemorySessionStore(SessionStore):
    """
    Dict-backed store. Records are copied on the way in and out so callers
    never share state with the store.
    """

    def __init__(self, broadcaster: Optional[Broadcast] = None) -> None:
        super().__init__(broadcaster or InMemoryBroadcaster())
        self._groups: Dict[str, GroupRecord] = {}
        self._members: Dict[str, List[GroupMemberRecord]] = {}
        self._sessions: Dict[str, SessionRecord] = {}
        self._participants: Dict[str, Dict[str, ParticipantRecord]] = {}
        self._changes: List[ChangeLogEntry] = []
        self._messages: Dict[str, List[ChatMessage]] = {}
        self._lock = asyncio.Lock()

    def add_group(
        self, group: GroupRecord, members: Sequence[GroupMemberRecord] = ()
    ) -> GroupRecord:
        self._groups[group.id] = group.model_copy()
        self._members[group.id] = [m.model_copy() for m in members]
        return group

    async def get_group(self, group_id: str) -> GroupRecord:
        group = self._groups.get(group_id)
        if group is None:
            raise GroupNotFoundError(group_id)
        return group.model_copy()

    async def list_group_members(self, group_id: str) -> List[GroupMemberRecord]:
        return [m.model_copy() for m in self._members.get(group_id, [])]

    def _active_for(self, group_id: str) -> Optional[SessionRecord]:
        for session in self._sessions.values():
            if session.group_id == group_id and session.is_active:
                return session
        return None

    def _require(self, session_id: str) -> SessionRecord:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _require_active(self, session_id: str) -> SessionRecord:
        session = self._require(session_id)
        if not session.is_active:
            raise SessionNotActiveError(session_id)
        return session

    async def get_active_session(self, group_id: str) -> Optional[SessionRecord]:
        session = self._active_for(group_id)
        return session.model_copy(deep=True) if session else None

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def create_session(
        self, group_id: str, owner_id: str, itinerary_data: List[Dict[str, Any]]
    ) -> SessionRecord:
        async with self._lock:
            if self._active_for(group_id) is not None:
                raise SessionConflictError(group_id)
            session = SessionRecord(
                id=str(uuid4()),
                group_id=group_id,
                owner_id=owner_id,
                itinerary_data=list(itinerary_data),
            )
            self._sessions[session.id] = session.model_copy(deep=True)
        await self._publish(
            SESSIONS_TABLE, ChangeKind.INSERT, group_id, new=session.model_dump(mode="json")
        )
        return session

    async def end_session(self, session_id: str) -> SessionRecord:
        async with self._lock:
            session = self._require_active(session_id)
            old = session.model_dump(mode="json")
            session.status = SessionStatus.ENDED
            session.ended_at = utcnow()
            result = session.model_copy(deep=True)
        await self._publish(
            SESSIONS_TABLE,
            ChangeKind.UPDATE,
            result.group_id,
            new=result.model_dump(mode="json"),
            old=old,
        )
        return result

    async def write_document(
        self, session_id: str, itinerary_data: List[Dict[str, Any]]
    ) -> SessionRecord:
        async with self._lock:
            session = self._require_active(session_id)
            session.itinerary_data = list(itinerary_data)
            session.version += 1
            result = session.model_copy(deep=True)
        await self._publish(
            SESSIONS_TABLE, ChangeKind.UPDATE, result.group_id, new=result.model_dump(mode="json")
        )
        return result

    async def delete_session(self, session_id: str) -> None:
        """Remove a session row outright; readers treat this as ended."""
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            self._participants.pop(session_id, None)
        if session is not None:
            await self._publish(
                SESSIONS_TABLE, ChangeKind.DELETE, session.group_id, old=session.model_dump(mode="json")
            )

    async def add_participants(
        self, session_id: str, participants: List[ParticipantRecord]
    ) -> None:
        session = self._require_active(session_id)
        rows = self._participants.setdefault(session_id, {})
        for participant in participants:
            rows[participant.user_id] = participant.model_copy()
        await self._publish(PARTICIPANTS_TABLE, ChangeKind.INSERT, session.group_id)

    async def upsert_participant(
        self, session_id: str, user_id: str, user_email: Optional[str]
    ) -> ParticipantRecord:
        session = self._require_active(session_id)
        rows = self._participants.setdefault(session_id, {})
        existing = rows.get(user_id)
        if existing is None:
            existing = ParticipantRecord(
                session_id=session_id, user_id=user_id, user_email=user_email
            )
            rows[user_id] = existing
            kind = ChangeKind.INSERT
        else:
            existing.last_active_at = utcnow()
            if user_email:
                existing.user_email = user_email
            kind = ChangeKind.UPDATE
        await self._publish(
            PARTICIPANTS_TABLE, kind, session.group_id, new=existing.model_dump(mode="json")
        )
        return existing.model_copy()

    async def list_participants(self, session_id: str) -> List[ParticipantRecord]:
        return [p.model_copy() for p in self._participants.get(session_id, {}).values()]

    async def delete_participants(self, session_id: str) -> int:
        removed = self._participants.pop(session_id, {})
        session = self._sessions.get(session_id)
        if removed and session is not None:
            await self._publish(PARTICIPANTS_TABLE, ChangeKind.DELETE, session.group_id)
        return len(removed)

    async def append_change(self, entry: ChangeLogEntry) -> ChangeLogEntry:
        stored = entry.model_copy(update={"id": len(self._changes) + 1}, deep=True)
        self._changes.append(stored)
        return stored.model_copy(deep=True)

    async def list_changes(self, session_id: str) -> List[ChangeLogEntry]:
        return [c.model_copy(deep=True) for c in self._changes if c.session_id == session_id]

    async def append_message(self, message: ChatMessage) -> ChatMessage:
        stored = message.model_copy(update={"id": message.id or str(uuid4())})
        self._messages.setdefault(stored.group_id, []).append(stored)
        await self._publish(
            MESSAGES_TABLE, ChangeKind.INSERT, stored.group_id, new=stored.model_dump(mode="json")
        )
        return stored.model_copy()

    async def list_messages(self, group_id: str) -> List[ChatMessage]:
        messages = sorted(self._messages.get(group_id, []), key=lambda m: m.created_at)
        return [m.model_copy() for m in messages]
