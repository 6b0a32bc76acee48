"""
SQLAlchemy-backed session store.

Database work runs in a worker thread with a short-lived ORM session per
call; change events are published from the event loop after commit.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from trippy.core.db import get_session_local, safe_rollback
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
from trippy.database.models import (
    GroupMember,
    ItineraryChange,
    LiveItinerarySession,
    SessionParticipant,
    TripGroup,
    TripMessage,
)
from trippy.database.models._time import utcnow
from trippy.infra.broadcast.base import Broadcast
from trippy.infra.store.base import SessionStore
from trippy.infra.store.schemas import (
    ChangeLogEntry,
    ChatMessage,
    GroupMemberRecord,
    GroupRecord,
    ParticipantRecord,
    SessionRecord,
    SessionStatus,
)

logger = logging.getLogger(__name__)


class SqlSessionStore(SessionStore):
    def __init__(
        self, broadcaster: Broadcast, session_factory: Optional[sessionmaker] = None
    ) -> None:
        super().__init__(broadcaster)
        self._session_factory = session_factory or get_session_local()

    async def _run(self, fn, *args):
        return await asyncio.to_thread(fn, *args)

    # ---- groups ----

    def _get_group(self, group_id: str) -> GroupRecord:
        with self._session_factory() as db:
            group = db.get(TripGroup, group_id)
            if group is None:
                raise GroupNotFoundError(group_id)
            return group.to_record()

    async def get_group(self, group_id: str) -> GroupRecord:
        return await self._run(self._get_group, group_id)

    def _list_group_members(self, group_id: str) -> List[GroupMemberRecord]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(GroupMember).where(GroupMember.group_id == group_id).order_by(GroupMember.id)
            )
            return [row.to_record() for row in rows]

    async def list_group_members(self, group_id: str) -> List[GroupMemberRecord]:
        return await self._run(self._list_group_members, group_id)

    def _create_group(self, group: GroupRecord, members: List[GroupMemberRecord]) -> GroupRecord:
        with self._session_factory() as db:
            db.add(
                TripGroup(
                    id=group.id,
                    name=group.name,
                    created_by=group.created_by,
                    join_code=group.join_code,
                )
            )
            db.flush()
            for member in members:
                db.add(GroupMember(group_id=group.id, user_id=member.user_id, email=member.email))
            db.commit()
        return group

    async def create_group(
        self, group: GroupRecord, members: Optional[List[GroupMemberRecord]] = None
    ) -> GroupRecord:
        """Insert a group with its members (the creator should be among them)."""
        return await self._run(self._create_group, group, list(members or []))

    # ---- sessions ----

    @staticmethod
    def _active_row(db: Session, group_id: str) -> Optional[LiveItinerarySession]:
        return db.scalars(
            select(LiveItinerarySession).where(
                LiveItinerarySession.group_id == group_id,
                LiveItinerarySession.status == SessionStatus.ACTIVE.value,
            )
        ).first()

    def _get_active_session(self, group_id: str) -> Optional[SessionRecord]:
        with self._session_factory() as db:
            row = self._active_row(db, group_id)
            return row.to_record() if row else None

    async def get_active_session(self, group_id: str) -> Optional[SessionRecord]:
        return await self._run(self._get_active_session, group_id)

    def _get_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._session_factory() as db:
            row = db.get(LiveItinerarySession, session_id)
            return row.to_record() if row else None

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        return await self._run(self._get_session, session_id)

    def _create_session(
        self, group_id: str, owner_id: str, itinerary_data: List[Dict[str, Any]]
    ) -> SessionRecord:
        with self._session_factory() as db:
            if self._active_row(db, group_id) is not None:
                raise SessionConflictError(group_id)
            row = LiveItinerarySession(
                id=str(uuid4()),
                group_id=group_id,
                owner_id=owner_id,
                status=SessionStatus.ACTIVE.value,
                itinerary_data=itinerary_data,
                version=0,
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError as e:
                # Lost the race against another create for the same group
                safe_rollback(db, "create_session")
                raise SessionConflictError(group_id) from e
            db.refresh(row)
            return row.to_record()

    async def create_session(
        self, group_id: str, owner_id: str, itinerary_data: List[Dict[str, Any]]
    ) -> SessionRecord:
        record = await self._run(self._create_session, group_id, owner_id, itinerary_data)
        await self._publish(
            SESSIONS_TABLE, ChangeKind.INSERT, group_id, new=record.model_dump(mode="json")
        )
        return record

    def _end_session(self, session_id: str) -> tuple[SessionRecord, SessionRecord]:
        with self._session_factory() as db:
            row = db.get(LiveItinerarySession, session_id)
            if row is None:
                raise SessionNotFoundError(session_id)
            old = row.to_record()
            result = db.execute(
                update(LiveItinerarySession)
                .where(
                    LiveItinerarySession.id == session_id,
                    LiveItinerarySession.status == SessionStatus.ACTIVE.value,
                )
                .values(status=SessionStatus.ENDED.value, ended_at=utcnow())
            )
            if result.rowcount == 0:
                safe_rollback(db, "end_session")
                raise SessionNotActiveError(session_id)
            db.commit()
            db.refresh(row)
            return old, row.to_record()

    async def end_session(self, session_id: str) -> SessionRecord:
        old, record = await self._run(self._end_session, session_id)
        await self._publish(
            SESSIONS_TABLE,
            ChangeKind.UPDATE,
            record.group_id,
            new=record.model_dump(mode="json"),
            old=old.model_dump(mode="json"),
        )
        return record

    def _write_document(
        self, session_id: str, itinerary_data: List[Dict[str, Any]]
    ) -> SessionRecord:
        with self._session_factory() as db:
            result = db.execute(
                update(LiveItinerarySession)
                .where(
                    LiveItinerarySession.id == session_id,
                    LiveItinerarySession.status == SessionStatus.ACTIVE.value,
                )
                .values(
                    itinerary_data=itinerary_data,
                    version=LiveItinerarySession.version + 1,
                )
            )
            if result.rowcount == 0:
                safe_rollback(db, "write_document")
                if db.get(LiveItinerarySession, session_id) is None:
                    raise SessionNotFoundError(session_id)
                raise SessionNotActiveError(session_id)
            db.commit()
            return db.get(LiveItinerarySession, session_id).to_record()

    async def write_document(
        self, session_id: str, itinerary_data: List[Dict[str, Any]]
    ) -> SessionRecord:
        record = await self._run(self._write_document, session_id, itinerary_data)
        await self._publish(
            SESSIONS_TABLE, ChangeKind.UPDATE, record.group_id, new=record.model_dump(mode="json")
        )
        return record

    def _delete_session(self, session_id: str) -> Optional[SessionRecord]:
        with self._session_factory() as db:
            row = db.get(LiveItinerarySession, session_id)
            if row is None:
                return None
            record = row.to_record()
            db.execute(
                delete(SessionParticipant).where(SessionParticipant.session_id == session_id)
            )
            db.delete(row)
            db.commit()
            return record

    async def delete_session(self, session_id: str) -> None:
        record = await self._run(self._delete_session, session_id)
        if record is not None:
            await self._publish(
                SESSIONS_TABLE, ChangeKind.DELETE, record.group_id, old=record.model_dump(mode="json")
            )

    def _active_group_of(self, db: Session, session_id: str) -> str:
        row = db.get(LiveItinerarySession, session_id)
        if row is None:
            raise SessionNotFoundError(session_id)
        if row.status != SessionStatus.ACTIVE.value:
            raise SessionNotActiveError(session_id)
        return row.group_id

    # ---- participants ----

    def _upsert_participant_row(
        self, db: Session, session_id: str, user_id: str, user_email: Optional[str]
    ) -> tuple[SessionParticipant, bool]:
        row = db.scalars(
            select(SessionParticipant).where(
                SessionParticipant.session_id == session_id,
                SessionParticipant.user_id == user_id,
            )
        ).first()
        if row is None:
            row = SessionParticipant(session_id=session_id, user_id=user_id, user_email=user_email)
            db.add(row)
            return row, True
        row.last_active_at = utcnow()
        if user_email:
            row.user_email = user_email
        return row, False

    def _add_participants(self, session_id: str, participants: List[ParticipantRecord]) -> str:
        with self._session_factory() as db:
            group_id = self._active_group_of(db, session_id)
            for participant in participants:
                self._upsert_participant_row(
                    db, session_id, participant.user_id, participant.user_email
                )
            db.commit()
            return group_id

    async def add_participants(
        self, session_id: str, participants: List[ParticipantRecord]
    ) -> None:
        group_id = await self._run(self._add_participants, session_id, participants)
        await self._publish(PARTICIPANTS_TABLE, ChangeKind.INSERT, group_id)

    def _upsert_participant(
        self, session_id: str, user_id: str, user_email: Optional[str]
    ) -> tuple[str, ParticipantRecord, bool]:
        with self._session_factory() as db:
            group_id = self._active_group_of(db, session_id)
            row, created = self._upsert_participant_row(db, session_id, user_id, user_email)
            db.commit()
            db.refresh(row)
            return group_id, row.to_record(), created

    async def upsert_participant(
        self, session_id: str, user_id: str, user_email: Optional[str]
    ) -> ParticipantRecord:
        group_id, record, created = await self._run(
            self._upsert_participant, session_id, user_id, user_email
        )
        await self._publish(
            PARTICIPANTS_TABLE,
            ChangeKind.INSERT if created else ChangeKind.UPDATE,
            group_id,
            new=record.model_dump(mode="json"),
        )
        return record

    def _list_participants(self, session_id: str) -> List[ParticipantRecord]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(SessionParticipant)
                .where(SessionParticipant.session_id == session_id)
                .order_by(SessionParticipant.id)
            )
            return [row.to_record() for row in rows]

    async def list_participants(self, session_id: str) -> List[ParticipantRecord]:
        return await self._run(self._list_participants, session_id)

    def _delete_participants(self, session_id: str) -> tuple[Optional[str], int]:
        with self._session_factory() as db:
            row = db.get(LiveItinerarySession, session_id)
            result = db.execute(
                delete(SessionParticipant).where(SessionParticipant.session_id == session_id)
            )
            db.commit()
            return (row.group_id if row else None), result.rowcount

    async def delete_participants(self, session_id: str) -> int:
        group_id, count = await self._run(self._delete_participants, session_id)
        if count and group_id:
            await self._publish(PARTICIPANTS_TABLE, ChangeKind.DELETE, group_id)
        return count

    # ---- change log and transcript ----

    def _append_change(self, entry: ChangeLogEntry) -> ChangeLogEntry:
        with self._session_factory() as db:
            row = ItineraryChange(
                session_id=entry.session_id,
                user_id=entry.user_id,
                change_type=entry.change_type.value,
                change_data=entry.change_data,
                created_at=entry.created_at,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.to_record()

    async def append_change(self, entry: ChangeLogEntry) -> ChangeLogEntry:
        return await self._run(self._append_change, entry)

    def _list_changes(self, session_id: str) -> List[ChangeLogEntry]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(ItineraryChange)
                .where(ItineraryChange.session_id == session_id)
                .order_by(ItineraryChange.id)
            )
            return [row.to_record() for row in rows]

    async def list_changes(self, session_id: str) -> List[ChangeLogEntry]:
        return await self._run(self._list_changes, session_id)

    def _append_message(self, message: ChatMessage) -> ChatMessage:
        with self._session_factory() as db:
            row = TripMessage(
                id=message.id or str(uuid4()),
                group_id=message.group_id,
                content=message.content,
                sender_id=message.sender_id,
                sender_email=message.sender_email,
                is_ai=message.is_ai,
                is_notification=message.is_notification,
                created_at=message.created_at,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.to_record()

    async def append_message(self, message: ChatMessage) -> ChatMessage:
        record = await self._run(self._append_message, message)
        await self._publish(
            MESSAGES_TABLE, ChangeKind.INSERT, record.group_id, new=record.model_dump(mode="json")
        )
        return record

    def _list_messages(self, group_id: str) -> List[ChatMessage]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(TripMessage)
                .where(TripMessage.group_id == group_id)
                .order_by(TripMessage.created_at, TripMessage.id)
            )
            return [row.to_record() for row in rows]

    async def list_messages(self, group_id: str) -> List[ChatMessage]:
        return await self._run(self._list_messages, group_id)
