"""
Live session client: one user's view of one group's live itinerary.

The facade ties together role resolution, the session lifecycle, the
owner's write coalescer, the synchronization loop, presence and the AI
planner. Engine errors never escape it; they become notices on the sink.

Owners edit the local document and their edits are persisted. Readers only
ever replace their document with a newer one fetched from the store; while a
session is active, reader edits are rejected. Without a session anyone may
draft locally and nothing is written.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from trippy.core.auth.models import Role, User
from trippy.core.auth.roles import require_owner, resolve_role
from trippy.core.errors import (
    AuthorizationError,
    DocumentEditError,
    LiveSessionError,
    SessionCreateError,
    SessionEndError,
    SyncFetchError,
    WriteCoalesceError,
)
from trippy.core.metrics import session_events_total
from trippy.core.realtime.schemas import ChangeEvent, ChangeKind
from trippy.core.settings import Settings, settings
from trippy.infra.store.base import SessionStore
from trippy.infra.store.schemas import (
    ChangeType,
    ChatMessage,
    GroupRecord,
    ParticipantRecord,
    SessionRecord,
)
from trippy.itinerary.document import Day, ItineraryDocument
from trippy.live.ai_gate import AIPlanGate
from trippy.live.audit import ChangeAuditLog
from trippy.live.coalescer import WriteCoalescer
from trippy.live.notices import Notice, NoticeSink, log_notice
from trippy.live.notifications import NotificationCenter
from trippy.live.presence import ParticipantHeartbeat, active_participants
from trippy.live.sync import SyncLoop
from trippy.live.transcript import (
    SESSION_ENDED_MESSAGE,
    SESSION_STARTED_MESSAGE,
    ChatTranscript,
)
from trippy.services.llm import OpenAIPlanGenerator, PlanGenerator

logger = logging.getLogger(__name__)

T = TypeVar("T")

END_SESSION_PROMPT = (
    "Are you sure you want to end the live session? "
    "All participants will be disconnected and the current itinerary will be saved."
)
READER_EDIT_NOTICE = "Only the session owner can edit the itinerary"


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    ACTIVE = "active"


class LiveSessionClient:
    def __init__(
        self,
        store: SessionStore,
        user: User,
        group_id: str,
        *,
        generator: Optional[PlanGenerator] = None,
        notices: Optional[NoticeSink] = None,
        notifications: Optional[NotificationCenter] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self._store = store
        self._user = user
        self._group_id = group_id
        self._cfg = config or settings
        self._notify = notices or log_notice
        self._notifications = notifications

        self.role = Role.READER
        self.group: Optional[GroupRecord] = None
        self.session: Optional[SessionRecord] = None
        self.document = ItineraryDocument()
        self._version = 0

        self.transcript = ChatTranscript(store, group_id, user)
        self._audit = ChangeAuditLog(store)
        self._coalescer: Optional[WriteCoalescer] = None
        self._heartbeat: Optional[ParticipantHeartbeat] = None
        self._ai = AIPlanGate(self, self.transcript, generator or OpenAIPlanGenerator())
        self._sync = SyncLoop(
            store,
            group_id,
            self._reconcile,
            poll_interval=self._cfg.POLL_INTERVAL_SEC,
            failure_threshold=self._cfg.SYNC_FAILURE_NOTICE_THRESHOLD,
            on_persistent_failure=self._sync_failed,
            on_message=self._on_message_event,
        )

    # ---- state ----

    @property
    def user(self) -> User:
        return self._user

    @property
    def group_id(self) -> str:
        return self._group_id

    @property
    def is_owner(self) -> bool:
        return self.role is Role.OWNER

    @property
    def state(self) -> SessionState:
        return SessionState.ACTIVE if self.session is not None else SessionState.NO_SESSION

    @property
    def unsynced(self) -> bool:
        return bool(self._coalescer and self._coalescer.unsynced)

    @property
    def write_pending(self) -> bool:
        return bool(self._coalescer and self._coalescer.pending)

    @property
    def polling(self) -> bool:
        return self._sync.polling

    @property
    def messages(self) -> List[ChatMessage]:
        return self.transcript.messages

    def is_current_session(self, session_id: str) -> bool:
        return self.session is not None and self.session.id == session_id

    # ---- view lifecycle ----

    async def open(self) -> None:
        """
        Resolve the role, load the transcript and adopt any active session.

        Raises GroupNotFoundError when the group does not exist.
        """
        self.group = await self._store.get_group(self._group_id)
        self.role = resolve_role(self.group, self._user.user_id)
        logger.info(
            "Opened group as %s",
            self.role.value,
            extra={"group_id": self._group_id, "user_id": self._user.user_id},
        )
        try:
            await self.transcript.load()
        except Exception as e:
            logger.warning("Failed to load messages: %s", e, extra={"group_id": self._group_id})
            self._notify(Notice.failure("Failed to load messages", e))
        if self._notifications is not None:
            self._notifications.update(self._group_id, has_new_messages=False)
        await self._sync.start()

    async def close(self) -> None:
        """Leave the group view. An active session keeps running for others."""
        if self._coalescer is not None:
            await self._coalescer.flush()
        await self._sync.close()
        self._teardown_session(clear_document=False)
        await self._audit.drain()

    async def refresh(self) -> bool:
        return await self._sync.refresh_now("manual")

    async def on_online(self) -> None:
        """Connectivity came back: reload the transcript and resynchronize."""
        try:
            await self.transcript.load()
        except Exception as e:
            logger.warning("Failed to reload messages: %s", e, extra={"group_id": self._group_id})
        await self._sync.refresh_now("online")

    # ---- session lifecycle ----

    async def start_session(self) -> Optional[SessionRecord]:
        """Owner only. Seeds the session with the local draft, or one empty day."""
        try:
            require_owner(self.role, "start_session")
            if self.session is not None:
                raise SessionCreateError(
                    "Session already active", notice="A live session is already active"
                )
            seed = self.document if len(self.document) else ItineraryDocument.default()
            try:
                record = await self._store.create_session(
                    self._group_id, self._user.user_id, seed.to_payload()
                )
            except Exception as e:
                raise SessionCreateError(str(e)) from e
        except LiveSessionError as e:
            self._fail(e)
            return None

        session_events_total.labels(event="start").inc()
        logger.info(
            "Started live session",
            extra={"group_id": self._group_id, "session_id": record.id},
        )
        self._activate(record)
        await self._seed_participants(record)
        await self.transcript.announce(SESSION_STARTED_MESSAGE, is_notification=True)
        self._notify(Notice.success("Live session started"))
        return record

    async def end_session(self, *, confirmed: bool) -> bool:
        """
        Owner only. ``confirmed`` is the answer to END_SESSION_PROMPT; without
        it nothing happens. A pending debounced edit is written first.
        """
        try:
            require_owner(self.role, "end_session")
            session = self.session
            if session is None:
                raise SessionEndError("No active session", notice="No live session to end")
            if not confirmed:
                return False
            if self._coalescer is not None:
                await self._coalescer.flush()
            try:
                await self._store.end_session(session.id)
            except Exception as e:
                raise SessionEndError(str(e)) from e
        except LiveSessionError as e:
            self._fail(e)
            return False

        self._teardown_session(clear_document=False)
        session_events_total.labels(event="end").inc()
        logger.info(
            "Ended live session",
            extra={"group_id": self._group_id, "session_id": session.id},
        )
        try:
            await self._store.delete_participants(session.id)
        except Exception as e:
            logger.warning("Failed to clear participants: %s", e, extra={"session_id": session.id})
        await self.transcript.announce(SESSION_ENDED_MESSAGE, is_notification=True)
        self._notify(Notice.success("Live session ended"))
        return True

    async def _seed_participants(self, record: SessionRecord) -> None:
        try:
            members = await self._store.list_group_members(self._group_id)
            seeded = {self._user.user_id: self._user.email}
            for member in members:
                seeded.setdefault(member.user_id, member.email)
            await self._store.add_participants(
                record.id,
                [
                    ParticipantRecord(session_id=record.id, user_id=uid, user_email=email)
                    for uid, email in seeded.items()
                ],
            )
        except Exception as e:
            logger.warning("Failed to seed participants: %s", e, extra={"session_id": record.id})

    def _activate(self, record: SessionRecord) -> None:
        """Enter the Active state for ``record``; a no-op if already in it."""
        if self.is_current_session(record.id):
            return
        self.session = record
        self.document = record.document()
        self._version = record.version
        if self.is_owner:
            self._coalescer = WriteCoalescer(
                self._store,
                record.id,
                self._user.user_id,
                lambda: self.document,
                delay=self._cfg.write_debounce_sec,
                audit=self._audit,
            )
        else:
            self._sync.start_polling()
        self._heartbeat = ParticipantHeartbeat(
            self._store, record.id, self._user, self._cfg.HEARTBEAT_SEC
        )
        self._heartbeat.start()
        if self._notifications is not None:
            self._notifications.update(self._group_id, has_active_session=True)

    def _teardown_session(self, *, clear_document: bool) -> None:
        """Release everything scoped to the current session. Idempotent."""
        session, self.session = self.session, None
        if session is None:
            return
        coalescer, self._coalescer = self._coalescer, None
        if coalescer is not None:
            coalescer.close()
        heartbeat, self._heartbeat = self._heartbeat, None
        if heartbeat is not None:
            heartbeat.stop()
        self._sync.stop_polling()
        self._ai.reset()
        self._version = 0
        if clear_document:
            self.document = ItineraryDocument()
        if self._notifications is not None:
            self._notifications.update(self._group_id, has_active_session=False)

    async def _reconcile(self, remote: Optional[SessionRecord], trigger: str) -> None:
        local = self.session
        if remote is None or not remote.is_active:
            if local is None:
                return
            self._teardown_session(clear_document=not self.is_owner)
            session_events_total.labels(event="observed_end").inc()
            logger.info(
                "Session ended remotely",
                extra={"group_id": self._group_id, "session_id": local.id, "trigger": trigger},
            )
            self._notify(Notice.info("Live session ended"))
            return

        if local is None or local.id != remote.id:
            if local is not None:
                self._teardown_session(clear_document=False)
            self._activate(remote)
            session_events_total.labels(event="observed_start").inc()
            logger.info(
                "Adopted live session",
                extra={"group_id": self._group_id, "session_id": remote.id, "trigger": trigger},
            )
            if not self.is_owner:
                self._notify(
                    Notice.info(
                        "Joined active planning session"
                        if trigger == "initial"
                        else "Owner started a live planning session"
                    )
                )
            return

        self.session = remote
        if self.is_owner:
            return
        if remote.version > self._version:
            self.document = remote.document()
            self._version = remote.version

    # ---- edits ----

    def _may_edit(self, action: str) -> bool:
        if self.session is not None and not self.is_owner:
            self._fail(
                AuthorizationError(f"{action} requires the owner role", notice=READER_EDIT_NOTICE)
            )
            return False
        return True

    def _edit(
        self, action: str, mutate: Callable[[ItineraryDocument], T]
    ) -> Tuple[bool, Optional[T]]:
        """Apply ``mutate`` to the local document; a stale day id or index becomes a notice."""
        if not self._may_edit(action):
            return False, None
        try:
            return True, mutate(self.document)
        except (KeyError, IndexError, ValueError) as e:
            self._fail(DocumentEditError(f"{action}: {e}"))
            return False, None

    def _schedule_write(self) -> None:
        if self._coalescer is not None:
            self._coalescer.schedule()

    async def _persist_structural(self, change_type: ChangeType, data: Dict[str, Any]) -> bool:
        if self._coalescer is None:
            return True
        try:
            await self._coalescer.persist_structural(change_type, data)
            return True
        except WriteCoalesceError as e:
            self._fail(e)
            return False

    def update_day_field(self, day_id: str, field: str, value: str) -> bool:
        ok, _ = self._edit("update_day_field", lambda doc: doc.set_day_field(day_id, field, value))
        if ok:
            self._schedule_write()
        return ok

    def update_meal(self, day_id: str, meal: str, value: str) -> bool:
        ok, _ = self._edit("update_meal", lambda doc: doc.set_meal(day_id, meal, value))
        if ok:
            self._schedule_write()
        return ok

    def update_activity(self, day_id: str, index: int, value: str) -> bool:
        ok, _ = self._edit("update_activity", lambda doc: doc.set_activity(day_id, index, value))
        if ok:
            self._schedule_write()
        return ok

    def add_activity(self, day_id: str, value: str = "") -> Optional[int]:
        ok, index = self._edit("add_activity", lambda doc: doc.add_activity(day_id, value))
        if not ok:
            return None
        self._schedule_write()
        return index

    async def delete_activity(self, day_id: str, index: int) -> bool:
        ok, removed = self._edit("delete_activity", lambda doc: doc.delete_activity(day_id, index))
        if not ok:
            return False
        return await self._persist_structural(
            ChangeType.UPDATE_DAY,
            {"dayId": day_id, "removedActivityIndex": index, "removedActivity": removed},
        )

    async def add_day(self) -> Optional[Day]:
        ok, day = self._edit("add_day", lambda doc: doc.add_day())
        if not ok:
            return None
        await self._persist_structural(
            ChangeType.ADD_DAY, {"newDay": day.model_dump(by_alias=True)}
        )
        return day

    async def remove_day(self, day_id: str) -> bool:
        ok, removed = self._edit("remove_day", lambda doc: doc.remove_day(day_id))
        if not ok:
            return False
        return await self._persist_structural(
            ChangeType.REMOVE_DAY, {"dayId": day_id, "dayNumber": removed.day_number}
        )

    async def reorder_days(self, source: int, destination: int) -> bool:
        if source == destination:
            return self._may_edit("reorder_days")
        ok, _ = self._edit("reorder_days", lambda doc: doc.reorder(source, destination))
        if not ok:
            return False
        return await self._persist_structural(
            ChangeType.REORDER_DAYS,
            {
                "sourceIndex": source,
                "destinationIndex": destination,
                "order": [day.id for day in self.document.days],
            },
        )

    # ---- chat and AI ----

    async def send_message(self, content: str) -> Optional[ChatMessage]:
        content = content.strip()
        if not content:
            return None
        try:
            return await self.transcript.post(content)
        except Exception as e:
            logger.warning("Failed to send message: %s", e, extra={"group_id": self._group_id})
            self._notify(Notice.failure("Failed to send message", e))
            return None

    async def ask_ai(self, text: str) -> None:
        try:
            await self._ai.ask(text)
        except LiveSessionError as e:
            self._fail(e)
        except Exception as e:
            logger.warning("AI chat turn failed: %s", e, extra={"group_id": self._group_id})
            self._notify(Notice.failure("Failed to send message", e))

    async def install_document(self, session_id: str, document: ItineraryDocument) -> bool:
        """Persist a generated document, then make it the local one."""
        if not self.is_current_session(session_id) or self._coalescer is None:
            return False
        record = await self._coalescer.replace(document)
        if not self.is_current_session(session_id):
            return False
        self.document = document
        self._version = record.version
        return True

    # ---- presence ----

    async def participants(self) -> List[ParticipantRecord]:
        """Participants of the active session seen within the presence TTL."""
        if self.session is None:
            return []
        try:
            rows = await self._store.list_participants(self.session.id)
        except Exception as e:
            logger.warning("Failed to list participants: %s", e)
            return []
        return active_participants(rows, self._cfg.PRESENCE_TTL_SEC)

    # ---- plumbing ----

    def _fail(self, error: LiveSessionError) -> None:
        logger.info(
            "%s: %s",
            type(error).__name__,
            error,
            extra={"group_id": self._group_id, "user_id": self._user.user_id},
        )
        self._notify(Notice.failure(error.notice, error))

    def _sync_failed(self, error: SyncFetchError) -> None:
        self._notify(Notice.failure(error.notice, error))

    async def _on_message_event(self, event: ChangeEvent) -> None:
        if event.kind is ChangeKind.INSERT and event.new:
            message = ChatMessage.model_validate(event.new)
            if self.transcript.receive(message) and self._notifications is not None:
                # The user is looking at this group
                self._notifications.update(self._group_id, has_new_messages=False)
