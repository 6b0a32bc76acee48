"""Tests for the SQLAlchemy session store against in-memory SQLite."""

import asyncio

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from support import GROUP_ID, OWNER, READER
from trippy.core.db import init_db
from trippy.core.errors import (
    GroupNotFoundError,
    SessionConflictError,
    SessionNotActiveError,
    SessionNotFoundError,
)
from trippy.core.realtime.schemas import ChangeKind
from trippy.core.realtime.channels import SESSIONS_TABLE
from trippy.infra.broadcast.memory import InMemoryBroadcaster
from trippy.infra.store.schemas import (
    ChangeLogEntry,
    ChangeType,
    ChatMessage,
    GroupMemberRecord,
    GroupRecord,
    ParticipantRecord,
    SessionStatus,
)
from trippy.infra.store.sql import SqlSessionStore
from trippy.itinerary.document import ItineraryDocument


@pytest.fixture
def sql_store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    yield SqlSessionStore(InMemoryBroadcaster(), factory)
    engine.dispose()


async def _seed(store):
    await store.create_group(
        GroupRecord(id=GROUP_ID, name="Lisbon", created_by=OWNER.user_id, join_code="LIS123"),
        [
            GroupMemberRecord(group_id=GROUP_ID, user_id=OWNER.user_id, email=OWNER.email),
            GroupMemberRecord(group_id=GROUP_ID, user_id=READER.user_id, email=READER.email),
        ],
    )


@pytest.mark.asyncio
async def test_groups_and_members(sql_store):
    await _seed(sql_store)
    group = await sql_store.get_group(GROUP_ID)
    assert group.created_by == OWNER.user_id
    members = await sql_store.list_group_members(GROUP_ID)
    assert [m.user_id for m in members] == [OWNER.user_id, READER.user_id]

    with pytest.raises(GroupNotFoundError):
        await sql_store.get_group("nope")


@pytest.mark.asyncio
async def test_session_lifecycle(sql_store):
    await _seed(sql_store)
    doc = ItineraryDocument.default()
    session = await sql_store.create_session(GROUP_ID, OWNER.user_id, doc.to_payload())
    assert session.is_active
    assert session.version == 0

    with pytest.raises(SessionConflictError):
        await sql_store.create_session(GROUP_ID, OWNER.user_id, [])

    doc.add_day()
    written = await sql_store.write_document(session.id, doc.to_payload())
    assert written.version == 1
    assert written.itinerary_data == doc.to_payload()

    active = await sql_store.get_active_session(GROUP_ID)
    assert active.id == session.id
    assert active.started_at.tzinfo is not None

    ended = await sql_store.end_session(session.id)
    assert ended.status is SessionStatus.ENDED
    assert ended.ended_at is not None
    assert await sql_store.get_active_session(GROUP_ID) is None

    with pytest.raises(SessionNotActiveError):
        await sql_store.write_document(session.id, [])
    with pytest.raises(SessionNotFoundError):
        await sql_store.write_document("missing", [])

    # A fresh session may start once the previous one ended
    second = await sql_store.create_session(GROUP_ID, OWNER.user_id, [])
    assert second.id != session.id


@pytest.mark.asyncio
async def test_participants_upsert_and_delete(sql_store):
    await _seed(sql_store)
    session = await sql_store.create_session(GROUP_ID, OWNER.user_id, [])
    await sql_store.add_participants(
        session.id,
        [
            ParticipantRecord(session_id=session.id, user_id=OWNER.user_id, user_email=OWNER.email),
            ParticipantRecord(session_id=session.id, user_id=READER.user_id, user_email=None),
        ],
    )
    first = await sql_store.upsert_participant(session.id, READER.user_id, READER.email)
    second = await sql_store.upsert_participant(session.id, READER.user_id, None)
    assert second.last_active_at >= first.last_active_at
    assert second.user_email == READER.email

    participants = await sql_store.list_participants(session.id)
    assert len(participants) == 2

    assert await sql_store.delete_participants(session.id) == 2
    assert await sql_store.list_participants(session.id) == []


@pytest.mark.asyncio
async def test_messages_and_change_log(sql_store):
    await _seed(sql_store)
    session = await sql_store.create_session(GROUP_ID, OWNER.user_id, [])
    for text in ("first", "second"):
        await sql_store.append_message(
            ChatMessage(group_id=GROUP_ID, content=text, sender_id=OWNER.user_id)
        )
    messages = await sql_store.list_messages(GROUP_ID)
    assert [m.content for m in messages] == ["first", "second"]
    assert all(m.id for m in messages)

    entry = await sql_store.append_change(
        ChangeLogEntry(
            session_id=session.id,
            user_id=OWNER.user_id,
            change_type=ChangeType.ADD_DAY,
            change_data={"newDay": {"dayNumber": 2}},
        )
    )
    assert entry.id is not None
    changes = await sql_store.list_changes(session.id)
    assert changes[0].change_data == {"newDay": {"dayNumber": 2}}


@pytest.mark.asyncio
async def test_writes_publish_change_events(sql_store):
    await _seed(sql_store)
    events = []

    async def consume():
        async for event in sql_store.changes(SESSIONS_TABLE, GROUP_ID):
            events.append(event)

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.01)
    try:
        session = await sql_store.create_session(GROUP_ID, OWNER.user_id, [])
        await sql_store.write_document(session.id, [])
        await sql_store.end_session(session.id)
        await sql_store.delete_session(session.id)
        await asyncio.sleep(0.05)
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    assert [e.kind for e in events] == [
        ChangeKind.INSERT,
        ChangeKind.UPDATE,
        ChangeKind.UPDATE,
        ChangeKind.DELETE,
    ]
    assert events[2].new["status"] == "ended"
    assert events[2].old["status"] == "active"
    assert await sql_store.get_session(session.id) is None


@pytest.mark.asyncio
async def test_end_is_terminal(sql_store):
    await _seed(sql_store)
    session = await sql_store.create_session(GROUP_ID, OWNER.user_id, [])
    ended = await sql_store.end_session(session.id)

    with pytest.raises(SessionNotActiveError):
        await sql_store.end_session(session.id)
    with pytest.raises(SessionNotFoundError):
        await sql_store.end_session("missing")

    stored = await sql_store.get_session(session.id)
    assert stored.ended_at == ended.ended_at


@pytest.mark.asyncio
async def test_participants_rejected_after_end(sql_store):
    await _seed(sql_store)
    session = await sql_store.create_session(GROUP_ID, OWNER.user_id, [])
    await sql_store.upsert_participant(session.id, READER.user_id, READER.email)
    await sql_store.end_session(session.id)
    await sql_store.delete_participants(session.id)

    with pytest.raises(SessionNotActiveError):
        await sql_store.upsert_participant(session.id, READER.user_id, READER.email)
    with pytest.raises(SessionNotActiveError):
        await sql_store.add_participants(
            session.id,
            [ParticipantRecord(session_id=session.id, user_id=OWNER.user_id)],
        )
    assert await sql_store.list_participants(session.id) == []
