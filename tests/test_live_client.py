"""Tests for the live session client: lifecycle, ownership and sync."""

import asyncio

import pytest

from support import GROUP_ID, OWNER, READER, eventually, live_client
from trippy.core.auth.models import Role
from trippy.core.errors import (
    AuthorizationError,
    DocumentEditError,
    SyncFetchError,
    WriteCoalesceError,
)
from trippy.live.client import READER_EDIT_NOTICE, SessionState
from trippy.live.notices import NoticeLevel
from trippy.live.transcript import SESSION_ENDED_MESSAGE, SESSION_STARTED_MESSAGE


@pytest.mark.asyncio
async def test_roles_resolved_from_group_creator(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, _):
        async with live_client(store, READER, fast_settings) as (reader, _):
            assert owner.role is Role.OWNER
            assert reader.role is Role.READER
            assert owner.state is SessionState.NO_SESSION


@pytest.mark.asyncio
async def test_owner_starts_session_with_single_empty_day(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, notices):
        record = await owner.start_session()

        assert record is not None
        assert owner.state is SessionState.ACTIVE
        stored = await store.get_active_session(GROUP_ID)
        assert stored.id == record.id
        assert stored.owner_id == OWNER.user_id
        assert len(stored.itinerary_data) == 1
        assert stored.itinerary_data[0]["dayNumber"] == 1
        assert stored.itinerary_data[0]["activities"] == [""]

        participants = await store.list_participants(record.id)
        assert {p.user_id for p in participants} == {"u-owner", "u-reader", "u-reader-2"}

        assert owner.messages[-1].content == SESSION_STARTED_MESSAGE
        assert owner.messages[-1].is_notification
        assert "Live session started" in notices.messages(NoticeLevel.SUCCESS)


@pytest.mark.asyncio
async def test_owner_draft_seeds_new_session(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, _):
        await owner.add_day()
        await owner.add_day()
        day_id = owner.document.days[0].id
        owner.update_day_field(day_id, "accommodation", "Hotel Avenida")
        assert store.writes == []

        record = await owner.start_session()
        assert len(record.itinerary_data) == 2
        assert record.itinerary_data[0]["accommodation"] == "Hotel Avenida"


@pytest.mark.asyncio
async def test_reader_cannot_start_or_end(store, fast_settings):
    async with live_client(store, READER, fast_settings) as (reader, notices):
        assert await reader.start_session() is None
        assert await store.get_active_session(GROUP_ID) is None
        assert isinstance(notices.notices[-1].error, AuthorizationError)

        assert await reader.end_session(confirmed=True) is False
        assert notices.notices[-1].level is NoticeLevel.ERROR


@pytest.mark.asyncio
async def test_second_start_is_rejected(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, notices):
        first = await owner.start_session()
        assert await owner.start_session() is None
        assert "A live session is already active" in notices.messages(NoticeLevel.ERROR)
        assert (await store.get_active_session(GROUP_ID)).id == first.id


@pytest.mark.asyncio
async def test_reader_converges_on_owner_document(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, _):
        await owner.start_session()
        async with live_client(store, READER, fast_settings) as (reader, notices):
            assert reader.state is SessionState.ACTIVE
            assert reader.polling
            assert "Joined active planning session" in notices.messages(NoticeLevel.INFO)

            day_id = owner.document.days[0].id
            owner.update_day_field(day_id, "accommodation", "Hotel Lisboa")
            owner.update_meal(day_id, "dinner", "Cervejaria Ramiro")
            await owner.add_day()

            await eventually(lambda: reader.document.to_payload() == owner.document.to_payload())
            assert reader.document.days[0].accommodation == "Hotel Lisboa"
            assert len(reader.document) == 2


@pytest.mark.asyncio
async def test_reader_edits_rejected_while_active(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, _):
        await owner.start_session()
        async with live_client(store, READER, fast_settings) as (reader, notices):
            before = reader.document.to_payload()
            day_id = reader.document.days[0].id

            assert reader.update_day_field(day_id, "budget", "1 EUR") is False
            assert await reader.add_day() is None
            assert await reader.remove_day(day_id) is False
            assert await reader.reorder_days(0, 0) is False
            assert reader.add_activity(day_id) is None

            assert reader.document.to_payload() == before
            assert notices.messages(NoticeLevel.ERROR).count(READER_EDIT_NOTICE) == 5
            await asyncio.sleep(fast_settings.write_debounce_sec * 3)
            assert store.writes == []


@pytest.mark.asyncio
async def test_reader_adopts_session_started_later(store, fast_settings):
    async with live_client(store, READER, fast_settings) as (reader, notices):
        async with live_client(store, OWNER, fast_settings) as (owner, _):
            assert reader.state is SessionState.NO_SESSION
            assert not reader.polling

            await owner.start_session()
            await eventually(lambda: reader.state is SessionState.ACTIVE)
            assert reader.document.to_payload() == owner.document.to_payload()
            assert reader.polling
            assert "Owner started a live planning session" in notices.messages(NoticeLevel.INFO)


@pytest.mark.asyncio
async def test_reader_observes_end_and_clears_document(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, _):
        await owner.start_session()
        async with live_client(store, READER, fast_settings) as (reader, notices):
            assert len(reader.document) == 1

            assert await owner.end_session(confirmed=True) is True
            await eventually(lambda: reader.state is SessionState.NO_SESSION)

            assert len(reader.document) == 0
            assert not reader.polling
            assert "Live session ended" in notices.messages(NoticeLevel.INFO)
            assert notices.messages(NoticeLevel.ERROR) == []


@pytest.mark.asyncio
async def test_end_requires_confirmation(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, _):
        await owner.start_session()
        assert await owner.end_session(confirmed=False) is False
        assert owner.state is SessionState.ACTIVE
        assert (await store.get_active_session(GROUP_ID)) is not None


@pytest.mark.asyncio
async def test_end_flushes_pending_edit_then_stops_writing(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, notices):
        record = await owner.start_session()
        day_id = owner.document.days[0].id
        owner.update_day_field(day_id, "budget", "200 EUR")
        assert owner.write_pending

        assert await owner.end_session(confirmed=True) is True
        ended = await store.get_session(record.id)
        assert ended.status.value == "ended"
        assert ended.ended_at is not None
        assert ended.itinerary_data[0]["budget"] == "200 EUR"
        assert await store.list_participants(record.id) == []
        assert owner.messages[-1].content == SESSION_ENDED_MESSAGE

        writes = len(store.writes)
        owner.update_day_field(day_id, "budget", "local only")
        await owner.add_day()
        await asyncio.sleep(fast_settings.write_debounce_sec * 3)
        assert len(store.writes) == writes
        assert owner.document.days[0].budget == "local only"
        assert "Live session ended" in notices.messages(NoticeLevel.SUCCESS)


@pytest.mark.asyncio
async def test_structural_failure_notifies_and_recovers(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, notices):
        record = await owner.start_session()
        store.fail_writes = 1

        await owner.add_day()
        assert len(owner.document) == 2
        assert owner.unsynced
        assert isinstance(notices.notices[-1].error, WriteCoalesceError)
        assert notices.notices[-1].message == "Failed to update itinerary"

        await eventually(lambda: not owner.unsynced)
        stored = await store.get_session(record.id)
        assert len(stored.itinerary_data) == 2


@pytest.mark.asyncio
async def test_structural_edits_are_logged(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, _):
        record = await owner.start_session()
        day = await owner.add_day()
        await owner.reorder_days(1, 0)
        await owner.delete_activity(day.id, 0)
        await owner.remove_day(day.id)

        await asyncio.sleep(0.05)
        changes = await store.list_changes(record.id)
        assert [c.change_type.value for c in changes] == [
            "add_day",
            "reorder_days",
            "update_day",
            "remove_day",
        ]
        stored = await store.get_session(record.id)
        assert stored.itinerary_data == owner.document.to_payload()


@pytest.mark.asyncio
async def test_sync_failures_produce_single_notice(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, _):
        await owner.start_session()
        async with live_client(store, READER, fast_settings) as (reader, notices):
            store.fail_reads = fast_settings.SYNC_FAILURE_NOTICE_THRESHOLD + 1

            def sync_notices():
                return [n for n in notices.notices if isinstance(n.error, SyncFetchError)]

            await eventually(lambda: store.fail_reads == 0)
            await asyncio.sleep(fast_settings.POLL_INTERVAL_SEC * 3)
            assert len(sync_notices()) == 1
            assert sync_notices()[0].message == "Failed to sync with owner's changes"
            assert reader.state is SessionState.ACTIVE


@pytest.mark.asyncio
async def test_stale_fetch_does_not_overwrite_newer_document(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, _):
        await owner.start_session()
        async with live_client(store, READER, fast_settings) as (reader, _):
            stale = await store.get_active_session(GROUP_ID)
            await owner.add_day()
            await eventually(lambda: len(reader.document) == 2)

            await reader._reconcile(stale, "poll")
            assert len(reader.document) == 2


@pytest.mark.asyncio
async def test_back_online_resyncs(store, fast_settings):
    async with live_client(store, READER, fast_settings) as (reader, _):
        async with live_client(store, OWNER, fast_settings) as (owner, _):
            # Reader is offline: every fetch fails, so the start push is missed
            store.fail_reads = 100
            await owner.start_session()
            await asyncio.sleep(fast_settings.POLL_INTERVAL_SEC * 2)
            assert reader.state is SessionState.NO_SESSION

            store.fail_reads = 0
            await reader.on_online()
            assert reader.state is SessionState.ACTIVE
            assert reader.document.to_payload() == owner.document.to_payload()


@pytest.mark.asyncio
async def test_stale_edits_become_notices(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, notices):
        await owner.start_session()
        day_id = owner.document.days[0].id
        before = owner.document.to_payload()

        assert owner.update_day_field("gone", "budget", "10 EUR") is False
        assert owner.update_meal(day_id, "brunch", "Pastéis") is False
        assert owner.update_activity(day_id, 7, "Oceanário") is False
        assert owner.add_activity("gone") is None
        assert await owner.remove_day("gone") is False
        assert await owner.reorder_days(0, 5) is False
        assert await owner.delete_activity(day_id, 9) is False
        assert await owner.delete_activity(day_id, -1) is False

        errors = [n.error for n in notices.notices if n.level is NoticeLevel.ERROR]
        assert len(errors) == 8
        assert all(isinstance(e, DocumentEditError) for e in errors)
        assert owner.document.to_payload() == before
        assert not owner.write_pending

        await asyncio.sleep(0.05)
        session = await store.get_active_session(GROUP_ID)
        assert await store.list_changes(session.id) == []
        assert store.writes == []


@pytest.mark.asyncio
async def test_reorder_in_place_is_a_no_op(store, fast_settings):
    async with live_client(store, OWNER, fast_settings) as (owner, notices):
        await owner.start_session()
        assert await owner.reorder_days(0, 0) is True
        assert store.writes == []
        assert notices.messages(NoticeLevel.ERROR) == []
