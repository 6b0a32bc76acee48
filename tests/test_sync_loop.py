"""Tests for the synchronization loop."""

import asyncio

import pytest

from support import GROUP_ID, OWNER, eventually
from trippy.core.realtime.channels import MESSAGES_TABLE, SESSIONS_TABLE, change_channel
from trippy.infra.store.schemas import ChatMessage
from trippy.live.sync import SyncLoop


class Recorder:
    def __init__(self):
        self.calls = []
        self.failures = []

    async def reconcile(self, session, trigger):
        self.calls.append((session, trigger))

    def failed(self, error):
        self.failures.append(error)

    def triggers(self):
        return [t for _, t in self.calls]


def _loop(store, rec, poll=0.02, on_message=None):
    return SyncLoop(
        store,
        GROUP_ID,
        rec.reconcile,
        poll_interval=poll,
        failure_threshold=3,
        on_persistent_failure=rec.failed,
        on_message=on_message,
    )


@pytest.mark.asyncio
async def test_initial_refresh_without_session(store):
    rec = Recorder()
    loop = _loop(store, rec)
    await loop.start()
    try:
        assert rec.calls == [(None, "initial")]
    finally:
        await loop.close()


@pytest.mark.asyncio
async def test_push_triggers_refresh(store):
    rec = Recorder()
    loop = _loop(store, rec)
    await loop.start()
    try:
        session = await store.create_session(GROUP_ID, OWNER.user_id, [])
        await eventually(lambda: "push" in rec.triggers())
        pushed = [s for s, t in rec.calls if t == "push"][0]
        assert pushed.id == session.id
    finally:
        await loop.close()


@pytest.mark.asyncio
async def test_message_events_reach_handler(store):
    rec = Recorder()
    received = []

    async def on_message(event):
        received.append(event)

    loop = _loop(store, rec, on_message=on_message)
    await loop.start()
    try:
        await store.append_message(
            ChatMessage(group_id=GROUP_ID, content="hi", sender_id=OWNER.user_id)
        )
        await eventually(lambda: len(received) == 1)
        assert received[0].new["content"] == "hi"
    finally:
        await loop.close()


@pytest.mark.asyncio
async def test_polling_until_stopped(store):
    rec = Recorder()
    loop = _loop(store, rec)
    await loop.start()
    try:
        loop.start_polling()
        assert loop.polling
        await eventually(lambda: rec.triggers().count("poll") >= 2)
        loop.stop_polling()
        assert not loop.polling
        count = len(rec.calls)
        await asyncio.sleep(0.06)
        assert len(rec.calls) == count
    finally:
        await loop.close()


@pytest.mark.asyncio
async def test_persistent_failure_reported_once(store):
    rec = Recorder()
    loop = _loop(store, rec)
    store.fail_reads = 5
    for _ in range(5):
        assert await loop.refresh_now("manual") is False
    assert len(rec.failures) == 1
    assert loop.consecutive_failures == 5
    assert rec.calls == []

    assert await loop.refresh_now("manual") is True
    assert loop.consecutive_failures == 0
    assert rec.calls == [(None, "manual")]


@pytest.mark.asyncio
async def test_close_releases_subscriptions(store):
    rec = Recorder()

    async def on_message(event):
        pass

    loop = _loop(store, rec, on_message=on_message)
    await loop.start()
    broadcaster = store._broadcast
    sessions = change_channel(SESSIONS_TABLE, GROUP_ID)
    messages = change_channel(MESSAGES_TABLE, GROUP_ID)
    assert broadcaster.subscriber_count(sessions) == 1
    assert broadcaster.subscriber_count(messages) == 1

    await loop.close()
    assert broadcaster.subscriber_count(sessions) == 0
    assert broadcaster.subscriber_count(messages) == 0
