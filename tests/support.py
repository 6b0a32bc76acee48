"""Shared helpers for live session tests."""

from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from typing import Any, Callable, List, Optional

from trippy.core.auth.models import User
from trippy.core.errors import GenerationError
from trippy.infra.store.memory import InMemorySessionStore
from trippy.live.client import LiveSessionClient
from trippy.live.notices import Notice, NoticeLevel
from trippy.services.llm import PlanRequest

GROUP_ID = "g-lisbon"
OWNER = User(user_id="u-owner", email="owner@example.com")
READER = User(user_id="u-reader", email="reader@example.com")
READER_2 = User(user_id="u-reader-2", email="reader2@example.com")


class RecordingStore(InMemorySessionStore):
    """In-memory store that records document writes and can fail on demand."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: List[list] = []
        self.fail_writes = 0
        self.fail_reads = 0

    async def write_document(self, session_id, itinerary_data):
        if self.fail_writes:
            self.fail_writes -= 1
            raise ConnectionError("store unavailable")
        self.writes.append(copy.deepcopy(itinerary_data))
        return await super().write_document(session_id, itinerary_data)

    async def get_active_session(self, group_id):
        if self.fail_reads:
            self.fail_reads -= 1
            raise ConnectionError("store unavailable")
        return await super().get_active_session(group_id)


class NoticeRecorder:
    def __init__(self) -> None:
        self.notices: List[Notice] = []

    def __call__(self, notice: Notice) -> None:
        self.notices.append(notice)

    def messages(self, level: Optional[NoticeLevel] = None) -> List[str]:
        return [n.message for n in self.notices if level is None or n.level is level]


class FakeGenerator:
    def __init__(self, payload: Any = None, error: Optional[Exception] = None) -> None:
        self.payload = payload
        self.error = error
        self.requests: List[PlanRequest] = []
        self.gate: Optional[asyncio.Event] = None

    async def generate(self, request: PlanRequest) -> Any:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.payload is None:
            raise GenerationError("no payload configured")
        return self.payload


@asynccontextmanager
async def live_client(store, user, cfg, generator=None, notifications=None):
    notices = NoticeRecorder()
    client = LiveSessionClient(
        store,
        user,
        GROUP_ID,
        generator=generator or FakeGenerator(),
        notices=notices,
        notifications=notifications,
        config=cfg,
    )
    await client.open()
    try:
        yield client, notices
    finally:
        await client.close()


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Wait until ``predicate()`` holds, failing the test after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
