"""Pytest configuration and fixtures for the live itinerary engine.

Provides:
- fast_settings: Settings with short debounce/poll windows
- store: in-memory session store seeded with one group
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))
from trippy.core.settings import Settings  # noqa: E402
from support import (  # noqa: E402
    GROUP_ID,
    OWNER,
    READER,
    READER_2,
    RecordingStore,
)
from trippy.infra.store.schemas import GroupMemberRecord, GroupRecord  # noqa: E402


@pytest.fixture
def fast_settings(tmp_path):
    return Settings(
        WRITE_DEBOUNCE_MS=40,
        POLL_INTERVAL_SEC=0.05,
        HEARTBEAT_SEC=1,
        PRESENCE_TTL_SEC=5,
        SYNC_FAILURE_NOTICE_THRESHOLD=3,
        NOTIFICATIONS_PATH=str(tmp_path / "notifications.json"),
        OPENAI_API_KEY=None,
    )


@pytest.fixture
def store():
    s = RecordingStore()
    s.add_group(
        GroupRecord(id=GROUP_ID, name="Lisbon long weekend", created_by=OWNER.user_id),
        [
            GroupMemberRecord(group_id=GROUP_ID, user_id=u.user_id, email=u.email)
            for u in (OWNER, READER, READER_2)
        ],
    )
    return s
