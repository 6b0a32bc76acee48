"""Change-feed channel naming."""

from __future__ import annotations

from trippy.core.settings import settings

SESSIONS_TABLE = "live_itinerary_sessions"
PARTICIPANTS_TABLE = "session_participants"
MESSAGES_TABLE = "trip_messages"

FEED_TABLES = (SESSIONS_TABLE, PARTICIPANTS_TABLE, MESSAGES_TABLE)


def change_channel(table: str, group_id: str) -> str:
    """Channel carrying ``table`` row changes for one group."""
    return f"{settings.CHANGE_FEED_PREFIX}{table}:{group_id}"
