"""Participant heartbeat and presence filtering for live sessions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from trippy.core.auth.models import User
from trippy.infra.store.base import SessionStore
from trippy.infra.store.schemas import ParticipantRecord
from trippy.live.timers import Ticker

logger = logging.getLogger(__name__)


class ParticipantHeartbeat:
    """Keeps this user's participant row fresh while a session is active."""

    def __init__(self, store: SessionStore, session_id: str, user: User, interval: float) -> None:
        self._store = store
        self._session_id = session_id
        self._user = user
        self._ticker = Ticker(interval, self.beat, name=f"heartbeat:{session_id}", immediate=True)

    def start(self) -> None:
        self._ticker.start()

    def stop(self) -> None:
        self._ticker.stop()

    async def beat(self) -> None:
        try:
            await self._store.upsert_participant(
                self._session_id, self._user.user_id, self._user.email
            )
        except Exception as e:
            logger.warning(
                "Participant heartbeat failed: %s",
                e,
                extra={"session_id": self._session_id, "user_id": self._user.user_id},
            )


def active_participants(
    participants: Iterable[ParticipantRecord],
    ttl_sec: float,
    now: Optional[datetime] = None,
) -> List[ParticipantRecord]:
    """Participants seen within ``ttl_sec``."""
    now = now or datetime.now(tz=timezone.utc)
    cutoff = now - timedelta(seconds=ttl_sec)
    return [p for p in participants if p.last_active_at >= cutoff]
