"""
Live itinerary sessions - one shared document per active session.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from trippy.core.db import Base
from trippy.database.models._time import as_utc, utcnow
from trippy.infra.store.schemas import SessionRecord, SessionStatus


class LiveItinerarySession(Base):
    __tablename__ = "live_itinerary_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    group_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), default=SessionStatus.ACTIVE.value, nullable=False
    )
    itinerary_data: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        # At most one active session per group
        Index(
            "uq_live_session_active_group",
            "group_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    def to_record(self) -> SessionRecord:
        return SessionRecord(
            id=self.id,
            group_id=self.group_id,
            owner_id=self.owner_id,
            status=SessionStatus(self.status),
            itinerary_data=list(self.itinerary_data or []),
            version=self.version,
            started_at=as_utc(self.started_at),
            ended_at=as_utc(self.ended_at),
        )
