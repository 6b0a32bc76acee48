"""
Session participants with last-activity timestamps for presence.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from trippy.core.db import Base
from trippy.database.models._time import as_utc, utcnow
from trippy.infra.store.schemas import ParticipantRecord


class SessionParticipant(Base):
    __tablename__ = "session_participants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    last_active_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("session_id", "user_id", name="uq_session_participant"),
    )

    def to_record(self) -> ParticipantRecord:
        return ParticipantRecord(
            session_id=self.session_id,
            user_id=self.user_id,
            user_email=self.user_email,
            joined_at=as_utc(self.joined_at),
            last_active_at=as_utc(self.last_active_at),
        )
