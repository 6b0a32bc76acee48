"""
Append-only log of structural itinerary edits.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from trippy.core.db import Base
from trippy.database.models._time import as_utc, utcnow
from trippy.infra.store.schemas import ChangeLogEntry, ChangeType


class ItineraryChange(Base):
    __tablename__ = "itinerary_changes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    change_type: Mapped[str] = mapped_column(String(32), nullable=False)
    change_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True, nullable=False
    )

    def to_record(self) -> ChangeLogEntry:
        return ChangeLogEntry(
            id=self.id,
            session_id=self.session_id,
            user_id=self.user_id,
            change_type=ChangeType(self.change_type),
            change_data=dict(self.change_data or {}),
            created_at=as_utc(self.created_at),
        )
