"""
Group chat transcript shared by humans, the AI planner and session notices.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, String, Text

from trippy.core.db import Base
from trippy.database.models._time import as_utc, utcnow
from trippy.infra.store.schemas import ChatMessage


class TripMessage(Base):
    __tablename__ = "trip_messages"

    id = Column(String(64), primary_key=True)
    group_id = Column(String(64), nullable=False, index=True)
    content = Column(Text, nullable=False)
    sender_id = Column(String(128), nullable=False)
    sender_email = Column(String(255), nullable=True)
    is_ai = Column(Boolean, default=False, nullable=False)
    is_notification = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_trip_messages_group_created", "group_id", "created_at"),)

    def to_record(self) -> ChatMessage:
        return ChatMessage(
            id=self.id,
            group_id=self.group_id,
            content=self.content,
            sender_id=self.sender_id,
            sender_email=self.sender_email,
            is_ai=bool(self.is_ai),
            is_notification=bool(self.is_notification),
            created_at=as_utc(self.created_at),
        )
