"""
Trip groups and their members.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from trippy.core.db import Base
from trippy.database.models._time import utcnow
from trippy.infra.store.schemas import GroupMemberRecord, GroupRecord


class TripGroup(Base):
    __tablename__ = "trip_groups"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    join_code: Mapped[Optional[str]] = mapped_column(String(32), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    def to_record(self) -> GroupRecord:
        return GroupRecord(
            id=self.id, name=self.name, created_by=self.created_by, join_code=self.join_code
        )


class GroupMember(Base):
    __tablename__ = "group_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("trip_groups.id", ondelete="CASCADE"), index=True, nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_member"),)

    def to_record(self) -> GroupMemberRecord:
        return GroupMemberRecord(group_id=self.group_id, user_id=self.user_id, email=self.email)
