"""Records exchanged between the session store and the live engine."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from trippy.itinerary.document import ItineraryDocument


def utcnow() -> datetime:
    """Get current UTC timestamp"""
    return datetime.now(tz=timezone.utc)


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


class ChangeType(str, Enum):
    """Structural edit kinds recorded in the change log."""

    ADD_DAY = "add_day"
    REMOVE_DAY = "remove_day"
    UPDATE_DAY = "update_day"
    REORDER_DAYS = "reorder_days"


class GroupRecord(BaseModel):
    id: str
    name: str
    created_by: str
    join_code: Optional[str] = None


class GroupMemberRecord(BaseModel):
    group_id: str
    user_id: str
    email: Optional[str] = None


class SessionRecord(BaseModel):
    """
    A live itinerary session row.

    ``version`` increments on every document write so readers can tell a
    newer document from one they already hold.
    """

    id: str
    group_id: str
    owner_id: str
    status: SessionStatus = SessionStatus.ACTIVE
    itinerary_data: List[Dict[str, Any]] = Field(default_factory=list)
    version: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE

    def document(self) -> ItineraryDocument:
        return ItineraryDocument.from_payload(self.itinerary_data)


class ParticipantRecord(BaseModel):
    session_id: str
    user_id: str
    user_email: Optional[str] = None
    joined_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)


class ChangeLogEntry(BaseModel):
    id: Optional[int] = None
    session_id: str
    user_id: str
    change_type: ChangeType
    change_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class ChatMessage(BaseModel):
    id: Optional[str] = None
    group_id: str
    content: str
    sender_id: str
    sender_email: Optional[str] = None
    is_ai: bool = False
    is_notification: bool = False
    created_at: datetime = Field(default_factory=utcnow)
