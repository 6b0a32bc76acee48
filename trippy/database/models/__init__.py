"""
Database models package.

Exports all SQLAlchemy models for the live itinerary store.
"""

from trippy.database.models.change_log import ItineraryChange
from trippy.database.models.group import GroupMember, TripGroup
from trippy.database.models.live_session import LiveItinerarySession
from trippy.database.models.message import TripMessage
from trippy.database.models.participant import SessionParticipant

__all__ = [
    "GroupMember",
    "ItineraryChange",
    "LiveItinerarySession",
    "SessionParticipant",
    "TripGroup",
    "TripMessage",
]
