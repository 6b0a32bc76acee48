"""
Error taxonomy for the live session engine and its store.

Engine errors carry a short user-facing ``notice``; the client facade turns
them into notices instead of letting them escape. Store errors describe what
the persistence layer refused and are wrapped by the engine where a
lifecycle or write operation fails.
"""

from __future__ import annotations

from typing import Optional


class LiveSessionError(Exception):
    """Base class for failures surfaced by the live session engine."""

    notice: str = "Something went wrong"

    def __init__(self, message: Optional[str] = None, *, notice: Optional[str] = None):
        super().__init__(message or notice or self.notice)
        if notice is not None:
            self.notice = notice


class AuthorizationError(LiveSessionError):
    """A reader attempted an owner-only operation."""

    notice = "Only the group owner can do that"


class SessionCreateError(LiveSessionError):
    notice = "Failed to start live session"


class SessionEndError(LiveSessionError):
    notice = "Failed to end live session"


class WriteCoalesceError(LiveSessionError):
    notice = "Failed to update itinerary"


class SyncFetchError(LiveSessionError):
    notice = "Failed to sync with owner's changes"


class GenerationError(LiveSessionError):
    notice = "Sorry, I encountered an error while updating the itinerary. Please try again."


class StoreError(Exception):
    """Base class for errors raised by session store implementations."""


class GroupNotFoundError(StoreError):
    pass


class SessionNotFoundError(StoreError):
    pass


class SessionConflictError(StoreError):
    """The group already has an active session."""


class SessionNotActiveError(StoreError):
    """A write targeted a session that has already ended."""


class DocumentEditError(LiveSessionError):
    """An edit named a day or position the document no longer has."""

    notice = "That part of the itinerary no longer exists"
