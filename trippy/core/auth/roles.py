"""Ownership gate: who may mutate a group's live session."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from trippy.core.auth.models import Role
from trippy.core.errors import AuthorizationError

if TYPE_CHECKING:
    from trippy.infra.store.schemas import GroupRecord

logger = logging.getLogger(__name__)


def resolve_role(group: "GroupRecord", user_id: str) -> Role:
    """Owner iff the user created the group. Pure comparison, no I/O."""
    return Role.OWNER if group.created_by == user_id else Role.READER


def require_owner(role: Role, action: str, notice: str | None = None) -> None:
    """
    Raise AuthorizationError unless ``role`` is owner.

    Called at the top of every owner-only operation, before any network call.
    """
    if role is not Role.OWNER:
        logger.info("Rejected owner-only action %s for reader", action)
        raise AuthorizationError(f"{action} requires the owner role", notice=notice)
