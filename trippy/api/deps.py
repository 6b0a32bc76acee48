"""FastAPI dependency injection providers."""

from __future__ import annotations

import logging
import os
import threading
from typing import Annotated, Optional

from fastapi import Header, HTTPException, status

from trippy.core.auth.models import User
from trippy.core.settings import settings
from trippy.infra.broadcast.base import Broadcast
from trippy.infra.broadcast.memory import InMemoryBroadcaster
from trippy.infra.broadcast.redis import RedisBroadcaster
from trippy.infra.store.base import SessionStore
from trippy.infra.store.sql import SqlSessionStore

__all__ = ["get_broadcaster", "get_store", "get_current_user"]

logger = logging.getLogger(__name__)

# Thread-safe singletons
_broadcaster_instance: Optional[Broadcast] = None
_store_instance: Optional[SessionStore] = None
_lock = threading.Lock()


def get_broadcaster() -> Broadcast:
    """
    Singleton change-feed transport.

    Redis when REDIS_URL is set, otherwise in-memory. Uses double-checked
    locking so concurrent first requests build one instance.
    """
    global _broadcaster_instance
    if _broadcaster_instance is not None:
        return _broadcaster_instance
    with _lock:
        if _broadcaster_instance is not None:
            return _broadcaster_instance
        if settings.REDIS_URL:
            logger.info("Using Redis broadcaster")
            inst: Broadcast = RedisBroadcaster(settings.REDIS_URL)
        else:
            logger.info("Using in-memory broadcaster (dev mode)")
            if os.getenv("ENV") in {"production", "prod", "staging"}:
                logger.warning(
                    "Production environment detected but REDIS_URL not set! "
                    "In-memory broadcaster will NOT work with multiple server instances."
                )
            inst = InMemoryBroadcaster()
        _broadcaster_instance = inst
        return inst


def get_store() -> SessionStore:
    global _store_instance
    if _store_instance is not None:
        return _store_instance
    broadcaster = get_broadcaster()
    with _lock:
        if _store_instance is None:
            _store_instance = SqlSessionStore(broadcaster)
        return _store_instance


def get_current_user(
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_user_email: Annotated[Optional[str], Header()] = None,
) -> User:
    """
    Caller identity from the ``X-User-Id`` / ``X-User-Email`` headers.

    Dev shim: the auth provider in front of the service sets these.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return User(user_id=x_user_id, email=x_user_email)
