"""Pydantic schemas for change-feed events."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ChangeKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """One row change, scoped to a group."""

    table: str
    kind: ChangeKind
    group_id: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None
    ts: int = Field(default_factory=lambda: int(time.time() * 1000))
