"""Authentication and authorization models for live sessions."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Role(str, Enum):
    """
    Per-group client role.

    - owner: the group's creator; sole writer of the session document,
      may start/end sessions and run AI plan generation
    - reader: every other member; observes the session
    """

    OWNER = "owner"
    READER = "reader"


class User(BaseModel):
    """
    Identity of the connected client.

    In production this is populated from the auth provider; the API reads it
    from request headers.
    """

    user_id: str = Field(..., description="Unique user identifier")
    email: Optional[str] = Field(None, description="User email address")
