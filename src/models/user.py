"""User and session models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class User(BaseModel):
    """A registered user."""

    id: UUID
    login: str
    user_name: str
    email: str
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


class SessionState(str, Enum):
    """Lifecycle state of a refresh-token lineage.

    ACTIVE -> ROTATED -> REVOKED, ACTIVE -> EXPIRED. REVOKED and EXPIRED
    are terminal.
    """

    ACTIVE = "active"
    ROTATED = "rotated"
    REVOKED = "revoked"
    EXPIRED = "expired"


class Session(BaseModel):
    """Server-side record backing a refresh-token lineage."""

    id: UUID
    user_id: UUID
    issued_at: datetime
    rotated_at: Optional[datetime] = None
    rotation_count: int = 0
    expires_at: datetime
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None

    def state(self, now: datetime) -> SessionState:
        if self.revoked_at is not None:
            return SessionState.REVOKED
        if self.expires_at <= now:
            return SessionState.EXPIRED
        if self.rotation_count > 0:
            return SessionState.ROTATED
        return SessionState.ACTIVE
