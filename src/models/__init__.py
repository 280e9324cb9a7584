"""Models package exports."""

from src.models.access import AccessSnapshot, EntityKind, EntityRef, Role
from src.models.user import Session, SessionState, User

__all__ = [
    "AccessSnapshot",
    "EntityKind",
    "EntityRef",
    "Role",
    "Session",
    "SessionState",
    "User",
]
