"""Error taxonomy shared by the core services and the HTTP layer.

Messages are safe to return to clients: they never carry hashes, tokens
or SQL text. ``code`` is the stable machine-readable identifier.
"""

from typing import Optional


class CoreError(Exception):
    """Base class for every error the core surfaces to callers."""

    code = "internal_error"
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(CoreError):
    """Malformed input, rejected before any write."""

    code = "validation_error"
    status_code = 400
    default_message = "Invalid input"


class InvalidRole(ValidationError):
    """Role is unknown or not defined for the entity kind."""

    code = "invalid_role"
    default_message = "Role is not valid for this entity"


class InvalidCredential(CoreError):
    """Unknown login or wrong secret. Deliberately indistinguishable."""

    code = "invalid_credential"
    status_code = 401
    default_message = "Invalid login or password"


class TokenInvalid(CoreError):
    code = "token_invalid"
    status_code = 401
    default_message = "Invalid access token"


class TokenExpired(CoreError):
    code = "token_expired"
    status_code = 401
    default_message = "Access token has expired"


class SessionInvalid(CoreError):
    """Refresh token belongs to a revoked, expired or unknown session."""

    code = "session_invalid"
    status_code = 401
    default_message = "Session is no longer valid, log in again"


class SessionReuseDetected(CoreError):
    """An already-rotated refresh token was replayed; the session is revoked."""

    code = "session_reuse_detected"
    status_code = 401
    default_message = "Refresh token reuse detected, session revoked"


class PermissionDenied(CoreError):
    code = "permission_denied"
    status_code = 403
    default_message = "Permission denied"


class NoAccess(PermissionDenied):
    """No grant exists anywhere on the entity's ancestry chain."""

    code = "no_access"
    default_message = "No access to this entity"


class NotFound(CoreError):
    code = "not_found"
    status_code = 404
    default_message = "Not found"


class Conflict(CoreError):
    """Uniqueness violation."""

    code = "conflict"
    status_code = 409
    default_message = "Already exists"


class LastOwnerConstraint(CoreError):
    code = "last_owner_constraint"
    status_code = 409
    default_message = "Entity must keep at least one owner"


class Unavailable(CoreError):
    """Storage timeout or transient failure.

    ``retryable`` is False when the failure happened while committing, in
    which case the outcome of the write is unknown to this process.
    """

    code = "unavailable"
    status_code = 503
    default_message = "Service temporarily unavailable, retry later"

    def __init__(self, message: Optional[str] = None, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
