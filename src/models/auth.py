"""Auth request and response models with validation."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from src.models.entity import OrganizationInfo, ProjectInfo


def validate_login(v: str) -> str:
    """Login: at least 3 chars, not purely numeric, no whitespace."""
    if len(v) < 3:
        raise ValueError("Login must be at least 3 characters long")
    if v.isdigit():
        raise ValueError("Login cannot consist only of digits")
    if any(c.isspace() for c in v):
        raise ValueError("Login cannot contain whitespace")
    return v


def validate_password(v: str) -> str:
    """Password: at least 6 chars with upper, lower and a digit, no whitespace."""
    if len(v) < 6:
        raise ValueError("Password must be at least 6 characters long")
    if any(c.isspace() for c in v):
        raise ValueError("Password cannot contain whitespace")
    if not (
        any(c.isupper() for c in v)
        and any(c.islower() for c in v)
        and any(c.isdigit() for c in v)
    ):
        raise ValueError(
            "Password must contain an uppercase letter, a lowercase letter and a digit"
        )
    return v


def validate_email(v: str) -> str:
    """Email: exactly one '@', non-empty local part, dotted domain."""
    parts = v.split("@")
    if len(parts) != 2:
        raise ValueError("Email must contain exactly one '@'")
    local, domain = parts
    if not local or not domain:
        raise ValueError("Email local part and domain cannot be empty")
    if "." not in domain:
        raise ValueError("Email domain is invalid")
    return v


class RegisterRequest(BaseModel):
    """New account registration.

    Attributes:
        login: Unique login
        user_name: Display name
        password: Initial secret
        email: Unique email address
    """

    login: str = Field(..., max_length=100)
    user_name: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., max_length=256)
    email: str = Field(..., max_length=255)

    @field_validator("login")
    @classmethod
    def login_format(cls, v: str) -> str:
        return validate_login(v)

    @field_validator("password")
    @classmethod
    def password_format(cls, v: str) -> str:
        return validate_password(v)

    @field_validator("email")
    @classmethod
    def email_format(cls, v: str) -> str:
        return validate_email(v)


class LoginRequest(BaseModel):
    """Login credentials.

    No format rules beyond non-empty: a malformed login must fail the same
    way as a wrong password.
    """

    login: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=1, max_length=256)


class RefreshRequest(BaseModel):
    """Request to exchange a refresh token for a new token pair."""

    refresh_token: str


class TokenPair(BaseModel):
    """Access/refresh pair issued for one session.

    Attributes:
        access_token: Short-lived signed JWT
        refresh_token: Opaque rotating token bound to the session
        token_type: Always "bearer"
        expires_in: Access token lifetime in seconds
    """

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(ge=1)


class AccessClaims(BaseModel):
    """Verified contents of an access token."""

    user_id: UUID
    session_id: UUID
    issued_at: datetime
    expires_at: datetime


class RegisterResponse(BaseModel):
    user_id: UUID
    email: str
    user_name: str
    login: str
    access_token: str
    refresh_token: str


class UserDataResponse(BaseModel):
    """User details with one organization and its visible projects."""

    user_id: UUID
    email: str
    user_name: str
    login: str
    organization: Optional[OrganizationInfo] = None
    projects: list[ProjectInfo] = Field(default_factory=list)


class LoginResponse(UserDataResponse):
    access_token: str
    refresh_token: str


class UpdateUserRequest(BaseModel):
    """Profile/credential update. Only provided fields change."""

    user_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    is_active: Optional[bool] = None
    password: Optional[str] = Field(default=None, max_length=256)

    @field_validator("email")
    @classmethod
    def email_format(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else validate_email(v)

    @field_validator("password")
    @classmethod
    def password_format(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else validate_password(v)
