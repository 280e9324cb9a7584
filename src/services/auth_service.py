"""Session and token lifecycle: JWT access tokens, rotating refresh tokens."""

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Type
from uuid import UUID, uuid4

import asyncpg
import jwt
import structlog

from src.config import get_settings
from src.database import run_in_transaction
from src.errors import (
    CoreError,
    SessionInvalid,
    SessionReuseDetected,
    TokenExpired,
    TokenInvalid,
)
from src.models.auth import AccessClaims, TokenPair
from src.models.user import Session, SessionState

logger = structlog.get_logger(__name__)

# Constants
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_SEPARATOR = "."


def hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a refresh token; only the digest is stored."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


@dataclass
class _RefreshOutcome:
    user_id: Optional[UUID] = None
    error: Optional[Type[CoreError]] = None


class AuthService:
    """Issues, validates, rotates and revokes session credentials.

    Access tokens are stateless and only expire. The refresh token is the
    sole revocation point: each session stores the hash of its current
    refresh token, and every rotation swaps it with a compare-and-swap.
    """

    def __init__(self):
        self.settings = get_settings()

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(minutes=self.settings.access_token_expire_minutes)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(days=self.settings.refresh_token_expire_days)

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def create_access_token(self, user_id: UUID, session_id: UUID) -> str:
        """Create a signed JWT access token.

        Args:
            user_id: User placed in the 'sub' claim
            session_id: Session placed in the 'sid' claim

        Returns:
            Encoded JWT string
        """
        now = self._now()
        payload = {
            "sub": str(user_id),
            "sid": str(session_id),
            "type": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": now + self.access_token_ttl,
        }
        return jwt.encode(payload, self.settings.jwt_secret, algorithm=JWT_ALGORITHM)

    def validate_access_token(self, token: str) -> AccessClaims:
        """Verify signature and expiry of an access token.

        Storage is never consulted.

        Raises:
            TokenExpired: Token is past its expiry
            TokenInvalid: Bad signature, malformed token or wrong claims
        """
        try:
            payload = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["exp", "iat", "sub", "sid"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpired()
        except jwt.InvalidTokenError:
            raise TokenInvalid()

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise TokenInvalid()

        try:
            return AccessClaims(
                user_id=UUID(payload["sub"]),
                session_id=UUID(payload["sid"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (TypeError, ValueError):
            raise TokenInvalid()

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def _new_refresh_token(self, session_id: UUID) -> str:
        return f"{session_id}{REFRESH_TOKEN_SEPARATOR}{secrets.token_urlsafe(48)}"

    def _session_id_from(self, refresh_token: str) -> UUID:
        head, sep, tail = refresh_token.partition(REFRESH_TOKEN_SEPARATOR)
        if not sep or not tail:
            raise SessionInvalid()
        try:
            return UUID(head)
        except ValueError:
            raise SessionInvalid()

    def _token_pair(self, user_id: UUID, session_id: UUID, refresh_token: str) -> TokenPair:
        return TokenPair(
            access_token=self.create_access_token(user_id, session_id),
            refresh_token=refresh_token,
            expires_in=int(self.access_token_ttl.total_seconds()),
        )

    async def issue(self, conn: asyncpg.Connection, user_id: UUID) -> TokenPair:
        """Open a new session for ``user_id`` and return its token pair.

        Args:
            conn: Connection of the caller's transaction
            user_id: Authenticated user
        """
        session_id = uuid4()
        refresh_token = self._new_refresh_token(session_id)
        now = self._now()
        expires_at = now + self.refresh_token_ttl

        await conn.execute(
            """
            INSERT INTO sessions (id, user_id, refresh_token_hash, issued_at, expires_at)
            VALUES ($1, $2, $3, $4, $5)
            """,
            session_id,
            user_id,
            hash_token(refresh_token),
            now,
            expires_at,
        )

        logger.info(
            "session_issued",
            user_id=str(user_id),
            session_id=str(session_id),
            expires_at=expires_at.isoformat(),
        )
        return self._token_pair(user_id, session_id, refresh_token)

    async def _rotate(
        self,
        conn: asyncpg.Connection,
        session_id: UUID,
        presented_hash: str,
        new_hash: str,
    ) -> _RefreshOutcome:
        now = self._now()

        # Compare-and-swap: only the holder of the current token wins.
        row = await conn.fetchrow(
            """
            UPDATE sessions s
            SET refresh_token_hash = $3,
                rotated_at = $4,
                rotation_count = s.rotation_count + 1,
                expires_at = $5
            FROM users u
            WHERE s.id = $1
              AND s.refresh_token_hash = $2
              AND s.revoked_at IS NULL
              AND s.expires_at > $4
              AND u.id = s.user_id
              AND u.is_active
            RETURNING s.user_id
            """,
            session_id,
            presented_hash,
            new_hash,
            now,
            now + self.refresh_token_ttl,
        )
        if row is not None:
            return _RefreshOutcome(user_id=row["user_id"])

        current = await conn.fetchrow(
            """
            SELECT s.id, s.user_id, s.refresh_token_hash, s.issued_at, s.rotated_at,
                   s.rotation_count, s.expires_at, s.revoked_at, s.revoked_reason,
                   u.is_active
            FROM sessions s
            JOIN users u ON u.id = s.user_id
            WHERE s.id = $1
            FOR UPDATE OF s
            """,
            session_id,
        )
        session = (
            Session.model_validate({name: current[name] for name in Session.model_fields})
            if current is not None
            else None
        )
        if session is None or session.state(now) in (SessionState.REVOKED, SessionState.EXPIRED):
            logger.warning("refresh_rejected", session_id=str(session_id), reason="session_invalid")
            return _RefreshOutcome(error=SessionInvalid)

        if current["refresh_token_hash"] == presented_hash:
            # Token is current, so the CAS missed on the user being disabled.
            await self.revoke(conn, session_id, "user_inactive")
            return _RefreshOutcome(error=SessionInvalid)

        await self.revoke(conn, session_id, "reuse_detected")
        logger.warning(
            "refresh_reuse_detected",
            session_id=str(session_id),
            user_id=str(current["user_id"]),
        )
        return _RefreshOutcome(user_id=current["user_id"], error=SessionReuseDetected)

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token and return a fresh token pair.

        Presenting a token that was already rotated away revokes the whole
        session. The revocation is committed before the error is raised.

        Raises:
            SessionInvalid: Malformed token, or revoked/expired/unknown session
            SessionReuseDetected: Replay of a rotated-away token
            Unavailable: Storage failure
        """
        session_id = self._session_id_from(refresh_token)
        presented_hash = hash_token(refresh_token)
        new_token = self._new_refresh_token(session_id)
        new_hash = hash_token(new_token)

        outcome = await run_in_transaction(
            lambda conn: self._rotate(conn, session_id, presented_hash, new_hash)
        )
        if outcome.error is not None:
            raise outcome.error()

        logger.info(
            "session_rotated",
            user_id=str(outcome.user_id),
            session_id=str(session_id),
        )
        return self._token_pair(outcome.user_id, session_id, new_token)

    async def revoke(
        self, conn: asyncpg.Connection, session_id: UUID, reason: str
    ) -> bool:
        """Revoke one session. Returns False if it was already revoked or unknown."""
        result = await conn.execute(
            """
            UPDATE sessions
            SET revoked_at = $2, revoked_reason = $3
            WHERE id = $1 AND revoked_at IS NULL
            """,
            session_id,
            self._now(),
            reason,
        )
        revoked = result == "UPDATE 1"
        if revoked:
            logger.info("session_revoked", session_id=str(session_id), reason=reason)
        return revoked

    async def revoke_all_for_user(
        self,
        conn: asyncpg.Connection,
        user_id: UUID,
        reason: str,
        keep_session_id: Optional[UUID] = None,
    ) -> None:
        """Revoke every live session of a user, optionally sparing one."""
        result = await conn.execute(
            """
            UPDATE sessions
            SET revoked_at = $2, revoked_reason = $3
            WHERE user_id = $1 AND revoked_at IS NULL
              AND ($4::uuid IS NULL OR id <> $4)
            """,
            user_id,
            self._now(),
            reason,
            keep_session_id,
        )
        logger.info(
            "user_sessions_revoked",
            user_id=str(user_id),
            reason=reason,
            result=result,
        )

    async def logout(self, claims: AccessClaims) -> None:
        """End the session an access token belongs to."""
        await run_in_transaction(
            lambda conn: self.revoke(conn, claims.session_id, "logout")
        )
