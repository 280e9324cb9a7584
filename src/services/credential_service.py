"""Credential store: Argon2id password hashes, one per user."""

import asyncio
from functools import lru_cache
from typing import Optional
from uuid import UUID

import asyncpg
import structlog
from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from src.config import get_settings
from src.errors import InvalidCredential

logger = structlog.get_logger(__name__)


@lru_cache
def _dummy_hash(time_cost: int, memory_cost: int, parallelism: int) -> str:
    """Hash verified against when the user has no credential, one per parameter set."""
    hasher = PasswordHasher(
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=parallelism,
        type=Type.ID,
    )
    return hasher.hash("unused-dummy-secret")


class CredentialService:
    """Stores and verifies login secrets.

    Hash parameters come from settings and are fixed for the process. The
    salt is generated per hash and embedded in the stored PHC string.
    Neither the hash nor the secret ever leaves this class or reaches a log.

    Argon2 work runs in a worker thread; the event loop stays free while a
    transaction waits on it.
    """

    def __init__(self):
        settings = get_settings()
        self._hasher = PasswordHasher(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
            type=Type.ID,
        )
        self._dummy_hash = _dummy_hash(
            settings.argon2_time_cost,
            settings.argon2_memory_cost,
            settings.argon2_parallelism,
        )

    def hash_secret(self, secret: str) -> str:
        return self._hasher.hash(secret)

    def _check(self, stored: str, secret: str) -> bool:
        """Verify in the calling thread; returns whether the hash needs upgrading."""
        self._hasher.verify(stored, secret)
        return self._hasher.check_needs_rehash(stored)

    def _burn_verify(self, secret: str) -> None:
        """Spend the same work as a real verify so a missing user is not faster."""
        try:
            self._hasher.verify(self._dummy_hash, secret)
        except VerificationError:
            pass

    async def set_credential(
        self, conn: asyncpg.Connection, user_id: UUID, secret: str
    ) -> None:
        """Store a new hash for ``user_id``, replacing any previous one.

        Args:
            conn: Connection of the caller's transaction
            user_id: Owner of the credential
            secret: Plain-text secret
        """
        password_hash = await asyncio.to_thread(self.hash_secret, secret)
        await conn.execute(
            """
            INSERT INTO credentials (user_id, password_hash)
            VALUES ($1, $2)
            ON CONFLICT (user_id)
            DO UPDATE SET password_hash = EXCLUDED.password_hash, updated_at = now()
            """,
            user_id,
            password_hash,
        )
        logger.info("credential_set", user_id=str(user_id))

    async def verify_credential(
        self, conn: asyncpg.Connection, user_id: Optional[UUID], secret: str
    ) -> None:
        """Check ``secret`` against the stored credential.

        Unknown users, missing credentials and wrong secrets all raise the
        same error.

        Raises:
            InvalidCredential: No match
        """
        stored = None
        if user_id is not None:
            stored = await conn.fetchval(
                "SELECT password_hash FROM credentials WHERE user_id = $1",
                user_id,
            )

        if stored is None:
            await asyncio.to_thread(self._burn_verify, secret)
            logger.info("credential_rejected", reason="missing")
            raise InvalidCredential()

        try:
            needs_rehash = await asyncio.to_thread(self._check, stored, secret)
        except VerifyMismatchError:
            logger.info("credential_rejected", user_id=str(user_id), reason="mismatch")
            raise InvalidCredential()
        except (InvalidHashError, VerificationError):
            logger.warning("credential_rejected", user_id=str(user_id), reason="unreadable")
            raise InvalidCredential()

        if needs_rehash:
            await self.set_credential(conn, user_id, secret)
            logger.info("credential_rehashed", user_id=str(user_id))

    async def verify_login(
        self, conn: asyncpg.Connection, login: str, secret: str
    ) -> UUID:
        """Verify a login/secret pair and return the user id.

        Inactive accounts are rejected with the same error as a wrong secret.

        Raises:
            InvalidCredential: Unknown login, wrong secret or inactive user
        """
        row = await conn.fetchrow(
            "SELECT id, is_active FROM users WHERE LOWER(login) = LOWER($1)",
            login,
        )
        user_id = row["id"] if row is not None else None

        await self.verify_credential(conn, user_id, secret)

        if not row["is_active"]:
            logger.info("credential_rejected", user_id=str(user_id), reason="inactive")
            raise InvalidCredential()
        return user_id
