"""Database connection pool, migrations and the transaction boundary."""

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import asyncpg
import structlog

from src.config import get_settings
from src.errors import Unavailable

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Global connection pool
_pool: Optional[asyncpg.Pool] = None

# Failures after which the transaction is known to be rolled back and the
# caller may see the condition as retryable.
TRANSIENT_ERRORS = (
    asyncio.TimeoutError,
    OSError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.QueryCanceledError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.TooManyConnectionsError,
)

MAX_TRANSACTION_RETRIES = 1


async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Returns:
        asyncpg connection pool

    Raises:
        RuntimeError: If pool is not initialized
    """
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_database() first.")
    return _pool


async def init_database() -> asyncpg.Pool:
    """Initialize the database connection pool.

    Every statement issued through the pool is bounded by
    ``db_command_timeout``.
    """
    global _pool

    if _pool is not None:
        return _pool

    settings = get_settings()

    try:
        _pool = await asyncpg.create_pool(
            settings.postgres_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
        logger.info(
            "database_pool_created",
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
        )
        return _pool
    except Exception as e:
        logger.error("database_pool_creation_failed", error_type=type(e).__name__)
        raise


async def close_database() -> None:
    """Close the database connection pool."""
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("database_pool_closed")


async def run_migrations() -> None:
    """Apply pending SQL migrations in filename order.

    Applied files are recorded in ``schema_migrations`` and skipped on the
    next run. Each file runs in its own transaction.
    """
    pool = await get_pool()
    migrations_dir = Path(__file__).parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning("migrations_directory_not_found", path=str(migrations_dir))
        return

    migration_files = sorted(migrations_dir.glob("*.sql"))

    if not migration_files:
        logger.info("no_migrations_found")
        return

    async with pool.acquire() as conn:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                filename TEXT PRIMARY KEY,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
        applied = {
            row["filename"]
            for row in await conn.fetch("SELECT filename FROM schema_migrations")
        }

        for migration_file in migration_files:
            if migration_file.name in applied:
                continue
            try:
                async with conn.transaction():
                    await conn.execute(migration_file.read_text())
                    await conn.execute(
                        "INSERT INTO schema_migrations (filename) VALUES ($1)",
                        migration_file.name,
                    )
                logger.info("migration_applied", file=migration_file.name)
            except Exception as e:
                logger.error(
                    "migration_failed",
                    file=migration_file.name,
                    error_type=type(e).__name__,
                )
                raise


async def _rollback(tx: Any) -> None:
    try:
        await tx.rollback()
    except (*TRANSIENT_ERRORS, asyncpg.exceptions.InterfaceError) as e:
        # The connection is already gone; the server discards the transaction.
        logger.warning("transaction_rollback_failed", error_type=type(e).__name__)


async def _run_once(
    work: Callable[[asyncpg.Connection], Awaitable[T]],
    isolation: str,
    readonly: bool,
) -> T:
    settings = get_settings()
    pool = await get_pool()

    try:
        async with pool.acquire(timeout=settings.db_acquire_timeout) as conn:
            tx = conn.transaction(isolation=isolation, readonly=readonly)
            await tx.start()
            try:
                result = await work(conn)
            except BaseException:
                # Covers cancellation too: nothing of an aborted request commits.
                await _rollback(tx)
                raise

            try:
                await tx.commit()
            except TRANSIENT_ERRORS as e:
                logger.error("transaction_commit_failed", error_type=type(e).__name__)
                raise Unavailable(retryable=False) from e
            return result
    except TRANSIENT_ERRORS as e:
        logger.warning("storage_unavailable", error_type=type(e).__name__)
        raise Unavailable() from e


async def run_in_transaction(
    work: Callable[[asyncpg.Connection], Awaitable[T]],
    *,
    isolation: str = "read_committed",
    readonly: bool = False,
) -> T:
    """Run ``work(conn)`` inside a single database transaction.

    Authorization reads and the writes they guard must both happen inside
    ``work`` so they see the same transaction.

    Transient failures that happened before commit are retried once with
    backoff; the rollback guarantees the first attempt left no effect.
    A failure during commit is never retried.

    Args:
        work: Coroutine function receiving the transaction's connection
        isolation: Postgres isolation level
        readonly: Open the transaction READ ONLY

    Returns:
        Whatever ``work`` returns

    Raises:
        Unavailable: Storage timed out or failed transiently
    """
    settings = get_settings()
    attempt = 0

    while True:
        attempt += 1
        try:
            return await _run_once(work, isolation, readonly)
        except Unavailable as e:
            if not e.retryable or attempt > MAX_TRANSACTION_RETRIES:
                raise
            logger.warning("transaction_retry", attempt=attempt)
            await asyncio.sleep(settings.db_retry_backoff_seconds * attempt)


async def health_check() -> bool:
    """Check database connectivity.

    Returns:
        True if database is healthy, False otherwise
    """
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            result = await conn.fetchval("SELECT 1")
            return result == 1
    except Exception as e:
        logger.error("database_health_check_failed", error_type=type(e).__name__)
        return False
