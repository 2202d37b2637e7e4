"""
Async PostgreSQL connection pool for the intelligence pipeline.

A process-wide asyncpg pool singleton with thin query helpers. The PostgreSQL
store (intelligence.storage.postgres) issues every statement through these
helpers, so tests can patch them in one place.

Usage:
    # At application startup (in FastAPI lifespan)
    await init_db()

    # Anywhere in the process
    rows = await execute_query("SELECT * FROM signals WHERE tenant_id = $1", tenant_id)

    # At application shutdown
    await close_db()
"""

import logging
from typing import Any, List, Optional

import asyncpg
from asyncpg import Pool

from intelligence.core.config import get_settings


logger = logging.getLogger(__name__)


# =============================================================================
# Global Pool Singleton
# =============================================================================

# None until init_db() is called
_pool: Optional[Pool] = None


# =============================================================================
# Pool Lifecycle Functions
# =============================================================================

async def init_db() -> Pool:
    """
    Initialize the database connection pool.

    Idempotent: returns the existing pool if one was already created. Pool
    size and command timeout come from Settings.

    Returns:
        Pool: The asyncpg connection pool instance.

    Raises:
        asyncpg.PostgresError: If connection to the database fails.
        OSError: If the database host is unreachable.
    """
    global _pool

    if _pool is None:
        settings = get_settings()
        _pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
        logger.info(
            f"Database pool created (min={settings.db_pool_min_size}, "
            f"max={settings.db_pool_max_size})"
        )

    return _pool


async def get_db_pool() -> Pool:
    """
    Get the database connection pool, initializing it lazily if needed.

    Returns:
        Pool: The asyncpg connection pool instance.
    """
    global _pool

    if _pool is None:
        await init_db()

    assert _pool is not None, "Pool should be initialized after init_db()"

    return _pool


async def close_db() -> None:
    """Close the pool gracefully. Safe to call when no pool exists."""
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(ddl: str) -> None:
    """
    Apply idempotent DDL (CREATE ... IF NOT EXISTS) to the database.

    Args:
        ddl: One or more semicolon-separated statements.
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        await conn.execute(ddl)


# =============================================================================
# Query Execution Helpers
# =============================================================================

async def execute_query(query: str, *args: Any) -> List[asyncpg.Record]:
    """
    Execute a query and return all rows.

    Args:
        query: SQL with $1, $2, ... placeholders.
        *args: Positional query parameters.

    Returns:
        List[asyncpg.Record]: Rows returned by the query.

    Raises:
        asyncpg.PostgresError: If the query execution fails.
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        return await conn.fetch(query, *args)


async def execute_query_one(query: str, *args: Any) -> Optional[asyncpg.Record]:
    """
    Execute a query and return the first row, or None when nothing matches.

    INSERT ... ON CONFLICT DO NOTHING RETURNING * also goes through here:
    a None result means the conflicting row already existed.
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        return await conn.fetchrow(query, *args)


async def execute_command(query: str, *args: Any) -> str:
    """
    Execute a command (INSERT/UPDATE/DELETE) and return the status string.

    Returns:
        str: Status such as 'INSERT 0 1' or 'UPDATE 5'.
    """
    pool = await get_db_pool()

    async with pool.acquire() as conn:
        return await conn.execute(query, *args)


def rows_affected(status: str) -> int:
    """Parse the row count out of an asyncpg command status string."""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError, AttributeError):
        return 0
