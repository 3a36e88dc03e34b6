"""asyncpg connection pool with per-user session context.

Every connection handed out by ``get_connection`` runs inside a transaction
where ``app.current_user_id`` is set, so Postgres Row-Level Security
policies on the health tables see the correct identity.  JSONB columns are
decoded to Python objects on every pooled connection.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg

from healthcore.config import Settings, get_settings

logger = logging.getLogger("healthcore.db")

# Module-level connection pool, initialized once at app startup
_pool: asyncpg.Pool | None = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.database_url,
        min_size=s.db_pool_min_size,
        max_size=s.db_pool_max_size,
        command_timeout=s.db_command_timeout,
        init=_init_connection,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)",
        s.db_pool_min_size,
        s.db_pool_max_size,
    )
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized; call init_pool() first")
    return _pool


@asynccontextmanager
async def get_connection(
    user_id: str | None = None,
    pool: asyncpg.Pool | None = None,
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a connection with the user session variable set.

    Usage::

        async with get_connection(user_id="u1") as conn:
            rows = await conn.fetch("SELECT * FROM health_measurements WHERE user_id = $1", "u1")

    ``set_config(..., true)`` is transaction-local, so the variable
    disappears when the connection is returned to the pool.
    """
    source = pool or get_pool()
    async with source.acquire() as conn:
        async with conn.transaction():
            if user_id:
                await conn.execute(
                    "SELECT set_config('app.current_user_id', $1, true)", user_id
                )
            yield conn
