"""asyncpg connection pool management.

The pool is created in the app lifespan and stored on ``app.state.pool``;
nothing in the codebase reaches for a module-level handle.  Consumers get
it injected (see ``src.dependencies``).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg

from src.config import Settings, get_settings

logger = logging.getLogger("weighttrack.db")


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    s = settings or get_settings()
    pool = await asyncpg.create_pool(
        s.database_url,
        min_size=s.db_pool_min_size,
        max_size=s.db_pool_max_size,
        command_timeout=30,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)", s.db_pool_min_size, s.db_pool_max_size
    )
    return pool


async def close_pool(pool: asyncpg.Pool | None) -> None:
    """Drain the pool. Call at app shutdown."""
    if pool is not None:
        await pool.close()
        logger.info("Database pool closed")


@asynccontextmanager
async def transaction(pool: asyncpg.Pool) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a connection and run the block inside one transaction.

    Usage::

        async with transaction(pool) as conn:
            await conn.execute("UPDATE users SET ... WHERE id = $1", user_id)
    """
    async with pool.acquire() as conn:
        async with conn.transaction():
            yield conn
