"""
Postgres connection management for the `postgres` cache backend.
Uses asyncpg for async Postgres access with connection pooling.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import asyncpg

from location_resolver.config import get_settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# ── Connection Pool ────────────────────────────────────────────────────

_pool: Optional[asyncpg.Pool] = None


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = await asyncpg.create_pool(
            dsn=settings.db.dsn,
            min_size=settings.db.min_pool_size,
            max_size=settings.db.max_pool_size,
        )
        logger.info("Database connection pool created (min=%d, max=%d)",
                    settings.db.min_pool_size, settings.db.max_pool_size)
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Database connection pool closed")


@asynccontextmanager
async def get_connection() -> AsyncIterator[asyncpg.Connection]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        yield conn


# ── Schema Initialization ─────────────────────────────────────────────

async def run_migrations() -> None:
    """Execute SQL migrations in order (idempotent)."""
    migration_paths = sorted(MIGRATIONS_DIR.glob("*.sql"))

    async with get_connection() as conn:
        for path in migration_paths:
            await conn.execute(path.read_text())
            logger.info("Applied migration: %s", path.name)
    logger.info("Migrations applied successfully (%d files)", len(migration_paths))
