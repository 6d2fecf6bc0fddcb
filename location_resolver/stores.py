"""
Persistent key-value stores behind the result cache.

Each store holds string values under string keys and can enumerate keys by
prefix, so several owners can share one store without touching each
other's entries. A store that is full raises StorageQuotaExceeded; any
other backend failure is a StorageError.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Optional, Protocol

import asyncpg

from location_resolver.config import Settings
from location_resolver.db import close_pool, get_connection
from location_resolver.errors import StorageError, StorageQuotaExceeded

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get_item(self, key: str) -> Optional[str]: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...

    async def keys(self, prefix: str = "") -> list[str]: ...

    async def aclose(self) -> None: ...


# ── In-memory ──────────────────────────────────────────────────────────

class MemoryStore:
    """Process-local store. `max_entries` caps the whole store, owned or not."""

    def __init__(self, max_entries: int = 0):
        self.max_entries = max_entries
        self.data: dict[str, str] = {}

    async def get_item(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        if self.max_entries and key not in self.data and len(self.data) >= self.max_entries:
            raise StorageQuotaExceeded(f"memory store full ({self.max_entries} entries)")
        self.data[key] = value

    async def remove_item(self, key: str) -> None:
        self.data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return [k for k in self.data if k.startswith(prefix)]

    async def aclose(self) -> None:
        pass


# ── SQLite ─────────────────────────────────────────────────────────────

def _is_full(exc: sqlite3.Error) -> bool:
    if getattr(exc, "sqlite_errorname", None) == "SQLITE_FULL":
        return True
    return "database or disk is full" in str(exc)


class SqliteStore:
    """
    Single-table SQLite file store.
    sqlite3 is synchronous, so every call runs in the loop's default executor
    with a connection of its own.
    """

    def __init__(self, db_path: str | Path, max_entries: int = 0):
        self.db_path = Path(db_path)
        self.max_entries = max_entries
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            raise StorageError(f"cannot open {self.db_path}: {e}") from e

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def get_item(self, key: str) -> Optional[str]:
        return await self._run(self._get_sync, key)

    async def set_item(self, key: str, value: str) -> None:
        await self._run(self._set_sync, key, value)

    async def remove_item(self, key: str) -> None:
        await self._run(self._remove_sync, key)

    async def keys(self, prefix: str = "") -> list[str]:
        return await self._run(self._keys_sync, prefix)

    async def aclose(self) -> None:
        pass

    def _get_sync(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
            return row[0] if row else None
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    def _set_sync(self, key: str, value: str) -> None:
        conn = self._connect()
        try:
            if self.max_entries:
                exists = conn.execute(
                    "SELECT 1 FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
                (count,) = conn.execute("SELECT COUNT(*) FROM kv_store").fetchone()
                if not exists and count >= self.max_entries:
                    raise StorageQuotaExceeded(
                        f"sqlite store full ({self.max_entries} entries)"
                    )
            conn.execute(
                """
                INSERT INTO kv_store (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
            conn.commit()
        except sqlite3.Error as e:
            if _is_full(e):
                raise StorageQuotaExceeded(str(e)) from e
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    def _remove_sync(self, key: str) -> None:
        conn = self._connect()
        try:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    def _keys_sync(self, prefix: str) -> list[str]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
            return [r[0] for r in rows]
        except sqlite3.Error as e:
            raise StorageError(str(e)) from e
        finally:
            conn.close()


# ── Postgres ───────────────────────────────────────────────────────────

class PostgresStore:
    """`kv_store` table on the shared asyncpg pool (see migrations/)."""

    async def get_item(self, key: str) -> Optional[str]:
        try:
            async with get_connection() as conn:
                return await conn.fetchval("SELECT value FROM kv_store WHERE key = $1", key)
        except (asyncpg.PostgresError, OSError) as e:
            raise StorageError(str(e)) from e

    async def set_item(self, key: str, value: str) -> None:
        try:
            async with get_connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO kv_store (key, value) VALUES ($1, $2)
                    ON CONFLICT (key) DO UPDATE SET
                        value = EXCLUDED.value,
                        updated_at = NOW()
                    """,
                    key, value,
                )
        except asyncpg.exceptions.DiskFullError as e:
            raise StorageQuotaExceeded(str(e)) from e
        except (asyncpg.PostgresError, OSError) as e:
            raise StorageError(str(e)) from e

    async def remove_item(self, key: str) -> None:
        try:
            async with get_connection() as conn:
                await conn.execute("DELETE FROM kv_store WHERE key = $1", key)
        except (asyncpg.PostgresError, OSError) as e:
            raise StorageError(str(e)) from e

    async def keys(self, prefix: str = "") -> list[str]:
        # left() instead of LIKE: prefixes contain "_" wildcards
        try:
            async with get_connection() as conn:
                rows = await conn.fetch(
                    "SELECT key FROM kv_store WHERE left(key, length($1)) = $1 ORDER BY key",
                    prefix,
                )
        except (asyncpg.PostgresError, OSError) as e:
            raise StorageError(str(e)) from e
        return [r["key"] for r in rows]

    async def aclose(self) -> None:
        await close_pool()


def create_store(settings: Settings) -> KeyValueStore:
    """Factory: return the configured store backend."""
    backend = settings.cache.backend
    if backend == "memory":
        return MemoryStore(max_entries=settings.cache.max_entries)
    if backend == "postgres":
        return PostgresStore()
    if backend != "sqlite":
        logger.warning("Unknown cache backend '%s', falling back to sqlite", backend)
    return SqliteStore(settings.cache.sqlite_path, max_entries=settings.cache.max_entries)
