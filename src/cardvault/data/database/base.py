"""Base database class with shared connection patterns."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from ...config import Settings, get_settings
from ...exceptions import ConstraintViolationError, NotInitializedError, StoreError

logger = logging.getLogger(__name__)

APP_SETTINGS_SCHEMA = """
CREATE TABLE IF NOT EXISTS app_settings (
    key TEXT PRIMARY KEY,
    value TEXT
)
"""


def _wrap_error(error: sqlite3.Error) -> StoreError:
    if isinstance(error, sqlite3.IntegrityError):
        return ConstraintViolationError(f"Constraint violated: {error}")
    return StoreError(f"Database operation failed: {error}")


class BaseDatabase:
    """Base class for all database access.

    Owns one aiosqlite connection to one SQLite file and provides the shared
    patterns: explicit connect/close, lazy connection on first use, query
    execution with concurrency limiting and slow query logging, and
    transactions serialized through a single writer lock.

    Subclasses create their tables in _create_schema(), which runs on every
    connect and must therefore be idempotent.
    """

    store_name = "Database"

    def __init__(
        self,
        db_path: Path,
        max_connections: int = 5,
        settings: Settings | None = None,
    ):
        """Initialize with the path of the database file.

        Args:
            db_path: Location of the SQLite file (created on connect if missing).
            max_connections: Maximum concurrent queries (semaphore limit).
            settings: Settings for slow query logging (defaults to get_settings()).
        """
        self.db_path = db_path
        self._settings = settings or get_settings()
        self._conn: aiosqlite.Connection | None = None
        self._semaphore = asyncio.Semaphore(max_connections)
        self._write_lock = asyncio.Lock()
        self._connect_lock = asyncio.Lock()

    @property
    def conn(self) -> aiosqlite.Connection:
        """Get the database connection."""
        if self._conn is None:
            raise NotInitializedError(self.store_name)
        return self._conn

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        """Connect and initialize schema."""
        async with self._connect_lock:
            if self._conn is not None:
                return
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            conn = await aiosqlite.connect(self.db_path)
            conn.row_factory = aiosqlite.Row
            try:
                await conn.execute("PRAGMA foreign_keys = ON")
                await conn.execute("PRAGMA busy_timeout = 5000")  # 5 seconds
                await self._configure(conn)
                self._conn = conn
                await self._create_schema()
                await conn.commit()
            except sqlite3.Error as e:
                self._conn = None
                await conn.close()
                raise _wrap_error(e) from e
        logger.info("%s connected at %s", self.store_name, self.db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def _configure(self, conn: aiosqlite.Connection) -> None:
        """Hook for per-store pragmas, run before schema creation."""

    async def _create_schema(self) -> None:
        """Create tables if they don't exist."""

    async def _ensure_connected(self) -> aiosqlite.Connection:
        if self._conn is None:
            logger.debug("%s used before connect(), connecting lazily", self.store_name)
            await self.connect()
        return self.conn

    @asynccontextmanager
    async def _execute(
        self, query: str, params: Sequence[Any] = ()
    ) -> AsyncIterator[aiosqlite.Cursor]:
        """Execute a query with concurrency limiting and optional slow query logging.

        Args:
            query: SQL query string.
            params: Query parameters.

        Yields:
            aiosqlite.Cursor for the executed query.
        """
        conn = await self._ensure_connected()
        async with self._semaphore:
            start = time.perf_counter()
            try:
                async with conn.execute(query, params) as cursor:
                    yield cursor
            except sqlite3.Error as e:
                raise _wrap_error(e) from e
            finally:
                if self._settings.log_slow_queries:
                    duration_ms = (time.perf_counter() - start) * 1000
                    if duration_ms > self._settings.slow_query_threshold_ms:
                        logger.warning("Slow query (%.1fms): %s", duration_ms, query[:100])

    async def _fetchone(self, query: str, params: Sequence[Any] = ()) -> aiosqlite.Row | None:
        async with self._execute(query, params) as cursor:
            return await cursor.fetchone()

    async def _fetchall(self, query: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        async with self._execute(query, params) as cursor:
            return list(await cursor.fetchall())

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run writes atomically.

        Commits when the block exits normally, rolls back on any exception.
        Transactions on one store are serialized; reads through _execute() are not.
        """
        conn = await self._ensure_connected()
        async with self._write_lock:
            try:
                yield conn
                await conn.commit()
            except sqlite3.Error as e:
                await conn.rollback()
                raise _wrap_error(e) from e
            except BaseException:
                await conn.rollback()
                raise

    async def _write(self, query: str, params: Sequence[Any] = ()) -> int:
        """Execute a single write in its own transaction. Returns affected row count."""
        async with self.transaction() as conn, conn.execute(query, params) as cursor:
            return cursor.rowcount

    async def _write_many(self, query: str, rows: Iterable[Sequence[Any]]) -> None:
        async with self.transaction() as conn:
            await conn.executemany(query, rows)

    async def table_exists(self, table: str) -> bool:
        row = await self._fetchone(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
        )
        return row is not None

    # ─────────────────────────────────────────────────────────────────────────
    # Key/value settings (stores whose schema includes APP_SETTINGS_SCHEMA)
    # ─────────────────────────────────────────────────────────────────────────

    async def get_setting(self, key: str) -> str | None:
        row = await self._fetchone("SELECT value FROM app_settings WHERE key = ?", (key,))
        return row["value"] if row else None

    async def set_setting(self, key: str, value: str) -> None:
        await self._write(
            """
            INSERT INTO app_settings (key, value) VALUES (?, ?)
            ON CONFLICT (key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
