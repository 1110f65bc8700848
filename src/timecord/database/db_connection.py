"""
Database connection management for the lifecycle store.

SQLite performs best with a single long-lived connection, so one
``ConnectionManager`` is opened at startup and handed to the runtime. WAL
mode lets readers run while the single writer holds the write lock.

Concurrency model
-----------------
SQLite is single-writer. Writers are serialised at the application layer
with ``_write_sem`` so tasks queue instead of fighting the busy-timeout.
The conditional ``UPDATE ... WHERE active = 1`` statements used by the
expiration path still work unchanged if several processes share one file:
the row count they report is the only guard the engine relies on.

Usage
-----
    db = ConnectionManager()
    await db.open(path)

    async with db.read() as conn:
        rows = await conn.execute_fetchall("SELECT ...")

    async with db.transaction() as conn:
        await conn.execute("INSERT ...")
        # commits on clean exit, rolls back on exception

    await db.close()
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from timecord.database.db_schema import SchemaManager
from timecord.util.logger import get_logger

logger = get_logger("database_connection")

# Pragmas applied once when the connection is opened
_PRAGMAS = [
    "PRAGMA journal_mode = WAL",
    "PRAGMA foreign_keys = ON",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA cache_size = -65536",      # 64 MB page cache
    "PRAGMA temp_store = MEMORY",
    "PRAGMA busy_timeout = 5000",
    "PRAGMA wal_autocheckpoint = 1000",
]


class ConnectionManager:
    """
    Wrapper around a single aiosqlite connection.

    * Reads  - ``async with read()``; WAL allows concurrent reads.
    * Writes - ``async with transaction()``; serialised by ``_write_sem``.
    """

    def __init__(self) -> None:
        self._conn: aiosqlite.Connection | None = None
        self._write_sem = asyncio.Semaphore(1)
        self._path: Path | None = None

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, path: Path, *, initialize_schema: bool = True) -> None:
        """
        Open the database, apply pragmas and create the schema.

        Args:
            path: Path to the SQLite database file. Parent directories are created.
            initialize_schema: Run ``SchemaManager.initialize_schema`` after opening.
        """
        if self._conn is not None:
            logger.warning("[DB CONNECTION] open() called but connection already exists, ignoring")
            return

        self._path = path
        path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(path)
        self._conn.row_factory = aiosqlite.Row

        for pragma in _PRAGMAS:
            await self._conn.execute(pragma)
        await self._conn.commit()

        if initialize_schema:
            await SchemaManager.initialize_schema(self._conn)

        logger.info("[DB CONNECTION] Opened connection to %s", path)

    async def close(self) -> None:
        """Flush the WAL and close the connection. Safe to call twice."""
        if self._conn is None:
            return

        try:
            await self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            await self._conn.commit()
        except Exception:
            logger.exception("[DB CONNECTION] WAL checkpoint failed during close")
        finally:
            await self._conn.close()
            self._conn = None
            logger.info("[DB CONNECTION] Connection closed")

    # ------------------------------------------------------------------
    # Connection access
    # ------------------------------------------------------------------

    @property
    def connection(self) -> aiosqlite.Connection:
        """
        The raw aiosqlite connection.

        Raises:
            RuntimeError: If the connection has not been opened yet.
        """
        if self._conn is None:
            raise RuntimeError(
                "ConnectionManager: connection is not open. Call await db.open(path) at startup."
            )
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Serialised write transaction.

        Commits on clean exit and rolls back if the body raises, including
        when the body raises ``aiosqlite.IntegrityError`` for a uniqueness
        conflict that the caller translates into a domain error.
        """
        conn = self.connection

        async with self._write_sem:
            try:
                yield conn
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

    @asynccontextmanager
    async def read(self) -> AsyncIterator[aiosqlite.Connection]:
        """Symmetric counterpart to ``transaction()`` for plain reads."""
        yield self.connection
