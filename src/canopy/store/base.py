"""Common connection handling for the SQLite-backed repositories."""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite
import structlog

from canopy.models.config import StoreConfig
from canopy.store.pool import StorePool, open_connection


class CanopyStoreError(Exception):
    """Base class for store errors."""


class Repository:
    """
    Base for repositories over the canopy SQLite schema.

    With a ``StorePool`` the connection is borrowed and ``close()`` leaves it
    open (the pool owns it). Without one a private connection is opened and
    closed by ``close()``.
    """

    _logger_name = "canopy.store"

    def __init__(self, config: StoreConfig, pool: StorePool | None = None) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._pool = pool
        self._conn: aiosqlite.Connection | None = None
        self._local_lock = asyncio.Lock()
        self._logger = structlog.get_logger(self._logger_name)

    async def initialize(self) -> None:
        """
        Open (or borrow) a connection and apply the schema.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        if self._conn is not None:
            return
        if self._pool is not None:
            conn = await self._pool.acquire(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
        else:
            conn = await open_connection(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )

        schema = (Path(__file__).parent / "schema.sql").read_text()
        await conn.executescript(schema)
        await conn.commit()

        self._conn = conn
        self._logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """Release the connection. Pool-owned connections stay open."""
        if self._conn is None:
            return
        if self._pool is None:
            await self._conn.close()
        self._conn = None

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise CanopyStoreError("Store is not initialized. Call initialize() first.")
        return self._conn

    def _write_lock(self) -> asyncio.Lock:
        if self._pool is not None:
            return self._pool.write_lock(self._db_path)
        return self._local_lock
