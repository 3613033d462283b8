"""
Shared connection pool for canopy repositories.

One ``StorePool`` keeps a single ``aiosqlite.Connection`` per database path,
so the overlay and bookmark repositories of a service (and any number of
services in the same process) share one physical connection.

Usage::

    pool = StorePool()

    overlay = OverlayStore(config, pool=pool)
    bookmarks = BookmarkStore(config, pool=pool)   # same path, same connection

    await overlay.initialize()
    await bookmarks.initialize()

    # ... use repositories ...

    await pool.close_all()
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import aiosqlite
import structlog

_logger = structlog.get_logger("canopy.store.pool")


async def open_connection(
    db_path: str,
    *,
    wal_mode: bool = True,
    connection_timeout: float = 30.0,
) -> aiosqlite.Connection:
    """Open a configured connection, creating the parent directory if needed."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(db_path, timeout=connection_timeout)
    try:
        conn.row_factory = aiosqlite.Row
        if wal_mode:
            await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
    except Exception:
        await conn.close()
        raise
    return conn


def resolve_path(db_path: str) -> str:
    return str(Path(db_path).expanduser().resolve())


class StorePool:
    """
    Process-scoped registry of open connections, keyed by resolved path.

    Only safe within a single event loop. Alongside each connection the pool
    holds an ``asyncio.Lock`` that repositories take around read-modify-write
    sequences such as the legacy migration.
    """

    def __init__(self) -> None:
        self._connections: dict[str, aiosqlite.Connection] = {}
        self._write_locks: dict[str, asyncio.Lock] = {}
        self._open_locks: dict[str, asyncio.Lock] = {}

    async def acquire(
        self,
        db_path: str,
        *,
        wal_mode: bool = True,
        connection_timeout: float = 30.0,
    ) -> aiosqlite.Connection:
        """
        Return the shared connection for *db_path*, opening it on first use.

        Concurrent callers for the same path wait on a per-path lock so the
        file is opened exactly once.
        """
        resolved = resolve_path(db_path)  # noqa: ASYNC240
        if resolved in self._connections:
            return self._connections[resolved]

        open_lock = self._open_locks.setdefault(resolved, asyncio.Lock())
        async with open_lock:
            if resolved in self._connections:
                return self._connections[resolved]
            conn = await open_connection(
                resolved, wal_mode=wal_mode, connection_timeout=connection_timeout
            )
            self._connections[resolved] = conn
            self._write_locks[resolved] = asyncio.Lock()
            _logger.debug("pool_connection_opened", db_path=resolved)
            return conn

    def write_lock(self, db_path: str) -> asyncio.Lock:
        """
        Return the write lock for *db_path*.

        Raises:
            KeyError: If ``acquire()`` has not been called for this path.
        """
        return self._write_locks[resolve_path(db_path)]

    async def close_path(self, db_path: str) -> None:
        """Close and forget the connection for a single path."""
        resolved = resolve_path(db_path)  # noqa: ASYNC240
        conn = self._connections.pop(resolved, None)
        self._write_locks.pop(resolved, None)
        self._open_locks.pop(resolved, None)
        if conn is not None:
            await conn.close()
            _logger.debug("pool_connection_closed", db_path=resolved)

    async def close_all(self) -> None:
        """Close every connection managed by this pool."""
        for path in list(self._connections):
            await self.close_path(path)
