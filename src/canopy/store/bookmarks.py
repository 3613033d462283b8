"""Named leaf bookmarks, stored per conversation."""

from __future__ import annotations

import time

import aiosqlite

from canopy.store.base import CanopyStoreError, Repository


class DuplicateBookmarkError(CanopyStoreError):
    """Raised when a bookmark name is already used in the conversation."""

    def __init__(self, conversation_id: str, name: str) -> None:
        super().__init__(f"Bookmark {name!r} already exists in {conversation_id!r}")
        self.conversation_id = conversation_id
        self.name = name


class BookmarkNotFoundError(CanopyStoreError):
    """Raised when a bookmark name does not exist in the conversation."""

    def __init__(self, conversation_id: str, name: str) -> None:
        super().__init__(f"Bookmark not found: {name!r} in {conversation_id!r}")
        self.conversation_id = conversation_id
        self.name = name


class BookmarkStore(Repository):
    """Mapping of bookmark name to message id for each conversation."""

    _logger_name = "canopy.store.bookmarks"

    async def add(self, conversation_id: str, name: str, leaf_id: str) -> None:
        """
        Record a named position.

        Raises:
            ValueError: If ``name`` is blank.
            DuplicateBookmarkError: If the name is taken in this conversation.
        """
        if not name.strip():
            raise ValueError("Bookmark name must not be empty")
        conn = self._conn_or_raise()
        async with self._write_lock():
            try:
                await conn.execute(
                    "INSERT INTO bookmarks (conversation_id, name, leaf_id, created_at)"
                    " VALUES (?, ?, ?, ?)",
                    (conversation_id, name, leaf_id, int(time.time() * 1000)),
                )
            except aiosqlite.IntegrityError as exc:
                await conn.rollback()
                raise DuplicateBookmarkError(conversation_id, name) from exc
            await conn.commit()
        self._logger.debug("bookmark_added", conversation_id=conversation_id, name=name)

    async def get(self, conversation_id: str, name: str) -> str:
        """
        Return the message id stored under ``name``.

        Raises:
            BookmarkNotFoundError: If no such bookmark exists.
        """
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT leaf_id FROM bookmarks WHERE conversation_id = ? AND name = ?",
            (conversation_id, name),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise BookmarkNotFoundError(conversation_id, name)
        return row["leaf_id"]

    async def list(self, conversation_id: str) -> dict[str, str]:
        """All bookmarks of a conversation, oldest first."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT name, leaf_id FROM bookmarks WHERE conversation_id = ?"
            " ORDER BY created_at ASC, rowid ASC",
            (conversation_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return {row["name"]: row["leaf_id"] for row in rows}

    async def delete(self, conversation_id: str, name: str) -> None:
        """
        Remove a bookmark.

        Raises:
            BookmarkNotFoundError: If no such bookmark exists.
        """
        conn = self._conn_or_raise()
        async with self._write_lock():
            result = await conn.execute(
                "DELETE FROM bookmarks WHERE conversation_id = ? AND name = ?",
                (conversation_id, name),
            )
            await conn.commit()
        if result.rowcount == 0:
            raise BookmarkNotFoundError(conversation_id, name)
