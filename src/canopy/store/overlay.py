"""Persistent phantom-message sequences, keyed by conversation id."""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Sequence
from typing import Any

from canopy.models.message import ROOT_MESSAGE_ID, Message
from canopy.store.base import Repository

PhantomInput = Message | dict[str, Any]

LEGACY_PREFIXES: tuple[str, ...] = ("phantom_messages_", "fork_history_")
"""Legacy key prefixes, most recent scheme first."""


def legacy_keys(conversation_id: str) -> list[str]:
    return [f"{prefix}{conversation_id}" for prefix in LEGACY_PREFIXES]


def chain_phantoms(phantoms: Sequence[PhantomInput]) -> list[Message]:
    """
    Validate phantom inputs and link them into a single chain.

    The first phantom hangs off the root sentinel and every following phantom
    off its predecessor. Inputs without an id get a fresh UUID.
    """
    chained: list[Message] = []
    parent_id = ROOT_MESSAGE_ID
    for item in phantoms:
        if isinstance(item, Message):
            message = item.model_copy(deep=True)
        else:
            data = dict(item)
            if not data.get("uuid") and not data.get("id"):
                data["uuid"] = str(uuid.uuid4())
            message = Message.model_validate(data)
        message.parent_id = parent_id
        chained.append(message)
        parent_id = message.id
    return chained


class OverlayStore(Repository):
    """
    Typed repository of phantom sequences.

    Each conversation owns at most one ordered, internally chained sequence.
    ``put`` replaces the whole sequence; there is no partial update.

    Usage::

        overlay = OverlayStore(StoreConfig(), pool=pool)
        await overlay.initialize()
        await overlay.put(conversation_id, [{"sender": "human", "content": [...]}])
        phantoms = await overlay.get(conversation_id)
    """

    _logger_name = "canopy.store.overlay"

    async def put(self, conversation_id: str, phantoms: Sequence[PhantomInput]) -> list[Message]:
        """
        Replace the phantom sequence of a conversation.

        Args:
            conversation_id: Remote conversation id.
            phantoms: Messages (or wire-shaped dicts) in display order.

        Returns:
            The stored, re-chained messages.
        """
        conn = self._conn_or_raise()
        chained = chain_phantoms(phantoms)
        payload = json.dumps([m.to_wire() for m in chained])
        now = int(time.time() * 1000)
        async with self._write_lock():
            await conn.execute(
                """
                INSERT INTO phantom_sequences (conversation_id, messages, message_count, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(conversation_id) DO UPDATE SET
                    messages=excluded.messages,
                    message_count=excluded.message_count,
                    updated_at=excluded.updated_at
                """,
                (conversation_id, payload, len(chained), now),
            )
            await conn.commit()
        self._logger.info("phantoms_stored", conversation_id=conversation_id, count=len(chained))
        return chained

    async def get(self, conversation_id: str) -> list[Message] | None:
        """
        Return the phantom sequence, or None when the conversation has none.

        Legacy-keyed data for the conversation is migrated first.
        """
        await self.migrate_legacy(conversation_id)
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT messages FROM phantom_sequences WHERE conversation_id = ?",
            (conversation_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return [Message.model_validate(m) for m in json.loads(row["messages"])]

    async def delete(self, conversation_id: str) -> bool:
        """
        Remove phantom data, including any legacy-keyed copy.

        Returns:
            True if anything was removed.
        """
        conn = self._conn_or_raise()
        keys = legacy_keys(conversation_id)
        async with self._write_lock():
            result = await conn.execute(
                "DELETE FROM phantom_sequences WHERE conversation_id = ?", (conversation_id,)
            )
            legacy = await conn.execute(
                f"DELETE FROM legacy_kv WHERE key IN ({','.join('?' * len(keys))})", keys
            )
            await conn.commit()
        removed = (result.rowcount or 0) + (legacy.rowcount or 0) > 0
        self._logger.info("phantoms_cleared", conversation_id=conversation_id, removed=removed)
        return removed

    clear = delete

    async def conversation_ids(self) -> list[str]:
        """Ids of every conversation with a stored phantom sequence."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT conversation_id FROM phantom_sequences ORDER BY updated_at ASC"
        ) as cursor:
            rows = await cursor.fetchall()
        return [row["conversation_id"] for row in rows]

    # ── Legacy Key Scheme ──────────────────────────────────────────────────────

    async def put_legacy(self, key: str, value: str | list[dict[str, Any]]) -> None:
        """Write a raw entry under the legacy flat key scheme."""
        conn = self._conn_or_raise()
        raw = value if isinstance(value, str) else json.dumps(value)
        async with self._write_lock():
            await conn.execute(
                "INSERT OR REPLACE INTO legacy_kv (key, value) VALUES (?, ?)", (key, raw)
            )
            await conn.commit()

    async def migrate_legacy(self, conversation_id: str) -> bool:
        """
        Move legacy-keyed phantom data into the current table.

        The newest legacy scheme wins when both keys are present, and both
        legacy keys are removed once the data is copied. Nothing happens when
        the conversation already has a current entry or no legacy data exists.

        Returns:
            True if data was migrated.
        """
        conn = self._conn_or_raise()
        keys = legacy_keys(conversation_id)
        async with self._write_lock():
            async with conn.execute(
                "SELECT 1 FROM phantom_sequences WHERE conversation_id = ?", (conversation_id,)
            ) as cursor:
                if await cursor.fetchone() is not None:
                    return False

            raw: str | None = None
            for key in keys:
                async with conn.execute("SELECT value FROM legacy_kv WHERE key = ?", (key,)) as cur:
                    row = await cur.fetchone()
                if row is not None:
                    raw = row["value"]
                    break
            if raw is None:
                return False

            chained = chain_phantoms(json.loads(raw))
            await conn.execute(
                """
                INSERT INTO phantom_sequences (conversation_id, messages, message_count, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    conversation_id,
                    json.dumps([m.to_wire() for m in chained]),
                    len(chained),
                    int(time.time() * 1000),
                ),
            )
            await conn.execute(
                f"DELETE FROM legacy_kv WHERE key IN ({','.join('?' * len(keys))})", keys
            )
            await conn.commit()

        self._logger.info("phantoms_migrated", conversation_id=conversation_id, count=len(chained))
        return True
