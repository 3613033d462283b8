"""Tests for OverlayStore and BookmarkStore."""

from __future__ import annotations

import pytest

from canopy.models.config import StoreConfig
from canopy.models.message import ROOT_MESSAGE_ID, Message
from canopy.store.base import CanopyStoreError
from canopy.store.bookmarks import BookmarkNotFoundError, BookmarkStore, DuplicateBookmarkError
from canopy.store.overlay import OverlayStore, chain_phantoms, legacy_keys
from tests.conftest import make_message


def _phantom(msg_id: str | None, text: str, sender: str = "human") -> dict:
    data = make_message(msg_id or "", sender=sender, text=text)
    if msg_id is None:
        del data["uuid"]
    return data


class TestChainPhantoms:
    def test_first_hangs_off_root_and_rest_are_chained(self):
        chained = chain_phantoms(
            [_phantom("P1", "one"), _phantom("P2", "two", "assistant"), _phantom("P3", "three")]
        )
        assert [m.parent_id for m in chained] == [ROOT_MESSAGE_ID, "P1", "P2"]

    def test_missing_ids_are_generated(self):
        chained = chain_phantoms([_phantom(None, "one"), _phantom(None, "two")])
        assert all(m.id for m in chained)
        assert chained[1].parent_id == chained[0].id

    def test_input_messages_not_modified(self):
        original = Message.model_validate(make_message("P1", parent="elsewhere"))
        chain_phantoms([original])
        assert original.parent_id == "elsewhere"


class TestOverlayStore:
    async def test_put_then_get(self, overlay_store):
        """Stored phantoms come back in order and chained."""
        await overlay_store.put("conv-1", [_phantom("P1", "one"), _phantom("P2", "two", "assistant")])
        phantoms = await overlay_store.get("conv-1")
        assert [p.id for p in phantoms] == ["P1", "P2"]
        assert phantoms[0].parent_id == ROOT_MESSAGE_ID
        assert phantoms[1].parent_id == "P1"
        assert phantoms[1].text() == "two"

    async def test_get_absent_returns_none(self, overlay_store):
        assert await overlay_store.get("nobody") is None

    async def test_put_replaces_whole_sequence(self, overlay_store):
        await overlay_store.put("conv-1", [_phantom("P1", "one"), _phantom("P2", "two")])
        await overlay_store.put("conv-1", [_phantom("Q1", "new")])
        assert [p.id for p in await overlay_store.get("conv-1")] == ["Q1"]

    async def test_sequences_are_per_conversation(self, overlay_store):
        await overlay_store.put("conv-1", [_phantom("P1", "one")])
        await overlay_store.put("conv-2", [_phantom("P2", "two")])
        assert [p.id for p in await overlay_store.get("conv-2")] == ["P2"]
        assert sorted(await overlay_store.conversation_ids()) == ["conv-1", "conv-2"]

    async def test_delete(self, overlay_store):
        await overlay_store.put("conv-1", [_phantom("P1", "one")])
        assert await overlay_store.delete("conv-1") is True
        assert await overlay_store.get("conv-1") is None
        assert await overlay_store.delete("conv-1") is False

    async def test_unknown_wire_fields_survive(self, overlay_store):
        """Fields this package does not model are stored and returned as-is."""
        phantom = {**_phantom("P1", "one"), "input_mode": "voice"}
        await overlay_store.put("conv-1", [phantom])
        stored = (await overlay_store.get("conv-1"))[0]
        assert stored.to_wire()["input_mode"] == "voice"

    async def test_survives_reopen(self, config):
        """Data persists across store instances using the same file."""
        first = OverlayStore(config.store)
        await first.initialize()
        await first.put("conv-1", [_phantom("P1", "one")])
        await first.close()

        second = OverlayStore(config.store)
        await second.initialize()
        assert [p.id for p in await second.get("conv-1")] == ["P1"]
        await second.close()

    async def test_uninitialized_store_raises(self, tmp_path):
        store = OverlayStore(StoreConfig(db_path=str(tmp_path / "x.db")))
        with pytest.raises(CanopyStoreError):
            await store.put("conv-1", [])


class TestLegacyMigration:
    async def test_legacy_entry_migrated_on_read(self, overlay_store):
        """A legacy-keyed sequence is moved into the current table on first read."""
        await overlay_store.put_legacy("fork_history_conv-1", [_phantom("P1", "legacy")])
        phantoms = await overlay_store.get("conv-1")
        assert [p.id for p in phantoms] == ["P1"]

        conn = overlay_store._conn_or_raise()
        async with conn.execute("SELECT COUNT(*) AS n FROM legacy_kv") as cursor:
            assert (await cursor.fetchone())["n"] == 0

    async def test_newest_legacy_scheme_preferred(self, overlay_store):
        await overlay_store.put_legacy("fork_history_conv-1", [_phantom("OLD", "old")])
        await overlay_store.put_legacy("phantom_messages_conv-1", [_phantom("NEW", "new")])
        assert [p.id for p in await overlay_store.get("conv-1")] == ["NEW"]

        conn = overlay_store._conn_or_raise()
        async with conn.execute("SELECT COUNT(*) AS n FROM legacy_kv") as cursor:
            assert (await cursor.fetchone())["n"] == 0

    async def test_current_entry_wins_over_legacy(self, overlay_store):
        await overlay_store.put("conv-1", [_phantom("CUR", "current")])
        await overlay_store.put_legacy("phantom_messages_conv-1", [_phantom("OLD", "old")])
        assert await overlay_store.migrate_legacy("conv-1") is False
        assert [p.id for p in await overlay_store.get("conv-1")] == ["CUR"]

    async def test_nothing_to_migrate(self, overlay_store):
        assert await overlay_store.migrate_legacy("conv-1") is False

    async def test_delete_removes_legacy_keys(self, overlay_store):
        await overlay_store.put_legacy("fork_history_conv-1", "[]")
        assert await overlay_store.delete("conv-1") is True

    def test_legacy_key_names(self):
        assert legacy_keys("abc") == ["phantom_messages_abc", "fork_history_abc"]


class TestBookmarkStore:
    async def test_add_and_get(self, bookmark_store):
        await bookmark_store.add("conv-1", "start", "A")
        assert await bookmark_store.get("conv-1", "start") == "A"

    async def test_list_in_creation_order(self, bookmark_store):
        await bookmark_store.add("conv-1", "b", "B")
        await bookmark_store.add("conv-1", "a", "A")
        await bookmark_store.add("conv-2", "other", "X")
        assert await bookmark_store.list("conv-1") == {"b": "B", "a": "A"}
        assert list((await bookmark_store.list("conv-1")).keys()) == ["b", "a"]

    async def test_duplicate_name_raises(self, bookmark_store):
        await bookmark_store.add("conv-1", "start", "A")
        with pytest.raises(DuplicateBookmarkError):
            await bookmark_store.add("conv-1", "start", "B")
        # The failed insert leaves the store usable
        await bookmark_store.add("conv-1", "next", "B")
        assert await bookmark_store.get("conv-1", "start") == "A"

    async def test_same_name_in_other_conversation(self, bookmark_store):
        await bookmark_store.add("conv-1", "start", "A")
        await bookmark_store.add("conv-2", "start", "X")
        assert await bookmark_store.get("conv-2", "start") == "X"

    async def test_blank_name_rejected(self, bookmark_store):
        with pytest.raises(ValueError):
            await bookmark_store.add("conv-1", "  ", "A")

    async def test_delete(self, bookmark_store):
        await bookmark_store.add("conv-1", "start", "A")
        await bookmark_store.delete("conv-1", "start")
        with pytest.raises(BookmarkNotFoundError):
            await bookmark_store.get("conv-1", "start")
        with pytest.raises(BookmarkNotFoundError):
            await bookmark_store.delete("conv-1", "start")

    async def test_shares_pool_with_overlay(self, config, pool, overlay_store):
        """Both stores can use one pooled connection."""
        store = BookmarkStore(config.store, pool=pool)
        await store.initialize()
        await store.add("conv-1", "start", "A")
        await overlay_store.put("conv-1", [_phantom("P1", "one")])
        assert await store.get("conv-1", "start") == "A"
        await store.close()
