"""End-to-end tests for CanopyService over the fake remote."""

from __future__ import annotations

import httpx
import pytest

import canopy
from canopy import CanopyService
from canopy.events.bus import CanopyEvent, EventBus
from canopy.models.config import CanopyConfig, StoreConfig
from canopy.models.message import PHANTOM_MARKER
from tests.conftest import make_message


@pytest.fixture
async def service(config, remote, event_bus):
    async with CanopyService.open(
        config, inner_transport=httpx.MockTransport(remote.handler), event_bus=event_bus
    ) as svc:
        yield svc


class TestLifecycle:
    async def test_open_and_close(self, config, remote):
        async with CanopyService.open(
            config, inner_transport=httpx.MockTransport(remote.handler)
        ) as svc:
            assert isinstance(svc.event_bus, EventBus)
            assert svc.config.remote.org_id == "org-test"

    async def test_create_then_close(self, config, remote):
        svc = await CanopyService.create(config, inner_transport=httpx.MockTransport(remote.handler))
        async with svc:
            assert svc.pipeline is not None
            assert svc.navigator is not None

    async def test_db_path_override(self, tmp_path, remote):
        db_path = str(tmp_path / "override.db")
        async with CanopyService.open(
            db_path=db_path, inner_transport=httpx.MockTransport(remote.handler)
        ) as svc:
            assert svc.config.store.db_path == db_path

    async def test_db_path_conflict_raises(self, tmp_path):
        config = CanopyConfig(store=StoreConfig(db_path=str(tmp_path / "a.db")))
        with pytest.raises(ValueError):
            await CanopyService.create(config, db_path=str(tmp_path / "b.db"))

    def test_version(self):
        assert canopy.__version__ == "0.1.0"


class TestOverlay:
    async def test_store_and_view(self, service, event_bus, linear_conversation):
        stored = await service.store_phantoms(
            "conv-1", [make_message("P1", text="recalled"), make_message("P2", sender="assistant")]
        )
        assert [p.parent_id for p in stored][1] == "P1"

        view = await service.get_overlay_view("conv-1")
        assert [m.id for m in view.chat_messages] == ["P1", "P2", "A", "B", "C"]
        assert view.chat_messages[2].parent_id == "P2"
        assert view.chat_messages[0].text() == "recalled"
        assert PHANTOM_MARKER in view.chat_messages[0].content[0]["text"]
        assert (
            CanopyEvent.PHANTOMS_STORED,
            {"conversation_id": "conv-1", "count": 2},
        ) in event_bus.collected

    async def test_clear(self, service, event_bus, linear_conversation):
        await service.store_phantoms("conv-1", [make_message("P1")])
        assert await service.clear_phantoms("conv-1") is True
        assert await service.get_phantoms("conv-1") is None
        assert await service.clear_phantoms("conv-1") is False
        cleared = [p for e, p in event_bus.collected if e == CanopyEvent.PHANTOMS_CLEARED]
        assert cleared == [{"conversation_id": "conv-1"}]

        view = await service.get_overlay_view("conv-1")
        assert [m.id for m in view.chat_messages] == ["A", "B", "C"]

    async def test_reply_to_phantom_lands_at_root(self, service, remote, linear_conversation):
        await service.store_phantoms("conv-1", [make_message("P1")])
        await service.client.send_completion("conv-1", "continue", parent_message_id="P1")
        assert remote.completions[-1][1]["parent_message_uuid"] != "P1"

        view = await service.get_overlay_view("conv-1")
        new_turn = next(m for m in view.chat_messages if m.text() == "continue")
        assert new_turn.parent_id == "P1"


class TestForkAndNavigate:
    async def test_fork_then_navigate(self, service, remote, linear_conversation):
        """A fork's history is visible and its deepest leaf is the seed reply."""
        result = await service.fork_from("conv-1", "B", "model-x")
        new_id = result.conversation_id

        view = await service.get_overlay_view(new_id)
        assert [m.text() for m in view.chat_messages[:2]] == ["Hello there", "General Kenobi"]

        leaf = await service.go_to_deepest(new_id)
        assert leaf.leaf_id == remote.conversations[new_id]["chat_messages"][-1]["uuid"]
        assert leaf.depth == 4

    async def test_bookmarks_through_service(self, service, remote, linear_conversation):
        await service.add_bookmark("conv-1", "start", "A")
        assert await service.bookmarks("conv-1") == {"start": "A"}
        assert (await service.go_to_bookmark("conv-1", "start")).leaf_id == "C"
        await service.remove_bookmark("conv-1", "start")
        assert await service.bookmarks("conv-1") == {}

    async def test_go_to_latest_and_leaf(self, service, remote, linear_conversation):
        assert await service.go_to_latest("conv-1") == "C"
        assert (await service.go_to_leaf("conv-1", "A")).leaf_id == "C"
        assert (await service.find_deepest_leaf_from("conv-1", "B")).depth == 1

    async def test_cancel_unknown_fork(self, service):
        assert service.cancel_fork("fork_missing") is False
