"""Shared fixtures for canopy tests."""

from __future__ import annotations

import asyncio
import json
import re
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest
import pytest_asyncio

from canopy.events.bus import CanopyEvent, EventBus
from canopy.fork.pipeline import ForkPipeline
from canopy.models.config import CanopyConfig, ForkConfig, RemoteConfig, StoreConfig
from canopy.models.message import ROOT_MESSAGE_ID, Message
from canopy.navigation import Navigator
from canopy.remote.client import ConversationClient, create_http_client
from canopy.store.bookmarks import BookmarkStore
from canopy.store.overlay import OverlayStore
from canopy.store.pool import StorePool
from canopy.transport.middleware import CompletionParentRule, PhantomReadRule

ORG_ID = "org-test"
BASE_URL = "https://remote.test"
_EPOCH = datetime(2024, 1, 1, tzinfo=UTC)


def ts(seconds: int) -> str:
    """ISO timestamp ``seconds`` after a fixed epoch."""
    return (_EPOCH + timedelta(seconds=seconds)).isoformat()


def make_message(
    msg_id: str,
    parent: str = ROOT_MESSAGE_ID,
    sender: str = "human",
    text: str | None = None,
    created: int = 0,
    **extra: Any,
) -> dict[str, Any]:
    """Helper to create a wire-shaped tree record."""
    return {
        "uuid": msg_id,
        "parent_message_uuid": parent,
        "sender": sender,
        "content": [{"type": "text", "text": text if text is not None else f"text of {msg_id}"}],
        "created_at": ts(created),
        "attachments": [],
        "files_v2": [],
        "files": [],
        "sync_sources": [],
        **extra,
    }


def make_tree(*specs: tuple[str, str | None]) -> list[Message]:
    """
    Build parsed messages from ``(id, parent_id)`` pairs.

    A ``None`` parent means the root sentinel. Senders alternate by
    position and timestamps increase in the given order.
    """
    return [
        Message.model_validate(
            make_message(
                msg_id,
                parent or ROOT_MESSAGE_ID,
                "human" if index % 2 == 0 else "assistant",
                created=index,
            )
        )
        for index, (msg_id, parent) in enumerate(specs)
    ]


def image_file(file_id: str, name: str) -> dict[str, Any]:
    return {
        "file_kind": "image",
        "file_uuid": file_id,
        "file_name": name,
        "preview_asset": {"url": f"/files/{file_id}/preview"},
        "thumbnail_asset": {"url": f"/files/{file_id}/thumbnail"},
    }


def document_file(file_id: str, name: str) -> dict[str, Any]:
    return {
        "file_kind": "document",
        "file_uuid": file_id,
        "file_name": name,
        "document_asset": {"url": f"/files/{file_id}/document"},
    }


# ── Fake Remote Service ────────────────────────────────────────────────────────


class FakeRemote:
    """
    In-memory stand-in for the remote conversation service.

    Served through ``httpx.MockTransport(remote.handler)``. Every request is
    recorded; ``fail`` maps a route name (``get``, ``create``, ``completion``,
    ``status``, ``set_leaf``, ``delete``, ``upload``, ``sync``, ``download``)
    to an HTTP status that route answers with instead. ``download_gate`` holds
    every download and ``download_gates`` holds single paths until set.
    """

    def __init__(self) -> None:
        self.conversations: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.completions: list[tuple[str, dict[str, Any]]] = []
        self.created: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.files: dict[str, bytes] = {}
        self.uploads: list[str] = []
        self.sync_registrations: list[dict[str, Any]] = []
        self.fail: dict[str, int] = {}
        self.failing_downloads: set[str] = set()
        self.pending_polls = 0
        self.status_error: dict[str, Any] | None = None
        self.summary_reply = "Condensed summary of the earlier turns."
        self.download_gate: asyncio.Event | None = None
        self.download_gates: dict[str, asyncio.Event] = {}
        self._clock = 1000

    # ── Seeding ────────────────────────────────────────────────────────────────

    def add_conversation(
        self,
        conversation_id: str,
        messages: list[dict[str, Any]],
        *,
        name: str = "Source chat",
        project_id: str | None = None,
        current_leaf: str | None = None,
    ) -> dict[str, Any]:
        conversation = {
            "uuid": conversation_id,
            "name": name,
            "updated_at": ts(0),
            "current_leaf_message_uuid": current_leaf or (messages[-1]["uuid"] if messages else None),
            "chat_messages": [dict(m) for m in messages],
            "project": {"uuid": project_id} if project_id else None,
        }
        self.conversations[conversation_id] = conversation
        return conversation

    def requests_to(self, method: str, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.endswith(suffix)]

    def _tick(self) -> str:
        self._clock += 1
        return ts(self._clock)

    # ── Routing ────────────────────────────────────────────────────────────────

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = [p for p in request.url.path.split("/") if p]

        if parts and parts[0] == "files":
            return await self._download(request)
        if parts[:1] == ["api"] and parts[-1:] == ["upload"]:
            return self._upload(request)
        if parts[-2:] == ["sync", "chat"]:
            return self._sync(request)
        if "chat_conversations" not in parts:
            return httpx.Response(404, json={"error": "not found"})

        tail = parts[parts.index("chat_conversations") + 1 :]
        if not tail:
            return self._create(request)
        conversation_id = tail[0]
        action = tail[1] if len(tail) > 1 else None

        if action is None and request.method == "GET":
            return self._get(conversation_id)
        if action is None and request.method == "DELETE":
            return self._delete(conversation_id)
        if action == "completion":
            return self._completion(conversation_id, request)
        if action == "completion_status":
            return self._status()
        if action == "current_leaf_message_uuid":
            return self._set_leaf(conversation_id, request)
        return httpx.Response(404, json={"error": "unknown route"})

    def _failed(self, route: str) -> httpx.Response | None:
        status = self.fail.get(route)
        if status is None:
            return None
        return httpx.Response(status, json={"error": f"{route} failed"})

    def _get(self, conversation_id: str) -> httpx.Response:
        if failure := self._failed("get"):
            return failure
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(200, json=json.loads(json.dumps(conversation)))

    def _create(self, request: httpx.Request) -> httpx.Response:
        if failure := self._failed("create"):
            return failure
        body = json.loads(request.content)
        self.created.append(body)
        self.add_conversation(
            body["uuid"], [], name=body["name"], project_id=body.get("project_uuid")
        )
        return httpx.Response(201, json={"uuid": body["uuid"], "name": body["name"]})

    def _delete(self, conversation_id: str) -> httpx.Response:
        if failure := self._failed("delete"):
            return failure
        self.deleted.append(conversation_id)
        self.conversations.pop(conversation_id, None)
        return httpx.Response(204)

    def _completion(self, conversation_id: str, request: httpx.Request) -> httpx.Response:
        if failure := self._failed("completion"):
            return failure
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return httpx.Response(404, json={"error": "not found"})
        body = json.loads(request.content)
        self.completions.append((conversation_id, body))

        human_id = str(uuid.uuid4())
        reply = (
            self.summary_reply
            if conversation["name"].startswith("Temp_Summary_")
            else "Acknowledged"
        )
        conversation["chat_messages"].extend(
            [
                {
                    **make_message(human_id, body["parent_message_uuid"], "human", body["prompt"]),
                    "created_at": self._tick(),
                    "attachments": body.get("attachments", []),
                },
                {
                    **make_message(str(uuid.uuid4()), human_id, "assistant", reply),
                    "created_at": self._tick(),
                },
            ]
        )
        conversation["current_leaf_message_uuid"] = conversation["chat_messages"][-1]["uuid"]
        return httpx.Response(
            200,
            text='event: completion\ndata: {"type": "completion"}\n\n',
            headers={"content-type": "text/event-stream"},
        )

    def _status(self) -> httpx.Response:
        if failure := self._failed("status"):
            return failure
        if self.status_error is not None:
            return httpx.Response(200, json={"is_pending": False, "is_error": True, **self.status_error})
        pending = self.pending_polls > 0
        if pending:
            self.pending_polls -= 1
        return httpx.Response(200, json={"is_pending": pending, "is_error": False})

    def _set_leaf(self, conversation_id: str, request: httpx.Request) -> httpx.Response:
        if failure := self._failed("set_leaf"):
            return failure
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return httpx.Response(404, json={"error": "not found"})
        leaf_id = json.loads(request.content)["current_leaf_message_uuid"]
        if leaf_id not in {m["uuid"] for m in conversation["chat_messages"]}:
            return httpx.Response(400, json={"error": "unknown message"})
        conversation["current_leaf_message_uuid"] = leaf_id
        return httpx.Response(202, json={})

    async def _download(self, request: httpx.Request) -> httpx.Response:
        if self.download_gate is not None:
            await self.download_gate.wait()
        if (gate := self.download_gates.get(request.url.path)) is not None:
            await gate.wait()
        if failure := self._failed("download"):
            return failure
        path = request.url.path
        if path in self.failing_downloads or path not in self.files:
            return httpx.Response(404, json={"error": "gone"})
        return httpx.Response(
            200, content=self.files[path], headers={"content-type": "application/octet-stream"}
        )

    def _upload(self, request: httpx.Request) -> httpx.Response:
        if failure := self._failed("upload"):
            return failure
        match = re.search(rb'filename="([^"]*)"', request.content)
        self.uploads.append(match.group(1).decode() if match else "")
        return httpx.Response(200, json={"file_uuid": f"uploaded-{len(self.uploads)}"})

    def _sync(self, request: httpx.Request) -> httpx.Response:
        if failure := self._failed("sync"):
            return failure
        body = json.loads(request.content)
        self.sync_registrations.append(body)
        return httpx.Response(200, json={"uuid": f"sync-{len(self.sync_registrations)}"})


# ── Fixtures ───────────────────────────────────────────────────────────────────


@pytest.fixture
def config(tmp_path):
    """CanopyConfig with a temp database, a fake remote host and no delays."""
    return CanopyConfig(
        remote=RemoteConfig(
            base_url=BASE_URL, org_id=ORG_ID, poll_interval=0, completion_timeout=5
        ),
        store=StoreConfig(db_path=str(tmp_path / "test.db")),
        fork=ForkConfig(settle_delay=0),
    )


@pytest_asyncio.fixture
async def pool(config):
    """StorePool for the test database. Closed after each test."""
    p = StorePool()
    yield p
    await p.close_all()


@pytest_asyncio.fixture
async def overlay_store(config, pool):
    s = OverlayStore(config.store, pool=pool)
    await s.initialize()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def bookmark_store(config, pool):
    s = BookmarkStore(config.store, pool=pool)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[CanopyEvent, dict[str, Any]]] = []

    def _collect(event: CanopyEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def remote():
    return FakeRemote()


@pytest_asyncio.fixture
async def client(config, remote, overlay_store, event_bus):
    """ConversationClient routed through the interception rules to the fake remote."""
    http = create_http_client(
        config.remote,
        [PhantomReadRule(overlay_store, event_bus), CompletionParentRule(overlay_store, event_bus)],
        inner=httpx.MockTransport(remote.handler),
    )
    c = ConversationClient(http, config.remote)
    yield c
    await c.aclose()


@pytest.fixture
def pipeline(client, overlay_store, config, event_bus):
    return ForkPipeline(client, overlay_store, config.fork, event_bus=event_bus)


@pytest.fixture
def navigator(client, overlay_store, bookmark_store, event_bus):
    return Navigator(client, overlay_store, bookmark_store, event_bus=event_bus)


@pytest.fixture
def linear_conversation(remote):
    """Conversation ``conv-1``: A (human) -> B (assistant) -> C (human)."""
    return remote.add_conversation(
        "conv-1",
        [
            make_message("A", sender="human", text="Hello there", created=1),
            make_message("B", "A", "assistant", "General Kenobi", created=2),
            make_message("C", "B", "human", "You are a bold one", created=3),
        ],
    )
