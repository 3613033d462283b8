"""CanopyService: the primary public API entry point."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog

from canopy.events.bus import CanopyEvent, EventBus, Handler
from canopy.fork.pipeline import ForkPipeline
from canopy.models.config import CanopyConfig, ForkOptions, StoreConfig
from canopy.models.message import ConversationData, ForkResult, LeafResult, Message
from canopy.navigation import Navigator
from canopy.remote.client import ConversationClient, create_http_client
from canopy.store.bookmarks import BookmarkStore
from canopy.store.overlay import OverlayStore, PhantomInput
from canopy.store.pool import StorePool
from canopy.transport.middleware import CompletionParentRule, PhantomReadRule


class CanopyService:
    """
    Phantom overlay, fork synthesis and branch navigation for one remote account.

    Every collaborator is built once in :meth:`create` and handed to the
    components that need it: one ``httpx.AsyncClient`` routed through the
    interception layer, one overlay store, one bookmark store and one event
    bus.

    Example::

        config = CanopyConfig(remote=RemoteConfig(org_id="org-123"))
        async with CanopyService.open(config) as canopy:
            view = await canopy.get_overlay_view(conversation_id)
            result = await canopy.fork_from(conversation_id, message_id, "model-x")
            await canopy.go_to_deepest(result.conversation_id)

    Pass ``inner_transport=httpx.MockTransport(handler)`` to run against an
    in-process fake of the remote service.
    """

    def __init__(
        self,
        config: CanopyConfig,
        overlay: OverlayStore,
        bookmarks: BookmarkStore,
        client: ConversationClient,
        pipeline: ForkPipeline,
        navigator: Navigator,
        event_bus: EventBus,
    ) -> None:
        self._config = config
        self._overlay = overlay
        self._bookmarks = bookmarks
        self._client = client
        self._pipeline = pipeline
        self._navigator = navigator
        self._event_bus = event_bus
        self._logger = structlog.get_logger("canopy.service")

    @classmethod
    async def create(
        cls,
        config: CanopyConfig | None = None,
        *,
        db_path: str | None = None,
        inner_transport: httpx.AsyncBaseTransport | None = None,
        pool: StorePool | None = None,
        event_bus: EventBus | None = None,
    ) -> CanopyService:
        """
        Build and initialize a service.

        Args:
            config: canopy configuration. Defaults to ``CanopyConfig()``.
            db_path: Override database path (useful for testing). Raises
                ``ValueError`` if ``config.store.db_path`` is also changed.
            inner_transport: Transport that performs the real HTTP I/O.
                Defaults to ``httpx.AsyncHTTPTransport()``.
            pool: Optional shared connection pool. The caller is responsible
                for calling ``pool.close_all()`` at shutdown.
            event_bus: Bus to publish on. A private one is created when omitted.

        Returns:
            An initialized service.

        Raises:
            ValueError: If both ``db_path`` and ``config.store.db_path`` are supplied.
            aiosqlite.Error: If the database cannot be initialized.
        """
        cfg = config or CanopyConfig()
        if db_path is not None:
            if config is not None and cfg.store.db_path != StoreConfig().db_path:
                raise ValueError(
                    "Specify db_path either via db_path= or config.store.db_path, not both."
                )
            cfg = cfg.model_copy(
                update={"store": cfg.store.model_copy(update={"db_path": db_path})}
            )

        bus = event_bus or EventBus()
        overlay = OverlayStore(cfg.store, pool=pool)
        bookmarks = BookmarkStore(cfg.store, pool=pool)
        await overlay.initialize()
        await bookmarks.initialize()

        http = create_http_client(
            cfg.remote,
            [PhantomReadRule(overlay, bus), CompletionParentRule(overlay, bus)],
            inner=inner_transport,
        )
        client = ConversationClient(http, cfg.remote)
        pipeline = ForkPipeline(client, overlay, cfg.fork, event_bus=bus)
        navigator = Navigator(client, overlay, bookmarks, event_bus=bus)

        service = cls(cfg, overlay, bookmarks, client, pipeline, navigator, bus)
        structlog.get_logger("canopy.service").info(
            "service_created", base_url=cfg.remote.base_url, db_path=cfg.store.db_path
        )
        return service

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        config: CanopyConfig | None = None,
        *,
        db_path: str | None = None,
        inner_transport: httpx.AsyncBaseTransport | None = None,
        pool: StorePool | None = None,
        event_bus: EventBus | None = None,
    ) -> AsyncGenerator[CanopyService, None]:
        """
        Create a service and use it as an async context manager.

        All parameters are identical to :meth:`create`. The HTTP client and
        the store connections are released when the block exits.
        """
        service = await cls.create(
            config,
            db_path=db_path,
            inner_transport=inner_transport,
            pool=pool,
            event_bus=event_bus,
        )
        try:
            yield service
        finally:
            await service.close()

    async def close(self) -> None:
        """Release the HTTP client and the store connections."""
        await self._client.aclose()
        await self._overlay.close()
        await self._bookmarks.close()
        self._logger.info("service_closed")

    async def __aenter__(self) -> CanopyService:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ── Components ─────────────────────────────────────────────────────────────

    @property
    def config(self) -> CanopyConfig:
        return self._config

    @property
    def client(self) -> ConversationClient:
        """Remote client whose reads and writes pass through the overlay."""
        return self._client

    @property
    def pipeline(self) -> ForkPipeline:
        return self._pipeline

    @property
    def navigator(self) -> Navigator:
        return self._navigator

    @property
    def event_bus(self) -> EventBus:
        """The event bus for this service. Subscribe to monitor events."""
        return self._event_bus

    def subscribe(self, event: CanopyEvent, handler: Handler) -> None:
        """Convenience wrapper for ``service.event_bus.subscribe()``."""
        self._event_bus.subscribe(event, handler)

    # ── Overlay ────────────────────────────────────────────────────────────────

    async def get_overlay_view(self, conversation_id: str) -> ConversationData:
        """Read a conversation with its phantom messages spliced in."""
        return await self._client.get_conversation(conversation_id)

    async def store_phantoms(
        self, conversation_id: str, phantoms: Sequence[PhantomInput]
    ) -> list[Message]:
        """Replace the phantom sequence of a conversation."""
        stored = await self._overlay.put(conversation_id, phantoms)
        self._event_bus.publish(
            CanopyEvent.PHANTOMS_STORED,
            {"conversation_id": conversation_id, "count": len(stored)},
        )
        return stored

    async def get_phantoms(self, conversation_id: str) -> list[Message] | None:
        return await self._overlay.get(conversation_id)

    async def clear_phantoms(self, conversation_id: str) -> bool:
        """Forget the phantom sequence of a conversation. Returns True if one existed."""
        removed = await self._overlay.delete(conversation_id)
        if removed:
            self._event_bus.publish(
                CanopyEvent.PHANTOMS_CLEARED, {"conversation_id": conversation_id}
            )
        return removed

    # ── Forking ────────────────────────────────────────────────────────────────

    async def fork_from(
        self,
        conversation_id: str,
        target_message_id: str,
        model: str,
        *,
        options: ForkOptions | None = None,
        style: dict[str, Any] | None = None,
        fork_id: str | None = None,
    ) -> ForkResult:
        """See :meth:`canopy.fork.pipeline.ForkPipeline.fork_from`."""
        return await self._pipeline.fork_from(
            conversation_id,
            target_message_id,
            model,
            options=options,
            style=style,
            fork_id=fork_id,
        )

    def cancel_fork(self, fork_id: str) -> bool:
        return self._pipeline.cancel(fork_id)

    # ── Navigation ─────────────────────────────────────────────────────────────

    async def find_deepest_leaf_from(self, conversation_id: str, message_id: str) -> LeafResult:
        return await self._navigator.find_deepest_leaf_from(conversation_id, message_id)

    async def go_to_deepest(self, conversation_id: str) -> LeafResult:
        return await self._navigator.go_to_deepest(conversation_id)

    async def go_to_leaf(self, conversation_id: str, message_id: str) -> LeafResult:
        return await self._navigator.go_to_leaf(conversation_id, message_id)

    async def go_to_latest(self, conversation_id: str) -> str:
        return await self._navigator.go_to_latest(conversation_id)

    async def set_current_leaf(self, conversation_id: str, leaf_id: str) -> None:
        await self._navigator.set_current_leaf(conversation_id, leaf_id)

    async def add_bookmark(
        self, conversation_id: str, name: str, leaf_id: str | None = None
    ) -> str:
        return await self._navigator.add_bookmark(conversation_id, name, leaf_id)

    async def remove_bookmark(self, conversation_id: str, name: str) -> None:
        await self._navigator.remove_bookmark(conversation_id, name)

    async def bookmarks(self, conversation_id: str) -> dict[str, str]:
        return await self._navigator.bookmarks(conversation_id)

    async def go_to_bookmark(self, conversation_id: str, name: str) -> LeafResult:
        return await self._navigator.go_to_bookmark(conversation_id, name)
