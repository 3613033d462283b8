"""In-process pub/sub event bus for overlay, fork and navigation events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["CanopyEvent", dict[str, Any]], None | Awaitable[None]]


class CanopyEvent(StrEnum):
    """All event types published by canopy components.

    Typed payloads live in :mod:`canopy.events.payloads`.

    ``PHANTOMS_STORED`` / ``PHANTOMS_CLEARED``
        ``conversation_id``; ``count`` for stores.

    ``PHANTOMS_INJECTED``
        Published by the read rule each time a response is augmented.

    ``PARENT_REWRITTEN``
        Published by the write rule when a completion's parent is moved from
        the last phantom to the root sentinel.

    ``FORK_*``
        Lifecycle of one fork operation, keyed by ``fork_id``.

    ``LEAF_CHANGED``
        The remote current-leaf pointer was moved.
    """

    PHANTOMS_STORED = "phantoms.stored"
    PHANTOMS_CLEARED = "phantoms.cleared"
    PHANTOMS_INJECTED = "phantoms.injected"

    PARENT_REWRITTEN = "completion.parent_rewritten"

    FORK_STARTED = "fork.started"
    FORK_STATE_CHANGED = "fork.state_changed"
    FORK_ASSET_DROPPED = "fork.asset_dropped"
    FORK_COMPLETED = "fork.completed"
    FORK_FAILED = "fork.failed"

    LEAF_CHANGED = "navigation.leaf_changed"


class EventBus:
    """
    In-process pub/sub for canopy events.

    Handlers registered for one event run before catch-all handlers, in
    registration order. A sync handler runs inside ``publish()``; an async one
    is turned into a task on the running loop (and dropped when no loop is
    running). Failures in either kind are logged as ``event_handler_error``
    and never propagate to the component that published.

    Example::

        bus = EventBus()

        def on_fork(event, payload):
            print(f"Forked into {payload['conversation_id']}")

        bus.subscribe(CanopyEvent.FORK_COMPLETED, on_fork)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._by_event: dict[CanopyEvent, list[Handler]] = {}
        self._catch_all: list[Handler] = []
        self._tasks: set[asyncio.Task[None]] = set()
        self._logger = logger or structlog.get_logger("canopy.events")

    def subscribe(self, event: CanopyEvent, handler: Handler) -> None:
        """Register a sync or async handler for ``event``."""
        self._by_event.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        self._catch_all.append(handler)

    def unsubscribe(self, event: CanopyEvent, handler: Handler) -> None:
        """Remove ``handler`` from ``event``. Unknown handlers are ignored."""
        registered = self._by_event.get(event)
        if registered and handler in registered:
            registered.remove(handler)

    def unsubscribe_all(self, handler: Handler) -> None:
        if handler in self._catch_all:
            self._catch_all.remove(handler)

    def publish(self, event: CanopyEvent, payload: dict[str, Any]) -> None:
        """
        Deliver ``payload`` to every handler interested in ``event``.

        Args:
            event: The event type to publish.
            payload: Event-specific data; see :mod:`canopy.events.payloads`.
        """
        for handler in (*self._by_event.get(event, ()), *self._catch_all):
            self._deliver(handler, event, payload)

    def _deliver(self, handler: Handler, event: CanopyEvent, payload: dict[str, Any]) -> None:
        try:
            outcome = handler(event, payload)
        except Exception as exc:
            self._report(handler, event, exc)
            return
        if not asyncio.iscoroutine(outcome):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            outcome.close()
            return
        task = loop.create_task(outcome)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._settle(t, handler, event))

    def _settle(self, task: asyncio.Task[None], handler: Handler, event: CanopyEvent) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, Exception):
            self._report(handler, event, exc)

    def _report(self, handler: Handler, event: CanopyEvent, exc: Exception) -> None:
        self._logger.error(
            "event_handler_error",
            event_type=str(event),
            handler=getattr(handler, "__qualname__", repr(handler)),
            error=str(exc),
        )
