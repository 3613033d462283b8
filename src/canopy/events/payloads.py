"""Typed payload definitions for each CanopyEvent.

Usage example::

    from canopy.events.bus import CanopyEvent, EventBus
    from canopy.events.payloads import ForkCompletedPayload

    def on_fork(event: CanopyEvent, payload: ForkCompletedPayload) -> None:
        print(f"{payload['source_conversation_id']} -> {payload['conversation_id']}")

    bus.subscribe(CanopyEvent.FORK_COMPLETED, on_fork)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import NotRequired, TypedDict

# ── Overlay ───────────────────────────────────────────────────────────────────


class PhantomsStoredPayload(TypedDict):
    """Payload for :attr:`CanopyEvent.PHANTOMS_STORED`."""

    conversation_id: str
    count: int


class PhantomsClearedPayload(TypedDict):
    """Payload for :attr:`CanopyEvent.PHANTOMS_CLEARED`."""

    conversation_id: str


class PhantomsInjectedPayload(TypedDict):
    """Payload for :attr:`CanopyEvent.PHANTOMS_INJECTED`."""

    conversation_id: str
    count: int
    """Number of phantom messages prepended."""
    reparented: int
    """Number of remote root messages moved onto the last phantom."""


class ParentRewrittenPayload(TypedDict):
    """Payload for :attr:`CanopyEvent.PARENT_REWRITTEN`."""

    conversation_id: str
    phantom_id: str


# ── Fork lifecycle ────────────────────────────────────────────────────────────


class ForkStartedPayload(TypedDict):
    """Payload for :attr:`CanopyEvent.FORK_STARTED`."""

    fork_id: str
    source_conversation_id: str
    target_message_id: str
    model: str


class ForkStateChangedPayload(TypedDict):
    """Payload for :attr:`CanopyEvent.FORK_STATE_CHANGED`."""

    fork_id: str
    state: str
    """One of the :class:`canopy.fork.pipeline.ForkState` values."""


class ForkAssetDroppedPayload(TypedDict):
    """Payload for :attr:`CanopyEvent.FORK_ASSET_DROPPED`."""

    fork_id: str
    kind: str
    """``"file"`` or ``"sync_source"``."""
    name: str
    error: str


class ForkCompletedPayload(TypedDict):
    """Payload for :attr:`CanopyEvent.FORK_COMPLETED`.

    This is the ``model_dump()`` of a :class:`canopy.models.message.ForkResult`
    plus the ``fork_id``.
    """

    fork_id: str
    conversation_id: str
    name: str
    source_conversation_id: str
    file_ids: list[str]
    sync_ids: list[str]
    dropped_files: list[str]
    message_count: int
    phantom_count: int
    summarized: bool
    elapsed_ms: float


class ForkFailedPayload(TypedDict):
    """Payload for :attr:`CanopyEvent.FORK_FAILED`."""

    fork_id: str
    state: str
    """State in which the failure happened."""
    error: str
    conversation_id: NotRequired[str]
    """Id of the created (and since deleted) conversation, when Create succeeded."""
    deleted: NotRequired[bool]
    """Whether the best-effort delete of that conversation succeeded."""


# ── Navigation ────────────────────────────────────────────────────────────────


class LeafChangedPayload(TypedDict):
    """Payload for :attr:`CanopyEvent.LEAF_CHANGED`."""

    conversation_id: str
    leaf_id: str
