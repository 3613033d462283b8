"""canopy event bus."""

from canopy.events.bus import CanopyEvent, EventBus, Handler
from canopy.events.payloads import (
    ForkAssetDroppedPayload,
    ForkCompletedPayload,
    ForkFailedPayload,
    ForkStartedPayload,
    ForkStateChangedPayload,
    LeafChangedPayload,
    ParentRewrittenPayload,
    PhantomsClearedPayload,
    PhantomsInjectedPayload,
    PhantomsStoredPayload,
)

__all__ = [
    "CanopyEvent",
    "EventBus",
    "Handler",
    "ForkAssetDroppedPayload",
    "ForkCompletedPayload",
    "ForkFailedPayload",
    "ForkStartedPayload",
    "ForkStateChangedPayload",
    "LeafChangedPayload",
    "ParentRewrittenPayload",
    "PhantomsClearedPayload",
    "PhantomsInjectedPayload",
    "PhantomsStoredPayload",
]
