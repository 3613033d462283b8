"""
canopy: phantom message overlay and fork synthesis for remote conversation trees.

Primary entry point::

    from canopy import CanopyService, CanopyConfig, RemoteConfig

    config = CanopyConfig(remote=RemoteConfig(org_id="org-123"))
    async with CanopyService.open(config) as canopy:
        result = await canopy.fork_from(conversation_id, message_id, "model-x")
        print(result.conversation_id)
"""

from canopy.service import CanopyService
from canopy.ids import make_id
from canopy.models import (
    CanopyConfig,
    RemoteConfig,
    StoreConfig,
    ForkConfig,
    ForkOptions,
    PHANTOM_MARKER,
    ROOT_MESSAGE_ID,
    Message,
    ConversationData,
    LeafResult,
    FileDescriptor,
    SyncSource,
    ForkContext,
    ForkResult,
)
from canopy.errors import (
    CanopyError,
    MalformedTreeError,
    NetworkError,
    ParseError,
    CompletionFailed,
    NavigationFailed,
    ForkCancelled,
)
from canopy.events.bus import EventBus, CanopyEvent
from canopy.fork.pipeline import ForkPipeline, ForkState
from canopy.navigation import Navigator
from canopy.remote.client import ConversationClient
from canopy.store import (
    OverlayStore,
    BookmarkStore,
    StorePool,
    CanopyStoreError,
    DuplicateBookmarkError,
    BookmarkNotFoundError,
)
from canopy.transport import InterceptingTransport, InterceptionRule

__version__ = "0.1.0"

__all__ = [
    # Core
    "CanopyService",
    "make_id",
    # Config
    "CanopyConfig",
    "RemoteConfig",
    "StoreConfig",
    "ForkConfig",
    "ForkOptions",
    # Models
    "PHANTOM_MARKER",
    "ROOT_MESSAGE_ID",
    "Message",
    "ConversationData",
    "LeafResult",
    "FileDescriptor",
    "SyncSource",
    "ForkContext",
    "ForkResult",
    # Errors
    "CanopyError",
    "MalformedTreeError",
    "NetworkError",
    "ParseError",
    "CompletionFailed",
    "NavigationFailed",
    "ForkCancelled",
    "CanopyStoreError",
    "DuplicateBookmarkError",
    "BookmarkNotFoundError",
    # Events
    "EventBus",
    "CanopyEvent",
    # Components
    "ForkPipeline",
    "ForkState",
    "Navigator",
    "ConversationClient",
    "OverlayStore",
    "BookmarkStore",
    "StorePool",
    "InterceptingTransport",
    "InterceptionRule",
]
