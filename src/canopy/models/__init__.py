"""canopy data models."""

from canopy.models.config import (
    CanopyConfig,
    ForkConfig,
    ForkOptions,
    RemoteConfig,
    StoreConfig,
)
from canopy.models.message import (
    PHANTOM_MARKER,
    ROOT_MESSAGE_ID,
    ConversationData,
    DownloadedFile,
    FileDescriptor,
    ForkContext,
    ForkResult,
    LeafResult,
    Message,
    ProjectRef,
    SyncSource,
)

__all__ = [
    # Config
    "CanopyConfig",
    "ForkConfig",
    "ForkOptions",
    "RemoteConfig",
    "StoreConfig",
    # Tree records
    "PHANTOM_MARKER",
    "ROOT_MESSAGE_ID",
    "Message",
    "ConversationData",
    "ProjectRef",
    "LeafResult",
    # Fork values
    "FileDescriptor",
    "DownloadedFile",
    "SyncSource",
    "ForkContext",
    "ForkResult",
]
