"""canopy persistence layer."""

from canopy.store.base import CanopyStoreError, Repository
from canopy.store.bookmarks import BookmarkNotFoundError, BookmarkStore, DuplicateBookmarkError
from canopy.store.overlay import LEGACY_PREFIXES, OverlayStore, chain_phantoms, legacy_keys
from canopy.store.pool import StorePool

__all__ = [
    "OverlayStore",
    "BookmarkStore",
    "Repository",
    "StorePool",
    "LEGACY_PREFIXES",
    "chain_phantoms",
    "legacy_keys",
    "CanopyStoreError",
    "DuplicateBookmarkError",
    "BookmarkNotFoundError",
]
