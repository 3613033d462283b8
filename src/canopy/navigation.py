"""Moving the remote current-leaf pointer around a conversation tree."""

from __future__ import annotations

import structlog

from canopy.errors import NavigationFailed, NetworkError
from canopy.events.bus import CanopyEvent, EventBus
from canopy.models.message import ROOT_MESSAGE_ID, LeafResult
from canopy.remote.client import ConversationClient
from canopy.store.bookmarks import BookmarkStore
from canopy.store.overlay import OverlayStore
from canopy.tree.query import find_deepest_leaf, latest_message


class Navigator:
    """
    Branch navigation over the overlay view of a conversation.

    Trees are read through the interception layer, so searches see phantom
    messages too. The pointer itself can only be moved to real messages:
    the remote service has never seen a phantom id.
    """

    def __init__(
        self,
        client: ConversationClient,
        overlay: OverlayStore,
        bookmarks: BookmarkStore,
        *,
        event_bus: EventBus | None = None,
    ) -> None:
        self._client = client
        self._overlay = overlay
        self._bookmarks = bookmarks
        self._event_bus = event_bus
        self._logger = structlog.get_logger("canopy.navigation")

    async def _phantom_ids(self, conversation_id: str) -> set[str]:
        phantoms = await self._overlay.get(conversation_id)
        return {p.id for p in phantoms or []}

    # ── Pointer ────────────────────────────────────────────────────────────────

    async def set_current_leaf(self, conversation_id: str, leaf_id: str) -> None:
        """
        Point the conversation at ``leaf_id``.

        Raises:
            NavigationFailed: If ``leaf_id`` is a phantom or the root
                sentinel, or the remote service rejects the update.
        """
        if leaf_id == ROOT_MESSAGE_ID:
            raise NavigationFailed(conversation_id, leaf_id, "the root sentinel is not a message")
        if leaf_id in await self._phantom_ids(conversation_id):
            raise NavigationFailed(conversation_id, leaf_id, "phantom messages are not navigable")
        try:
            await self._client.set_current_leaf(conversation_id, leaf_id)
        except NetworkError as exc:
            raise NavigationFailed(conversation_id, leaf_id, str(exc)) from exc

        self._logger.info("leaf_changed", conversation_id=conversation_id, leaf_id=leaf_id)
        if self._event_bus is not None:
            self._event_bus.publish(
                CanopyEvent.LEAF_CHANGED, {"conversation_id": conversation_id, "leaf_id": leaf_id}
            )

    async def find_deepest_leaf_from(self, conversation_id: str, message_id: str) -> LeafResult:
        """
        Find the deepest leaf below ``message_id`` without moving the pointer.

        Raises:
            MalformedTreeError: If the tree is cyclic or ``message_id`` is unknown.
        """
        conversation = await self._client.get_conversation(conversation_id)
        return find_deepest_leaf(conversation.chat_messages, message_id)

    async def go_to_leaf(self, conversation_id: str, message_id: str) -> LeafResult:
        """Move the pointer to the deepest leaf below ``message_id``."""
        leaf = await self.find_deepest_leaf_from(conversation_id, message_id)
        await self.set_current_leaf(conversation_id, leaf.leaf_id)
        return leaf

    async def go_to_deepest(self, conversation_id: str) -> LeafResult:
        """Move the pointer to the deepest leaf of the whole conversation."""
        return await self.go_to_leaf(conversation_id, ROOT_MESSAGE_ID)

    async def go_to_latest(self, conversation_id: str) -> str:
        """
        Move the pointer to the most recently created real message.

        Returns:
            The id of that message.

        Raises:
            NavigationFailed: If the conversation has no real messages.
        """
        conversation = await self._client.get_conversation(conversation_id)
        phantom_ids = await self._phantom_ids(conversation_id)
        latest = latest_message(conversation.chat_messages, exclude=phantom_ids)
        if latest is None:
            raise NavigationFailed(conversation_id, None, "conversation has no messages")
        await self.set_current_leaf(conversation_id, latest.id)
        return latest.id

    # ── Bookmarks ──────────────────────────────────────────────────────────────

    async def add_bookmark(self, conversation_id: str, name: str, leaf_id: str | None = None) -> str:
        """
        Save a named position. Defaults to the current leaf pointer.

        Returns:
            The bookmarked message id.

        Raises:
            NavigationFailed: If no id is given and the conversation has no
                current leaf.
            DuplicateBookmarkError: If ``name`` is already used.
        """
        if leaf_id is None:
            conversation = await self._client.get_conversation(conversation_id, tree=False)
            leaf_id = conversation.current_leaf_message_uuid
            if not leaf_id:
                raise NavigationFailed(conversation_id, None, "conversation has no current leaf")
        await self._bookmarks.add(conversation_id, name, leaf_id)
        return leaf_id

    async def remove_bookmark(self, conversation_id: str, name: str) -> None:
        await self._bookmarks.delete(conversation_id, name)

    async def bookmarks(self, conversation_id: str) -> dict[str, str]:
        return await self._bookmarks.list(conversation_id)

    async def go_to_bookmark(self, conversation_id: str, name: str) -> LeafResult:
        """
        Move the pointer to the deepest leaf below a bookmarked message.

        The search runs again on every call, so a bookmark follows the branch
        as it grows.

        Raises:
            BookmarkNotFoundError: If ``name`` is unknown.
        """
        message_id = await self._bookmarks.get(conversation_id, name)
        return await self.go_to_leaf(conversation_id, message_id)
