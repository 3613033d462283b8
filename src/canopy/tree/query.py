"""Pure queries over a flat list of tree records."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from canopy.errors import MalformedTreeError
from canopy.models.config import HistoryStrategy
from canopy.models.message import ROOT_MESSAGE_ID, LeafResult, Message


def children_index(messages: Iterable[Message]) -> dict[str, list[Message]]:
    """Group messages by parent id, keeping server-delivered order within a group."""
    index: dict[str, list[Message]] = {}
    for message in messages:
        index.setdefault(message.parent_id, []).append(message)
    return index


def find_deepest_leaf(messages: Sequence[Message], start_id: str) -> LeafResult:
    """
    Find the leaf at the end of the longest downward path from ``start_id``.

    A message without children is a leaf of depth 0. An internal node's depth
    is one more than the deepest of its children. Between equally deep
    branches the one whose leaf was created later wins.

    The walk is iterative (post-order with an explicit stack) so very long
    conversations do not hit the interpreter recursion limit.

    Args:
        messages: Every message of the conversation, in any order.
        start_id: Message id to search from. ``ROOT_MESSAGE_ID`` searches the
            whole conversation.

    Returns:
        The deepest leaf, its depth below ``start_id`` and its timestamp.

    Raises:
        MalformedTreeError: If a cycle is found, if ``start_id`` is unknown,
            or if the tree is empty below the root sentinel.
    """
    by_id = {m.id: m for m in messages}
    children = children_index(messages)
    if start_id not in by_id and start_id not in children:
        raise MalformedTreeError(f"Unknown message id: {start_id!r}", message_id=start_id)

    results: dict[str, LeafResult] = {}
    visited = {start_id}
    stack: list[tuple[str, bool]] = [(start_id, False)]

    while stack:
        node_id, expanded = stack.pop()
        kids = children.get(node_id, [])

        if not kids:
            node = by_id.get(node_id)
            if node is None:
                raise MalformedTreeError(
                    f"No messages below {node_id!r}", message_id=node_id
                )
            results[node_id] = LeafResult(leaf_id=node_id, depth=0, timestamp=node.timestamp_ms())
            continue

        if not expanded:
            stack.append((node_id, True))
            for kid in kids:
                if kid.id in visited:
                    raise MalformedTreeError(
                        f"Cycle detected at message {kid.id!r}", message_id=kid.id
                    )
                visited.add(kid.id)
                stack.append((kid.id, False))
            continue

        best = results[kids[0].id]
        for kid in kids[1:]:
            child = results[kid.id]
            if child.depth > best.depth or (
                child.depth == best.depth and child.timestamp > best.timestamp
            ):
                best = child
        results[node_id] = LeafResult(
            leaf_id=best.leaf_id, depth=best.depth + 1, timestamp=best.timestamp
        )

    return results[start_id]


def history_to(messages: Sequence[Message], message_id: str) -> list[Message]:
    """
    Return the parent chain ending at ``message_id``, ordered root first.

    Raises:
        MalformedTreeError: If a parent reference is dangling or cyclic.
    """
    by_id = {m.id: m for m in messages}
    chain: list[Message] = []
    seen: set[str] = set()
    current = message_id
    while current != ROOT_MESSAGE_ID:
        if current in seen:
            raise MalformedTreeError(f"Cycle detected at message {current!r}", message_id=current)
        seen.add(current)
        message = by_id.get(current)
        if message is None:
            raise MalformedTreeError(
                f"Unresolvable parent reference {current!r}", message_id=current
            )
        chain.append(message)
        current = message.parent_id
    chain.reverse()
    return chain


def extract_linear_history(
    messages: Sequence[Message],
    target_parent_id: str,
    strategy: HistoryStrategy = "chain",
) -> list[Message]:
    """
    Slice the history that ends at the first child of ``target_parent_id``.

    The cut message is the first message (in server order) whose parent is
    ``target_parent_id``; it is included in the result. When no message
    resolves the target the entire list is returned.

    Strategies:

    - ``"chain"``: walk parent links from the cut message up to the root.
      Correct for any branching shape.
    - ``"prefix"``: take every message delivered before the cut message, in
      server order. Only correct when the server delivers the target's
      branch before unrelated later messages.
    """
    if strategy == "prefix":
        prefix: list[Message] = []
        for message in messages:
            prefix.append(message)
            if message.parent_id == target_parent_id:
                break
        return prefix

    cut = next((m for m in messages if m.parent_id == target_parent_id), None)
    if cut is None:
        return list(messages)
    return history_to(messages, cut.id)


def latest_message(messages: Iterable[Message], exclude: Iterable[str] = ()) -> Message | None:
    """Most recently created message, skipping ids in ``exclude``."""
    skip = set(exclude)
    latest: Message | None = None
    for message in messages:
        if message.id in skip:
            continue
        if latest is None or message.timestamp_ms() > latest.timestamp_ms():
            latest = message
    return latest
