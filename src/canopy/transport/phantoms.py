"""Splicing phantom messages into a remote conversation payload."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from canopy.errors import ParseError
from canopy.models.message import (
    PHANTOM_MARKER,
    ROOT_MESSAGE_ID,
    Message,
    strip_phantom_marker,
)

_MARKER_SUFFIX = "\n\n" + PHANTOM_MARKER


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def mark_text(text: str) -> str:
    """Append the phantom marker, leaving exactly one occurrence."""
    return strip_phantom_marker(text) + _MARKER_SUFFIX


def normalize_phantom(message: Message | dict[str, Any], timestamp: str | None = None) -> dict[str, Any]:
    """
    Bring a phantom message into the canonical wire shape.

    Defaults are applied only where a field is absent (or None); anything the
    caller supplied wins. Every content block gets default timestamps, type,
    text and citations, and the text of every block (tool blocks included)
    is tagged with the phantom marker.

    Args:
        message: A stored phantom.
        timestamp: ISO timestamp used for missing times. Defaults to now.

    Returns:
        A new wire-shaped dict. The input is not modified.
    """
    stamp = timestamp or _now_iso()
    if isinstance(message, Message):
        provided = message.model_dump(by_alias=True, exclude_defaults=True)
    else:
        provided = dict(message)

    complete: dict[str, Any] = {
        "uuid": str(uuid.uuid4()),
        "parent_message_uuid": ROOT_MESSAGE_ID,
        "sender": "human",
        "content": [],
        "created_at": stamp,
        "files_v2": [],
        "files": [],
        "attachments": [],
        "sync_sources": [],
    }
    complete.update({key: value for key, value in provided.items() if value is not None})

    blocks: list[dict[str, Any]] = []
    for item in complete["content"]:
        block = {
            "start_timestamp": stamp,
            "stop_timestamp": stamp,
            "type": "text",
            "text": "",
            "citations": [],
            **item,
        }
        if isinstance(block["text"], str):
            block["text"] = mark_text(block["text"])
        blocks.append(block)
    complete["content"] = blocks
    return complete


def inject_phantom_messages(
    data: dict[str, Any],
    phantoms: Sequence[Message | dict[str, Any]],
) -> tuple[int, int]:
    """
    Prepend phantom messages to a conversation payload, in place.

    Every remote root message (parent = root sentinel) is re-parented onto
    the last phantom, so the phantom chain becomes the root-ward end of the
    tree the caller sees.

    Args:
        data: Parsed conversation-by-id response. ``chat_messages`` is rewritten.
        phantoms: The stored phantom sequence, root first.

    Returns:
        ``(phantom_count, reparented_count)``.

    Raises:
        ParseError: If ``data`` is not a conversation object.
    """
    if not isinstance(data, dict):
        raise ParseError("Conversation payload is not a JSON object")
    remote = data.get("chat_messages") or []
    if not isinstance(remote, list):
        raise ParseError("chat_messages is not a list")
    if not phantoms:
        return 0, 0

    stamp = _now_iso()
    normalized = [normalize_phantom(p, stamp) for p in phantoms]
    last_id = normalized[-1]["uuid"]

    reparented = 0
    for message in remote:
        if isinstance(message, dict) and message.get("parent_message_uuid") == ROOT_MESSAGE_ID:
            message["parent_message_uuid"] = last_id
            reparented += 1

    data["chat_messages"] = [*normalized, *remote]
    return len(normalized), reparented
