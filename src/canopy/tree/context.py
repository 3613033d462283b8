"""Extraction of a fork context from a conversation tree."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, TypeVar

import structlog

from canopy.models.config import HistoryStrategy
from canopy.models.message import (
    TOOL_BLOCK_TYPES,
    ConversationData,
    FileDescriptor,
    ForkContext,
    Message,
    SyncSource,
    is_phantom_text,
    strip_phantom_marker,
)
from canopy.tree.query import extract_linear_history, history_to

_logger = structlog.get_logger("canopy.tree")

T = TypeVar("T")


def file_descriptor(file: dict[str, Any]) -> FileDescriptor | None:
    """
    Build a download descriptor for a ``files_v2`` entry.

    Images are fetched from their preview asset, documents from their
    document asset. Any other kind, or an entry without a URL, yields None.
    """
    kind = file.get("file_kind")
    if kind == "image":
        asset = file.get("preview_asset") or {}
    elif kind == "document":
        asset = file.get("document_asset") or {}
    else:
        return None
    url = asset.get("url")
    if not url:
        return None
    return FileDescriptor(
        file_id=file.get("file_uuid", ""),
        url=url,
        kind=kind,
        name=file.get("file_name", ""),
    )


def dedupe_by_filename(items: Sequence[T], name_of: Callable[[T], str | None]) -> list[T]:
    """
    Drop earlier items that share a filename with a later one.

    The newest occurrence wins and keeps its relative position. Items without
    a name are never merged.
    """
    seen: set[str] = set()
    kept: list[T] = []
    for item in reversed(items):
        name = name_of(item)
        if name:
            if name in seen:
                continue
            seen.add(name)
        kept.append(item)
    kept.reverse()
    return kept


def _unmarked(block: dict[str, Any]) -> dict[str, Any]:
    if not (isinstance(block.get("text"), str) and is_phantom_text(block["text"])):
        return block
    text = strip_phantom_marker(block["text"])
    if not text and block.get("type") != "text":
        # Tool blocks only carry text while shown as phantoms.
        return {k: v for k, v in block.items() if k != "text"}
    return {**block, "text": text}


def select_history(
    messages: Sequence[Message],
    cut_message_id: str,
    strategy: HistoryStrategy = "chain",
) -> list[Message]:
    """
    Return the messages a fork at ``cut_message_id`` carries over.

    With the ``chain`` strategy the parent chain of the cut message is used
    directly, so a sibling delivered earlier can never stand in for it.
    The ``prefix`` strategy reproduces the server-order walk keyed on the cut
    message's parent. An unknown cut id yields the whole list.
    """
    cut = next((m for m in messages if m.id == cut_message_id), None)
    if cut is None:
        _logger.warning("cut_point_not_found", cut_message_id=cut_message_id)
        return list(messages)
    if strategy == "chain":
        return history_to(messages, cut.id)
    return extract_linear_history(messages, cut.parent_id, strategy="prefix")


def build_fork_context(
    conversation: ConversationData,
    cut_message_id: str,
    *,
    include_attachments: bool = True,
    include_tool_calls: bool = False,
    strategy: HistoryStrategy = "chain",
) -> ForkContext:
    """
    Extract texts, files, attachments and sync sources up to a cut point.

    Args:
        conversation: The source conversation as read through the overlay.
        cut_message_id: Last message to include.
        include_attachments: When False, files, attachments and sync sources
            are left out of both the context and the carried messages.
        include_tool_calls: When False, ``tool_use``/``tool_result`` blocks are
            removed from the carried messages and their text.
        strategy: History selection strategy, see :func:`select_history`.

    Returns:
        A ForkContext whose ``messages`` are filtered copies of the source.
    """
    history = select_history(conversation.chat_messages, cut_message_id, strategy)

    messages: list[Message] = []
    texts: list[str] = []
    files: list[FileDescriptor] = []
    attachments: list[dict[str, Any]] = []
    sync_sources: list[SyncSource] = []

    for source in history:
        content = [_unmarked(block) for block in source.content]
        if not include_tool_calls:
            content = [block for block in content if block.get("type") not in TOOL_BLOCK_TYPES]
        update: dict[str, Any] = {"content": content}
        if not include_attachments:
            update.update(files_v2=[], files=[], attachments=[], sync_sources=[])
        message = source.model_copy(update=update, deep=True)
        messages.append(message)
        texts.append(message.text())

        for file in message.files_v2:
            descriptor = file_descriptor(file)
            if descriptor is not None:
                files.append(descriptor)
        attachments.extend(message.attachments)
        sync_sources.extend(SyncSource.model_validate(s) for s in message.sync_sources)

    context = ForkContext(
        messages=messages,
        texts=texts,
        files=dedupe_by_filename(files, lambda f: f.name),
        attachments=dedupe_by_filename(attachments, lambda a: a.get("file_name")),
        sync_sources=sync_sources,
        name=conversation.name,
        project_id=conversation.project_id,
    )
    _logger.debug(
        "fork_context_extracted",
        cut_message_id=cut_message_id,
        messages=len(messages),
        files=len(context.files),
        attachments=len(context.attachments),
        sync_sources=len(sync_sources),
    )
    return context
