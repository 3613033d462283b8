"""Conversation tree records and fork-operation value types."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ROOT_MESSAGE_ID = "00000000-0000-4000-8000-000000000000"
"""Parent id carried by every root message of a remote conversation tree."""

PHANTOM_MARKER = "====PHANTOM_MESSAGE===="
"""Invisible tag appended to the text of every injected phantom message."""

TOOL_BLOCK_TYPES: frozenset[str] = frozenset({"tool_use", "tool_result"})


# ── Tree Records ───────────────────────────────────────────────────────────────


class Message(BaseModel):
    """
    A single node of a remote conversation tree.

    Fields are populated from the remote wire names (``uuid``,
    ``parent_message_uuid``) or from the Python names. Unknown wire fields are
    preserved so that a message survives a parse/dump round trip unchanged.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(alias="uuid")
    parent_id: str = Field(default=ROOT_MESSAGE_ID, alias="parent_message_uuid")
    sender: Literal["human", "assistant"] = "human"
    content: list[dict[str, Any]] = Field(default_factory=list)
    """Ordered content blocks: text, tool input, tool results with nested content."""
    created_at: str = ""
    """ISO-8601 timestamp as delivered by the remote service."""
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    files_v2: list[dict[str, Any]] = Field(default_factory=list)
    files: list[Any] = Field(default_factory=list)
    sync_sources: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def is_root(self) -> bool:
        return self.parent_id == ROOT_MESSAGE_ID

    def timestamp_ms(self) -> int:
        """Creation time as Unix milliseconds; 0 when missing or unparsable."""
        if not self.created_at:
            return 0
        try:
            return int(datetime.fromisoformat(self.created_at).timestamp() * 1000)
        except ValueError:
            return 0

    def text(self, *, include_tool_calls: bool = True) -> str:
        """
        Flatten the message content into plain text.

        Text blocks contribute their text, tool blocks their JSON input, and
        nested ``content`` (list or single block) is walked recursively. The
        phantom marker is stripped.
        """
        pieces: list[str] = []
        for block in self.content:
            if not include_tool_calls and block.get("type") in TOOL_BLOCK_TYPES:
                continue
            _collect_text(block, pieces)
        return strip_phantom_marker("\n".join(pieces))

    def to_wire(self) -> dict[str, Any]:
        """Dump using the remote field names."""
        return self.model_dump(by_alias=True)


def _collect_text(block: Any, pieces: list[str]) -> None:
    if not isinstance(block, dict):
        return
    text = block.get("text")
    if text:
        pieces.append(text)
    if block.get("input"):
        pieces.append(json.dumps(block["input"]))
    nested = block.get("content")
    if isinstance(nested, list):
        for item in nested:
            _collect_text(item, pieces)
    elif isinstance(nested, dict):
        _collect_text(nested, pieces)


def strip_phantom_marker(text: str) -> str:
    """Remove the phantom marker (and the blank line that precedes it)."""
    return text.replace("\n\n" + PHANTOM_MARKER, "").replace(PHANTOM_MARKER, "")


def is_phantom_text(text: str) -> bool:
    return PHANTOM_MARKER in text


class ProjectRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    uuid: str | None = None


class ConversationData(BaseModel):
    """Response of the conversation-by-id endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    uuid: str = ""
    name: str = ""
    updated_at: str = ""
    current_leaf_message_uuid: str | None = None
    chat_messages: list[Message] = Field(default_factory=list)
    project: ProjectRef | None = None

    @property
    def project_id(self) -> str | None:
        return self.project.uuid if self.project else None


# ── Navigation ─────────────────────────────────────────────────────────────────


class LeafResult(BaseModel):
    """Deepest leaf found below a starting message."""

    leaf_id: str
    depth: int
    """Length of the longest downward path from the starting message."""
    timestamp: int
    """Creation time of the leaf, Unix milliseconds."""


# ── Fork Values ────────────────────────────────────────────────────────────────


class FileDescriptor(BaseModel):
    """A file referenced by a source message, downloadable by URL."""

    file_id: str
    url: str
    kind: Literal["image", "document"]
    name: str


class DownloadedFile(BaseModel):
    descriptor: FileDescriptor
    data: bytes
    content_type: str = "application/octet-stream"


class SyncSource(BaseModel):
    """An external data-sync link attached to a message."""

    model_config = ConfigDict(extra="allow")

    type: str = ""
    config: dict[str, Any] = Field(default_factory=dict)

    @property
    def uri(self) -> str | None:
        return self.config.get("uri")


class ForkContext(BaseModel):
    """
    Everything extracted from a source conversation for one fork operation.

    ``texts`` holds one flattened text per message in ``messages`` order; the
    transcript alternates User/Assistant by index.
    """

    messages: list[Message] = Field(default_factory=list)
    texts: list[str] = Field(default_factory=list)
    files: list[FileDescriptor] = Field(default_factory=list)
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    sync_sources: list[SyncSource] = Field(default_factory=list)
    name: str = ""
    project_id: str | None = None

    def transcript_lines(self) -> list[str]:
        return [
            f"{'User' if index % 2 == 0 else 'Assistant'}\n{text}"
            for index, text in enumerate(self.texts)
        ]

    def transcript(self) -> str:
        return "\n\n".join(self.transcript_lines())

    def chatlog_attachment(self, file_name: str = "chatlog.txt") -> dict[str, Any]:
        """Package the transcript as a synthetic plain-text attachment."""
        text = self.transcript()
        return {
            "extracted_content": text,
            "file_name": file_name,
            "file_size": len(text),
            "file_type": "text/plain",
        }


class ForkResult(BaseModel):
    """The result of a completed ``ForkPipeline.fork_from()`` call."""

    conversation_id: str
    name: str
    source_conversation_id: str
    file_ids: list[str] = Field(default_factory=list)
    sync_ids: list[str] = Field(default_factory=list)
    dropped_files: list[str] = Field(default_factory=list)
    """Names of files that could not be rehosted."""
    message_count: int = 0
    phantom_count: int = 0
    summarized: bool = False
    elapsed_ms: float = 0.0
