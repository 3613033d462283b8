"""Copying files and sync sources of a source conversation into new uploads."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence

import structlog
from pydantic import BaseModel, Field

from canopy.models.message import FileDescriptor, SyncSource
from canopy.remote.client import ConversationClient

DropHandler = Callable[[str, str, Exception], None]
"""Called as ``on_drop(kind, name, error)`` for every asset that could not be copied."""

_logger = structlog.get_logger("canopy.fork.rehost")


class RehostResult(BaseModel):
    file_ids: list[str] = Field(default_factory=list)
    """New file ids, in source order, for every file that was copied."""
    sync_ids: list[str] = Field(default_factory=list)
    dropped_files: list[str] = Field(default_factory=list)
    dropped_sync_sources: list[str] = Field(default_factory=list)


async def _copy_file(client: ConversationClient, descriptor: FileDescriptor) -> str:
    downloaded = await client.download_file(descriptor)
    return await client.upload_file(downloaded)


async def rehost_assets(
    client: ConversationClient,
    files: Sequence[FileDescriptor],
    sync_sources: Sequence[SyncSource] = (),
    *,
    on_drop: DropHandler | None = None,
) -> RehostResult:
    """
    Download and re-upload every file and register every sync source.

    Each file is one task (download, then upload); all file tasks and sync
    registrations run concurrently. A failing asset is logged, reported to
    ``on_drop`` and left out of the result; it never fails the whole call.

    Args:
        client: Remote client used for download, upload and registration.
        files: Files referenced by the carried-over history.
        sync_sources: Sync sources referenced by the carried-over history.
        on_drop: Optional callback for dropped assets.

    Returns:
        The ids of every asset that was copied and the names of those dropped.
    """
    file_tasks = [asyncio.create_task(_copy_file(client, f)) for f in files]
    sync_tasks = [asyncio.create_task(client.register_sync_source(s)) for s in sync_sources]
    try:
        outcomes = await asyncio.gather(*file_tasks, *sync_tasks, return_exceptions=True)
    except asyncio.CancelledError:
        for task in (*file_tasks, *sync_tasks):
            task.cancel()
        raise

    result = RehostResult()
    for descriptor, outcome in zip(files, outcomes[: len(files)], strict=True):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            _logger.warning(
                "asset_rehost_failed", kind="file", name=descriptor.name, error=str(outcome)
            )
            result.dropped_files.append(descriptor.name)
            if on_drop is not None:
                on_drop("file", descriptor.name, outcome)
        else:
            result.file_ids.append(outcome)

    for source, outcome in zip(sync_sources, outcomes[len(files) :], strict=True):
        name = source.uri or source.type
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            _logger.warning("asset_rehost_failed", kind="sync_source", name=name, error=str(outcome))
            result.dropped_sync_sources.append(name)
            if on_drop is not None:
                on_drop("sync_source", name, outcome)
        else:
            result.sync_ids.append(outcome)

    _logger.debug(
        "assets_rehosted",
        files=len(result.file_ids),
        sync_sources=len(result.sync_ids),
        dropped=len(result.dropped_files) + len(result.dropped_sync_sources),
    )
    return result
