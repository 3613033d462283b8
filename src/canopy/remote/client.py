"""Typed async client for the remote conversation API."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Sequence
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from canopy.errors import CompletionFailed, NetworkError, ParseError
from canopy.models.config import RemoteConfig
from canopy.models.message import (
    ROOT_MESSAGE_ID,
    ConversationData,
    DownloadedFile,
    FileDescriptor,
    Message,
    SyncSource,
    is_phantom_text,
)
from canopy.transport.middleware import InterceptingTransport, InterceptionRule


def create_http_client(
    config: RemoteConfig,
    rules: Sequence[InterceptionRule] = (),
    inner: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Build the ``httpx.AsyncClient`` every remote call goes through.

    Args:
        config: Remote connection settings.
        rules: Interception rules, applied in order.
        inner: Transport that performs the real I/O. Defaults to
            ``httpx.AsyncHTTPTransport()``; tests pass ``httpx.MockTransport``.
    """
    transport = InterceptingTransport(inner or httpx.AsyncHTTPTransport(), rules)
    return httpx.AsyncClient(
        base_url=config.base_url,
        headers=config.headers,
        timeout=config.timeout,
        transport=transport,
    )


class ConversationClient:
    """
    Operations on remote conversations, files and sync sources.

    All requests share one ``httpx.AsyncClient``. Transport failures and
    non-success statuses raise ``NetworkError``; bodies of the wrong shape
    raise ``ParseError``.

    Usage::

        http = create_http_client(config.remote, rules)
        client = ConversationClient(http, config.remote)
        conversation = await client.get_conversation(conversation_id)
    """

    def __init__(self, http: httpx.AsyncClient, config: RemoteConfig) -> None:
        self._http = http
        self._config = config
        self._logger = structlog.get_logger("canopy.remote")

    @property
    def http(self) -> httpx.AsyncClient:
        return self._http

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Plumbing ───────────────────────────────────────────────────────────────

    def _conversations_path(self, *parts: str) -> str:
        base = f"/api/organizations/{self._config.org_id}/chat_conversations"
        return "/".join([base, *parts])

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {url} failed: {exc}", url=url) from exc
        if not response.is_success:
            raise NetworkError(
                f"{method} {url} returned {response.status_code}",
                status_code=response.status_code,
                url=str(response.request.url),
                detail=response.text[:500],
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(
                "Response body is not valid JSON",
                status_code=response.status_code,
                url=str(response.request.url),
            ) from exc

    # ── Conversations ──────────────────────────────────────────────────────────

    async def get_conversation(self, conversation_id: str, *, tree: bool = True) -> ConversationData:
        """
        Fetch a conversation with its messages.

        Reads go through the interception layer, so stored phantoms appear
        in the result.

        Raises:
            NetworkError: On transport failure or a non-success status.
            ParseError: If the body is not a conversation object.
        """
        response = await self._request(
            "GET",
            self._conversations_path(conversation_id),
            params={
                "tree": "True" if tree else "False",
                "rendering_mode": "messages",
                "render_all_tools": "true",
            },
        )
        data = self._json(response)
        try:
            return ConversationData.model_validate(data)
        except ValidationError as exc:
            raise ParseError(
                f"Unexpected conversation payload for {conversation_id!r}",
                status_code=response.status_code,
                url=str(response.request.url),
                detail=str(exc),
            ) from exc

    async def create_conversation(
        self,
        name: str,
        *,
        model: str | None = None,
        project_id: str | None = None,
        conversation_id: str | None = None,
    ) -> str:
        """
        Create an empty conversation under a client-generated UUID.

        Returns:
            The new conversation id.
        """
        new_id = conversation_id or str(uuid.uuid4())
        body: dict[str, Any] = {
            "uuid": new_id,
            "name": name,
            "project_uuid": project_id,
            "include_conversation_preferences": True,
        }
        if model:
            body["model"] = model
        await self._request("POST", self._conversations_path(), json=body)
        self._logger.info("conversation_created", conversation_id=new_id, name=name, model=model)
        return new_id

    async def delete_conversation(self, conversation_id: str) -> bool:
        """
        Delete a conversation, best effort.

        Failures are logged and reported as False, never raised.
        """
        try:
            await self._request("DELETE", self._conversations_path(conversation_id))
        except NetworkError as exc:
            self._logger.warning(
                "conversation_delete_failed",
                conversation_id=conversation_id,
                status_code=exc.status_code,
                error=str(exc),
            )
            return False
        self._logger.info("conversation_deleted", conversation_id=conversation_id)
        return True

    async def set_current_leaf(self, conversation_id: str, leaf_id: str) -> None:
        """Move the remote current-leaf pointer."""
        await self._request(
            "PUT",
            self._conversations_path(conversation_id, "current_leaf_message_uuid"),
            json={"current_leaf_message_uuid": leaf_id},
        )

    # ── Completions ────────────────────────────────────────────────────────────

    async def send_completion(
        self,
        conversation_id: str,
        prompt: str,
        *,
        parent_message_id: str = ROOT_MESSAGE_ID,
        attachments: Sequence[dict[str, Any]] = (),
        files: Sequence[str] = (),
        sync_sources: Sequence[str] = (),
        style: dict[str, Any] | None = None,
        model: str | None = None,
    ) -> None:
        """
        Append a human turn and start the assistant reply.

        The streamed reply body is read and discarded; callers that need the
        reply text use :meth:`wait_for_completion` and
        :meth:`latest_assistant_message`.
        """
        body: dict[str, Any] = {
            "prompt": prompt,
            "parent_message_uuid": parent_message_id,
            "attachments": list(attachments),
            "files": list(files),
            "sync_sources": list(sync_sources),
            "personalized_styles": [style] if style else [],
            "rendering_mode": "messages",
        }
        if model:
            body["model"] = model
        await self._request("POST", self._conversations_path(conversation_id, "completion"), json=body)
        self._logger.debug(
            "completion_sent",
            conversation_id=conversation_id,
            parent_message_id=parent_message_id,
            attachments=len(body["attachments"]),
            files=len(body["files"]),
        )

    async def completion_status(self, conversation_id: str) -> dict[str, Any]:
        response = await self._request(
            "GET",
            self._conversations_path(conversation_id, "completion_status"),
            params={"poll": "false"},
        )
        data = self._json(response)
        if not isinstance(data, dict):
            raise ParseError("Completion status is not a JSON object", url=str(response.request.url))
        return data

    async def wait_for_completion(
        self,
        conversation_id: str,
        *,
        poll_interval: float | None = None,
        timeout: float | None = None,
    ) -> None:
        """
        Poll the completion status until the conversation is idle.

        Raises:
            CompletionFailed: If the status reports an error or the
                completion is still pending after ``timeout`` seconds.
        """
        interval = self._config.poll_interval if poll_interval is None else poll_interval
        limit = self._config.completion_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + limit

        while True:
            status = await self.completion_status(conversation_id)
            if status.get("is_error"):
                raise CompletionFailed(
                    f"Completion failed in {conversation_id!r}: {status.get('error_code')}",
                    detail=status.get("error_detail"),
                )
            if not status.get("is_pending"):
                return
            if loop.time() + interval > deadline:
                raise CompletionFailed(
                    f"Completion in {conversation_id!r} still pending after {limit:.0f}s"
                )
            await asyncio.sleep(interval)

    async def latest_assistant_message(self, conversation_id: str) -> Message | None:
        """Most recent assistant message of a conversation, ignoring phantoms."""
        conversation = await self.get_conversation(conversation_id)
        latest: Message | None = None
        for message in conversation.chat_messages:
            if message.sender != "assistant" or is_phantom_text(
                "".join(str(block.get("text", "")) for block in message.content)
            ):
                continue
            if latest is None or message.timestamp_ms() >= latest.timestamp_ms():
                latest = message
        return latest

    # ── Files & Sync Sources ───────────────────────────────────────────────────

    async def download_file(self, descriptor: FileDescriptor) -> DownloadedFile:
        """Fetch the bytes of a file referenced by a source message."""
        response = await self._request("GET", descriptor.url)
        return DownloadedFile(
            descriptor=descriptor,
            data=response.content,
            content_type=response.headers.get("content-type", "application/octet-stream"),
        )

    async def upload_file(self, file: DownloadedFile) -> str:
        """
        Upload file bytes as a new remote file.

        Returns:
            The remote file id.
        """
        name = file.descriptor.name or file.descriptor.file_id or "file"
        response = await self._request(
            "POST",
            f"/api/{self._config.org_id}/upload",
            files={"file": (name, file.data, file.content_type)},
        )
        data = self._json(response)
        file_id = data.get("file_uuid") if isinstance(data, dict) else None
        if not file_id:
            raise ParseError("Upload response has no file_uuid", url=str(response.request.url))
        return file_id

    async def register_sync_source(self, source: SyncSource) -> str:
        """
        Register a sync source for reuse in another conversation.

        Returns:
            The remote sync-source id.
        """
        response = await self._request(
            "POST",
            f"/api/organizations/{self._config.org_id}/sync/chat",
            json={"sync_source_config": source.config, "sync_source_type": source.type},
        )
        data = self._json(response)
        sync_id = data.get("uuid") if isinstance(data, dict) else None
        if not sync_id:
            raise ParseError("Sync registration response has no uuid", url=str(response.request.url))
        return sync_id
