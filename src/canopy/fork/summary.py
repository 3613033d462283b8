"""Condensing the older part of a fork history into a summary turn."""

from __future__ import annotations

import math
import time
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime

import structlog

from canopy.errors import CompletionFailed
from canopy.fork.prompts import SUMMARY_ACKNOWLEDGEMENT, summary_chatlog, summary_request
from canopy.fork.rehost import rehost_assets
from canopy.models.config import ForkConfig
from canopy.models.message import ROOT_MESSAGE_ID, ForkContext, Message
from canopy.remote.client import ConversationClient
from canopy.tree.context import file_descriptor


def split_for_summary(
    messages: Sequence[Message], raw_text_percentage: int
) -> tuple[list[Message], list[Message]]:
    """
    Split a history into an older part to summarise and a recent part to keep.

    The most recent ``raw_text_percentage`` percent of messages (rounded up)
    are kept verbatim. The cut then moves towards the end until the kept part
    starts with a human turn. If no human turn follows, nothing is summarised.

    Returns:
        ``(to_summarize, to_keep)``.
    """
    total = len(messages)
    keep = math.ceil(total * raw_text_percentage / 100)
    cut = total - keep
    while cut < total and messages[cut].sender != "human":
        cut += 1
    if cut >= total:
        cut = 0
    return list(messages[:cut]), list(messages[cut:])


class Summarizer:
    """
    Produce a synthetic summary exchange for the older part of a history.

    The summary is requested from a temporary conversation, which is deleted
    afterwards whether or not the request succeeded.
    """

    def __init__(self, client: ConversationClient, config: ForkConfig) -> None:
        self._client = client
        self._config = config
        self._logger = structlog.get_logger("canopy.fork.summary")

    async def summarize(
        self,
        messages: Sequence[Message],
        *,
        model: str | None,
        include_attachments: bool,
        summary_prompt: str | None = None,
    ) -> list[Message]:
        """
        Summarise ``messages`` into a human summary turn and an assistant acknowledgement.

        Args:
            messages: The older part of the history, root first.
            model: Model for the temporary conversation when ``summary_model``
                is not configured.
            include_attachments: Whether the fork carries files over. Controls
                the prompt wording and whether the summary turn keeps them.
            summary_prompt: Overrides the configured summary prompt.

        Returns:
            Two chained messages: the summary (parented to the root sentinel)
            and the acknowledgement.

        Raises:
            CompletionFailed: If the summary completion fails or produces no reply.
            NetworkError: If the temporary conversation cannot be used.
        """
        files_v2 = [f for m in messages for f in m.files_v2]
        attachments = [a for m in messages for a in m.attachments]
        chatlog = summary_chatlog(
            [{"sender": m.sender, "text": m.text(include_tool_calls=False)} for m in messages]
        )
        prompt = summary_request(
            summary_prompt or self._config.summary_prompt, files_forwarded=include_attachments
        )

        temp_id = await self._client.create_conversation(
            f"Temp_Summary_{int(time.time() * 1000)}",
            model=self._config.summary_model or model,
        )
        log = self._logger.bind(temp_conversation_id=temp_id)
        try:
            descriptors = [d for d in (file_descriptor(f) for f in files_v2) if d is not None]
            rehosted = await rehost_assets(self._client, descriptors)
            await self._client.send_completion(
                temp_id,
                prompt,
                attachments=[
                    *attachments,
                    {
                        "extracted_content": chatlog,
                        "file_name": self._config.chatlog_filename,
                        "file_size": len(chatlog),
                        "file_type": "text/plain",
                    },
                ],
                files=rehosted.file_ids,
            )
            await self._client.wait_for_completion(temp_id)
            reply = await self._client.latest_assistant_message(temp_id)
            if reply is None:
                raise CompletionFailed(f"No summary reply in {temp_id!r}")
            summary_text = reply.text(include_tool_calls=False)
        finally:
            await self._client.delete_conversation(temp_id)

        log.info("history_summarized", messages=len(messages), summary_chars=len(summary_text))

        now = datetime.now(UTC).isoformat()
        summary = Message(
            id=str(uuid.uuid4()),
            parent_id=ROOT_MESSAGE_ID,
            sender="human",
            content=[{"type": "text", "text": summary_text}],
            created_at=now,
            files_v2=files_v2 if include_attachments else [],
            files=[f.get("file_uuid") for f in files_v2] if include_attachments else [],
            attachments=attachments if include_attachments else [],
        )
        acknowledgement = Message(
            id=str(uuid.uuid4()),
            parent_id=summary.id,
            sender="assistant",
            content=[{"type": "text", "text": SUMMARY_ACKNOWLEDGEMENT}],
            created_at=now,
        )
        return [summary, acknowledgement]

    async def condense(
        self,
        context: ForkContext,
        *,
        model: str | None,
        raw_text_percentage: int,
        include_attachments: bool,
        summary_prompt: str | None = None,
    ) -> tuple[ForkContext, bool]:
        """
        Replace the older part of a fork context with a summary exchange.

        Files, attachments and sync sources of the context are untouched, so
        everything referenced by the summarised messages is still rehosted.

        Returns:
            The new context and whether anything was summarised.
        """
        to_summarize, to_keep = split_for_summary(context.messages, raw_text_percentage)
        if not to_summarize:
            return context, False

        pair = await self.summarize(
            to_summarize,
            model=model,
            include_attachments=include_attachments,
            summary_prompt=summary_prompt,
        )
        if to_keep:
            to_keep[0] = to_keep[0].model_copy(update={"parent_id": pair[-1].id})
        condensed = context.model_copy(
            update={
                "messages": [*pair, *to_keep],
                "texts": [
                    *(m.text() for m in pair),
                    *context.texts[len(to_summarize) :],
                ],
            }
        )
        return condensed, True
