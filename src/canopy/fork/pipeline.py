"""
Fork synthesis: materialise the history up to a message as a new conversation.

The remote service cannot clone a conversation, so a fork is synthesised:

1. **Extract** the linear history ending at the target message.
2. **Summarize** (optional) the older part into a summary exchange.
3. **Rehost** every referenced file and sync source as new uploads.
4. **Materialize** the history as a ``chatlog.txt`` transcript attachment.
5. **Create** an empty conversation named ``"Fork of <name>"``.
6. **Seed** it with one completion that carries the transcript and assets.
7. **Settle** for a short delay so the acknowledgement turn can finish.

The extracted history is then stored as the new conversation's phantom
sequence, so reads through the overlay show it in place.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from enum import StrEnum
from typing import Any, TypeVar

import structlog

from canopy.errors import ForkCancelled
from canopy.events.bus import CanopyEvent, EventBus
from canopy.fork.prompts import seed_prompt
from canopy.fork.rehost import RehostResult, rehost_assets
from canopy.fork.summary import Summarizer
from canopy.ids import make_id
from canopy.models.config import ForkConfig, ForkOptions
from canopy.models.message import ROOT_MESSAGE_ID, ForkResult
from canopy.remote.client import ConversationClient
from canopy.store.overlay import OverlayStore
from canopy.tree.context import build_fork_context

T = TypeVar("T")


class ForkState(StrEnum):
    EXTRACT = "extract"
    SUMMARIZE = "summarize"
    REHOST = "rehost"
    MATERIALIZE = "materialize"
    CREATE = "create"
    SEED = "seed"
    SETTLE = "settle"
    SUCCESS = "success"
    FAILED = "failed"


CANCELLABLE_STATES: frozenset[ForkState] = frozenset(
    {ForkState.EXTRACT, ForkState.SUMMARIZE, ForkState.REHOST, ForkState.MATERIALIZE}
)
"""States in which nothing has been created remotely yet."""


class _ForkRun:
    """Mutable bookkeeping for one in-progress fork."""

    def __init__(self, fork_id: str) -> None:
        self.fork_id = fork_id
        self.state = ForkState.EXTRACT
        self.cancelled = False
        self._inflight: asyncio.Future[Any] | None = None

    async def track(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` as a task that ``cancel()`` can abort."""
        task = asyncio.ensure_future(awaitable)
        self._inflight = task
        try:
            return await task
        except asyncio.CancelledError:
            if self.cancelled:
                raise ForkCancelled(self.fork_id) from None
            raise
        finally:
            self._inflight = None

    def cancel(self) -> None:
        self.cancelled = True
        if self._inflight is not None:
            self._inflight.cancel()


class ForkPipeline:
    """
    Runs fork operations against the remote service.

    Several forks may run concurrently; each one is keyed by its ``fork_id``
    (published with ``fork.started``) and can be cancelled until its
    conversation is created.

    Usage::

        pipeline = ForkPipeline(client, overlay, config.fork, event_bus=bus)
        result = await pipeline.fork_from(conversation_id, message_id, "model-x")
    """

    def __init__(
        self,
        client: ConversationClient,
        overlay: OverlayStore,
        config: ForkConfig,
        *,
        event_bus: EventBus | None = None,
        summarizer: Summarizer | None = None,
    ) -> None:
        self._client = client
        self._overlay = overlay
        self._config = config
        self._event_bus = event_bus
        self._summarizer = summarizer or Summarizer(client, config)
        self._runs: dict[str, _ForkRun] = {}
        self._logger = structlog.get_logger("canopy.fork")

    @property
    def active_forks(self) -> dict[str, ForkState]:
        """State of every fork currently in progress, by fork id."""
        return {fork_id: run.state for fork_id, run in self._runs.items()}

    def cancel(self, fork_id: str) -> bool:
        """
        Abort a fork that has not created its conversation yet.

        In-flight downloads and uploads are discarded and ``fork_from`` raises
        ``ForkCancelled``.

        Returns:
            True if the fork was cancelled, False if it is unknown or already
            past the point where cancelling is safe.
        """
        run = self._runs.get(fork_id)
        if run is None or run.state not in CANCELLABLE_STATES:
            return False
        run.cancel()
        self._logger.info("fork_cancel_requested", fork_id=fork_id, state=str(run.state))
        return True

    async def fork_from(
        self,
        conversation_id: str,
        target_message_id: str,
        model: str,
        *,
        options: ForkOptions | None = None,
        style: dict[str, Any] | None = None,
        fork_id: str | None = None,
    ) -> ForkResult:
        """
        Create a new conversation holding the history up to ``target_message_id``.

        Args:
            conversation_id: Source conversation.
            target_message_id: Last message carried into the fork.
            model: Model of the new conversation.
            options: Per-call overrides of the fork configuration.
            style: Personalised style forwarded with the seed completion.
            fork_id: Id for this operation. Generated when omitted.

        Returns:
            ForkResult describing the new conversation.

        Raises:
            NetworkError: If reading the source, creating or seeding fails.
                A conversation created before any later failure is deleted.
            MalformedTreeError: If the source tree is cyclic or dangling.
            CompletionFailed: If summarisation fails.
            ForkCancelled: If ``cancel()`` was called before Create.
        """
        config = (options or ForkOptions()).resolve(self._config)
        run = _ForkRun(fork_id or make_id("fork"))
        self._runs[run.fork_id] = run
        log = self._logger.bind(fork_id=run.fork_id, conversation_id=conversation_id)
        started = time.monotonic()
        new_conversation_id: str | None = None

        self._publish(
            CanopyEvent.FORK_STARTED,
            {
                "fork_id": run.fork_id,
                "source_conversation_id": conversation_id,
                "target_message_id": target_message_id,
                "model": model,
            },
        )
        log.info("fork_started", target_message_id=target_message_id, model=model)

        try:
            self._enter(run, ForkState.EXTRACT)
            conversation = await run.track(self._client.get_conversation(conversation_id))
            context = build_fork_context(
                conversation,
                target_message_id,
                include_attachments=config.include_attachments,
                include_tool_calls=config.include_tool_calls,
                strategy=config.history_strategy,
            )

            summarized = False
            if config.raw_text_percentage < 100:
                self._enter(run, ForkState.SUMMARIZE)
                context, summarized = await run.track(
                    self._summarizer.condense(
                        context,
                        model=model,
                        raw_text_percentage=config.raw_text_percentage,
                        include_attachments=config.include_attachments,
                        summary_prompt=config.summary_prompt,
                    )
                )

            self._enter(run, ForkState.REHOST)
            rehosted: RehostResult = await run.track(
                rehost_assets(
                    self._client,
                    context.files,
                    context.sync_sources,
                    on_drop=lambda kind, name, exc: self._publish(
                        CanopyEvent.FORK_ASSET_DROPPED,
                        {"fork_id": run.fork_id, "kind": kind, "name": name, "error": str(exc)},
                    ),
                )
            )

            self._enter(run, ForkState.MATERIALIZE)
            attachments = [*context.attachments, context.chatlog_attachment(config.chatlog_filename)]

            self._enter(run, ForkState.CREATE)
            name = f"Fork of {context.name.strip() or 'Untitled'}"
            new_conversation_id = await self._client.create_conversation(
                name, model=model, project_id=context.project_id
            )
            log = log.bind(new_conversation_id=new_conversation_id)

            self._enter(run, ForkState.SEED)
            await self._client.send_completion(
                new_conversation_id,
                seed_prompt(config.chatlog_filename),
                parent_message_id=ROOT_MESSAGE_ID,
                attachments=attachments,
                files=rehosted.file_ids,
                sync_sources=rehosted.sync_ids,
                style=style,
                model=model,
            )

            self._enter(run, ForkState.SETTLE)
            await asyncio.sleep(config.settle_delay)

            phantom_count = 0
            if config.store_phantom_history and context.messages:
                stored = await self._overlay.put(new_conversation_id, context.messages)
                phantom_count = len(stored)
                self._publish(
                    CanopyEvent.PHANTOMS_STORED,
                    {"conversation_id": new_conversation_id, "count": phantom_count},
                )

            result = ForkResult(
                conversation_id=new_conversation_id,
                name=name,
                source_conversation_id=conversation_id,
                file_ids=rehosted.file_ids,
                sync_ids=rehosted.sync_ids,
                dropped_files=rehosted.dropped_files,
                message_count=len(context.messages),
                phantom_count=phantom_count,
                summarized=summarized,
                elapsed_ms=(time.monotonic() - started) * 1000,
            )
            self._enter(run, ForkState.SUCCESS)
        except Exception as exc:
            failed_in = run.state
            run.state = ForkState.FAILED
            log.error("fork_failed", state=str(failed_in), error=str(exc))
            payload: dict[str, Any] = {
                "fork_id": run.fork_id,
                "state": str(failed_in),
                "error": str(exc),
            }
            if new_conversation_id is not None:
                # A half-built fork never outlives the failure.
                payload["conversation_id"] = new_conversation_id
                payload["deleted"] = await self._client.delete_conversation(new_conversation_id)
            self._publish(CanopyEvent.FORK_FAILED, payload)
            raise
        finally:
            self._runs.pop(run.fork_id, None)

        log.info(
            "fork_completed",
            messages=result.message_count,
            files=len(result.file_ids),
            dropped=len(result.dropped_files),
            summarized=summarized,
            elapsed_ms=round(result.elapsed_ms, 1),
        )
        self._publish(CanopyEvent.FORK_COMPLETED, {"fork_id": run.fork_id, **result.model_dump()})
        return result

    def _enter(self, run: _ForkRun, state: ForkState) -> None:
        if run.cancelled and (state in CANCELLABLE_STATES or state == ForkState.CREATE):
            raise ForkCancelled(run.fork_id)
        run.state = state
        self._logger.debug("fork_state_changed", fork_id=run.fork_id, state=str(state))
        self._publish(CanopyEvent.FORK_STATE_CHANGED, {"fork_id": run.fork_id, "state": str(state)})

    def _publish(self, event: CanopyEvent, payload: dict[str, Any]) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event, payload)
