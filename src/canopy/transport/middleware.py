"""
Request/response interception for the remote conversation API.

``InterceptingTransport`` wraps any ``httpx.AsyncBaseTransport`` and runs each
outgoing request through a fixed, ordered list of ``InterceptionRule``
objects. A matching rule receives the request plus a ``call_next`` callable
that continues down the chain and finally reaches the wrapped transport.
Requests no rule matches pass through untouched.

Two rules make the phantom overlay work:

- ``PhantomReadRule`` splices stored phantoms into conversation reads.
- ``CompletionParentRule`` moves a completion whose parent is the last
  phantom back onto the root sentinel, since the remote service has never
  seen the phantom ids.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

import httpx
import structlog

from canopy.errors import ParseError
from canopy.events.bus import CanopyEvent, EventBus
from canopy.models.message import ROOT_MESSAGE_ID, Message
from canopy.transport.phantoms import inject_phantom_messages
from canopy.transport.urls import (
    conversation_id_from_url,
    is_completion_request,
    is_conversation_read,
)

CallNext = Callable[[httpx.Request], Awaitable[httpx.Response]]

# Headers that describe the original body bytes and go stale once it is rewritten.
_BODY_HEADERS = frozenset({"content-length", "content-encoding", "transfer-encoding"})


class PhantomSource(Protocol):
    """Anything that can look up the phantom sequence of a conversation."""

    async def get(self, conversation_id: str) -> list[Message] | None: ...


def _without_body_headers(headers: httpx.Headers) -> list[tuple[str, str]]:
    return [(k, v) for k, v in headers.multi_items() if k.lower() not in _BODY_HEADERS]


class InterceptionRule(ABC):
    """One step of the interception chain."""

    name: str = "rule"

    @abstractmethod
    def matches(self, request: httpx.Request) -> bool:
        """Return True if this rule wants to handle ``request``."""

    @abstractmethod
    async def handle(self, request: httpx.Request, call_next: CallNext) -> httpx.Response:
        """Handle ``request``; call ``call_next`` to continue down the chain."""


class InterceptingTransport(httpx.AsyncBaseTransport):
    """
    An httpx transport that applies interception rules before delegating.

    Example::

        transport = InterceptingTransport(
            httpx.AsyncHTTPTransport(),
            [PhantomReadRule(overlay), CompletionParentRule(overlay)],
        )
        client = httpx.AsyncClient(transport=transport)
    """

    def __init__(
        self,
        inner: httpx.AsyncBaseTransport,
        rules: Sequence[InterceptionRule] = (),
    ) -> None:
        self._inner = inner
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[InterceptionRule, ...]:
        return self._rules

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._dispatch(0, request)

    async def _dispatch(self, start: int, request: httpx.Request) -> httpx.Response:
        for index in range(start, len(self._rules)):
            rule = self._rules[index]
            if rule.matches(request):

                async def call_next(req: httpx.Request, _next: int = index + 1) -> httpx.Response:
                    return await self._dispatch(_next, req)

                return await rule.handle(request, call_next)
        return await self._inner.handle_async_request(request)

    async def aclose(self) -> None:
        await self._inner.aclose()


class PhantomReadRule(InterceptionRule):
    """
    Augment conversation reads with the stored phantom sequence.

    Non-success responses pass through unchanged. A success response whose
    body is not JSON raises ``ParseError``. A conversation without phantoms
    gets its body back as-is.
    """

    name = "phantom_read"

    def __init__(self, overlay: PhantomSource, event_bus: EventBus | None = None) -> None:
        self._overlay = overlay
        self._event_bus = event_bus
        self._logger = structlog.get_logger("canopy.transport.read")

    def matches(self, request: httpx.Request) -> bool:
        return is_conversation_read(request)

    async def handle(self, request: httpx.Request, call_next: CallNext) -> httpx.Response:
        response = await call_next(request)
        if not response.is_success:
            return response

        body = await response.aread()
        try:
            data: Any = json.loads(body)
        except ValueError as exc:
            raise ParseError(
                "Conversation response is not valid JSON",
                status_code=response.status_code,
                url=str(request.url),
            ) from exc

        conversation_id = conversation_id_from_url(request.url)
        phantoms = await self._overlay.get(conversation_id) if conversation_id else None
        if not phantoms:
            return self._rebuild(response, request, body)

        count, reparented = inject_phantom_messages(data, phantoms)
        self._logger.debug(
            "phantoms_injected",
            conversation_id=conversation_id,
            count=count,
            reparented=reparented,
        )
        if self._event_bus is not None:
            self._event_bus.publish(
                CanopyEvent.PHANTOMS_INJECTED,
                {"conversation_id": conversation_id, "count": count, "reparented": reparented},
            )
        return self._rebuild(response, request, json.dumps(data).encode())

    @staticmethod
    def _rebuild(response: httpx.Response, request: httpx.Request, content: bytes) -> httpx.Response:
        return httpx.Response(
            status_code=response.status_code,
            headers=_without_body_headers(response.headers),
            content=content,
            request=request,
            extensions=response.extensions,
        )


class CompletionParentRule(InterceptionRule):
    """
    Point completions that reply to the last phantom at the root sentinel.

    Only the ``parent_message_uuid`` field changes; every other body field
    and header is forwarded verbatim.
    """

    name = "completion_parent"

    def __init__(self, overlay: PhantomSource, event_bus: EventBus | None = None) -> None:
        self._overlay = overlay
        self._event_bus = event_bus
        self._logger = structlog.get_logger("canopy.transport.write")

    def matches(self, request: httpx.Request) -> bool:
        return is_completion_request(request)

    async def handle(self, request: httpx.Request, call_next: CallNext) -> httpx.Response:
        conversation_id = conversation_id_from_url(request.url)
        phantoms = await self._overlay.get(conversation_id) if conversation_id else None
        if not phantoms:
            return await call_next(request)

        raw = await request.aread()
        try:
            body = json.loads(raw)
        except ValueError:
            return await call_next(request)

        last_id = phantoms[-1].id
        if not isinstance(body, dict) or body.get("parent_message_uuid") != last_id:
            return await call_next(request)

        body["parent_message_uuid"] = ROOT_MESSAGE_ID
        rewritten = httpx.Request(
            request.method,
            request.url,
            headers=_without_body_headers(request.headers),
            content=json.dumps(body).encode(),
            extensions=request.extensions,
        )
        self._logger.info(
            "completion_parent_rewritten",
            conversation_id=conversation_id,
            phantom_id=last_id,
        )
        if self._event_bus is not None:
            self._event_bus.publish(
                CanopyEvent.PARENT_REWRITTEN,
                {"conversation_id": conversation_id, "phantom_id": last_id},
            )
        return await call_next(rewritten)
