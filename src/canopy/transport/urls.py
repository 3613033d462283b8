"""URL-shape predicates for the remote conversation API."""

from __future__ import annotations

import httpx

CONVERSATIONS_SEGMENT = "chat_conversations"


def conversation_id_from_url(url: httpx.URL | str) -> str | None:
    """Return the path segment that follows ``chat_conversations``, if any."""
    segments = httpx.URL(str(url)).path.split("/")
    try:
        index = segments.index(CONVERSATIONS_SEGMENT)
    except ValueError:
        return None
    if index + 1 >= len(segments):
        return None
    return segments[index + 1] or None


def _trailing_segments(url: httpx.URL) -> list[str]:
    segments = [s for s in url.path.split("/") if s]
    if CONVERSATIONS_SEGMENT not in segments:
        return []
    return segments[segments.index(CONVERSATIONS_SEGMENT) + 1 :]


def is_conversation_read(request: httpx.Request) -> bool:
    """
    True for a GET of a conversation's message list.

    Matches ``.../chat_conversations/<id>?...rendering_mode=messages``.
    """
    if request.method != "GET":
        return False
    if request.url.params.get("rendering_mode") != "messages":
        return False
    return len(_trailing_segments(request.url)) == 1


def is_completion_request(request: httpx.Request) -> bool:
    """True for a POST that starts a new completion in a conversation."""
    if request.method != "POST":
        return False
    trailing = _trailing_segments(request.url)
    return len(trailing) == 2 and trailing[1] == "completion"
