"""HTTP interception layer that overlays phantom messages on the remote API."""

from canopy.models.message import PHANTOM_MARKER, is_phantom_text, strip_phantom_marker
from canopy.transport.middleware import (
    CallNext,
    CompletionParentRule,
    InterceptingTransport,
    InterceptionRule,
    PhantomReadRule,
    PhantomSource,
)
from canopy.transport.phantoms import inject_phantom_messages, mark_text, normalize_phantom
from canopy.transport.urls import (
    conversation_id_from_url,
    is_completion_request,
    is_conversation_read,
)

__all__ = [
    "PHANTOM_MARKER",
    "CallNext",
    "CompletionParentRule",
    "InterceptingTransport",
    "InterceptionRule",
    "PhantomReadRule",
    "PhantomSource",
    "conversation_id_from_url",
    "inject_phantom_messages",
    "is_completion_request",
    "is_conversation_read",
    "is_phantom_text",
    "mark_text",
    "normalize_phantom",
    "strip_phantom_marker",
]
