"""Exception taxonomy shared by every canopy component."""

from __future__ import annotations


class CanopyError(Exception):
    """Base class for canopy errors."""


class MalformedTreeError(CanopyError):
    """Raised when parent references form a cycle or cannot be resolved."""

    def __init__(self, message: str, *, message_id: str | None = None) -> None:
        super().__init__(message)
        self.message_id = message_id


class NetworkError(CanopyError):
    """
    Raised when a remote call fails or returns a non-success status.

    Transport-level failures (connection errors, timeouts) are re-raised as
    ``NetworkError`` with the original httpx exception chained as
    ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.detail = detail


class ParseError(NetworkError):
    """Raised when a remote response body does not have the expected shape."""


class CompletionFailed(NetworkError):
    """Raised when a completion reports an error or does not finish in time."""


class NavigationFailed(CanopyError):
    """Raised when the remote current-leaf pointer cannot be moved."""

    def __init__(self, conversation_id: str, leaf_id: str | None, reason: str) -> None:
        super().__init__(f"Cannot navigate {conversation_id!r} to {leaf_id!r}: {reason}")
        self.conversation_id = conversation_id
        self.leaf_id = leaf_id
        self.reason = reason


class ForkCancelled(CanopyError):
    """Raised by a fork operation that was cancelled before its conversation was created."""

    def __init__(self, fork_id: str) -> None:
        super().__init__(f"Fork {fork_id!r} was cancelled")
        self.fork_id = fork_id
