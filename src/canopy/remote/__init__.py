"""Remote conversation API client."""

from canopy.remote.client import ConversationClient, create_http_client

__all__ = ["ConversationClient", "create_http_client"]
