"""Transport layer for the SelfDB client.

This package contains all IO and network handling.

Components:
- http: HTTP client with retry/backoff and error translation
- ws: WebSocket connection management
- ws_client: WebSocket message iteration
"""

from .http import RetryPolicy, SelfDBHttpClient
from .ws import connect_websocket
from .ws_client import SelfDBWsClient, SelfDBWsMessage, SelfDBWsMessageType

__all__ = [
    "RetryPolicy",
    "SelfDBHttpClient",
    "SelfDBWsClient",
    "SelfDBWsMessage",
    "SelfDBWsMessageType",
    "connect_websocket",
]
