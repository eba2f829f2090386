"""WebSocket helpers for the SelfDB realtime endpoint."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

from ..errors import (
    SelfDBConnectionError,
    SelfDBHandshakeError,
    SelfDBTimeout,
)


async def connect_websocket(
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    ping_interval: float | None = None,
    timeout: float = 15.0,
) -> ClientConnection:
    """Connect to a WebSocket endpoint.

    Keepalive is handled at the application level by the realtime client,
    so protocol pings are off unless ``ping_interval`` is given.

    Args:
        url: Full ``ws://`` or ``wss://`` URL
        headers: Extra headers sent with the opening handshake
        ping_interval: Interval for protocol-level ping frames
        timeout: Connection timeout in seconds
    """
    try:
        return await asyncio.wait_for(
            websockets.connect(
                url,
                additional_headers=dict(headers) if headers else None,
                ping_interval=ping_interval,
                close_timeout=5,
                max_size=None,
            ),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise SelfDBTimeout("WebSocket connection timed out") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise SelfDBHandshakeError("WebSocket handshake failed") from err
    except (OSError, WebSocketException) as err:
        raise SelfDBConnectionError("WebSocket connection failed") from err
