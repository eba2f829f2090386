"""WebSocket client wrapper for SelfDB realtime."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from ..errors import SelfDBConnectionError, SelfDBError
from .ws import connect_websocket

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

_LOGGER = logging.getLogger(__name__)


class SelfDBWsMessageType(Enum):
    """Normalized WebSocket message types."""

    TEXT = "text"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class SelfDBWsMessage:
    """Normalized WebSocket message payload."""

    type: SelfDBWsMessageType
    data: str | None = None


class SelfDBWsClient:
    """Wrapper around the websockets library connection."""

    def __init__(self) -> None:
        self._ws: ClientConnection | None = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def connect(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = 15.0,
    ) -> None:
        """Connect to the realtime websocket."""
        self._ws = await connect_websocket(url, headers=headers, timeout=timeout)

    async def close(self) -> None:
        """Close the websocket connection."""
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send a JSON payload to the websocket."""
        if self._ws is None:
            raise SelfDBConnectionError("WebSocket is not connected")
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as err:
            raise SelfDBConnectionError("WebSocket closed while sending") from err

    def __aiter__(self) -> AsyncIterator[SelfDBWsMessage]:
        if self._ws is None:
            raise SelfDBConnectionError("WebSocket is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[SelfDBWsMessage]:
        if self._ws is None:
            raise SelfDBConnectionError("WebSocket is not connected")

        try:
            async for msg in self._ws:
                if isinstance(msg, bytes):
                    continue
                yield SelfDBWsMessage(SelfDBWsMessageType.TEXT, msg)
        except ConnectionClosed:
            yield SelfDBWsMessage(type=SelfDBWsMessageType.CLOSED)
        except Exception:
            _LOGGER.debug("WebSocket receive failed", exc_info=True)
            yield SelfDBWsMessage(type=SelfDBWsMessageType.ERROR)
        else:
            # Normal iteration completion means the peer closed gracefully.
            yield SelfDBWsMessage(type=SelfDBWsMessageType.CLOSED)

    @staticmethod
    def decode_json(message: SelfDBWsMessage) -> dict[str, Any]:
        """Decode a TEXT message payload into a JSON object."""
        if message.type is not SelfDBWsMessageType.TEXT:
            raise SelfDBError("Only TEXT messages can be decoded")
        if not isinstance(message.data, str):
            raise SelfDBError("Message data is not a string")
        result = json.loads(message.data)
        if not isinstance(result, dict):
            raise SelfDBError("Message is not a JSON object")
        return result
