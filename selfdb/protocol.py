"""Frame helpers for the SelfDB realtime WebSocket protocol.

Client to server frames::

    {"type": "authenticate", "token": "..."}
    {"type": "subscribe", "channel": "...", "event": "...", "filter": {...}}
    {"type": "unsubscribe", "channel": "...", "event": "..."}
    {"type": "ping"}

Server to client frames carry ``type``, ``channel``, ``event`` and
``payload``; ``{"type": "pong"}`` answers a ping. Optional fields are
omitted rather than sent as ``null``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

PONG = "pong"


@dataclass(frozen=True, slots=True)
class RealtimeMessage:
    """Inbound realtime frame."""

    type: str
    channel: str | None = None
    event: str | None = None
    payload: Any = None


def _frame(msg_type: str, **fields: Any) -> dict[str, Any]:
    frame: dict[str, Any] = {"type": msg_type}
    frame.update({key: value for key, value in fields.items() if value is not None})
    return frame


def build_authenticate(token: str) -> dict[str, Any]:
    """Build the handshake frame sent right after the socket opens."""
    return {"type": "authenticate", "token": token}


def build_subscribe(
    channel: str,
    *,
    event: str | None = None,
    filter: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return _frame("subscribe", channel=channel, event=event, filter=filter)


def build_unsubscribe(channel: str, *, event: str | None = None) -> dict[str, Any]:
    return _frame("unsubscribe", channel=channel, event=event)


def build_ping() -> dict[str, Any]:
    return {"type": "ping"}


def parse_message(data: dict[str, Any]) -> RealtimeMessage:
    """Parse a decoded frame into a RealtimeMessage.

    Raises:
        ValueError: If the frame has no string ``type``.
    """
    msg_type = data.get("type")
    if not isinstance(msg_type, str):
        raise ValueError(f"Frame has no type: {data!r}")
    return RealtimeMessage(
        type=msg_type,
        channel=data.get("channel"),
        event=data.get("event"),
        payload=data.get("payload"),
    )
