"""Realtime subscription client for SelfDB.

This module multiplexes channel subscriptions over a single WebSocket. It
handles:
- Connection management and the authentication handshake
- Connection state machine
- Heartbeat keepalive
- Reconnect with exponential backoff
- Fan-out of inbound messages to matching subscriptions
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Protocol

from .errors import SelfDBError
from .protocol import (
    PONG,
    build_authenticate,
    build_ping,
    build_subscribe,
    build_unsubscribe,
    parse_message,
)
from .transport.ws_client import SelfDBWsClient, SelfDBWsMessage, SelfDBWsMessageType

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .auth import AuthClient
    from .config import SelfDBConfig

_LOGGER = logging.getLogger(__name__)

RealtimeCallback = Callable[[Any], Awaitable[None] | None]

DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_HEARTBEAT_INTERVAL = 30.0


class RealtimeSocket(Protocol):
    """What the realtime client needs from a WebSocket wrapper."""

    async def connect(self, url: str, *, timeout: float = ...) -> None: ...

    async def close(self) -> None: ...

    async def send_json(self, payload: dict[str, Any]) -> None: ...

    def __aiter__(self) -> AsyncIterator[SelfDBWsMessage]: ...


@dataclass(slots=True)
class ConnectionState:
    """Socket state. ``connecting`` and ``connected`` never both hold."""

    connected: bool = False
    connecting: bool = False
    reconnecting: bool = False


@dataclass(slots=True)
class Subscription:
    """A callback registered for a channel, optionally narrowed to one event."""

    id: str
    channel: str
    callback: RealtimeCallback
    event: str | None = None
    filter: dict[str, Any] | None = None
    _client: RealtimeClient | None = field(default=None, repr=False, compare=False)

    def matches(self, channel: str | None, event: str | None) -> bool:
        return self.channel == channel and (self.event is None or self.event == event)

    async def unsubscribe(self) -> None:
        if self._client is not None:
            await self._client.unsubscribe(self.id)


class RealtimeClient:
    """Single-socket realtime client with channel multiplexing.

    Usage:
        realtime = RealtimeClient(config, auth)
        await realtime.connect()
        sub = await realtime.subscribe("users", on_change, event="insert")
        await sub.unsubscribe()
        await realtime.disconnect()
    """

    def __init__(
        self,
        config: SelfDBConfig,
        auth: AuthClient,
        *,
        url: str | None = None,
        auto_reconnect: bool = True,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        connect_timeout: float | None = None,
        ws_factory: Callable[[], RealtimeSocket] = SelfDBWsClient,
    ) -> None:
        self._config = config
        self._auth = auth
        self.url = url or config.realtime_url
        self.auto_reconnect = auto_reconnect
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.heartbeat_interval = heartbeat_interval
        self._connect_timeout = connect_timeout
        self._ws_factory = ws_factory

        self._ws: RealtimeSocket | None = None
        self._state = ConnectionState()
        self._subscriptions: dict[str, Subscription] = {}
        self._sub_ids = itertools.count(1)
        self._retry_count = 0

        self._listen_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

        # Bumped by disconnect(); a connect() started under an older value
        # must not install its socket.
        self._generation = 0
        self._connecting_ws: RealtimeSocket | None = None

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    @property
    def connection_state(self) -> ConnectionState:
        """Snapshot of the connection state."""
        return replace(self._state)

    @property
    def is_connected(self) -> bool:
        return self._state.connected

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def subscriptions(self) -> dict[str, Subscription]:
        return dict(self._subscriptions)

    async def connect(self) -> None:
        """Open the socket and send the authentication handshake.

        Returns once the handshake is sent; no server acknowledgement is
        awaited. Does nothing when already connected or connecting. A
        ``disconnect()`` issued while the socket is still opening wins: the
        socket is closed and never installed.

        Raises:
            SelfDBError: The socket could not be opened. A reconnect may
                still be scheduled when auto-reconnect is enabled.
        """
        if self._state.connected or self._state.connecting:
            return

        self._state.connecting = True
        _LOGGER.info(
            "Connecting to %s (attempt #%d)", self.url, self._retry_count + 1
        )

        generation = self._generation
        ws = self._ws_factory()
        self._connecting_ws = ws
        try:
            if self._connect_timeout is not None:
                await ws.connect(self.url, timeout=self._connect_timeout)
            else:
                await ws.connect(self.url)
            if generation == self._generation:
                await ws.send_json(build_authenticate(self._handshake_token()))
        except asyncio.CancelledError:
            await self._close_quietly(ws)
            self._finish_connecting(ws, generation)
            raise
        except SelfDBError as err:
            await self._close_quietly(ws)
            if not self._finish_connecting(ws, generation):
                _LOGGER.debug("Connect aborted by disconnect: %s", err)
                return
            _LOGGER.warning("Realtime connection failed: %s", err)
            self._handle_disconnection()
            raise

        if not self._finish_connecting(ws, generation):
            _LOGGER.debug("Connect aborted by disconnect, closing socket")
            await self._close_quietly(ws)
            return

        self._ws = ws
        self._state = ConnectionState(connected=True)
        self._retry_count = 0
        _LOGGER.info("Realtime connected, starting listener")

        self._start_heartbeat()
        self._listen_task = asyncio.create_task(self._listen(ws))

    async def disconnect(self) -> None:
        """Close the socket and stop reconnecting.

        Cancels any pending reconnect, stops the heartbeat and listener and
        drops every subscription. ``connect()`` may be called again later.
        """
        _LOGGER.info("Disconnecting realtime client")

        self._generation += 1
        if self._connecting_ws is not None:
            pending, self._connecting_ws = self._connecting_ws, None
            await self._close_quietly(pending)

        await self._cancel(self._reconnect_task)
        self._reconnect_task = None
        await self._stop_heartbeat()
        await self._cancel(self._listen_task)
        self._listen_task = None

        self._subscriptions.clear()

        if self._ws is not None:
            ws, self._ws = self._ws, None
            await self._close_quietly(ws)

        self._state = ConnectionState()

    # -------------------------------------------------------------------------
    # Public API: Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        channel: str,
        callback: RealtimeCallback,
        *,
        event: str | None = None,
        filter: dict[str, Any] | None = None,
    ) -> Subscription:
        """Register ``callback`` for messages on ``channel``.

        The subscription is registered even while disconnected, but the
        server only learns about it if the socket is open now; it is not
        replayed after a reconnect.
        """
        sub_id = (
            f"{channel}_{event or 'all'}_{int(time.time() * 1000)}_{next(self._sub_ids)}"
        )
        subscription = Subscription(
            id=sub_id,
            channel=channel,
            callback=callback,
            event=event,
            filter=filter,
            _client=self,
        )
        self._subscriptions[sub_id] = subscription

        if self._ws is not None and self._state.connected:
            await self._send(build_subscribe(channel, event=event, filter=filter))

        _LOGGER.debug("Subscribed %s", sub_id)
        return subscription

    async def unsubscribe(self, subscription_id: str) -> None:
        """Remove a subscription. Unknown ids are ignored."""
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return

        if self._ws is not None and self._state.connected:
            await self._send(
                build_unsubscribe(subscription.channel, event=subscription.event)
            )
        _LOGGER.debug("Unsubscribed %s", subscription_id)

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    def _handshake_token(self) -> str:
        headers = self._auth.get_auth_headers()
        authorization = headers.get("Authorization", "")
        if authorization.startswith("Bearer "):
            return authorization.removeprefix("Bearer ")
        return headers.get("apikey", "")

    def _finish_connecting(self, ws: RealtimeSocket, generation: int) -> bool:
        """End a connect attempt. Returns False if disconnect() superseded it."""
        if self._connecting_ws is ws:
            self._connecting_ws = None
        if generation != self._generation:
            return False
        self._state.connecting = False
        return True

    def _handle_disconnection(self) -> None:
        """Schedule a reconnect with exponential backoff, if allowed."""
        self._state.connected = False
        self._state.connecting = False

        pending = self._reconnect_task
        if pending is not None and pending is not asyncio.current_task():
            return

        if not self.auto_reconnect or self._retry_count >= self.max_retries:
            self._state.reconnecting = False
            _LOGGER.info(
                "Realtime disconnected, not reconnecting (%d/%d retries used)",
                self._retry_count,
                self.max_retries,
            )
            return

        self._state.reconnecting = True
        self._retry_count += 1
        delay = self.retry_delay * (2 ** (self._retry_count - 1))

        _LOGGER.info(
            "Reconnecting in %.2fs (attempt %d/%d)",
            delay,
            self._retry_count,
            self.max_retries,
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay(delay))

    async def _reconnect_after_delay(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            await self.connect()
        except asyncio.CancelledError:
            _LOGGER.debug("Reconnect cancelled")
            raise
        except SelfDBError as err:
            _LOGGER.debug("Reconnect attempt %d failed: %s", self._retry_count, err)
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    # -------------------------------------------------------------------------
    # Internal: Message Listener
    # -------------------------------------------------------------------------

    async def _listen(self, ws: RealtimeSocket) -> None:
        message_count = 0
        try:
            async for msg in ws:
                if msg.type is SelfDBWsMessageType.TEXT:
                    message_count += 1
                    await self._handle_frame(msg)
                elif msg.type is SelfDBWsMessageType.CLOSED:
                    _LOGGER.info("Realtime socket closed by server")
                    break
                elif msg.type is SelfDBWsMessageType.ERROR:
                    _LOGGER.error("Realtime socket error")
                    break
        except asyncio.CancelledError:
            _LOGGER.debug("Listener cancelled (%d messages)", message_count)
            raise
        except SelfDBError as err:
            _LOGGER.warning("Realtime client error: %s", err)

        if self._ws is ws:
            self._ws = None
            self._listen_task = None
            await self._stop_heartbeat()
            await self._close_quietly(ws)
            self._handle_disconnection()

    async def _handle_frame(self, msg: SelfDBWsMessage) -> None:
        try:
            message = parse_message(SelfDBWsClient.decode_json(msg))
        except (ValueError, SelfDBError) as err:
            _LOGGER.warning("Invalid realtime message: %s", err)
            return

        if message.type == PONG:
            return

        await self.dispatch(message.channel, message.event, message.payload)

    async def dispatch(self, channel: str | None, event: str | None, payload: Any) -> int:
        """Deliver ``payload`` to every matching subscription.

        Returns the number of callbacks invoked.
        """
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if not subscription.matches(channel, event):
                continue
            delivered += 1
            try:
                result = subscription.callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as err:
                _LOGGER.exception(
                    "Realtime callback error for %s: %s", subscription.id, err
                )
        return delivered

    # -------------------------------------------------------------------------
    # Internal: Heartbeat
    # -------------------------------------------------------------------------

    def _start_heartbeat(self) -> None:
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        await self._cancel(task)

    async def _heartbeat_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.heartbeat_interval)
                if self._ws is not None and self._state.connected:
                    await self._send(build_ping())
        except asyncio.CancelledError:
            _LOGGER.debug("Heartbeat cancelled")
            raise

    # -------------------------------------------------------------------------
    # Internal: Helpers
    # -------------------------------------------------------------------------

    async def _send(self, frame: dict[str, Any]) -> bool:
        if self._ws is None:
            return False
        try:
            await self._ws.send_json(frame)
            return True
        except SelfDBError as err:
            _LOGGER.warning("Failed to send %s frame: %s", frame.get("type"), err)
            return False

    @staticmethod
    async def _close_quietly(ws: RealtimeSocket) -> None:
        try:
            await asyncio.wait_for(ws.close(), timeout=2.0)
        except TimeoutError:
            _LOGGER.warning("WebSocket close timed out")
        except SelfDBError as err:
            _LOGGER.debug("WebSocket close failed: %s", err)

    @staticmethod
    async def _cancel(task: asyncio.Task[None] | None) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
