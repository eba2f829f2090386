"""Pytest configuration and fixtures for selfdb tests."""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from selfdb.auth import AuthClient
from selfdb.config import SelfDBConfig
from selfdb.persistence import MemoryStorage
from selfdb.transport.http import RetryPolicy, SelfDBHttpClient
from selfdb.transport.ws_client import SelfDBWsMessage, SelfDBWsMessageType

BASE_URL = "http://localhost:8000"
ANON_KEY = "anon-key"


@pytest.fixture
def config() -> SelfDBConfig:
    return SelfDBConfig(base_url=BASE_URL, anon_key=ANON_KEY)


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    session = MagicMock(spec=aiohttp.ClientSession)
    session.closed = False
    return session


@pytest.fixture
def http(config: SelfDBConfig, mock_session: MagicMock) -> SelfDBHttpClient:
    """HTTP client over the mock session that never sleeps between retries."""
    return SelfDBHttpClient(
        config,
        session=mock_session,
        retry_policy=RetryPolicy(max_retries=0),
    )


@pytest.fixture
def mock_http() -> MagicMock:
    """Transport double whose ``request`` is an AsyncMock."""
    transport = MagicMock(spec=SelfDBHttpClient)
    transport.request = AsyncMock()
    transport.get = AsyncMock()
    transport.post = AsyncMock()
    transport.put = AsyncMock()
    transport.delete = AsyncMock()
    return transport


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def auth(config: SelfDBConfig, mock_http: MagicMock, storage: MemoryStorage) -> AuthClient:
    return AuthClient(config, mock_http, storage=storage)


def login_response(**overrides: Any) -> dict[str, Any]:
    """Backend login payload."""
    response = {
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "token_type": "bearer",
        "is_superuser": False,
        "email": "me@example.com",
        "user_id": "42",
    }
    response.update(overrides)
    return response


def seed_session(
    storage: MemoryStorage,
    *,
    access_token: str = "access-1",
    refresh_token: str = "refresh-1",
    user: dict[str, Any] | None = None,
) -> None:
    """Persist a session the way AuthClient writes it."""
    storage.set_item("access_token", access_token)
    storage.set_item("refresh_token", refresh_token)
    storage.set_item(
        "selfdb_user",
        json.dumps(user or {"id": "42", "email": "me@example.com"}),
    )


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
    read_data: bytes | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call
        read_data: Data to return from read() call

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status

    if json_data is not None:
        response.json.return_value = json_data
    else:
        response.json.side_effect = ValueError("no json body")
    response.text.return_value = text_data if text_data is not None else ""
    if read_data is not None:
        response.read.return_value = read_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


class FakeSocket:
    """In-memory realtime socket.

    Frames pushed with ``feed`` are yielded as TEXT messages; ``drop``
    ends the stream the way a server-side close does.
    """

    def __init__(self, *, fail_connect: Exception | None = None) -> None:
        self.fail_connect = fail_connect
        self.url: str | None = None
        self.timeout: float | None = None
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._queue: asyncio.Queue[SelfDBWsMessage] = asyncio.Queue()

    async def connect(self, url: str, *, timeout: float = 15.0) -> None:
        self.url = url
        self.timeout = timeout
        if self.fail_connect is not None:
            raise self.fail_connect

    async def close(self) -> None:
        self.closed = True

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    def feed(self, frame: dict[str, Any] | str) -> None:
        data = frame if isinstance(frame, str) else json.dumps(frame)
        self._queue.put_nowait(SelfDBWsMessage(SelfDBWsMessageType.TEXT, data))

    def drop(self) -> None:
        self._queue.put_nowait(SelfDBWsMessage(SelfDBWsMessageType.CLOSED))

    def __aiter__(self) -> FakeSocket:
        return self

    async def __anext__(self) -> SelfDBWsMessage:
        return await self._queue.get()


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
