"""SelfDB client entry point."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import aiohttp

from .auth import AuthClient
from .config import SelfDBConfig
from .db import DatabaseClient
from .functions import FunctionsClient
from .realtime import RealtimeClient
from .storage import StorageClient
from .transport.http import RetryPolicy, SelfDBHttpClient

if TYPE_CHECKING:
    from .persistence import SessionStorage


class SelfDB:
    """Main entry point wiring every SelfDB service to one configuration.

    Usage:
        async with SelfDB(SelfDBConfig("http://localhost:8000", "anon-key")) as db:
            await db.auth.login("me@example.com", "secret")
            rows = await db.db.from_("posts").limit(10).execute()
    """

    def __init__(
        self,
        config: SelfDBConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        storage: SessionStorage | None = None,
        retry_policy: RetryPolicy | None = None,
        realtime: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Connection settings, owned by this client
            session: Shared aiohttp session. Created lazily when omitted
            storage: Where the auth session is persisted (in memory by default)
            retry_policy: Backoff policy for both HTTP transports
            realtime: Keyword options for ``RealtimeClient``
        """
        self.config = config

        self.http = SelfDBHttpClient(config, session=session, retry_policy=retry_policy)
        self.storage_http = SelfDBHttpClient(
            config,
            base_url=config.storage_url,
            session=session,
            retry_policy=retry_policy,
        )

        self.auth = AuthClient(config, self.http, storage=storage)
        self.db = DatabaseClient(self.auth)
        self.storage = StorageClient(config, self.auth, self.storage_http)
        self.realtime = RealtimeClient(config, self.auth, **(realtime or {}))
        self.functions = FunctionsClient(self.auth)

    async def close(self) -> None:
        """Disconnect realtime and close owned HTTP sessions."""
        await self.realtime.disconnect()
        await self.http.close()
        await self.storage_http.close()

    async def __aenter__(self) -> SelfDB:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


def create_client(
    base_url: str,
    anon_key: str,
    *,
    storage_url: str | None = None,
    headers: dict[str, str] | None = None,
    timeout: float | None = None,
    **options: Any,
) -> SelfDB:
    """Create a SelfDB client.

    Example:
        >>> client = create_client("http://localhost:8000", "anon-key")
        >>> client.config.storage_url
        'http://localhost:8001'
    """
    config_kwargs: dict[str, Any] = {
        "base_url": base_url,
        "anon_key": anon_key,
        "storage_url": storage_url,
        "headers": headers or {},
    }
    if timeout is not None:
        config_kwargs["timeout"] = timeout
    return SelfDB(SelfDBConfig(**config_kwargs), **options)
