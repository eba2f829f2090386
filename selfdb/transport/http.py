"""HTTP client for SelfDB backend endpoints."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

import aiohttp

from ..errors import (
    SelfDBAuthError,
    SelfDBConnectionError,
    SelfDBError,
    SelfDBResponseError,
    SelfDBTimeout,
    SelfDBValidationError,
)

if TYPE_CHECKING:
    from ..config import SelfDBConfig

_LOGGER = logging.getLogger(__name__)

ResponseType = Literal["json", "text", "bytes"]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff policy for transient failures (seconds)."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise SelfDBValidationError(
                f"max_retries must be >= 0, got {self.max_retries}"
            )
        if self.base_delay < 0 or self.max_delay < 0:
            raise SelfDBValidationError("Retry delays must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Return the sleep before the retry following ``attempt``."""
        return min(self.base_delay * (2**attempt), self.max_delay)


class SelfDBHttpClient:
    """HTTP client wrapper for one SelfDB service base URL.

    The client knows nothing about authentication; callers pass whatever
    headers the request needs. Network failures, timeouts and 5xx
    responses are retried according to ``retry_policy``. A 4xx response is
    never retried.
    """

    def __init__(
        self,
        config: SelfDBConfig,
        *,
        base_url: str | None = None,
        session: aiohttp.ClientSession | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._config = config
        self._base_url = base_url
        self._session = session
        self._owns_session = session is None
        self.retry_policy = retry_policy or RetryPolicy()

    @property
    def base_url(self) -> str:
        """Base URL that relative request paths are joined to."""
        return (self._base_url or self._config.base_url).rstrip("/")

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the underlying session if this client created it.

        A borrowed session is left untouched and stays in use; its owner
        closes it. A client whose borrowed session was closed falls back to
        a session of its own on the next request.
        """
        if self._owns_session and self._session is not None:
            session, self._session = self._session, None
            await session.close()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        data: Any = None,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        response_type: ResponseType = "json",
    ) -> Any:
        """Perform one logical request, retrying transient failures.

        Args:
            method: HTTP method.
            path: Path relative to the base URL, or an absolute URL.
            json: JSON-serialisable body.
            data: Form fields, raw bytes, or a zero-argument callable that
                builds a fresh body for every attempt (needed for multipart
                forms, which aiohttp cannot send twice).
            params: Query string parameters.
            headers: Request headers, merged over the configured defaults.
            timeout: Total timeout in seconds, overriding the configured one.
            response_type: How to decode a successful body.

        Returns:
            The decoded response body (``None`` for an empty JSON body).

        Raises:
            SelfDBTimeout: The last attempt timed out.
            SelfDBConnectionError: The last attempt got no response.
            SelfDBAuthError: The backend answered 401.
            SelfDBResponseError: The backend answered with another non-2xx.
        """
        url = self._url(path)
        merged_headers = {**self._config.headers, **(headers or {})}
        total = timeout if timeout is not None else self._config.timeout
        query = _clean_params(params)
        policy = self.retry_policy

        attempt = 0
        while True:
            body = data() if callable(data) else data
            try:
                return await self._send(
                    method,
                    url,
                    json=json,
                    data=body,
                    params=query,
                    headers=merged_headers,
                    timeout=total,
                    response_type=response_type,
                )
            except SelfDBResponseError as err:
                if not err.is_retryable() or attempt >= policy.max_retries:
                    raise
                last_error: SelfDBError = err
            except (SelfDBTimeout, SelfDBConnectionError) as err:
                if attempt >= policy.max_retries:
                    raise
                last_error = err

            delay = policy.delay_for(attempt)
            attempt += 1
            _LOGGER.warning(
                "%s %s failed (%s), retrying in %.2fs (attempt %d/%d)",
                method,
                url,
                last_error,
                delay,
                attempt,
                policy.max_retries,
            )
            await asyncio.sleep(delay)

    async def _send(
        self,
        method: str,
        url: str,
        *,
        json: Any,
        data: Any,
        params: dict[str, str] | None,
        headers: dict[str, str],
        timeout: float,
        response_type: ResponseType,
    ) -> Any:
        session = self._get_session()
        try:
            async with session.request(
                method,
                url,
                json=json,
                data=data,
                params=params,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if resp.status >= 400:
                    raise await _response_error(resp)
                return await _decode_body(resp, response_type)
        except TimeoutError as err:
            raise SelfDBTimeout(f"{method} {url} timed out") from err
        except aiohttp.ClientError as err:
            raise SelfDBConnectionError(f"{method} {url} failed: {err}") from err

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> Any:
        return await self.request("PUT", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, **kwargs)


def _clean_params(params: Mapping[str, Any] | None) -> dict[str, str] | None:
    """Drop ``None`` values and stringify the rest (aiohttp rejects bools)."""
    if not params:
        return None
    cleaned: dict[str, str] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            cleaned[key] = "true" if value else "false"
        else:
            cleaned[key] = str(value)
    return cleaned or None


async def _decode_body(resp: aiohttp.ClientResponse, response_type: ResponseType) -> Any:
    if response_type == "bytes":
        return await resp.read()
    if response_type == "text":
        return await resp.text()
    if resp.status == 204:
        return None
    try:
        return await resp.json(content_type=None)
    except ValueError:
        return await resp.text()


async def _response_error(resp: aiohttp.ClientResponse) -> SelfDBResponseError:
    """Translate a non-2xx response into the matching error type."""
    try:
        data: Any = await resp.json(content_type=None)
    except ValueError:
        data = await resp.text()

    message = None
    if isinstance(data, dict):
        message = data.get("message") or data.get("detail")
    if not isinstance(message, str) or not message:
        message = f"Request failed with status {resp.status}"

    if resp.status == 401:
        return SelfDBAuthError(message, data)
    return SelfDBResponseError(resp.status, message, data)
