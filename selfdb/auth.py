"""Authentication and session lifecycle for the SelfDB client.

``AuthClient`` owns the credentials of one client instance. It restores a
persisted session on construction, logs in and out, refreshes the access
token, and is the single entry point facades use to make authenticated
requests: on a 401 it refreshes once, retries once, and otherwise clears
the session and re-raises the original error.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, fields
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from .errors import SelfDBAuthError, SelfDBError, SelfDBResponseError
from .persistence import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    SESSION_KEYS,
    USER_KEY,
    MemoryStorage,
    SessionStorage,
    read_item,
    remove_item,
    write_item,
)

if TYPE_CHECKING:
    from .config import SelfDBConfig
    from .transport.http import SelfDBHttpClient

_LOGGER = logging.getLogger(__name__)

LOGIN_PATH = "/api/v1/auth/login"
REGISTER_PATH = "/api/v1/auth/register"
REFRESH_PATH = "/api/v1/auth/refresh"
CURRENT_USER_PATH = "/api/v1/users/me"
PASSWORD_PATH = "/api/v1/users/me/password"


@dataclass(slots=True)
class User:
    """Backend user record."""

    id: str
    email: str
    is_active: bool = True
    is_superuser: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> User:
        """Build a user from a response or persisted mapping.

        Unknown keys are ignored. Raises ValueError when ``id`` or ``email``
        is missing.
        """
        if not isinstance(data, dict):
            raise ValueError("User record must be a JSON object")
        if data.get("id") is None or not data.get("email"):
            raise ValueError("User record requires id and email")
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        values["id"] = str(values["id"])
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class AuthTokens:
    access_token: str
    refresh_token: str


@dataclass(slots=True)
class AuthState:
    """In-memory session. Authenticated iff a user and both tokens exist."""

    user: User | None = None
    tokens: AuthTokens | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None and self.tokens is not None


@dataclass(slots=True)
class LoginResult:
    """Login response with the user record built from it."""

    access_token: str
    refresh_token: str
    token_type: str
    email: str
    user_id: str
    is_superuser: bool
    user: User


class AuthClient:
    """Credential owner and authenticated request pipeline.

    Usage:
        auth = AuthClient(config, http)
        await auth.login("me@example.com", "secret")
        rows = await auth.make_authenticated_request("GET", "/api/v1/tables")
        await auth.logout()
    """

    def __init__(
        self,
        config: SelfDBConfig,
        http: SelfDBHttpClient,
        *,
        storage: SessionStorage | None = None,
    ) -> None:
        self._config = config
        self._http = http
        self._storage: SessionStorage = storage if storage is not None else MemoryStorage()
        self._state = AuthState()
        self._refresh_task: asyncio.Task[dict[str, Any]] | None = None
        self._load_auth_state()

    # -------------------------------------------------------------------------
    # Public API: State
    # -------------------------------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        return self._state.is_authenticated

    @property
    def current_user(self) -> User | None:
        return self._state.user

    @property
    def tokens(self) -> AuthTokens | None:
        return self._state.tokens

    def get_auth_headers(self) -> dict[str, str]:
        """Headers for the current session.

        ``apikey`` is always sent when configured, since storage and other
        anonymous-tier endpoints require it. ``Authorization`` is only sent
        when authenticated.
        """
        headers: dict[str, str] = {}
        if self._config.anon_key:
            headers["apikey"] = self._config.anon_key
        if self._state.is_authenticated and self._state.tokens is not None:
            headers["Authorization"] = f"Bearer {self._state.tokens.access_token}"
        return headers

    def set_anon_key(self, key: str) -> None:
        self._config.update(anon_key=key)

    # -------------------------------------------------------------------------
    # Public API: Credential lifecycle
    # -------------------------------------------------------------------------

    async def login(self, email: str, password: str) -> LoginResult:
        """Log in with email and password.

        The backend expects OAuth2-style form fields, not JSON.

        Raises:
            SelfDBAuthError: Credentials were rejected.
        """
        try:
            response = await self._http.post(
                LOGIN_PATH,
                data={"username": email, "password": password},
                headers=self._anon_headers(),
            )
        except SelfDBAuthError:
            self._clear_auth_state()
            raise
        except SelfDBResponseError as err:
            self._clear_auth_state()
            if err.status == 400:
                raise SelfDBAuthError(err.message, err.data) from err
            raise

        now = datetime.now(tz=UTC).isoformat()
        user = User(
            id=str(response["user_id"]),
            email=response["email"],
            is_active=True,
            is_superuser=bool(response.get("is_superuser", False)),
            created_at=now,
            updated_at=now,
        )
        self._state = AuthState(
            user=user,
            tokens=AuthTokens(
                access_token=response["access_token"],
                refresh_token=response["refresh_token"],
            ),
        )
        self._save_auth_state()
        _LOGGER.info("Logged in as %s", user.email)

        return LoginResult(
            access_token=response["access_token"],
            refresh_token=response["refresh_token"],
            token_type=response.get("token_type", "bearer"),
            email=response["email"],
            user_id=user.id,
            is_superuser=user.is_superuser,
            user=user,
        )

    async def register(
        self, email: str, password: str, *, is_active: bool | None = None
    ) -> User:
        """Create an account. Does not log in; call ``login`` afterwards."""
        payload: dict[str, Any] = {"email": email, "password": password}
        if is_active is not None:
            payload["is_active"] = is_active
        response = await self._http.post(
            REGISTER_PATH, json=payload, headers=self._anon_headers()
        )
        return User.from_dict(response)

    async def refresh(self) -> dict[str, Any]:
        """Exchange the refresh token for a new access token.

        Only the access token is replaced; the refresh token is kept.

        Raises:
            SelfDBAuthError: No refresh token is available, or the backend
                rejected it.
        """
        tokens = self._state.tokens
        if tokens is None or not tokens.refresh_token:
            raise SelfDBAuthError("No refresh token available")

        response = await self._http.post(
            REFRESH_PATH,
            json={"refresh_token": tokens.refresh_token},
            headers=self._anon_headers(),
        )

        # The session may have been cleared while the refresh was in flight.
        if self._state.tokens is tokens:
            tokens.access_token = response["access_token"]
            self._save_auth_state()
            _LOGGER.debug("Access token refreshed")
        return response

    async def logout(self) -> None:
        """Forget the session locally. The backend has no logout endpoint."""
        self._clear_auth_state()
        _LOGGER.info("Logged out")

    async def get_user(self) -> User | None:
        """Fetch the current user from the backend and cache it.

        Returns None without a request when not authenticated. An auth
        failure means the stored credentials are dead, so the session is
        cleared before the error propagates.
        """
        if not self._state.is_authenticated:
            return None

        try:
            response = await self._http.get(
                CURRENT_USER_PATH, headers=self.get_auth_headers()
            )
        except SelfDBAuthError:
            self._clear_auth_state()
            raise

        user = User.from_dict(response)
        self._state.user = user
        self._save_auth_state()
        return user

    async def change_password(self, current_password: str, new_password: str) -> Any:
        """Change the password of the logged-in user."""
        if not self._state.is_authenticated:
            raise SelfDBAuthError("Must be authenticated to change password")

        try:
            return await self._http.put(
                PASSWORD_PATH,
                json={
                    "current_password": current_password,
                    "new_password": new_password,
                },
                headers=self.get_auth_headers(),
            )
        except SelfDBResponseError as err:
            if err.status == 400:
                raise SelfDBAuthError("Current password is incorrect", err.data) from err
            raise

    # -------------------------------------------------------------------------
    # Public API: Authenticated requests
    # -------------------------------------------------------------------------

    async def make_authenticated_request(
        self,
        method: str,
        path: str,
        *,
        http: SelfDBHttpClient | None = None,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> Any:
        """Send a request with session headers, refreshing once on 401.

        Args:
            method: HTTP method.
            path: Request path (or absolute URL).
            http: Transport to use; defaults to the API transport. Storage
                facades pass the storage service transport.
            headers: Extra headers; auth headers take precedence.
            **kwargs: Forwarded to ``SelfDBHttpClient.request``.

        Raises:
            SelfDBAuthError: The original 401 when no refresh token exists,
                or when refreshing or the retry failed. The session is
                cleared in both cases.
        """
        transport = http or self._http
        try:
            return await transport.request(
                method, path, headers={**(headers or {}), **self.get_auth_headers()}, **kwargs
            )
        except SelfDBAuthError as err:
            tokens = self._state.tokens
            if tokens is None or not tokens.refresh_token:
                self._clear_auth_state()
                raise

            _LOGGER.debug("%s %s returned 401, refreshing session", method, path)
            try:
                await self._refresh_shared()
                return await transport.request(
                    method,
                    path,
                    headers={**(headers or {}), **self.get_auth_headers()},
                    **kwargs,
                )
            except SelfDBError as retry_err:
                _LOGGER.warning(
                    "Session refresh for %s %s failed: %s", method, path, retry_err
                )
                self._clear_auth_state()
                raise err from retry_err

    async def _refresh_shared(self) -> dict[str, Any]:
        """Run one refresh shared by every caller that needs it right now."""
        task = self._refresh_task
        if task is None or task.done():
            task = asyncio.create_task(self.refresh())
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task
        return await asyncio.shield(task)

    def _on_refresh_done(self, task: asyncio.Task[dict[str, Any]]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Mark the exception retrieved; awaiting callers re-raise it.
            task.exception()

    # -------------------------------------------------------------------------
    # Internal: Persistence
    # -------------------------------------------------------------------------

    def _anon_headers(self) -> dict[str, str]:
        if not self._config.anon_key:
            return {}
        return {"apikey": self._config.anon_key}

    def _load_auth_state(self) -> None:
        access_token = read_item(self._storage, ACCESS_TOKEN_KEY)
        refresh_token = read_item(self._storage, REFRESH_TOKEN_KEY)
        user_json = read_item(self._storage, USER_KEY)

        if not (access_token and refresh_token and user_json):
            return

        try:
            user = User.from_dict(json.loads(user_json))
        except (ValueError, TypeError) as err:
            _LOGGER.warning("Discarding corrupt persisted session: %s", err)
            self._clear_auth_state()
            return

        self._state = AuthState(
            user=user,
            tokens=AuthTokens(access_token=access_token, refresh_token=refresh_token),
        )
        _LOGGER.debug("Restored session for %s", user.email)

    def _save_auth_state(self) -> None:
        tokens = self._state.tokens
        user = self._state.user
        if tokens is None or user is None:
            return
        write_item(self._storage, ACCESS_TOKEN_KEY, tokens.access_token)
        write_item(self._storage, REFRESH_TOKEN_KEY, tokens.refresh_token)
        write_item(self._storage, USER_KEY, json.dumps(user.to_dict()))

    def _clear_auth_state(self) -> None:
        self._state = AuthState()
        for key in SESSION_KEYS:
            remove_item(self._storage, key)
