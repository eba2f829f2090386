"""Client error types for SelfDB backend interactions."""

from __future__ import annotations

from typing import Any


class SelfDBError(Exception):
    """Base error for SelfDB client failures."""

    default_code = "GENERIC_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status: int | None = None,
        data: Any = None,
        suggestion: str | None = None,
        action: str | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status = status
        self.data = data
        self.suggestion = suggestion
        self.action = action
        self.retryable = retryable

    def is_retryable(self) -> bool:
        """Return True when repeating the operation may succeed."""
        return self.retryable


class SelfDBTimeout(SelfDBError):
    """Timeout while communicating with the backend."""

    default_code = "TIMEOUT_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            suggestion="The request took too long. Try again or check your connection",
            retryable=True,
        )


class SelfDBConnectionError(SelfDBError):
    """Network connection to the backend failed."""

    default_code = "NETWORK_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            suggestion="Check your internet connection and SelfDB server status",
            retryable=True,
        )


class SelfDBHandshakeError(SelfDBConnectionError):
    """WebSocket handshake failed."""


class SelfDBResponseError(SelfDBError):
    """Non-2xx HTTP response from the backend."""

    default_code = "API_ERROR"

    def __init__(self, status: int, message: str, data: Any = None) -> None:
        super().__init__(message, status=status, data=data, retryable=status >= 500)


class SelfDBAuthError(SelfDBResponseError):
    """Missing, invalid or expired credentials."""

    default_code = "AUTH_ERROR"

    def __init__(self, message: str, data: Any = None) -> None:
        super().__init__(401, message, data)
        self.suggestion = "Check your credentials or login again"
        self.action = "auth.login"


class SelfDBValidationError(SelfDBError):
    """Caller input rejected before or by the backend."""

    default_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        data: Any = None,
        *,
        code: str | None = None,
        suggestion: str | None = None,
    ) -> None:
        super().__init__(
            message,
            code=code,
            status=400,
            data=data,
            suggestion=suggestion or "Check your input data and try again",
        )
