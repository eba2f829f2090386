"""Async Python client for SelfDB, a self-hosted Supabase-style backend."""

__version__ = "0.1.0"

from .auth import AuthClient, AuthTokens, LoginResult, User
from .client import SelfDB, create_client
from .config import SelfDBConfig
from .db import DatabaseClient, Equals, OrderBy, PaginatedResponse, QueryBuilder, SqlQueryResponse
from .errors import (
    SelfDBAuthError,
    SelfDBConnectionError,
    SelfDBError,
    SelfDBHandshakeError,
    SelfDBResponseError,
    SelfDBTimeout,
    SelfDBValidationError,
)
from .functions import FunctionsClient
from .persistence import FileStorage, MemoryStorage, SessionStorage
from .protocol import RealtimeMessage
from .realtime import ConnectionState, RealtimeClient, Subscription
from .storage import BucketClient, FileClient, StorageClient
from .transport import RetryPolicy, SelfDBHttpClient

__all__ = [
    "AuthClient",
    "AuthTokens",
    "BucketClient",
    "ConnectionState",
    "DatabaseClient",
    "Equals",
    "FileClient",
    "FileStorage",
    "FunctionsClient",
    "LoginResult",
    "MemoryStorage",
    "OrderBy",
    "PaginatedResponse",
    "QueryBuilder",
    "RealtimeClient",
    "RealtimeMessage",
    "RetryPolicy",
    "SelfDB",
    "SelfDBAuthError",
    "SelfDBConfig",
    "SelfDBConnectionError",
    "SelfDBError",
    "SelfDBHandshakeError",
    "SelfDBHttpClient",
    "SelfDBResponseError",
    "SelfDBTimeout",
    "SelfDBValidationError",
    "SessionStorage",
    "SqlQueryResponse",
    "StorageClient",
    "Subscription",
    "User",
    "__version__",
    "create_client",
]
