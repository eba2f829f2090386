"""Connection configuration shared by every SelfDB component."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import SelfDBValidationError

DEFAULT_TIMEOUT = 10.0

API_PORT = ":8000"
STORAGE_PORT = ":8001"


def default_storage_url(base_url: str) -> str:
    """Derive the storage service URL from the API base URL."""
    return base_url.replace(API_PORT, STORAGE_PORT)


@dataclass(slots=True)
class SelfDBConfig:
    """Connection settings for one client instance.

    One instance is created per ``SelfDB`` client and passed by reference to
    the transports, the auth manager and the facades. Several clients (and
    their configs) can live in the same process.

    Args:
        base_url: Backend API URL, e.g. ``http://localhost:8000``.
        anon_key: Anonymous API key, sent as the ``apikey`` header.
        storage_url: Storage service URL. Defaults to ``base_url`` on port 8001.
        headers: Extra headers attached to every HTTP request.
        timeout: Per-request timeout in seconds.
    """

    base_url: str
    anon_key: str
    storage_url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        if not self.base_url:
            raise SelfDBValidationError("base_url is required")
        if not self.anon_key:
            raise SelfDBValidationError("anon_key is required")
        self.base_url = self.base_url.rstrip("/")
        if not self.storage_url:
            self.storage_url = default_storage_url(self.base_url)
        self.storage_url = self.storage_url.rstrip("/")
        self.headers = dict(self.headers)

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **overrides: Any
    ) -> SelfDBConfig:
        """Build a config from ``SELFDB_*`` environment variables.

        Reads ``SELFDB_URL``, ``SELFDB_ANON_KEY``, ``SELFDB_STORAGE_URL`` and
        ``SELFDB_TIMEOUT`` (seconds). Keyword overrides win over the
        environment.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {
            "base_url": env.get("SELFDB_URL", ""),
            "anon_key": env.get("SELFDB_ANON_KEY", ""),
            "storage_url": env.get("SELFDB_STORAGE_URL") or None,
        }
        raw_timeout = env.get("SELFDB_TIMEOUT")
        if raw_timeout:
            try:
                values["timeout"] = float(raw_timeout)
            except ValueError as err:
                raise SelfDBValidationError(
                    f"SELFDB_TIMEOUT must be a number, got {raw_timeout!r}"
                ) from err
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_file(cls, path: str | Path, **overrides: Any) -> SelfDBConfig:
        """Build a config from a YAML file.

        The file holds a mapping with the constructor fields (``url`` is
        accepted for ``base_url``). Unknown keys are rejected.
        """
        data = _load_yaml(Path(path))
        if "url" in data:
            data.setdefault("base_url", data.pop("url"))
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise SelfDBValidationError(
                f"Unknown config keys in {path}: {', '.join(unknown)}"
            )
        data.update(overrides)
        return cls(**data)

    def update(
        self,
        *,
        base_url: str | None = None,
        anon_key: str | None = None,
        storage_url: str | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> None:
        """Update settings in place.

        Scalars are replaced; ``headers`` are merged into the existing ones.
        """
        if base_url is not None:
            self.base_url = base_url.rstrip("/")
        if anon_key is not None:
            self.anon_key = anon_key
        if storage_url is not None:
            self.storage_url = storage_url.rstrip("/")
        if headers:
            self.headers.update(headers)
        if timeout is not None:
            self.timeout = timeout

    @property
    def realtime_url(self) -> str:
        """Default WebSocket endpoint for realtime subscriptions."""
        return self.base_url.replace("http", "ws", 1) + "/api/v1/realtime/ws"


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping with error handling."""
    if not path.exists():
        raise SelfDBValidationError(f"Config file not found: {path}")
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as err:
        raise SelfDBValidationError(f"Invalid YAML in {path}: {err}") from err
    if not isinstance(data, dict):
        raise SelfDBValidationError(f"{path} must contain a mapping")
    return data
