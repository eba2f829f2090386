"""Key-value storage used to persist the auth session across restarts.

Persistence is advisory: a store that cannot be read or written behaves as
if it were empty. The ``read_item``/``write_item``/``remove_item`` helpers
enforce that for any store, including user-supplied ones.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

_LOGGER = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "access_token"
REFRESH_TOKEN_KEY = "refresh_token"
USER_KEY = "selfdb_user"

SESSION_KEYS: tuple[str, ...] = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY)


@runtime_checkable
class SessionStorage(Protocol):
    """String key-value store."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage. The default when nothing else is configured."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class FileStorage:
    """Storage backed by a single JSON object on disk."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a JSON object")
        return data

    def _dump(self, items: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(items), encoding="utf-8")

    def get_item(self, key: str) -> str | None:
        value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        items = self._load()
        items[key] = value
        self._dump(items)

    def remove_item(self, key: str) -> None:
        items = self._load()
        if items.pop(key, None) is not None:
            self._dump(items)


def read_item(storage: SessionStorage, key: str) -> str | None:
    """Read ``key``; any storage failure reads as a missing value."""
    try:
        return storage.get_item(key)
    except Exception as err:  # storage is advisory
        _LOGGER.warning("Session storage read of %s failed: %s", key, err)
        return None


def write_item(storage: SessionStorage, key: str, value: str) -> None:
    """Write ``key``; storage failures are logged and dropped."""
    try:
        storage.set_item(key, value)
    except Exception as err:  # storage is advisory
        _LOGGER.warning("Session storage write of %s failed: %s", key, err)


def remove_item(storage: SessionStorage, key: str) -> None:
    """Remove ``key``; storage failures are logged and dropped."""
    try:
        storage.remove_item(key)
    except Exception as err:  # storage is advisory
        _LOGGER.warning("Session storage removal of %s failed: %s", key, err)
