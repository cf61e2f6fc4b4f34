"""Bounded in-memory cache provider."""

from __future__ import annotations

import threading
from typing import Any

MAX_ENTRIES = 4096


class MemoryCacheProvider:
    """Dict-backed cache that empties itself when it reaches MAX_ENTRIES.

    Entries never expire.
    """

    def __init__(self, max_entries: int = MAX_ENTRIES) -> None:
        self.max_entries = max_entries
        self._cache: dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        return self._cache.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            if len(self._cache) >= self.max_entries:
                self._cache.clear()
            self._cache[key] = value

    def remove(self, key: str) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def shutdown(self) -> None:
        return None

    def list_keys(self) -> list[str]:
        return list(self._cache.keys())

    def set_expiry(self, seconds: int) -> None:
        return None
