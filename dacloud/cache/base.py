"""Cache provider interface."""

from __future__ import annotations

from typing import Any, Protocol


class CacheProvider(Protocol):
    def get(self, key: str) -> Any | None:
        """Return the cached value for key, or None on a miss."""

    def set(self, key: str, value: Any) -> None:
        """Store value under key."""

    def remove(self, key: str) -> None:
        """Drop the entry for key if present."""

    def clear(self) -> None:
        """Drop every entry."""

    def shutdown(self) -> None:
        """Release provider-wide resources. Must be idempotent."""

    def list_keys(self) -> list[str]:
        """Return the keys currently held, in no particular order."""

    def set_expiry(self, seconds: int) -> None:
        """Set the lifetime of entries in seconds."""
