"""Persistence of ranked and fail-over end-point lists."""

from __future__ import annotations

import logging
from typing import Iterable

from dacloud.cache.base import CacheProvider
from dacloud.cache.file import FileCacheProvider
from dacloud.core.errors import CacheError, CacheWriteFailed
from dacloud.core.model import SERVERS_CACHE_AUTO, SERVERS_CACHE_MANUAL, Endpoint

DEFAULT_LIFETIME_MINUTES = 1440
LOGGER = logging.getLogger(__name__)


class EndpointListCache:
    """Stores the auto-ranked and manual fail-over lists in a cache provider.

    A lifetime of 0 minutes disables writing end-point lists.
    """

    def __init__(
        self,
        provider: CacheProvider | None = None,
        *,
        lifetime_minutes: int = DEFAULT_LIFETIME_MINUTES,
    ) -> None:
        self.provider = provider if provider is not None else FileCacheProvider()
        self._lifetime = 0
        self.lifetime_minutes = lifetime_minutes

    @property
    def lifetime_minutes(self) -> int:
        return self._lifetime

    @lifetime_minutes.setter
    def lifetime_minutes(self, minutes: int) -> None:
        self._lifetime = minutes
        self.provider.set_expiry(minutes * 60)

    def get(self, key: str) -> tuple[Endpoint, ...] | None:
        try:
            data = self.provider.get(key)
        except CacheError as exc:
            LOGGER.warning("Could not read end-point list %s: %s", key, exc)
            return None
        if not data:
            return None
        return tuple(Endpoint.from_map(server) for server in data)

    def get_auto(self) -> tuple[Endpoint, ...] | None:
        return self.get(SERVERS_CACHE_AUTO)

    def get_manual(self) -> tuple[Endpoint, ...] | None:
        return self.get(SERVERS_CACHE_MANUAL)

    def store(self, endpoints: Iterable[Endpoint], *, manual: bool) -> None:
        if self._lifetime == 0:
            return
        key = SERVERS_CACHE_MANUAL if manual else SERVERS_CACHE_AUTO
        try:
            self.provider.set(key, [endpoint.to_map() for endpoint in endpoints])
        except CacheError as exc:
            raise CacheWriteFailed(f"Failed to put end-point list in cache: {exc}") from exc

    def clear(self) -> None:
        self.provider.clear()

    def shutdown(self) -> None:
        self.provider.shutdown()
