"""Service layer used by the public client and CLI."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from dacloud.cache.base import CacheProvider
from dacloud.cache.memory import MemoryCacheProvider
from dacloud.core.endpoints import EndpointRegistry
from dacloud.core.errors import CacheError
from dacloud.core.headers import (
    USER_AGENT_HEADER,
    extract_cookie,
    fingerprint,
    forwarded_headers,
    normalise_keys,
)
from dacloud.core.model import DeviceResult, Source
from dacloud.core.properties import Properties

LOGGER = logging.getLogger(__name__)


class DeviceService:
    """Resolves device properties, serving repeated requests from a cache."""

    def __init__(
        self,
        registry: EndpointRegistry,
        *,
        cache: CacheProvider | None = None,
        use_cache: bool = True,
        use_client_cookie: bool = True,
        send_extra_headers: bool = False,
    ) -> None:
        self.registry = registry
        self.cache = cache if cache is not None else MemoryCacheProvider()
        self.use_cache = use_cache
        self.use_client_cookie = use_client_cookie
        self.send_extra_headers = send_extra_headers

    def lookup_user_agent(self, user_agent: str) -> DeviceResult:
        return self.lookup({USER_AGENT_HEADER: user_agent})

    def lookup(self, headers: Mapping[str, str]) -> DeviceResult:
        normalised = normalise_keys(headers)
        user_agent = normalised.get(USER_AGENT_HEADER) or ""
        cookie = extract_cookie(normalised) if self.use_client_cookie else None
        key = fingerprint(user_agent, normalised, cookie)

        data = self._cached(key)
        if data is not None:
            return self._result(Source.CACHE, data, user_agent, headers)

        outgoing = forwarded_headers(
            normalised,
            cookie=cookie,
            send_extra_headers=self.send_extra_headers,
        )
        data = self.registry.request_properties(user_agent, outgoing)

        if self.use_cache and data is not None:
            try:
                self.cache.set(key, data)
            except CacheError as exc:
                LOGGER.warning("Could not cache device properties: %s", exc)
        return self._result(Source.CLOUD, data, user_agent, headers)

    def _cached(self, key: str) -> dict[str, Any] | None:
        if not self.use_cache:
            return None
        try:
            return self.cache.get(key)
        except CacheError as exc:
            LOGGER.warning("Device cache read failed, treating as a miss: %s", exc)
            return None

    @staticmethod
    def _result(
        source: Source,
        data: Mapping[str, Any] | None,
        user_agent: str,
        headers: Mapping[str, str],
    ) -> DeviceResult:
        properties = Properties.from_mapping(data) if data is not None else None
        return DeviceResult(source=source, properties=properties, user_agent=user_agent, headers=dict(headers))

    def clear_cache(self) -> None:
        self.cache.clear()
        self.registry.cache.clear()

    def shutdown(self) -> None:
        self.cache.shutdown()
        self.registry.cache.shutdown()
