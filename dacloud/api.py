"""Stable public API for building tooling on top of dacloud.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from dacloud.cache.base import CacheProvider
from dacloud.cache.file import FileCacheProvider
from dacloud.cache.memory import MemoryCacheProvider
from dacloud.core.config import Settings, load_settings
from dacloud.core.endpoint_cache import EndpointListCache
from dacloud.core.endpoints import EndpointRegistry
from dacloud.core.errors import (
    CacheError,
    CacheUnavailable,
    CacheWriteFailed,
    CloudServiceError,
    ConfigError,
    DacloudError,
    DecodeError,
    FatalAuthFailure,
    IncorrectPropertyTypeError,
    NoEndpointsConfigured,
    TransportConnectError,
    TransportError,
    TransportTimeoutError,
)
from dacloud.core.model import (
    SERVERS_CACHE_AUTO,
    SERVERS_CACHE_MANUAL,
    DeviceResult,
    Endpoint,
    RankingStatus,
    Source,
)
from dacloud.core.properties import DataType, Properties, Property
from dacloud.core.service import DeviceService
from dacloud.transports.base import Transport
from dacloud.transports.http import HttpTransport

__all__ = [
    "DacloudError",
    "CacheError",
    "CacheUnavailable",
    "CacheWriteFailed",
    "CloudServiceError",
    "ConfigError",
    "DecodeError",
    "FatalAuthFailure",
    "IncorrectPropertyTypeError",
    "NoEndpointsConfigured",
    "TransportError",
    "TransportConnectError",
    "TransportTimeoutError",
    "DataType",
    "DeviceResult",
    "Endpoint",
    "Properties",
    "Property",
    "RankingStatus",
    "Source",
    "Settings",
    "SERVERS_CACHE_AUTO",
    "SERVERS_CACHE_MANUAL",
    "Client",
]


class Client:
    """Public client for the device detection cloud service.

    A `Client` wires the end-point registry, the device property cache and the
    HTTP transport together. Transport and cache providers can be injected;
    by default end-point lists are kept in a `FileCacheProvider` and device
    properties in a `MemoryCacheProvider`.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: Transport | None = None,
        cache: CacheProvider | None = None,
        endpoint_cache: CacheProvider | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self._owned_transport: HttpTransport | None = None
        if transport is None:
            transport = self._owned_transport = HttpTransport(proxy=self.settings.proxy)
        if endpoint_cache is None:
            endpoint_cache = FileCacheProvider(self.settings.cache_directory)
        if cache is None:
            cache = MemoryCacheProvider()

        self._registry = EndpointRegistry(
            EndpointListCache(endpoint_cache, lifetime_minutes=self.settings.ranking_lifetime),
            transport,
            licence_key=self.settings.licence_key,
            endpoints=self.settings.endpoints,
            auto_ranking=self.settings.auto_ranking,
            num_requests=self.settings.ranking_requests,
            max_failures=self.settings.ranking_max_failures,
            timeout_s=self.settings.timeout_s,
        )
        self._service = DeviceService(
            self._registry,
            cache=cache,
            use_cache=self.settings.use_cache,
            use_client_cookie=self.settings.use_client_cookie,
            send_extra_headers=self.settings.send_extra_headers,
        )

    @classmethod
    def from_config(cls, path: Path | None = None, **kwargs: Any) -> "Client":
        """Build a client from a YAML settings file (default location if omitted)."""
        return cls(load_settings(path), **kwargs)

    @property
    def licence_key(self) -> str:
        return self._registry.licence_key

    @licence_key.setter
    def licence_key(self, value: str) -> None:
        self._registry.licence_key = value

    @property
    def endpoints(self) -> tuple[Endpoint, ...]:
        return self._registry.endpoints

    @property
    def ranking_status(self) -> RankingStatus | None:
        return self._registry.ranking_status

    @property
    def last_used_url(self) -> str | None:
        return self._registry.last_used_url

    @property
    def called_servers(self) -> tuple[str, ...]:
        return tuple(self._registry.called_servers)

    def lookup(self, headers: Mapping[str, str]) -> DeviceResult:
        return self._service.lookup(headers)

    def lookup_user_agent(self, user_agent: str) -> DeviceResult:
        return self._service.lookup_user_agent(user_agent)

    def rank_servers(self) -> tuple[Endpoint, ...]:
        return self._registry.rank_servers()

    def get_servers_latencies(self, num_requests: int | None = None) -> tuple[Endpoint, ...]:
        return self._registry.get_servers_latencies(num_requests)

    def get_server_latency(self, endpoint: Endpoint, num_requests: int | None = None) -> tuple[float, ...]:
        return self._registry.get_server_latency(endpoint, num_requests)

    def get_endpoints(self) -> tuple[Endpoint, ...]:
        """Return the end-points requests would currently be sent to, in order."""
        return self._registry.get_candidates().endpoints

    def get_cached_server_list(self, key: str = SERVERS_CACHE_AUTO) -> tuple[Endpoint, ...] | None:
        return self._registry.get_cached_server_list(key)

    def clear_cache(self) -> None:
        self._service.clear_cache()

    def shutdown(self) -> None:
        """Release the caches, and the HTTP connection pool if this client created it."""
        self._service.shutdown()
        if self._owned_transport is not None:
            self._owned_transport.close()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
