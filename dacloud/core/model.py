"""Core data models used across cache, registry, service, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from dacloud.core.properties import Properties

DEFAULT_PATH = "/v1/detect/properties"
UNREACHABLE = -1.0

SERVERS_CACHE_AUTO = "dacloud_servers_cache_auto"
SERVERS_CACHE_MANUAL = "dacloud_servers_cache_manual"
RESERVED_CACHE_KEYS = frozenset({SERVERS_CACHE_AUTO, SERVERS_CACHE_MANUAL})


class RankingStatus(str, Enum):
    DEFAULT = "D"
    AUTO = "A"
    AUTO_FRESHLY_RANKED = "R"
    MANUAL = "M"
    RANKING = "L"


class Source(str, Enum):
    NONE = "none"
    CACHE = "cache"
    CLOUD = "cloud"


@dataclass(frozen=True)
class Endpoint:
    host: str
    port: str = "80"
    path: str = DEFAULT_PATH
    latencies: tuple[float, ...] = ()
    average: float = 0.0

    @property
    def url(self) -> str:
        return f"{self.host}:{self.port}{self.path}"

    @property
    def reachable(self) -> bool:
        return self.average != UNREACHABLE

    def to_map(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "path": self.path,
            "avg": self.average,
            "latencies": list(self.latencies),
        }

    @classmethod
    def from_map(cls, server: Mapping[str, Any]) -> "Endpoint":
        return cls(
            host=str(server["host"]),
            port=str(server.get("port", "80")),
            path=str(server.get("path") or DEFAULT_PATH),
            latencies=tuple(float(v) for v in server.get("latencies") or ()),
            average=float(server.get("avg", 0.0)),
        )


DEFAULT_ENDPOINTS: tuple[Endpoint, ...] = (
    Endpoint("http://region0.deviceatlascloud.com", "80"),
    Endpoint("http://region1.deviceatlascloud.com", "80"),
    Endpoint("http://region2.deviceatlascloud.com", "80"),
    Endpoint("http://region3.deviceatlascloud.com", "80"),
)


@dataclass(frozen=True)
class CandidateList:
    endpoints: tuple[Endpoint, ...]
    status: RankingStatus
    # licence errors met while ranking; no end-point should be contacted
    fatal_errors: tuple[str, ...] = ()

    @property
    def auto_ranked(self) -> bool:
        return self.status in (RankingStatus.AUTO, RankingStatus.AUTO_FRESHLY_RANKED)


@dataclass(frozen=True)
class DeviceResult:
    source: Source
    properties: Properties | None = None
    user_agent: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
