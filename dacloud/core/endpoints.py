"""End-point registry: candidate selection, latency ranking and fail-over.

Candidate lists come from three tiers, in order: the cached auto-ranked
list (when auto ranking is on, ranking the servers if nothing is cached),
the cached manual fail-over list, and finally the configured list.

Ranking sends every configured end-point ``num_requests + 1`` requests in a
random order, ignores the timing of the first request, drops end-points that
failed, and insertion-sorts the rest by average latency. A licence error
during ranking aborts it without caching anything.

When a request succeeds only after the top end-point(s) failed, the failed
end-points are rotated to the tail and the reordered list is cached so later
requests try the working end-point first.
"""

from __future__ import annotations

import logging
import random
import re
import threading
import time
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any, Callable, Iterable, Mapping
from urllib.parse import quote_plus

from dacloud.core.endpoint_cache import EndpointListCache
from dacloud.core.errors import (
    CacheWriteFailed,
    CloudServiceError,
    DecodeError,
    FatalAuthFailure,
    NoEndpointsConfigured,
    TransportError,
)
from dacloud.core.json_decoder import decode_properties
from dacloud.core.model import (
    DEFAULT_ENDPOINTS,
    SERVERS_CACHE_AUTO,
    SERVERS_CACHE_MANUAL,
    UNREACHABLE,
    CandidateList,
    Endpoint,
    RankingStatus,
)
from dacloud.transports.base import Transport

LATENCY_HEADER = "Latency-Checker"
FORBIDDEN_MARKER = "forbidden"
_TAG_RE = re.compile(r"<[^>]*>")
LOGGER = logging.getLogger(__name__)


class FailoverAction(IntEnum):
    NOT_REQUIRED = 0
    STOP = 1
    CONTINUE = 2


@dataclass(frozen=True)
class CloudReply:
    endpoint: Endpoint
    action: FailoverAction
    properties: dict[str, Any] | None = None
    error: str = ""


def build_cloud_url(endpoint: Endpoint, licence_key: str, user_agent: str) -> str:
    return (
        f"{endpoint.url}?licencekey={quote_plus(licence_key or '')}"
        f"&useragent={quote_plus(user_agent or '')}"
    )


def classify_failure(endpoint: Endpoint, status: int, message: str) -> CloudReply:
    """Turn an error response into a fail-over decision and a readable reason."""
    action = FailoverAction.CONTINUE
    # invalid licence key or monthly quota exceeded
    if status == 403 or FORBIDDEN_MARKER in message.lower():
        action = FailoverAction.STOP

    reason = _TAG_RE.sub("", message.replace("\n", " ").replace("\r", " "))
    error = (
        f'Error getting data from cloud end-point "{endpoint.host}", '
        f"response {status}, Reason: {reason}"
    )
    return CloudReply(endpoint=endpoint, action=action, error=error)


def insert_by_average(ranked: list[Endpoint], endpoint: Endpoint) -> None:
    """Insert endpoint before the first entry with a larger average.

    Unreachable end-points are skipped; equal averages keep insertion order.
    """
    if not endpoint.reachable:
        return
    index = 0
    while index < len(ranked) and not endpoint.average < ranked[index].average:
        index += 1
    ranked.insert(index, endpoint)


class EndpointRegistry:
    def __init__(
        self,
        cache: EndpointListCache,
        transport: Transport,
        *,
        licence_key: str = "",
        endpoints: Iterable[Endpoint] = DEFAULT_ENDPOINTS,
        auto_ranking: bool = True,
        num_requests: int = 3,
        max_failures: int = 1,
        timeout_s: float = 3,
        clock: Callable[[], float] = time.perf_counter,
        rng: random.Random | None = None,
    ) -> None:
        self.cache = cache
        self.transport = transport
        self.licence_key = licence_key
        self.endpoints = endpoints
        self.auto_ranking = auto_ranking
        self.num_requests = num_requests
        self.max_failures = max_failures
        self.timeout_s = timeout_s
        self._clock = clock
        self._rng = rng or random.Random()

        self._rank_lock = threading.Lock()
        self._ranking = False
        self._ranking_requested_by_lookup = False

        self.ranking_status: RankingStatus | None = None
        self.fatal_errors: tuple[str, ...] = ()
        self.called_servers: list[str] = []
        self.last_used_url: str | None = None

    @property
    def endpoints(self) -> tuple[Endpoint, ...]:
        return self._endpoints

    @endpoints.setter
    def endpoints(self, endpoints: Iterable[Endpoint]) -> None:
        self._endpoints = tuple(endpoints)

    def get_candidates(self) -> CandidateList:
        if self.auto_ranking:
            cached = self.cache.get_auto()
            if cached:
                return self._candidates(cached, RankingStatus.AUTO)
            # while a ranking run is active, lookups use the fallback tiers
            if not self._ranking:
                ranked, fatal_errors = self._rank(blocking=False)
                if ranked:
                    return self._candidates(ranked, RankingStatus.AUTO_FRESHLY_RANKED)
                if fatal_errors:
                    fallback = self._fallback()
                    return self._candidates(fallback, self.ranking_status, fatal_errors)

        cached = self.cache.get_manual()
        if cached:
            return self._candidates(cached, RankingStatus.MANUAL)
        return self._candidates(self._endpoints, RankingStatus.DEFAULT)

    def _candidates(
        self,
        endpoints: tuple[Endpoint, ...],
        status: RankingStatus | None,
        fatal_errors: tuple[str, ...] = (),
    ) -> CandidateList:
        status = status or RankingStatus.DEFAULT
        self.ranking_status = status
        return CandidateList(endpoints=endpoints, status=status, fatal_errors=fatal_errors)

    def _fallback(self) -> tuple[Endpoint, ...]:
        cached = self.cache.get_manual()
        if cached:
            self.ranking_status = RankingStatus.MANUAL
            return cached
        self.ranking_status = RankingStatus.DEFAULT
        return self._endpoints

    def get_cached_server_list(self, key: str) -> tuple[Endpoint, ...] | None:
        if key not in (SERVERS_CACHE_AUTO, SERVERS_CACHE_MANUAL):
            return None
        return self.cache.get(key)

    def connect(
        self,
        endpoint: Endpoint,
        user_agent: str,
        headers: Mapping[str, str] | None,
    ) -> CloudReply:
        """Request device properties from one end-point."""
        self.called_servers.append(endpoint.host)
        url = build_cloud_url(endpoint, self.licence_key, user_agent)

        try:
            response = self.transport.fetch(url, headers, timeout_s=self.timeout_s)
        except TransportError as exc:
            LOGGER.warning("connect cloud %s: %s", endpoint.host, exc)
            return classify_failure(endpoint, 0, str(exc))

        if not response.ok:
            return classify_failure(endpoint, response.status_code, response.message)

        try:
            properties = decode_properties(response.body)
        except DecodeError as exc:
            LOGGER.warning("Could not decode response from %s: %s", endpoint.host, exc)
            properties = None
        return CloudReply(endpoint=endpoint, action=FailoverAction.NOT_REQUIRED, properties=properties)

    def _settings_signature(self) -> str:
        # the first request tells the service how the client is configured
        return (
            ("y" if self._ranking_requested_by_lookup else "n")
            + str(self.auto_ranking).lower()
            + str(self.timeout_s)
            + str(self.max_failures)
            + str(self.num_requests)
            + str(self.cache.lifetime_minutes)
        )

    def get_server_latency(self, endpoint: Endpoint, num_requests: int | None = None) -> tuple[float, ...]:
        """Time requests to one end-point and return its latencies in milliseconds.

        Failed requests are recorded as -1.0. Raises FatalAuthFailure when the
        end-point rejects the licence.
        """
        if num_requests is None:
            num_requests = self.num_requests
        failures = 0
        latencies: list[float] = []
        headers = {LATENCY_HEADER: self._settings_signature()}

        for attempt in range(num_requests + 1):
            if failures >= self.max_failures:
                break
            if attempt > 0:
                headers = {LATENCY_HEADER: str(attempt)}

            started = self._clock()
            reply = self.connect(endpoint, "", headers)
            if reply.action is FailoverAction.NOT_REQUIRED:
                # the first request pays for connection setup
                if attempt > 0:
                    latencies.append((self._clock() - started) * 1000.0)
                continue
            if reply.action is FailoverAction.STOP:
                raise FatalAuthFailure([reply.error])

            LOGGER.warning("Latency request failed: %s", reply.error)
            failures += 1
            latencies.append(UNREACHABLE)

        return tuple(latencies)

    def get_servers_latencies(self, num_requests: int | None = None) -> tuple[Endpoint, ...]:
        """Measure every configured end-point in random order.

        Returns the end-points in the order they were measured, each carrying
        its latencies and average (-1.0 when any request failed).
        """
        if num_requests is None:
            num_requests = self.num_requests
        self.ranking_status = RankingStatus.RANKING
        self.called_servers = []

        remaining = list(self._endpoints)
        measured: list[Endpoint] = []
        while remaining:
            endpoint = remaining.pop(self._rng.randrange(len(remaining)))
            latencies = self.get_server_latency(endpoint, num_requests)
            if UNREACHABLE in latencies:
                average = UNREACHABLE
            else:
                average = sum(latencies) / num_requests if num_requests else 0.0
            measured.append(replace(endpoint, latencies=latencies, average=average))
        return tuple(measured)

    def rank_servers(self) -> tuple[Endpoint, ...]:
        """Rank the configured end-points by latency and cache the result.

        Returns an empty tuple when auto ranking is off, when the licence was
        rejected, or when no end-point answered.
        """
        ranked, _ = self._rank()
        return ranked

    def _rank(self, blocking: bool = True) -> tuple[tuple[Endpoint, ...], tuple[str, ...]]:
        if not self.auto_ranking:
            return (), ()
        if not self._rank_lock.acquire(blocking=blocking):
            return (), ()

        self._ranking = True
        self._ranking_requested_by_lookup = not blocking
        self.fatal_errors = ()
        try:
            try:
                measured = self.get_servers_latencies()
            except FatalAuthFailure as exc:
                LOGGER.warning("Ranking aborted: %s", exc)
                self.fatal_errors = exc.errors
                return (), exc.errors

            ranked: list[Endpoint] = []
            for endpoint in measured:
                insert_by_average(ranked, endpoint)

            if not ranked:
                # keep serving the unranked list until it expires
                self._store(self._fallback(), manual=True)
                return (), ()

            result = tuple(ranked)
            self._store(result, manual=False)
            return result, ()
        finally:
            self._ranking = False
            self._ranking_requested_by_lookup = False
            self._rank_lock.release()

    def _store(self, endpoints: tuple[Endpoint, ...], *, manual: bool) -> None:
        try:
            self.cache.store(endpoints, manual=manual)
        except CacheWriteFailed as exc:
            LOGGER.warning("%s", exc)

    def rotate_failed(self, candidates: CandidateList, failed: int) -> tuple[Endpoint, ...]:
        """Move the first ``failed`` end-points to the tail and cache the new order."""
        endpoints = candidates.endpoints
        if failed <= 0:
            return endpoints
        rotated = endpoints[failed:] + endpoints[:failed]
        self._store(rotated, manual=not candidates.auto_ranked)
        return rotated

    def request_properties(
        self,
        user_agent: str,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, Any] | None:
        """Fetch device properties, failing over between end-points.

        Raises FatalAuthFailure as soon as an end-point rejects the licence,
        CloudServiceError with every end-point's error when all of them fail,
        and NoEndpointsConfigured when there is nothing to try.
        """
        self.called_servers = []
        self.last_used_url = None
        candidates = self.get_candidates()
        if candidates.fatal_errors:
            raise FatalAuthFailure(candidates.fatal_errors)
        if not candidates.endpoints:
            raise NoEndpointsConfigured("No server has been defined.")

        errors: list[str] = []
        for index, endpoint in enumerate(candidates.endpoints):
            reply = self.connect(endpoint, user_agent, headers)
            self.last_used_url = endpoint.url
            if reply.action is FailoverAction.NOT_REQUIRED:
                self.rotate_failed(candidates, index)
                return reply.properties
            if reply.action is FailoverAction.STOP:
                raise FatalAuthFailure([reply.error])
            errors.append(reply.error)

        raise CloudServiceError(errors)
