from __future__ import annotations

import random

import pytest

from dacloud.cache.memory import MemoryCacheProvider
from dacloud.core.endpoint_cache import EndpointListCache
from dacloud.core.endpoints import (
    LATENCY_HEADER,
    EndpointRegistry,
    FailoverAction,
    build_cloud_url,
    classify_failure,
    insert_by_average,
)
from dacloud.core.errors import (
    CloudServiceError,
    FatalAuthFailure,
    NoEndpointsConfigured,
    TransportConnectError,
)
from dacloud.core.model import (
    SERVERS_CACHE_AUTO,
    SERVERS_CACHE_MANUAL,
    UNREACHABLE,
    Endpoint,
    RankingStatus,
)
from dacloud.transports.base import TransportResponse

A = Endpoint("http://a.example")
B = Endpoint("http://b.example")
C = Endpoint("http://c.example")

OK_BODY = '{"properties":{"model":"iPhone"}}'


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeTransport:
    """Answers per host; advances the clock by the host's delay on each call."""

    def __init__(self, replies=None, *, delays=None, clock: FakeClock | None = None) -> None:
        self.replies = replies or {}
        self.delays = delays or {}
        self.clock = clock
        self.calls: list[tuple[str, dict[str, str]]] = []

    def fetch(self, url, headers=None, *, timeout_s=3.0):
        host = next(h for h in self.replies if url.startswith(f"{h}:"))
        self.calls.append((host, dict(headers or {})))
        if self.clock is not None:
            self.clock.now += self.delays.get(host, 0.0)
        reply = self.replies[host]
        if isinstance(reply, Exception):
            raise reply
        return reply

    def hosts_called(self) -> list[str]:
        return [host for host, _ in self.calls]


def ok() -> TransportResponse:
    return TransportResponse(status_code=200, message="OK", body=OK_BODY)


def failed(status: int = 500, message: str = "boom") -> TransportResponse:
    return TransportResponse(status_code=status, message=message)


def _registry(transport, *, endpoints=(A, B, C), provider=None, **kwargs) -> EndpointRegistry:
    cache = EndpointListCache(provider if provider is not None else MemoryCacheProvider())
    kwargs.setdefault("licence_key", "KEY")
    return EndpointRegistry(cache, transport, endpoints=endpoints, **kwargs)


def test_build_cloud_url_quotes_parameters() -> None:
    url = build_cloud_url(A, "ab c", "Mozilla/5.0 (X11; Linux)")
    assert url == (
        "http://a.example:80/v1/detect/properties"
        "?licencekey=ab+c&useragent=Mozilla%2F5.0+%28X11%3B+Linux%29"
    )


def test_classify_failure_strips_markup() -> None:
    reply = classify_failure(A, 500, "<html><b>Server\nerror</b></html>")
    assert reply.action is FailoverAction.CONTINUE
    assert reply.error == 'Error getting data from cloud end-point "http://a.example", response 500, Reason: Server error'


@pytest.mark.parametrize("status, message", [(403, "nope"), (401, "Forbidden: licence expired")])
def test_classify_failure_detects_licence_rejection(status: int, message: str) -> None:
    assert classify_failure(A, status, message).action is FailoverAction.STOP


def test_insert_by_average_skips_unreachable_and_keeps_ties_in_order() -> None:
    ranked: list[Endpoint] = []
    insert_by_average(ranked, Endpoint("x", average=20.0))
    insert_by_average(ranked, Endpoint("y", average=10.0))
    insert_by_average(ranked, Endpoint("z", average=20.0))
    insert_by_average(ranked, Endpoint("dead", average=UNREACHABLE))
    assert [e.host for e in ranked] == ["y", "x", "z"]


def test_rank_servers_orders_by_average_latency() -> None:
    clock = FakeClock()
    transport = FakeTransport(
        {A.host: ok(), B.host: ok(), C.host: ok()},
        delays={A.host: 0.030, B.host: 0.010, C.host: 0.020},
        clock=clock,
    )
    registry = _registry(transport, clock=clock, rng=random.Random(7))

    ranked = registry.rank_servers()

    assert [e.host for e in ranked] == [B.host, C.host, A.host]
    assert ranked[0].average == pytest.approx(10.0)
    assert ranked[0].latencies == pytest.approx((10.0, 10.0, 10.0))
    assert registry.get_cached_server_list(SERVERS_CACHE_AUTO) == ranked
    # num_requests + 1 requests per end-point
    assert len(transport.calls) == 12


def test_ranking_does_not_depend_on_visit_order() -> None:
    results = []
    for seed in (1, 2, 3):
        clock = FakeClock()
        transport = FakeTransport(
            {A.host: ok(), B.host: ok(), C.host: ok()},
            delays={A.host: 0.005, B.host: 0.050, C.host: 0.001},
            clock=clock,
        )
        registry = _registry(transport, clock=clock, rng=random.Random(seed))
        results.append(tuple(e.host for e in registry.rank_servers()))
    assert results == [(C.host, A.host, B.host)] * 3


def test_repeated_ranking_on_one_registry_is_stable() -> None:
    clock = FakeClock()
    transport = FakeTransport(
        {A.host: ok(), B.host: ok(), C.host: ok()},
        delays={A.host: 0.020, B.host: 0.040, C.host: 0.010},
        clock=clock,
    )
    registry = _registry(transport, clock=clock, rng=random.Random(11))

    first = registry.rank_servers()
    second = registry.rank_servers()

    assert [e.host for e in first] == [C.host, A.host, B.host]
    assert [e.host for e in second] == [e.host for e in first]
    assert [e.average for e in second] == pytest.approx([e.average for e in first])
    assert registry.get_cached_server_list(SERVERS_CACHE_AUTO) == second
    assert len(transport.calls) == 24


def test_latency_stops_after_max_failures() -> None:
    transport = FakeTransport({A.host: failed()})
    registry = _registry(transport, endpoints=(A,), max_failures=2)

    assert registry.get_server_latency(A, 3) == (UNREACHABLE, UNREACHABLE)
    assert transport.hosts_called() == [A.host, A.host]


def test_failing_endpoint_is_excluded_from_ranking() -> None:
    clock = FakeClock()
    transport = FakeTransport(
        {A.host: ok(), B.host: failed(), C.host: ok()},
        delays={A.host: 0.020, C.host: 0.010},
        clock=clock,
    )
    registry = _registry(transport, clock=clock)

    measured = {e.host: e for e in registry.get_servers_latencies()}
    assert measured[B.host].latencies == (UNREACHABLE,)
    assert measured[B.host].average == UNREACHABLE
    assert transport.hosts_called().count(B.host) == 1
    assert registry.ranking_status is RankingStatus.RANKING

    assert [e.host for e in registry.rank_servers()] == [C.host, A.host]


def test_latency_headers_carry_settings_then_request_number() -> None:
    transport = FakeTransport({A.host: ok()})
    registry = _registry(transport, endpoints=(A,))

    registry.get_server_latency(A, 3)

    headers = [h[LATENCY_HEADER] for _, h in transport.calls]
    assert headers == ["ntrue3131440", "1", "2", "3"]


def test_licence_rejection_aborts_ranking_without_caching() -> None:
    provider = MemoryCacheProvider()
    transport = FakeTransport({A.host: ok(), B.host: failed(403, "Forbidden"), C.host: ok()})
    registry = _registry(transport, provider=provider)

    assert registry.rank_servers() == ()
    assert registry.fatal_errors
    assert "response 403" in registry.fatal_errors[0]
    assert provider.list_keys() == []


def test_request_raises_fatal_error_found_while_ranking() -> None:
    transport = FakeTransport({A.host: failed(403, "Forbidden"), B.host: ok(), C.host: ok()})
    registry = _registry(transport, endpoints=(A,))

    with pytest.raises(FatalAuthFailure) as excinfo:
        registry.request_properties("UA")

    assert transport.hosts_called() == [A.host]
    assert "Forbidden" in str(excinfo.value)


def test_unreachable_ranking_stores_configured_list_as_manual() -> None:
    transport = FakeTransport({A.host: failed(), B.host: TransportConnectError("refused"), C.host: failed()})
    registry = _registry(transport)

    assert registry.rank_servers() == ()
    assert registry.get_cached_server_list(SERVERS_CACHE_AUTO) is None
    assert registry.get_cached_server_list(SERVERS_CACHE_MANUAL) == (A, B, C)


def test_candidates_prefer_cached_auto_list() -> None:
    registry = _registry(FakeTransport({A.host: ok(), B.host: ok(), C.host: ok()}))
    registry.cache.store((C, A), manual=False)

    candidates = registry.get_candidates()
    assert candidates.endpoints == (C, A)
    assert candidates.status is RankingStatus.AUTO
    assert candidates.auto_ranked


def test_candidates_rank_when_nothing_cached() -> None:
    transport = FakeTransport({A.host: ok(), B.host: ok(), C.host: ok()})
    registry = _registry(transport)

    candidates = registry.get_candidates()
    assert candidates.status is RankingStatus.AUTO_FRESHLY_RANKED
    assert {e.host for e in candidates.endpoints} == {A.host, B.host, C.host}
    # requested from a lookup, so the first request says so
    assert transport.calls[0][1][LATENCY_HEADER].startswith("y")


def test_candidates_without_auto_ranking() -> None:
    registry = _registry(FakeTransport(), auto_ranking=False)

    candidates = registry.get_candidates()
    assert candidates.endpoints == (A, B, C)
    assert candidates.status is RankingStatus.DEFAULT

    registry.cache.store((B, A, C), manual=True)
    candidates = registry.get_candidates()
    assert candidates.endpoints == (B, A, C)
    assert candidates.status is RankingStatus.MANUAL
    assert registry.rank_servers() == ()


def test_manual_failover_rotates_failed_endpoints() -> None:
    transport = FakeTransport({A.host: failed(), B.host: ok(), C.host: ok()})
    registry = _registry(transport, auto_ranking=False)

    assert registry.request_properties("UA") == {"model": "iPhone"}
    assert transport.hosts_called() == [A.host, B.host]
    assert registry.called_servers == [A.host, B.host]
    assert registry.last_used_url == B.url
    assert registry.get_cached_server_list(SERVERS_CACHE_MANUAL) == (B, C, A)

    transport.calls.clear()
    registry.request_properties("UA")
    assert transport.hosts_called() == [B.host]
    assert registry.ranking_status is RankingStatus.MANUAL


def test_rotation_of_auto_list_keeps_auto_key() -> None:
    transport = FakeTransport({A.host: failed(), B.host: ok(), C.host: ok()})
    registry = _registry(transport)
    registry.cache.store((A, B, C), manual=False)

    registry.request_properties("UA")

    assert registry.get_cached_server_list(SERVERS_CACHE_AUTO) == (B, C, A)
    assert registry.get_cached_server_list(SERVERS_CACHE_MANUAL) is None


def test_all_endpoints_failing_aggregates_errors() -> None:
    transport = FakeTransport(
        {A.host: failed(), B.host: TransportConnectError("refused"), C.host: failed(502, "bad gateway")}
    )
    registry = _registry(transport, auto_ranking=False)

    with pytest.raises(CloudServiceError) as excinfo:
        registry.request_properties("UA")

    assert not isinstance(excinfo.value, FatalAuthFailure)
    assert len(excinfo.value.errors) == 3
    assert 'end-point "http://b.example", response 0, Reason: refused' in excinfo.value.errors[1]
    assert str(excinfo.value).count("\n") == 2
    assert registry.get_cached_server_list(SERVERS_CACHE_MANUAL) is None


def test_fatal_response_stops_failover() -> None:
    transport = FakeTransport({A.host: failed(403, "Forbidden"), B.host: ok(), C.host: ok()})
    registry = _registry(transport, auto_ranking=False)

    with pytest.raises(FatalAuthFailure):
        registry.request_properties("UA")
    assert transport.hosts_called() == [A.host]


def test_undecodable_body_is_a_success_without_properties() -> None:
    transport = FakeTransport({A.host: TransportResponse(200, "OK", body='{"properties":{"a" 1}}')})
    registry = _registry(transport, endpoints=(A,), auto_ranking=False)
    assert registry.request_properties("UA") is None


def test_no_endpoints_configured() -> None:
    registry = _registry(FakeTransport(), endpoints=(), auto_ranking=False)
    with pytest.raises(NoEndpointsConfigured):
        registry.request_properties("UA")


def test_zero_lifetime_disables_list_caching() -> None:
    provider = MemoryCacheProvider()
    cache = EndpointListCache(provider, lifetime_minutes=0)
    transport = FakeTransport({A.host: failed(), B.host: ok(), C.host: ok()})
    registry = EndpointRegistry(cache, transport, endpoints=(A, B, C), auto_ranking=False)

    registry.request_properties("UA")
    assert provider.list_keys() == []
