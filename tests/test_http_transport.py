from __future__ import annotations

import gzip

import httpx
import pytest

from dacloud import __version__
from dacloud.core.errors import TransportConnectError, TransportTimeoutError
from dacloud.transports.http import EMPTY_RESPONSE_MESSAGE, HttpTransport

URL = "http://region0.example:80/v1/detect/properties?licencekey=K&useragent=UA"


def _transport(handler) -> HttpTransport:
    return HttpTransport(client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_success_returns_body_and_sends_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text='{"properties":{}}')

    response = _transport(handler).fetch(URL, {"accept-language": "en"}, timeout_s=1.5)

    assert response.ok
    assert response.status_code == 200
    assert response.body == '{"properties":{}}'
    request = seen[0]
    assert request.headers["X-DA-accept-language"] == "en"
    assert request.headers["Accept"] == "application/json"
    assert request.headers["Accept-Encoding"] == "gzip"
    assert request.headers["User-Agent"] == f"Python/{__version__}"
    assert request.url.params["useragent"] == "UA"


def test_gzip_body_is_decoded() -> None:
    payload = gzip.compress(b'{"properties":{"a":1}}')

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=payload, headers={"Content-Encoding": "gzip"})

    assert _transport(handler).fetch(URL).body == '{"properties":{"a":1}}'


def test_error_status_carries_response_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, text="<p>Forbidden</p>")

    response = _transport(handler).fetch(URL)
    assert not response.ok
    assert response.status_code == 403
    assert response.message == "<p>Forbidden</p>"
    assert response.body is None


def test_empty_success_is_not_ok() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="")

    response = _transport(handler).fetch(URL)
    assert not response.ok
    assert response.message == EMPTY_RESPONSE_MESSAGE


def test_timeout_maps_to_transport_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TransportTimeoutError):
        _transport(handler).fetch(URL)


def test_connect_error_maps_to_transport_connect_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransportConnectError, match="refused"):
        _transport(handler).fetch(URL)
