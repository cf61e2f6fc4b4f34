"""HTTP transport implementation using httpx."""

from __future__ import annotations

from typing import Mapping

import httpx

from dacloud import __version__
from dacloud.core.errors import TransportConnectError, TransportTimeoutError
from dacloud.transports.base import TransportResponse

HEADER_PREFIX = "X-DA-"
EMPTY_RESPONSE_MESSAGE = "Returned empty!"


class HttpTransport:
    def __init__(
        self,
        *,
        proxy: str | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._client = client or httpx.Client(proxy=proxy, follow_redirects=True)
        self._owns_client = client is None

    def fetch(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        *,
        timeout_s: float = 3.0,
    ) -> TransportResponse:
        request_headers = {
            "Accept-Encoding": "gzip",
            "Accept": "application/json",
            "User-Agent": f"Python/{__version__}",
        }
        for name, value in (headers or {}).items():
            request_headers[f"{HEADER_PREFIX}{name}"] = value

        try:
            response = self._client.get(url, headers=request_headers, timeout=timeout_s)
        except httpx.TimeoutException as exc:
            raise TransportTimeoutError(f"Request to {url} timed out after {timeout_s}s") from exc
        except httpx.HTTPError as exc:
            raise TransportConnectError(f"Request to {url} failed: {exc}") from exc

        # httpx transparently decodes gzip content-encoding
        text = response.text
        if not response.is_success:
            return TransportResponse(status_code=response.status_code, message=text)
        if not text:
            return TransportResponse(status_code=response.status_code, message=EMPTY_RESPONSE_MESSAGE)
        return TransportResponse(status_code=response.status_code, message=response.reason_phrase, body=text)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
