"""Request header handling: normalisation, client cookie, cache fingerprint."""

from __future__ import annotations

import hashlib
from typing import Mapping

CLIENT_COOKIE_NAME = "DAPROPS"
CLIENT_COOKIE_HEADER = "Client-Properties"
COOKIE_HEADER = "cookie"
USER_AGENT_HEADER = "user-agent"
REMOTE_ADDR = "remote-addr"
OPERA_HEADER_MARKER = "opera"

# Headers useful for device detection, forwarded to the cloud service.
ESSENTIAL_HEADERS = (
    "x-profile",
    "x-wap-profile",
    "x-att-deviceid",
    "accept",
    "accept-language",
)

# Headers which may carry the original user-agent when a proxy or third
# party browser rewrote it. These also take part in the cache fingerprint.
USER_AGENT_HEADERS = (
    "x-device-user-agent",
    "x-original-user-agent",
    "x-operamini-phone-ua",
    "x-skyfire-phone",
    "x-bolt-phone-ua",
    "device-stock-ua",
    "x-ucbrowser-ua",
    "x-ucbrowser-device-ua",
    "x-ucbrowser-device",
    "x-puffin-ua",
)

# Carrier detection and geoip headers, only forwarded when asked for.
EXTRA_HEADERS = (
    "client-ip",
    "x-forwarded-for",
    "x-forwarded",
    "forwarded-for",
    "forwarded",
    "proxy-client-ip",
    "wl-proxy-client-ip",
)


def normalise_keys(headers: Mapping[str, str]) -> dict[str, str]:
    normalised: dict[str, str] = {}
    for name, value in headers.items():
        key = name.lower().replace("_", "-")
        # CGI style names arrive as HTTP_USER_AGENT
        if key.startswith("http-"):
            key = key[5:]
        normalised[key] = value
    return normalised


def extract_cookie(headers: Mapping[str, str]) -> str | None:
    """Return the client side component cookie from normalised headers."""
    cookie = headers.get(CLIENT_COOKIE_NAME.lower())
    if cookie is not None:
        return cookie

    raw_cookies = headers.get(COOKIE_HEADER)
    if raw_cookies is None:
        return None
    prefix = f"{CLIENT_COOKIE_NAME}="
    for chunk in raw_cookies.split(";"):
        chunk = chunk.strip()
        if chunk.startswith(prefix):
            return chunk[len(prefix) :]
    return None


def fingerprint(user_agent: str, headers: Mapping[str, str] | None, cookie: str | None) -> str:
    """Cache key for a request: md5 of the user agent, UA-bearing headers and cookie."""
    parts = [user_agent]
    if headers:
        for name in USER_AGENT_HEADERS:
            value = headers.get(name)
            if value is not None:
                parts.append(value)
        for name, value in headers.items():
            if OPERA_HEADER_MARKER in name and name not in USER_AGENT_HEADERS and value is not None:
                parts.append(value)
    if cookie is not None:
        parts.append(cookie)
    return hashlib.md5("".join(parts).encode("utf-8")).hexdigest()


def forwarded_headers(
    headers: Mapping[str, str],
    *,
    cookie: str | None = None,
    send_extra_headers: bool = False,
) -> dict[str, str]:
    """Select the headers sent to the cloud service alongside the user agent."""
    selected: dict[str, str] = {}
    for name in ESSENTIAL_HEADERS + USER_AGENT_HEADERS:
        value = headers.get(name)
        if value is not None:
            selected[name] = value

    for name, value in headers.items():
        if OPERA_HEADER_MARKER in name:
            selected[name] = value

    if send_extra_headers:
        for name in EXTRA_HEADERS + (REMOTE_ADDR,):
            value = headers.get(name)
            if value is not None:
                selected[name] = value

    if cookie is not None:
        selected[CLIENT_COOKIE_HEADER] = cookie
    return selected
