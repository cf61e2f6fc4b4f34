"""Transport interfaces."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Protocol


@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    message: str = ""
    body: str | None = None

    @property
    def ok(self) -> bool:
        return self.body is not None and self.status_code // 100 == 2


class Transport(Protocol):
    def fetch(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
        *,
        timeout_s: float = 3.0,
    ) -> TransportResponse:
        """Issue a GET request and return the decoded response."""
