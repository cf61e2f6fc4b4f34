"""Domain-specific errors for dacloud."""

from __future__ import annotations

from enum import IntEnum


class DacloudError(Exception):
    """Base error for dacloud."""


class ConfigError(DacloudError):
    """Raised when a settings file cannot be read or does not conform to schema."""


class DecodeErrorKind(IntEnum):
    BAD_DATA = 100
    VERSION_MISMATCH = 200
    NOT_FOUND = 300


class DecodeError(DacloudError):
    """Raised when a cloud payload cannot be decoded."""

    def __init__(self, kind: DecodeErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class CacheError(DacloudError):
    """Base cache provider error."""


class CacheUnavailable(CacheError):
    """Raised when a cache provider was never initialised."""


class CacheWriteFailed(CacheError):
    """Raised when a cache entry cannot be written, locked or removed."""


class TransportError(DacloudError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when the cloud end-point cannot be reached."""


class TransportTimeoutError(TransportError):
    """Raised when a cloud request exceeds its timeout."""


class CloudServiceError(DacloudError):
    """Raised when no end-point could serve a request.

    The message joins every per end-point failure reason.
    """

    def __init__(self, errors: tuple[str, ...] | list[str]) -> None:
        self.errors = tuple(errors)
        super().__init__("\n".join(self.errors))


class FatalAuthFailure(CloudServiceError):
    """Raised when an end-point rejects the licence; no other end-point is tried."""


class NoEndpointsConfigured(DacloudError):
    """Raised when there is no end-point to send a request to."""


class IncorrectPropertyTypeError(DacloudError):
    """Raised when a property is read as a type it cannot be converted to."""
