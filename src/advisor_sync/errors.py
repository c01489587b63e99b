"""
Error taxonomy for the sync engine.

Expected failures (missing auth, offline, backend down, rejected writes,
unparseable blobs) are captured into result models at the point they
occur. Only two exceptions escape to callers:
- QuotaExceededError, after LocalStore has pruned and retried once
- UnknownDomainError, which is a programming error
"""

import asyncio
from enum import Enum

import httpx


class ErrorKind(str, Enum):
    """Classified failure modes surfaced in result models."""

    NOT_AUTHENTICATED = "not_authenticated"
    NETWORK_UNAVAILABLE = "network_unavailable"  # Host reports offline
    REMOTE_UNREACHABLE = "remote_unreachable"    # Online, backend down
    QUOTA_EXCEEDED = "quota_exceeded"
    REMOTE_WRITE_REJECTED = "remote_write_rejected"
    MALFORMED_BLOB = "malformed_blob"
    UNKNOWN = "unknown"


class SyncError(Exception):
    """Base class for sync engine errors."""


class QuotaExceededError(SyncError):
    """Local storage capacity exhausted."""


class UnknownDomainError(KeyError):
    """A domain name that is not in the registry."""

    def __init__(self, name: object):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Unknown domain: {self.name!r}"


class RemoteError(SyncError):
    """
    Error reported by the remote store.

    Attributes:
        code: Backend error code when available (e.g. PostgREST "PGRST116")
    """

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


# Substrings that mark an error message as network-shaped
_NETWORK_MARKERS = (
    "fetch",
    "network",
    "timeout",
    "timed out",
    "connection",
    "unreachable",
)


def is_network_error(error: BaseException | str | None) -> bool:
    """Return True when an error looks like a transport failure."""
    if error is None:
        return False
    if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _NETWORK_MARKERS)


def classify_error(error: BaseException | str, online: bool = True) -> ErrorKind:
    """
    Map an exception (or error message) to an ErrorKind.

    Network-shaped failures become REMOTE_UNREACHABLE while the host reports
    itself online and NETWORK_UNAVAILABLE otherwise.
    """
    if isinstance(error, QuotaExceededError):
        return ErrorKind.QUOTA_EXCEEDED
    if is_network_error(error):
        return ErrorKind.REMOTE_UNREACHABLE if online else ErrorKind.NETWORK_UNAVAILABLE
    if isinstance(error, RemoteError):
        return ErrorKind.REMOTE_WRITE_REJECTED
    return ErrorKind.UNKNOWN
