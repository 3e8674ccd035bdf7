# File: site_snapshot/errors.py
"""Exception taxonomy for SiteSnapshot.

Invariant and lifecycle errors signal programming mistakes and are raised to
the caller immediately. :class:`FetchFailure` is environmental: the crawler
records it, marks the URL failed and keeps going.
"""
from __future__ import annotations

from typing import Optional

__all__ = (
    "SnapshotError",
    "InvalidURLError",
    "NotInDiscoveredSetError",
    "NotInFailedSetError",
    "FetchFailure",
    "AlreadyStartedError",
    "NotStartedError",
    "CrawlInProgressError",
    "ServerBootError",
    "ServerDiedError",
    "ConfigError",
)


class SnapshotError(Exception):
    """Base class for every error raised by site_snapshot."""


class InvalidURLError(SnapshotError, ValueError):
    """Input cannot be parsed into an absolute http(s) URL."""

    def __init__(self, url: object, reason: str = "cannot be parsed") -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL {url!r}: {reason}")


class NotInDiscoveredSetError(SnapshotError, KeyError):
    """A transition was requested for a URL that is not pending."""

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"URL is not in the discovered (pending) set: {url}")

    def __str__(self) -> str:
        return self.args[0]


class NotInFailedSetError(SnapshotError, KeyError):
    """``rediscover`` was called for a URL that has not failed."""

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"URL is not in the failed set: {url}")

    def __str__(self) -> str:
        return self.args[0]


class FetchFailure(SnapshotError):
    """Network error, timeout or non-2xx answer while loading a URL."""

    def __init__(self, url: str, reason: str, status: Optional[int] = None) -> None:
        self.url = url
        self.reason = reason
        self.status = status
        super().__init__(f"Fetch failed for {url}: {reason}")


class AlreadyStartedError(SnapshotError, RuntimeError):
    pass


class NotStartedError(SnapshotError, RuntimeError):
    pass


class CrawlInProgressError(SnapshotError, RuntimeError):
    pass


class ServerBootError(SnapshotError, RuntimeError):
    """The boot function failed or the port never became ready."""


class ServerDiedError(SnapshotError, RuntimeError):
    """A booted server stopped accepting connections mid-crawl."""


class ConfigError(SnapshotError, ValueError):
    pass
