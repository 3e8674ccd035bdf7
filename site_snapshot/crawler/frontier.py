"""URL frontier: every known URL is in exactly one of pending, crawled, failed."""

from __future__ import annotations

import threading
from typing import Container, Optional

from site_snapshot.errors import InvalidURLError, NotInDiscoveredSetError, NotInFailedSetError

from .url import canonicalize_url

__all__ = ["Frontier"]


class Frontier:
    """Deduplicating URL state machine used by the crawler.

    - URLs are keyed by their canonical form (see :func:`canonicalize_url`).
    - Pending URLs are handed out in discovery order.
    - Mutations are serialized with a lock; read-only queries take no lock.
    """

    def __init__(self, base_url: Optional[str] = None) -> None:
        self.base_url = base_url

        self._lock = threading.Lock()
        # dict keeps insertion order, values unused
        self._pending: dict[str, None] = {}
        self._crawled: set[str] = set()
        self._failed: set[str] = set()

    # ------------------------------------------------------------------ #
    # Mutations                                                          #
    # ------------------------------------------------------------------ #

    def canonical(self, url: str) -> str:
        """Canonical key of *url* resolved against the frontier base."""

        return canonicalize_url(str(url), self.base_url)

    def discover(self, url: str) -> bool:
        """Insert *url* into pending unless it is already known.

        Returns True when the URL was new. Raises :class:`InvalidURLError`
        for input that does not resolve to an absolute http(s) URL.
        """

        key = self.canonical(url)
        with self._lock:
            if key in self._pending or key in self._crawled or key in self._failed:
                return False
            self._pending[key] = None
        return True

    def mark_crawled(self, url: str) -> str:
        key = self._canonical_or_missing(url)
        with self._lock:
            if key not in self._pending:
                raise NotInDiscoveredSetError(key)
            del self._pending[key]
            self._crawled.add(key)
        return key

    def mark_failed(self, url: str) -> str:
        key = self._canonical_or_missing(url)
        with self._lock:
            if key not in self._pending:
                raise NotInDiscoveredSetError(key)
            del self._pending[key]
            self._failed.add(key)
        return key

    def rediscover(self, url: str) -> str:
        """Move a failed URL back to pending (the only way out of failed)."""

        try:
            key = self.canonical(url)
        except InvalidURLError:
            raise NotInFailedSetError(str(url)) from None
        with self._lock:
            if key not in self._failed:
                raise NotInFailedSetError(key)
            self._failed.discard(key)
            self._pending[key] = None
        return key

    def _canonical_or_missing(self, url: str) -> str:
        try:
            return self.canonical(url)
        except InvalidURLError:
            raise NotInDiscoveredSetError(str(url)) from None

    # ------------------------------------------------------------------ #
    # Queries                                                            #
    # ------------------------------------------------------------------ #

    def next_pending(self) -> Optional[str]:
        """Peek at the oldest pending URL without removing it."""

        return self.first_pending()

    def first_pending(self, skip: Container[str] = ()) -> Optional[str]:
        """Oldest pending URL not contained in *skip*, or None."""

        with self._lock:
            for key in self._pending:
                if key not in skip:
                    return key
        return None

    def has_pending(self) -> bool:
        return bool(self._pending)

    def _state_has(self, bucket, url: str) -> bool:
        try:
            return self.canonical(url) in bucket
        except InvalidURLError:
            return False

    def is_pending(self, url: str) -> bool:
        return self._state_has(self._pending, url)

    def is_crawled(self, url: str) -> bool:
        return self._state_has(self._crawled, url)

    def is_failed(self, url: str) -> bool:
        return self._state_has(self._failed, url)

    def is_known(self, url: str) -> bool:
        return self.is_pending(url) or self.is_crawled(url) or self.is_failed(url)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def crawled_count(self) -> int:
        return len(self._crawled)

    @property
    def failed_count(self) -> int:
        return len(self._failed)

    def pending_urls(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def crawled_urls(self) -> list[str]:
        with self._lock:
            return sorted(self._crawled)

    def failed_urls(self) -> list[str]:
        with self._lock:
            return sorted(self._failed)

    def all_urls(self) -> list[str]:
        """Return every known URL: pending first, then crawled, then failed."""

        with self._lock:
            return [*self._pending, *sorted(self._crawled), *sorted(self._failed)]

    def stats(self) -> dict[str, int]:
        """Return ``{discovered, crawled, failed, total}`` counters.

        ``discovered`` counts URLs still waiting to be crawled.
        """

        with self._lock:
            discovered = len(self._pending)
            crawled = len(self._crawled)
            failed = len(self._failed)
        return {
            "discovered": discovered,
            "crawled": crawled,
            "failed": failed,
            "total": discovered + crawled + failed,
        }

    def __len__(self) -> int:
        return len(self._pending) + len(self._crawled) + len(self._failed)

    def __repr__(self) -> str:
        return f"Frontier(base_url={self.base_url!r}, {self.stats()})"
