"""Shared GET response cache and the coordinator that invalidates it.

:class:`ResponseCache` is a small TTL cache keyed by request path + query
string.  It is populated by the HTTP middleware in :mod:`kgrelay.api.app`
and only ever stores HTTP 200 responses.

:class:`CacheCoordinator` is the policy layer on top: every operation that
mutates state visible through a cached GET endpoint calls
:meth:`CacheCoordinator.invalidate` *before* it reports success, so the next
read is computed fresh.

Typical usage::

    cache = ResponseCache(ttl=120)
    coordinator = CacheCoordinator(cache)

    coordinator.invalidate()                 # -> "all"
    coordinator.invalidate("/api/getLogins") # -> ["/api/getLogins"]
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal

from kgrelay.core import events

__all__ = ["CachedResponse", "ResponseCache", "CacheCoordinator"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedResponse:
    """A fully-buffered HTTP response held by :class:`ResponseCache`."""

    status: int
    body: bytes
    headers: list[tuple[str, str]] = field(default_factory=list)


class ResponseCache:
    """Thread-safe TTL cache of GET responses.

    Args:
        ttl: Entry lifetime in seconds.  ``0`` disables caching entirely.
        clock: Monotonic time source; injectable for tests.
    """

    def __init__(self, ttl: float = 120.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, CachedResponse]] = {}

    @property
    def enabled(self) -> bool:
        return self._ttl > 0

    def get(self, key: str) -> CachedResponse | None:
        """Return the live entry for *key*, evicting it if expired."""
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            expires_at, response = item
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return response

    def set(self, key: str, response: CachedResponse) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._entries[key] = (self._clock() + self._ttl, response)

    def keys(self) -> list[str]:
        """Snapshot of every key currently held (expired ones included)."""
        with self._lock:
            return list(self._entries)

    def clear(self, key: str | None = None) -> None:
        """Drop one key, or everything when *key* is ``None``."""
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)


class CacheCoordinator:
    """Invalidation policy over a :class:`ResponseCache`.

    Args:
        cache: The shared response cache.
    """

    def __init__(self, cache: ResponseCache) -> None:
        self._cache = cache

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    def invalidate(self, target: str | None = None) -> Literal["all"] | list[str]:
        """Invalidate the whole cache or only keys containing *target*.

        Args:
            target: Substring to match against cache keys.  Falsy clears
                everything.

        Returns:
            ``"all"`` for a total clear, otherwise the list of removed keys.
        """
        if not target:
            self._cache.clear()
            logger.debug("Response cache cleared.", extra={"event": events.CACHE_CLEARED})
            return "all"

        removed = [key for key in self._cache.keys() if target in key]
        for key in removed:
            self._cache.clear(key)
            logger.debug("Cleared cache key %s", key, extra={"event": events.CACHE_CLEARED})
        return removed
