"""
Response cache with TTL and LRU bound.

Sits in front of the provider adapters so repeated scans of the same
product (or re-submissions of the same photo) skip the network.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

import structlog

from nutriscan.domain.nutrition.models import ProviderResult
from nutriscan.domain.resolution.models import CacheEntry

logger = structlog.get_logger(__name__)


class InMemoryResponseCache:
    """
    In-memory response cache with TTL and optional LRU bound.

    Expiry is checked on read; eviction happens on write when the
    cache is over max_entries. The two paths are independent, either
    may remove an entry first. A lock guards the ordered dict, so the
    cache can be shared by concurrent requests; two writers racing on
    the same key simply leave the later value.

    Example:
        >>> cache = InMemoryResponseCache(default_ttl_seconds=1200, max_entries=512)
        >>> cache.put("barcode:3017620422003", result)
        >>> assert cache.get("barcode:3017620422003") == result
    """

    def __init__(
        self,
        default_ttl_seconds: float = 1200,
        max_entries: int = 512,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize cache.

        Args:
            default_ttl_seconds: Entry TTL (default 20 minutes)
            max_entries: LRU bound, 0 for unbounded
            clock: Monotonic clock, injectable for tests
        """
        if default_ttl_seconds <= 0:
            raise ValueError(f"TTL must be positive: {default_ttl_seconds}")
        if max_entries < 0:
            raise ValueError(f"max_entries must be >= 0: {max_entries}")
        self.default_ttl = default_ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[ProviderResult]:
        """Unexpired result for key, or None. Marks the entry recently used."""
        with self._lock:
            entry = self._entries.get(key)

            if entry is None:
                logger.debug("Cache miss", key=key)
                return None

            if entry.is_expired(self._clock()):
                logger.debug("Cache expired", key=key)
                del self._entries[key]
                return None

            self._entries.move_to_end(key)

        logger.debug("Cache hit", key=key)
        return entry.result

    def put(
        self, key: str, result: ProviderResult, ttl_s: Optional[float] = None
    ) -> None:
        """Store result under key for ttl_s seconds (default TTL when None)."""
        ttl = self.default_ttl if ttl_s is None else ttl_s
        if ttl <= 0:
            raise ValueError(f"TTL must be positive: {ttl}")

        entry = CacheEntry(key=key, result=result, expires_at=self._clock() + ttl)
        evicted = []
        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            if self.max_entries:
                while len(self._entries) > self.max_entries:
                    evicted.append(self._entries.popitem(last=False)[0])

        logger.debug("Cached result", key=key, ttl=ttl, provider=result.provider)
        if evicted:
            logger.debug("Evicted least recently used", keys=evicted)

    def invalidate(self, key: str) -> bool:
        """Drop one entry. Returns True if it existed."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._entries.clear()
        logger.info("Cache cleared")

    def purge_expired(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            expired_keys = [
                key for key, entry in self._entries.items() if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._entries[key]

        if expired_keys:
            logger.info("Removed expired entries", count=len(expired_keys))
        return len(expired_keys)

    def size(self) -> int:
        """Number of entries, expired ones included until touched."""
        with self._lock:
            return len(self._entries)
