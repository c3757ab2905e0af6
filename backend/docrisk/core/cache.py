"""In-memory TTL cache for the rule catalog.

Rule definitions change rarely and are read on every evaluation, so the
catalog keeps the merged active-rule list per (entity, scope) here and
invalidates it whenever a rule is written through the catalog.
"""

import threading
import time
from collections import OrderedDict
from collections.abc import Hashable
from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    """Single cache entry with value and expiration timestamp."""

    value: Any
    expires_at: float


class TTLCache:
    """Thread-safe LRU cache with TTL expiration.

    Args:
        max_size: Maximum number of entries.
        ttl_seconds: Time-to-live for each entry. Zero disables caching.
    """

    def __init__(self, max_size: int = 256, ttl_seconds: int = 300) -> None:
        self._cache: OrderedDict[Hashable, CacheEntry] = OrderedDict()
        self._max_size = max_size
        self._ttl = ttl_seconds
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: Hashable) -> Any | None:
        """Retrieve a value if it exists and hasn't expired."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None
            if time.monotonic() > entry.expires_at:
                del self._cache[key]
                self._misses += 1
                return None
            self._cache.move_to_end(key)
            self._hits += 1
            return entry.value

    def set(self, key: Hashable, value: Any) -> None:
        """Store a value with TTL expiration."""
        if self._ttl <= 0:
            return
        with self._lock:
            if key in self._cache:
                self._cache.move_to_end(key)
            self._cache[key] = CacheEntry(
                value=value,
                expires_at=time.monotonic() + self._ttl,
            )
            while len(self._cache) > self._max_size:
                self._cache.popitem(last=False)

    def invalidate(self, key: Hashable) -> None:
        """Remove a specific entry."""
        with self._lock:
            self._cache.pop(key, None)

    def invalidate_where(self, predicate) -> int:
        """Remove every entry whose key satisfies ``predicate``.

        Returns:
            Number of removed entries.
        """
        with self._lock:
            stale = [key for key in self._cache if predicate(key)]
            for key in stale:
                del self._cache[key]
            return len(stale)

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._cache.clear()

    @property
    def stats(self) -> dict[str, int]:
        """Return cache hit/miss statistics."""
        return {
            "hits": self._hits,
            "misses": self._misses,
            "size": len(self._cache),
            "max_size": self._max_size,
        }
