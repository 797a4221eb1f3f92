"""
Time-bounded key/value cache for relation queries.

Entries carry the time they were stored and are valid while
``clock() - timestamp < ttl_seconds``. There is no size-based eviction;
entries leave the cache through staleness or explicit invalidation.

Invariants:
    - The cache is advisory: a miss only costs a recomputation
    - Expired entries are never returned
    - No locking; concurrent callers share the same entries

How to change safely:
    - Keep keys prefixed by relation type so invalidate_prefix stays correct
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass
class CacheEntry:
    """A cached value and the clock reading when it was stored."""

    data: Any
    timestamp: float


class TimedCache:
    """Process-local TTL cache.

    Example:
        >>> cache = TimedCache(ttl_seconds=30)
        >>> cache.set("username_10", groups)
        >>> cache.get("username_10")
    """

    def __init__(
        self,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the cache.

        Args:
            ttl_seconds: Validity window of an entry
            clock: Monotonic time source in seconds
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._invalidations = 0

    def _is_valid(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.timestamp < self.ttl_seconds

    def get(self, key: str) -> Any | None:
        """Return cached data, or None when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if not self._is_valid(entry):
            del self._entries[key]
            self._misses += 1
            return None

        self._hits += 1
        return entry.data

    def set(self, key: str, data: Any) -> None:
        self._entries[key] = CacheEntry(data=data, timestamp=self._clock())

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with prefix.

        Returns:
            Number of entries removed
        """
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        self._invalidations += len(keys)
        return len(keys)

    def clear_all(self) -> None:
        self._invalidations += len(self._entries)
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and self._is_valid(entry)

    @property
    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "invalidations": self._invalidations,
            "ttl_seconds": self.ttl_seconds,
        }
