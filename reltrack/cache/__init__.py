"""
Cache module for reltrack.

Provides the process-local, time-bounded cache that sits in front of
relation queries.

Invariants:
    - Entries expire after a fixed TTL
    - Invalidation is coarse: by key prefix or a full flush
"""

from .timed_cache import CacheEntry, TimedCache

__all__ = ["CacheEntry", "TimedCache"]
