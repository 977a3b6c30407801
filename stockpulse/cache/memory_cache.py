"""
In-Memory Cache

Process-local cache used in development and tests, and whenever no
Redis URL is configured. Entries are deep-copied on write and on read
so callers can never mutate a cached value in place.
"""

import copy
import fnmatch
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from stockpulse.cache.base import KeyValueCache, TTLValue, normalize_pattern, ttl_seconds
from stockpulse.cache.config import CacheConfig, get_cache_config


logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float


class MemoryCache(KeyValueCache):
    """
    Dict-backed TTL cache.

    Expired entries are dropped lazily on access; purge_expired() can be
    called to reclaim memory for keys that are never read again.
    """

    backend_name = "memory"

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(config or get_cache_config())
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    async def get(self, key: str) -> Optional[Any]:
        if not self.config.enabled:
            return None

        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return None

        if self._clock() >= entry.expires_at:
            del self._entries[key]
            self._stats.misses += 1
            return None

        self._stats.hits += 1
        return copy.deepcopy(entry.value)

    async def set(self, key: str, value: Any, ttl: Optional[TTLValue] = None) -> bool:
        if not self.config.enabled:
            return False

        try:
            stored = copy.deepcopy(value)
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache set error for {key}: {e}")
            return False

        now = self._clock()
        self._entries[key] = CacheEntry(
            value=stored,
            created_at=now,
            expires_at=now + ttl_seconds(ttl),
        )
        self._stats.writes += 1
        return True

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def invalidate_pattern(self, pattern: str) -> int:
        pattern = normalize_pattern(pattern)
        matched = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
        for key in matched:
            del self._entries[key]

        self._stats.invalidations += len(matched)
        logger.info(f"Deleted {len(matched)} keys matching {pattern}")
        return len(matched)

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds, -2 if the key doesn't exist."""
        entry = self._entries.get(key)
        if entry is None:
            return -2
        remaining = entry.expires_at - self._clock()
        return int(remaining) if remaining > 0 else -2

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns count removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def keys(self):
        return list(self._entries.keys())

    async def close(self):
        self._entries.clear()
