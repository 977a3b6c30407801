"""
Cache Contract

Every cache backend implements the same best-effort contract:
- get() returns None on miss, expiry or store failure
- set() returns False instead of raising when the store is unavailable
- invalidate_pattern() returns the number of keys removed

A cache outage degrades to "always miss"; callers never need to guard
cache calls with try/except.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Union

from stockpulse.cache.config import CacheConfig, CacheTTL


logger = logging.getLogger(__name__)

TTLValue = Union[int, float, timedelta]

GLOB_CHARS = ("*", "?", "[")


def ttl_seconds(ttl: Optional[TTLValue]) -> int:
    """Normalize a TTL (seconds or timedelta) to whole seconds, default when None."""
    if ttl is None:
        ttl = CacheTTL.DEFAULT
    if isinstance(ttl, timedelta):
        seconds = ttl.total_seconds()
    else:
        seconds = float(ttl)
    # Redis SETEX rejects 0
    return max(1, int(round(seconds)))


def normalize_pattern(pattern: str) -> str:
    """A pattern without glob characters is a prefix match."""
    if any(char in pattern for char in GLOB_CHARS):
        return pattern
    return f"{pattern}*"


@dataclass
class CacheStats:
    """Cache operation statistics."""
    hits: int = 0
    misses: int = 0
    writes: int = 0
    errors: int = 0
    invalidations: int = 0
    latency_samples: List[float] = field(default_factory=list)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def avg_latency_ms(self) -> float:
        if not self.latency_samples:
            return 0.0
        return sum(self.latency_samples[-100:]) / len(self.latency_samples[-100:]) * 1000

    def record_latency(self, seconds: float):
        """Record a latency sample."""
        self.latency_samples.append(seconds)
        # Keep only last 1000 samples
        if len(self.latency_samples) > 1000:
            self.latency_samples = self.latency_samples[-1000:]


class KeyValueCache(ABC):
    """Best-effort TTL key/value cache."""

    backend_name = "abstract"

    def __init__(self, config: CacheConfig):
        self.config = config
        self._stats = CacheStats()

    def make_key(self, *parts: Any) -> str:
        """Create namespaced cache key."""
        return f"{self.config.namespace}:{':'.join(str(p) for p in parts)}"

    def namespaced(self, pattern: str) -> str:
        """Prefix a raw key or pattern with the namespace unless already present."""
        if pattern.startswith(f"{self.config.namespace}:"):
            return pattern
        return self.make_key(pattern)

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value or None."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[TTLValue] = None) -> bool:
        """Store a value; returns False when the write did not happen."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a single key."""

    @abstractmethod
    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob (or prefix). Returns count removed."""

    async def close(self):
        """Release backend resources."""

    async def health_check(self) -> Dict:
        return {
            "healthy": True,
            "status": "connected" if self.config.enabled else "disabled",
            "backend": self.backend_name,
            "stats": self.get_stats(),
        }

    def get_stats(self) -> Dict:
        """Get cache statistics."""
        return {
            "enabled": self.config.enabled,
            "backend": self.backend_name,
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "writes": self._stats.writes,
            "errors": self._stats.errors,
            "invalidations": self._stats.invalidations,
            "hit_rate_percent": round(self._stats.hit_rate * 100, 2),
            "avg_latency_ms": round(self._stats.avg_latency_ms, 2),
        }
