"""
StockPulse Caching Layer

Cache-aside storage for dashboard aggregates:
- Layer 1: Application cache (Redis in production, memory in development)
- Layer 2: Database (source of truth)

Key components:
- KeyValueCache: best-effort get/set/invalidate contract
- MemoryCache / RedisCache: backends
- CacheInvalidator: event-driven invalidation
- CacheWarmer (stockpulse.cache.warming): background precomputation

Usage:
    cache = create_cache()
    key = dashboard_key(cache, "summary", scope_key(shop_id), filters)
    data = await cache.get(key)

    # Invalidate on changes
    invalidator = CacheInvalidator(cache)
    await invalidator.handle_event(CacheEvent.INVOICE_RECORDED, shop_id=3)
"""

import logging
from typing import Optional

from stockpulse.cache.config import CacheConfig, CacheTTL, get_cache_config
from stockpulse.cache.base import KeyValueCache, CacheStats
from stockpulse.cache.memory_cache import MemoryCache
from stockpulse.cache.redis_cache import RedisCache
from stockpulse.cache.keys import (
    GLOBAL_SCOPE,
    dashboard_key,
    filter_token,
    scope_key,
    scope_pattern,
)
from stockpulse.cache.invalidation import (
    CacheEvent,
    CacheInvalidator,
    InvalidationResult,
)


logger = logging.getLogger(__name__)


def create_cache(config: Optional[CacheConfig] = None) -> KeyValueCache:
    """Build the configured cache backend (Redis when configured, memory otherwise)."""
    config = config or get_cache_config()
    if config.use_redis:
        logger.info("Using Redis cache")
        return RedisCache(config)
    logger.info("Using in-memory cache")
    return MemoryCache(config)


__all__ = [
    # Config
    "CacheConfig",
    "CacheTTL",
    "get_cache_config",
    # Backends
    "KeyValueCache",
    "CacheStats",
    "MemoryCache",
    "RedisCache",
    "create_cache",
    # Keys
    "GLOBAL_SCOPE",
    "dashboard_key",
    "filter_token",
    "scope_key",
    "scope_pattern",
    # Invalidation
    "CacheEvent",
    "CacheInvalidator",
    "InvalidationResult",
]
