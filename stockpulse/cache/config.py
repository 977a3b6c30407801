"""
Cache Configuration

Centralized configuration for the caching layer.
TTLs are defined per dashboard data type.

Settings are read from the environment once and memoized.
Set REDIS_URL (and CACHE_BACKEND=redis) to use Redis; otherwise an
in-process memory cache is used.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache
from typing import List, Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str, default: str = "") -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass(frozen=True)
class CacheTTL:
    """
    Cache TTL configuration by data type.

    Dashboard data changes whenever an invoice, transfer or stock
    movement is recorded, so TTLs are minutes, not hours. Range-filtered
    dashboards are requested less often and are kept shorter.
    """

    # Composed dashboard
    DASHBOARD_ALL: timedelta = timedelta(minutes=5)
    DASHBOARD_FILTERED: timedelta = timedelta(minutes=3)

    # Individual slices
    SUMMARY: timedelta = timedelta(minutes=2)
    TOTAL_RETAIL_VALUE: timedelta = timedelta(minutes=5)
    SHOP_PERFORMANCE: timedelta = timedelta(minutes=5)
    INVENTORY_DISTRIBUTION: timedelta = timedelta(minutes=3)
    SALES: timedelta = timedelta(minutes=5)
    TRANSFERS: timedelta = timedelta(minutes=2)

    # Fallback for callers that don't pass a TTL
    DEFAULT: timedelta = timedelta(minutes=5)

    @classmethod
    def for_data_type(cls, data_type: str) -> timedelta:
        """Get TTL for a dashboard data type."""
        mapping = {
            "all": cls.DASHBOARD_ALL,
            "summary": cls.SUMMARY,
            "total_retail_value": cls.TOTAL_RETAIL_VALUE,
            "shop_performance": cls.SHOP_PERFORMANCE,
            "inventory_distribution": cls.INVENTORY_DISTRIBUTION,
            "sales": cls.SALES,
            "transfers": cls.TRANSFERS,
        }
        return mapping.get(data_type, cls.DEFAULT)

    @classmethod
    def for_dashboard(cls, date_filtered: bool) -> timedelta:
        """TTL for a composed dashboard, shorter when scoped to a date range."""
        return cls.DASHBOARD_FILTERED if date_filtered else cls.DASHBOARD_ALL


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - CACHE_ENABLED: Enable/disable caching globally
    - CACHE_BACKEND: "memory" or "redis"
    - REDIS_URL: Redis connection string
    - CACHE_WARMING_ENABLED: Run the background warmer on startup
    - CACHE_WARMING_CONCURRENCY: Warming units computed at once
    """

    # Cache namespace (for key prefixes)
    namespace: str = field(default_factory=lambda: os.getenv(
        "CACHE_NAMESPACE",
        "stockpulse"
    ))

    # Global cache toggle
    enabled: bool = field(default_factory=lambda: _env_bool("CACHE_ENABLED", "true"))

    # Backend selection
    backend: str = field(default_factory=lambda: os.getenv(
        "CACHE_BACKEND",
        "redis" if os.getenv("REDIS_URL") else "memory"
    ).lower())

    # Redis connection
    redis_url: str = field(default_factory=lambda: os.getenv(
        "REDIS_URL",
        "redis://localhost:6379/0"
    ))
    redis_max_connections: int = field(default_factory=lambda: int(os.getenv(
        "REDIS_MAX_CONNECTIONS",
        "50"
    )))
    redis_socket_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_SOCKET_TIMEOUT",
        "2.0"
    )))
    redis_connect_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_CONNECT_TIMEOUT",
        "2.0"
    )))

    # Compression (LZ4) for large payloads
    compression_enabled: bool = field(default_factory=lambda: _env_bool(
        "CACHE_COMPRESSION_ENABLED", "true"
    ))
    compression_threshold: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_COMPRESSION_THRESHOLD",
        "1024"
    )))

    # Circuit breaker
    circuit_breaker_enabled: bool = field(default_factory=lambda: _env_bool(
        "CACHE_CIRCUIT_BREAKER_ENABLED", "true"
    ))
    circuit_breaker_threshold: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_CIRCUIT_BREAKER_THRESHOLD",
        "5"
    )))
    circuit_breaker_timeout: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_CIRCUIT_BREAKER_TIMEOUT",
        "60"
    )))

    # Background warming
    warming_enabled: bool = field(default_factory=lambda: _env_bool(
        "CACHE_WARMING_ENABLED", "false"
    ))
    warming_interval_seconds: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_WARMING_INTERVAL_SECONDS",
        "600"
    )))
    # Units in flight at once, and the size of the warming thread pool
    warming_concurrency: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_WARMING_CONCURRENCY",
        "5"
    )))
    warming_periods: List[str] = field(default_factory=lambda: _env_list(
        "CACHE_WARMING_PERIODS", "7d,30d,90d,ytd"
    ))
    # Empty means "every active shop"
    warm_shop_ids: List[str] = field(default_factory=lambda: _env_list(
        "CACHE_WARM_SHOP_IDS"
    ))

    # Dashboard composition
    fetch_timeout_seconds: float = field(default_factory=lambda: float(os.getenv(
        "DASHBOARD_FETCH_TIMEOUT",
        "10"
    )))
    trend_mode: str = field(default_factory=lambda: os.getenv(
        "DASHBOARD_TREND_MODE",
        "period"
    ).lower())
    low_stock_threshold: int = field(default_factory=lambda: int(os.getenv(
        "LOW_STOCK_THRESHOLD",
        "10"
    )))

    @property
    def use_redis(self) -> bool:
        return self.backend == "redis"

    @property
    def warm_shop_id_list(self) -> Optional[List[int]]:
        """Configured warming shops, or None to warm every active shop."""
        if not self.warm_shop_ids:
            return None
        return [int(shop_id) for shop_id in self.warm_shop_ids]


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get singleton cache configuration."""
    return CacheConfig()
