"""
Redis Cache Implementation

Redis-backed cache with:
- Automatic LZ4 compression for large values
- Circuit breaker for resilience
- Namespace isolation
- Async operations throughout
- Graceful degradation: every failure reads as a miss
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from stockpulse.cache.base import KeyValueCache, TTLValue, normalize_pattern, ttl_seconds
from stockpulse.cache.compression import decode_value, encode_value
from stockpulse.cache.config import CacheConfig, get_cache_config


logger = logging.getLogger(__name__)


@dataclass
class CircuitBreakerState:
    """Circuit breaker state tracking."""
    failures: int = 0
    last_failure: float = 0.0
    is_open: bool = False
    opened_at: float = 0.0


class CircuitBreaker:
    """
    Circuit breaker for the Redis connection.

    Fails fast after threshold consecutive failures, then lets
    requests through again once the timeout has passed.
    """

    def __init__(
        self,
        threshold: int = 5,
        timeout: int = 60,
        clock=time.monotonic,
    ):
        self.threshold = threshold
        self.timeout = timeout
        self.state = CircuitBreakerState()
        self._clock = clock

    def is_available(self) -> bool:
        """Check if circuit allows requests."""
        if not self.state.is_open:
            return True

        if self._clock() - self.state.opened_at >= self.timeout:
            # Half-open: let the next request probe the connection
            self.state.is_open = False
            self.state.failures = self.threshold - 1
            logger.info("Circuit breaker half-open, allowing requests")
            return True

        return False

    def record_success(self):
        self.state.failures = 0
        self.state.is_open = False

    def record_failure(self):
        self.state.failures += 1
        self.state.last_failure = self._clock()

        if self.state.failures >= self.threshold and not self.state.is_open:
            self.state.is_open = True
            self.state.opened_at = self._clock()
            logger.warning(
                f"Circuit breaker opened after {self.state.failures} failures. "
                f"Will retry in {self.timeout} seconds."
            )


class RedisCache(KeyValueCache):
    """
    Redis cache with compression and circuit breaking.

    Connection is established lazily on first use. If Redis cannot be
    reached, operations return None/False/0 rather than raising.
    """

    backend_name = "redis"

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        redis: Optional[Redis] = None,
    ):
        super().__init__(config or get_cache_config())
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = redis
        self._circuit_breaker = CircuitBreaker(
            threshold=self.config.circuit_breaker_threshold,
            timeout=self.config.circuit_breaker_timeout,
        ) if self.config.circuit_breaker_enabled else None
        self._initialized = redis is not None
        self._lock = asyncio.Lock()

    async def initialize(self):
        """Initialize Redis connection pool. Raises if Redis is unreachable."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            try:
                self._pool = ConnectionPool.from_url(
                    self.config.redis_url,
                    max_connections=self.config.redis_max_connections,
                    socket_timeout=self.config.redis_socket_timeout,
                    socket_connect_timeout=self.config.redis_connect_timeout,
                    decode_responses=False,  # We handle bytes directly
                )
                self._redis = Redis(connection_pool=self._pool)

                await self._redis.ping()
                self._initialized = True
                logger.info(f"Redis cache initialized: {self.config.redis_url}")

            except Exception as e:
                logger.error(f"Failed to initialize Redis: {e}")
                # Drop the half-built pool so a retry starts clean
                await self._release()
                raise

    async def _release(self):
        if self._redis is not None:
            await self._redis.aclose()
        if self._pool is not None:
            await self._pool.disconnect()
        self._redis = None
        self._pool = None
        self._initialized = False

    async def close(self):
        """Close Redis connection pool."""
        await self._release()
        logger.info("Redis cache closed")

    async def _ensure_connection(self) -> bool:
        if self._initialized:
            return True
        if self._circuit_breaker and not self._circuit_breaker.is_available():
            return False
        try:
            await self.initialize()
            return True
        except Exception:
            if self._circuit_breaker:
                self._circuit_breaker.record_failure()
            return False

    @asynccontextmanager
    async def _with_circuit_breaker(self):
        """Context manager for circuit breaker pattern."""
        if self._circuit_breaker and not self._circuit_breaker.is_available():
            raise RedisConnectionError("Circuit breaker is open")

        try:
            yield
            if self._circuit_breaker:
                self._circuit_breaker.record_success()
        except (RedisError, OSError):
            if self._circuit_breaker:
                self._circuit_breaker.record_failure()
            raise

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns None if:
        - Key doesn't exist or has expired
        - Cache is disabled
        - Redis is unavailable
        - Deserialization fails
        """
        if not self.config.enabled:
            return None

        if not await self._ensure_connection():
            self._stats.misses += 1
            return None

        start_time = time.time()

        try:
            async with self._with_circuit_breaker():
                data = await self._redis.get(key)

            self._stats.record_latency(time.time() - start_time)

            if data is None:
                self._stats.misses += 1
                return None

            self._stats.hits += 1
            return decode_value(data)

        except RedisConnectionError:
            self._stats.errors += 1
            logger.warning("Redis unavailable, returning None")
            return None
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache get error for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[TTLValue] = None) -> bool:
        """
        Set value in cache with TTL.

        Returns True on success, False on failure.
        """
        if not self.config.enabled:
            return False

        if not await self._ensure_connection():
            return False

        start_time = time.time()

        try:
            payload = encode_value(
                value,
                compress=self.config.compression_enabled,
                threshold=self.config.compression_threshold,
            )

            async with self._with_circuit_breaker():
                await self._redis.setex(key, ttl_seconds(ttl), payload)

            self._stats.record_latency(time.time() - start_time)
            self._stats.writes += 1
            return True

        except RedisConnectionError:
            self._stats.errors += 1
            logger.warning("Redis unavailable, cache set failed")
            return False
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache set error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """Delete a key from cache."""
        if not self.config.enabled or not await self._ensure_connection():
            return False

        try:
            async with self._with_circuit_breaker():
                return await self._redis.delete(key) > 0
        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache delete error for {key}: {e}")
            return False

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern. Returns count deleted."""
        if not self.config.enabled or not await self._ensure_connection():
            return 0

        pattern = normalize_pattern(pattern)

        try:
            async with self._with_circuit_breaker():
                keys = []
                async for key in self._redis.scan_iter(match=pattern, count=100):
                    keys.append(key)

                if not keys:
                    return 0

                deleted = await self._redis.delete(*keys)

            self._stats.invalidations += deleted
            logger.info(f"Deleted {deleted} keys matching {pattern}")
            return deleted

        except Exception as e:
            self._stats.errors += 1
            logger.error(f"Cache delete pattern error for {pattern}: {e}")
            return 0

    async def ttl(self, key: str) -> int:
        """Get remaining TTL in seconds for a key. Returns -2 if not exists."""
        if not self.config.enabled or not await self._ensure_connection():
            return -2

        try:
            async with self._with_circuit_breaker():
                return await self._redis.ttl(key)
        except Exception:
            return -2

    # =========================================================================
    # Statistics and Health
    # =========================================================================

    def get_stats(self) -> Dict:
        stats = super().get_stats()
        stats["initialized"] = self._initialized
        stats["circuit_breaker_open"] = (
            self._circuit_breaker.state.is_open
            if self._circuit_breaker else False
        )
        return stats

    async def health_check(self) -> Dict:
        """Perform health check."""
        if not self.config.enabled:
            return {"healthy": True, "status": "disabled", "backend": self.backend_name}

        try:
            await self.initialize()

            start = time.time()
            async with self._with_circuit_breaker():
                await self._redis.ping()
            latency_ms = (time.time() - start) * 1000

            return {
                "healthy": True,
                "status": "connected",
                "backend": self.backend_name,
                "latency_ms": round(latency_ms, 2),
                "stats": self.get_stats(),
            }

        except Exception as e:
            return {
                "healthy": False,
                "status": "error",
                "backend": self.backend_name,
                "error": str(e),
                "stats": self.get_stats(),
            }
