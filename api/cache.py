"""
Cache Management API

Provides endpoints for cache monitoring and manual operations.

Endpoints:
- Health check for monitoring/alerting
- Statistics for hit-rate insights
- Manual invalidation (by pattern or by shop)
- Cache warming (run once, start/stop the background loop)
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from stockpulse.cache import CacheEvent, CacheInvalidator, KeyValueCache
from stockpulse.cache.warming import CacheWarmer


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cache", tags=["Cache Management"])


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_cache(request: Request) -> KeyValueCache:
    return request.app.state.cache


def get_invalidator(request: Request) -> CacheInvalidator:
    return request.app.state.invalidator


def get_warmer(request: Request) -> CacheWarmer:
    return request.app.state.warmer


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class CacheHealthResponse(BaseModel):
    """Cache health check response."""
    status: str = Field(..., description="healthy or unhealthy")
    backend: str = Field(..., description="Cache backend type")
    details: Dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class CacheStatsResponse(BaseModel):
    """Cache statistics response."""
    enabled: bool
    backend: str
    hits: int
    misses: int
    writes: int
    errors: int
    invalidations: int
    hit_rate_percent: float
    avg_latency_ms: float


class InvalidationResponse(BaseModel):
    """Cache invalidation response."""
    success: bool
    keys_invalidated: int
    duration_ms: float
    patterns: List[str] = []
    errors: List[str] = []


class WarmingResponse(BaseModel):
    """Cache warming response."""
    success: bool
    targets: List[str] = []
    succeeded: int = 0
    failed: int = 0
    failures: List[str] = []
    duration_ms: float = 0.0


class WarmerStatusResponse(BaseModel):
    status: str
    running: bool
    last_run: Optional[Dict[str, Any]] = None


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/health", response_model=CacheHealthResponse)
async def cache_health_check(cache: KeyValueCache = Depends(get_cache)):
    """
    Check cache infrastructure health.

    Use this endpoint for monitoring and alerting systems. An unhealthy
    cache does not break the dashboard; requests fall through to the
    database.
    """
    health = await cache.health_check()

    return CacheHealthResponse(
        status="healthy" if health["healthy"] else "unhealthy",
        backend=health["backend"],
        details={k: v for k, v in health.items() if k not in ("healthy", "backend")},
        timestamp=datetime.utcnow(),
    )


@router.get("/stats", response_model=CacheStatsResponse)
async def get_cache_stats(cache: KeyValueCache = Depends(get_cache)):
    """
    Get current cache statistics.

    Note: Stats are reset on application restart.
    """
    stats = cache.get_stats()
    return CacheStatsResponse(**stats)


@router.post("/invalidate", response_model=InvalidationResponse)
async def invalidate_cache_pattern(
    pattern: str = Query(..., min_length=1, description="Glob or key prefix, e.g. dashboard:summary:*"),
    invalidator: CacheInvalidator = Depends(get_invalidator),
):
    """
    Invalidate every cache entry matching a pattern.

    The namespace prefix is added when missing. A pattern without glob
    characters is treated as a prefix.
    """
    result = await invalidator.handle_event(
        CacheEvent.MANUAL_INVALIDATE_PATTERN, pattern=pattern
    )

    return InvalidationResponse(
        success=result.success,
        keys_invalidated=result.keys_invalidated,
        duration_ms=result.duration_ms,
        patterns=result.patterns,
        errors=result.errors,
    )


@router.post("/invalidate/shop/{shop_id}", response_model=InvalidationResponse)
async def invalidate_shop_cache(
    shop_id: int,
    invalidator: CacheInvalidator = Depends(get_invalidator),
):
    """
    Invalidate all cache for a specific shop.

    Also drops the global entries that include the shop's figures.
    """
    result = await invalidator.handle_event(
        CacheEvent.MANUAL_INVALIDATE_SHOP, shop_id=shop_id
    )

    return InvalidationResponse(
        success=result.success,
        keys_invalidated=result.keys_invalidated,
        duration_ms=result.duration_ms,
        patterns=result.patterns,
        errors=result.errors,
    )


@router.post("/warm", response_model=WarmingResponse)
async def warm_cache(warmer: CacheWarmer = Depends(get_warmer)):
    """
    Run one warming cycle now and wait for it to finish.

    Individual failures are reported, not raised.
    """
    try:
        report = await warmer.warm_all()
    except Exception as e:
        logger.error(f"Cache warming failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return WarmingResponse(
        success=report.failed == 0,
        targets=report.targets,
        succeeded=report.succeeded,
        failed=report.failed,
        failures=report.failures,
        duration_ms=report.duration_ms,
    )


@router.post("/warm/start", response_model=WarmerStatusResponse)
async def start_warmer(
    interval_seconds: Optional[int] = Query(None, ge=1),
    warmer: CacheWarmer = Depends(get_warmer),
):
    """Start the background warmer. Does nothing if already running."""
    already_running = warmer.is_running
    await warmer.start(interval_seconds)

    return WarmerStatusResponse(
        status="already_running" if already_running else "started",
        running=warmer.is_running,
        last_run=warmer.last_report.to_dict() if warmer.last_report else None,
    )


@router.post("/warm/stop", response_model=WarmerStatusResponse)
async def stop_warmer(warmer: CacheWarmer = Depends(get_warmer)):
    """Stop the background warmer."""
    await warmer.stop()

    return WarmerStatusResponse(
        status="stopped",
        running=warmer.is_running,
        last_run=warmer.last_report.to_dict() if warmer.last_report else None,
    )
