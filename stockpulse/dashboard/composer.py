"""
Dashboard Composer

Cache-aside composition of the whole dashboard:

1. Look up the composed entry for (scope, filters)
2. On a miss, run every slice fetcher concurrently, each under a timeout
3. Merge the retail value into its summary tile
4. Cache the composed result (3 min for date ranges, 5 min otherwise),
   unless every slice failed

A failing slice is reported in `errors` and left as None; the rest of
the dashboard is still returned and cached.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from stockpulse.cache.base import KeyValueCache, ttl_seconds
from stockpulse.cache.config import CacheConfig, CacheTTL, get_cache_config
from stockpulse.cache.keys import dashboard_key
from stockpulse.dashboard.aggregations import TOTAL_RETAIL_VALUE as RETAIL_TILE_TITLE
from stockpulse.dashboard.fetchers import (
    Fetcher,
    INVENTORY_DISTRIBUTION,
    SALES,
    SHOP_PERFORMANCE,
    SLICE_NAMES,
    SUMMARY,
    TOTAL_RETAIL_VALUE,
    TRANSFERS,
)
from stockpulse.dashboard.periods import DashboardFilters
from stockpulse.dashboard.results import AggregateResult


logger = logging.getLogger(__name__)

COMPOSED_DATA_TYPE = "all"

SLICE_ERRORS = {
    SUMMARY: "Failed to fetch summary data",
    TOTAL_RETAIL_VALUE: "Failed to fetch total retail value",
    SHOP_PERFORMANCE: "Failed to fetch shops data",
    INVENTORY_DISTRIBUTION: "Failed to fetch inventory data",
    SALES: "Failed to fetch sales data",
    TRANSFERS: "Failed to fetch transfers data",
}


@dataclass
class ComposedDashboard:
    """The full dashboard payload. Failed slices are None."""
    success: bool
    summary_data: Optional[List[Dict[str, Any]]] = None
    shop_performance: Optional[List[Dict[str, Any]]] = None
    inventory_distribution: Optional[List[Dict[str, Any]]] = None
    monthly_sales: Optional[List[Dict[str, Any]]] = None
    recent_transfers: Optional[List[Dict[str, Any]]] = None
    errors: List[str] = field(default_factory=list)
    message: Optional[str] = None
    from_cache: bool = False
    scope: Optional[str] = None
    generated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON form with camelCase top-level keys."""
        payload = {
            "success": self.success,
            "summaryData": self.summary_data,
            "shopPerformance": self.shop_performance,
            "inventoryDistribution": self.inventory_distribution,
            "monthlySales": self.monthly_sales,
            "recentTransfers": self.recent_transfers,
            "errors": list(self.errors),
            "meta": {
                "scope": self.scope,
                "fromCache": self.from_cache,
                "generatedAt": self.generated_at,
            },
        }
        if self.message:
            payload["message"] = self.message
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ComposedDashboard":
        meta = payload.get("meta") or {}
        return cls(
            success=bool(payload.get("success")),
            summary_data=payload.get("summaryData"),
            shop_performance=payload.get("shopPerformance"),
            inventory_distribution=payload.get("inventoryDistribution"),
            monthly_sales=payload.get("monthlySales"),
            recent_transfers=payload.get("recentTransfers"),
            errors=list(payload.get("errors") or []),
            message=payload.get("message"),
            from_cache=bool(meta.get("fromCache", False)),
            scope=meta.get("scope"),
            generated_at=meta.get("generatedAt"),
        )


def merge_retail_value(
    summary: Optional[List[Dict[str, Any]]],
    retail: AggregateResult,
) -> Optional[List[Dict[str, Any]]]:
    """Copy the retail value into the summary tile with the matching title."""
    if not summary or not retail.success or not retail.data:
        return summary

    merged = []
    for item in summary:
        if item.get("title") == RETAIL_TILE_TITLE:
            item = {
                **item,
                "value": retail.data["formatted_value"],
                "raw_value": retail.data["raw_value"],
                "trend": retail.data["trend"],
                "trend_up": retail.data["trend_up"],
            }
        merged.append(item)
    return merged


class DashboardComposer:
    """
    Cache-aside dashboard composition.

    The cache and fetchers are injected; the composer holds no other state.
    Concurrent misses for the same key each compute and overwrite the
    entry with an equivalent value.
    """

    def __init__(
        self,
        cache: KeyValueCache,
        fetchers: Mapping[str, Fetcher],
        config: Optional[CacheConfig] = None,
    ):
        missing = [name for name in SLICE_NAMES if name not in fetchers]
        if missing:
            raise ValueError(f"Missing dashboard fetchers: {', '.join(missing)}")
        self.cache = cache
        self.config = config or get_cache_config()
        self._fetchers = dict(fetchers)

    # =========================================================================
    # Keys
    # =========================================================================

    def dashboard_key(self, scope_key: str, filters: DashboardFilters) -> str:
        return dashboard_key(
            self.cache, COMPOSED_DATA_TYPE, scope_key, filters.cache_filters()
        )

    def slice_key(self, name: str, filters: DashboardFilters) -> str:
        return dashboard_key(self.cache, name, filters.scope_key, filters.cache_filters())

    # =========================================================================
    # Composition
    # =========================================================================

    async def _fetch(self, name: str, filters: DashboardFilters) -> AggregateResult:
        """Run one fetcher under the per-fetcher timeout."""
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                self._fetchers[name](filters),
                timeout=self.config.fetch_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Slice {name} timed out after {self.config.fetch_timeout_seconds}s"
            )
            return AggregateResult.failed(f"{name} timed out")
        logger.debug(f"Slice {name} took {(time.perf_counter() - start) * 1000:.1f}ms")
        return result

    async def _compute(self, scope_key: str, filters: DashboardFilters) -> ComposedDashboard:
        start = time.perf_counter()

        raw = await asyncio.gather(
            *(self._fetch(name, filters) for name in SLICE_NAMES),
            return_exceptions=True,
        )

        results: Dict[str, AggregateResult] = {}
        for name, outcome in zip(SLICE_NAMES, raw):
            if isinstance(outcome, Exception):
                logger.warning(f"Failed to fetch {name}: {outcome}")
                outcome = AggregateResult.failed(str(outcome))
            elif not outcome.success:
                logger.warning(f"Slice {name} degraded: {outcome.message}")
            results[name] = outcome

        def data(name: str):
            result = results[name]
            return result.data if result.success else None

        dashboard = ComposedDashboard(
            success=True,
            summary_data=merge_retail_value(data(SUMMARY), results[TOTAL_RETAIL_VALUE]),
            shop_performance=data(SHOP_PERFORMANCE),
            inventory_distribution=data(INVENTORY_DISTRIBUTION),
            monthly_sales=data(SALES),
            recent_transfers=data(TRANSFERS),
            errors=[
                SLICE_ERRORS[name] for name in SLICE_NAMES
                if not results[name].success
            ],
            scope=scope_key,
            generated_at=datetime.utcnow().isoformat(),
        )

        logger.info(
            f"Composed dashboard for {scope_key} in "
            f"{(time.perf_counter() - start) * 1000:.1f}ms "
            f"({len(dashboard.errors)} failed slices)"
        )
        return dashboard

    def _ttl(self, base, min_ttl: Optional[int]) -> int:
        ttl = ttl_seconds(base)
        return max(ttl, min_ttl) if min_ttl else ttl

    async def _compute_and_store(
        self,
        scope_key: str,
        filters: DashboardFilters,
        min_ttl: Optional[int] = None,
    ) -> ComposedDashboard:
        try:
            dashboard = await self._compute(scope_key, filters)
        except Exception as e:
            logger.error(f"Error composing dashboard for {scope_key}: {e}")
            return ComposedDashboard(
                success=False,
                message=f"Failed to load all dashboard data: {e}",
                scope=scope_key,
            )

        if len(dashboard.errors) == len(SLICE_NAMES):
            # Nothing was computed; the next request should try again
            logger.warning(f"Every slice failed for {scope_key}, not caching")
            return dashboard

        ttl = self._ttl(CacheTTL.for_dashboard(filters.is_date_filtered), min_ttl)
        await self.cache.set(self.dashboard_key(scope_key, filters), dashboard.to_dict(), ttl)
        return dashboard

    async def compose(
        self,
        scope_key: str,
        filters: Optional[DashboardFilters] = None,
    ) -> ComposedDashboard:
        """
        Get the composed dashboard, from cache when available.

        scope_key partitions the cache ("global" or "shop:{id}") and must
        agree with filters.shop_id. Raises ValueError when they differ.
        """
        filters = self._checked_filters(scope_key, filters)
        key = self.dashboard_key(scope_key, filters)

        cached = await self.cache.get(key)
        if cached is not None:
            logger.info(f"Dashboard served from cache: {key}")
            dashboard = ComposedDashboard.from_dict(cached)
            dashboard.from_cache = True
            return dashboard

        return await self._compute_and_store(scope_key, filters)

    async def refresh(
        self,
        scope_key: str,
        filters: Optional[DashboardFilters] = None,
        min_ttl: Optional[int] = None,
    ) -> ComposedDashboard:
        """
        Recompute and overwrite the composed entry without reading it.

        min_ttl (seconds) extends the entry lifetime beyond the default TTL.
        """
        filters = self._checked_filters(scope_key, filters)
        return await self._compute_and_store(scope_key, filters, min_ttl)

    @staticmethod
    def _checked_filters(scope_key: str, filters: Optional[DashboardFilters]) -> DashboardFilters:
        filters = filters or DashboardFilters()
        if filters.scope_key != scope_key:
            raise ValueError(
                f"Scope {scope_key} does not match filters for {filters.scope_key}"
            )
        return filters

    # =========================================================================
    # Single slices
    # =========================================================================

    def _check_slice(self, name: str):
        if name not in self._fetchers:
            raise ValueError(f"Unknown dashboard slice: {name}")

    async def _refresh_slice(
        self,
        name: str,
        filters: DashboardFilters,
        min_ttl: Optional[int] = None,
    ) -> AggregateResult:
        result = await self._fetch(name, filters)
        if result.success:
            await self.cache.set(
                self.slice_key(name, filters),
                result.to_dict(),
                self._ttl(CacheTTL.for_data_type(name), min_ttl),
            )
        return result

    async def fetch_slice(
        self,
        name: str,
        filters: Optional[DashboardFilters] = None,
    ) -> Tuple[AggregateResult, bool]:
        """
        Cache-aside read of one slice.

        Returns (result, from_cache). Failed results are not cached.
        Raises ValueError for an unknown slice name.
        """
        self._check_slice(name)
        filters = filters or DashboardFilters()

        cached = await self.cache.get(self.slice_key(name, filters))
        if cached is not None:
            return AggregateResult.from_dict(cached), True

        return await self._refresh_slice(name, filters), False

    async def refresh_slice(
        self,
        name: str,
        filters: Optional[DashboardFilters] = None,
        min_ttl: Optional[int] = None,
    ) -> AggregateResult:
        """Recompute and overwrite one slice entry."""
        self._check_slice(name)
        return await self._refresh_slice(name, filters or DashboardFilters(), min_ttl)
