"""
Aggregation Fetchers

Async wrappers around the slice aggregations. Each call opens its own
session and runs the synchronous queries in a worker thread, so the
event loop stays free while several slices are computed at once.

Threads come from the loop default executor unless one is passed in;
the cache warmer gets its own pool so its backlog never delays
consumer requests.

Fetchers never raise: anything that escapes the aggregation (including
failing to open a session) is logged and reported as a failed result.
"""

import asyncio
import logging
from concurrent.futures import Executor
from datetime import date
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy.orm import sessionmaker

from stockpulse.cache.config import CacheConfig, get_cache_config
from stockpulse.dashboard import aggregations
from stockpulse.dashboard.periods import DashboardFilters, Today
from stockpulse.dashboard.results import AggregateResult
from stockpulse.dashboard.trends import TrendEstimator, create_trend_estimator


logger = logging.getLogger(__name__)

Fetcher = Callable[[DashboardFilters], Awaitable[AggregateResult]]

# Slice names, in composition order
SUMMARY = "summary"
TOTAL_RETAIL_VALUE = "total_retail_value"
SHOP_PERFORMANCE = "shop_performance"
INVENTORY_DISTRIBUTION = "inventory_distribution"
SALES = "sales"
TRANSFERS = "transfers"

SLICE_NAMES = (
    SUMMARY,
    TOTAL_RETAIL_VALUE,
    SHOP_PERFORMANCE,
    INVENTORY_DISTRIBUTION,
    SALES,
    TRANSFERS,
)

# Slices whose result depends on a date window
TIME_WINDOWED_SLICES = (SUMMARY, SHOP_PERFORMANCE, SALES, TRANSFERS)


class DashboardFetchers:
    """
    One fetcher per dashboard slice.

    Usage:
        fetchers = DashboardFetchers(get_session_factory())
        result = await fetchers.fetch_summary(DashboardFilters(shop_id=3))
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        trend_estimator: Optional[TrendEstimator] = None,
        config: Optional[CacheConfig] = None,
        today: Today = date.today,
        executor: Optional[Executor] = None,
    ):
        self.config = config or get_cache_config()
        self._session_factory = session_factory
        self._trends = trend_estimator or create_trend_estimator(self.config.trend_mode)
        self._today = today
        self._executor = executor

    async def _in_thread(self, work):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, work)

    async def _run(self, name: str, compute, filters: DashboardFilters) -> AggregateResult:
        def work():
            db = self._session_factory()
            try:
                return compute(db, filters)
            finally:
                db.close()

        try:
            return await self._in_thread(work)
        except Exception as e:
            logger.error(f"Fetcher {name} failed: {e}")
            return AggregateResult.failed(f"Failed to compute {name}: {e}")

    async def fetch_summary(self, filters: DashboardFilters) -> AggregateResult:
        return await self._run(
            SUMMARY,
            lambda db, f: aggregations.compute_summary(
                db, f, self._trends,
                low_stock_threshold=self.config.low_stock_threshold,
                today=self._today,
            ),
            filters,
        )

    async def fetch_total_retail_value(self, filters: DashboardFilters) -> AggregateResult:
        return await self._run(
            TOTAL_RETAIL_VALUE,
            lambda db, f: aggregations.compute_total_retail_value(db, f, self._trends),
            filters,
        )

    async def fetch_shop_performance(self, filters: DashboardFilters) -> AggregateResult:
        return await self._run(
            SHOP_PERFORMANCE,
            lambda db, f: aggregations.compute_shop_performance(db, f, today=self._today),
            filters,
        )

    async def fetch_inventory_distribution(self, filters: DashboardFilters) -> AggregateResult:
        return await self._run(
            INVENTORY_DISTRIBUTION,
            aggregations.compute_inventory_distribution,
            filters,
        )

    async def fetch_sales(self, filters: DashboardFilters) -> AggregateResult:
        return await self._run(
            SALES,
            lambda db, f: aggregations.compute_sales(db, f, today=self._today),
            filters,
        )

    async def fetch_transfers(self, filters: DashboardFilters) -> AggregateResult:
        return await self._run(
            TRANSFERS,
            lambda db, f: aggregations.compute_transfers(db, f, today=self._today),
            filters,
        )

    async def list_active_shop_ids(self) -> List[int]:
        """Active shops for warming. Raises if the store cannot be read."""
        def work():
            db = self._session_factory()
            try:
                return aggregations.list_active_shop_ids(db)
            finally:
                db.close()

        return await self._in_thread(work)

    def as_slices(self) -> Dict[str, Fetcher]:
        """Fetchers keyed by slice name, for the composer."""
        return {
            SUMMARY: self.fetch_summary,
            TOTAL_RETAIL_VALUE: self.fetch_total_retail_value,
            SHOP_PERFORMANCE: self.fetch_shop_performance,
            INVENTORY_DISTRIBUTION: self.fetch_inventory_distribution,
            SALES: self.fetch_sales,
            TRANSFERS: self.fetch_transfers,
        }
