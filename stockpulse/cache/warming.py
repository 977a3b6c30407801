"""
Cache Warming Service

Precomputes dashboard entries so the first request after a quiet
period is served from cache.

Each cycle:
1. Enumerates targets: the global scope plus every active shop
   (or CACHE_WARM_SHOP_IDS when set)
2. For each target, recomputes every slice (time-windowed slices once
   per period preset) and the composed dashboard for the default
   filters and for each preset
3. Writes through the same cache the composer reads, with a lifetime
   that outlasts the interval so entries are still there when the next
   cycle replaces them

Units settle independently, at most CACHE_WARMING_CONCURRENCY at a
time. The warmer should be given a composer whose fetchers run on
create_warming_executor() so its queries never hold up consumer
requests. Failures are logged and counted; they never reach dashboard
consumers.
"""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from stockpulse.cache.config import CacheConfig, get_cache_config
from stockpulse.cache.keys import GLOBAL_SCOPE, scope_key
from stockpulse.dashboard.composer import COMPOSED_DATA_TYPE, DashboardComposer
from stockpulse.dashboard.fetchers import SLICE_NAMES, TIME_WINDOWED_SLICES
from stockpulse.dashboard.periods import DashboardFilters, Today, preset_filters


logger = logging.getLogger(__name__)

ShopSource = Callable[[], Awaitable[List[int]]]

# Warmed entries live this much longer than one interval
ENTRY_TTL_MARGIN_SECONDS = 60


def create_warming_executor(config: Optional[CacheConfig] = None) -> ThreadPoolExecutor:
    """Thread pool reserved for warming queries."""
    config = config or get_cache_config()
    return ThreadPoolExecutor(
        max_workers=config.warming_concurrency,
        thread_name_prefix="cache-warming",
    )


@dataclass(frozen=True)
class WarmingTarget:
    """One cache partition to warm."""
    scope: str
    shop_id: Optional[int] = None


GLOBAL_TARGET = WarmingTarget(scope=GLOBAL_SCOPE)


@dataclass
class WarmingReport:
    """Outcome of one warming cycle."""
    started_at: str
    targets: List[str] = field(default_factory=list)
    succeeded: int = 0
    failed: int = 0
    failures: List[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at,
            "targets": self.targets,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failures": self.failures,
            "duration_ms": round(self.duration_ms, 2),
        }


class CacheWarmer:
    """
    Periodic compute-and-write of dashboard entries.

    Usage:
        warmer = CacheWarmer(composer, fetchers.list_active_shop_ids)
        report = await warmer.warm_all()   # run once
        await warmer.start()               # background loop
        await warmer.stop()
    """

    def __init__(
        self,
        composer: DashboardComposer,
        shop_source: ShopSource,
        config: Optional[CacheConfig] = None,
        data_types: Sequence[str] = SLICE_NAMES,
        today: Today = date.today,
    ):
        self._composer = composer
        self._shop_source = shop_source
        self._config = config or get_cache_config()
        self._data_types = tuple(data_types)
        self._today = today
        self._interval = self._config.warming_interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.last_report: Optional[WarmingReport] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def entry_ttl(self) -> int:
        """Minimum lifetime of warmed entries, in seconds."""
        return self._interval + ENTRY_TTL_MARGIN_SECONDS

    # =========================================================================
    # Targets
    # =========================================================================

    async def list_targets(self) -> List[WarmingTarget]:
        """
        Global plus one target per shop, enumerated fresh each cycle.

        If shops cannot be listed, only the global scope is warmed.
        """
        shop_ids = self._config.warm_shop_id_list
        if shop_ids is None:
            try:
                shop_ids = await self._shop_source()
            except Exception as e:
                logger.warning(f"Could not list shops for warming, warming global only: {e}")
                shop_ids = []

        targets = [GLOBAL_TARGET]
        for shop_id in shop_ids:
            targets.append(WarmingTarget(scope=scope_key(shop_id), shop_id=shop_id))
        return targets

    def _preset_filters(self, shop_id: Optional[int]) -> List[Tuple[str, DashboardFilters]]:
        presets = []
        for preset in self._config.warming_periods:
            try:
                presets.append((preset, preset_filters(preset, shop_id, self._today)))
            except ValueError as e:
                logger.warning(f"Skipping warming period: {e}")
        return presets

    def _units(self, target: WarmingTarget) -> List[Tuple[str, Callable[[], Awaitable[bool]]]]:
        """(label, coroutine function) pairs for every entry of one target."""
        default = DashboardFilters(shop_id=target.shop_id)
        presets = self._preset_filters(target.shop_id)
        units = []

        for data_type in self._data_types:
            if data_type in TIME_WINDOWED_SLICES:
                for preset, filters in presets:
                    units.append((
                        f"{target.scope}/{data_type}/{preset}",
                        partial(self._warm_slice, data_type, filters),
                    ))
            else:
                units.append((
                    f"{target.scope}/{data_type}",
                    partial(self._warm_slice, data_type, default),
                ))

        units.append((
            f"{target.scope}/{COMPOSED_DATA_TYPE}",
            partial(self._warm_dashboard, target.scope, default),
        ))
        for preset, filters in presets:
            units.append((
                f"{target.scope}/{COMPOSED_DATA_TYPE}/{preset}",
                partial(self._warm_dashboard, target.scope, filters),
            ))
        return units

    # =========================================================================
    # Warming
    # =========================================================================

    async def _warm_slice(self, data_type: str, filters: DashboardFilters) -> bool:
        result = await self._composer.refresh_slice(data_type, filters, min_ttl=self.entry_ttl)
        return result.success

    async def _warm_dashboard(self, scope: str, filters: DashboardFilters) -> bool:
        dashboard = await self._composer.refresh(scope, filters, min_ttl=self.entry_ttl)
        # A composed entry with failed slices is served, but not warm
        return dashboard.success and not dashboard.errors

    async def warm_target(self, target: WarmingTarget) -> WarmingReport:
        """Warm a single partition."""
        return await self._run([target])

    async def warm_shop(self, shop_id: int) -> WarmingReport:
        return await self.warm_target(WarmingTarget(scope=scope_key(shop_id), shop_id=shop_id))

    async def warm_all(self) -> WarmingReport:
        """One full warming cycle over every target."""
        return await self._run(await self.list_targets())

    async def _run(self, targets: List[WarmingTarget]) -> WarmingReport:
        start = time.perf_counter()
        report = WarmingReport(
            started_at=datetime.utcnow().isoformat(),
            targets=[target.scope for target in targets],
        )

        units = [unit for target in targets for unit in self._units(target)]
        labels = [label for label, _ in units]
        semaphore = asyncio.Semaphore(max(1, self._config.warming_concurrency))

        async def limited(warm):
            async with semaphore:
                return await warm()

        outcomes = await asyncio.gather(
            *(limited(warm) for _, warm in units),
            return_exceptions=True,
        )

        for label, outcome in zip(labels, outcomes):
            if isinstance(outcome, Exception):
                report.failed += 1
                report.failures.append(f"{label}: {outcome}")
                logger.warning(f"Cache warming failed for {label}: {outcome}")
            elif not outcome:
                report.failed += 1
                report.failures.append(f"{label}: degraded result")
                logger.warning(f"Cache warming for {label} produced a degraded result")
            else:
                report.succeeded += 1

        report.duration_ms = (time.perf_counter() - start) * 1000
        self.last_report = report

        logger.info(
            f"Cache warming complete: {report.succeeded}/{report.total} entries "
            f"across {len(targets)} targets in {report.duration_ms:.0f}ms"
        )
        return report

    # =========================================================================
    # Background loop
    # =========================================================================

    async def start(self, interval_seconds: Optional[int] = None):
        """
        Start background warming task.

        Calling start on a running warmer does nothing.
        """
        if self._running:
            logger.warning("Background warmer already running")
            return

        interval = interval_seconds or self._config.warming_interval_seconds
        self._interval = interval
        self._running = True

        async def warming_loop():
            while self._running:
                try:
                    logger.info("Running background cache warming...")
                    await self.warm_all()
                    logger.info(f"Background warming complete, sleeping for {interval}s")
                except Exception as e:
                    logger.error(f"Background warming error: {e}")

                await asyncio.sleep(interval)

        self._task = asyncio.create_task(warming_loop())
        logger.info(f"Background cache warmer started (interval: {interval}s)")

    async def stop(self):
        """Stop background warming task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Background cache warmer stopped")
