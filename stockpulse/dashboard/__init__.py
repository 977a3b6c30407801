"""
StockPulse Dashboard Aggregation

Per-slice aggregation fetchers and the cache-aside dashboard composer.

Usage:
    fetchers = DashboardFetchers(get_session_factory())
    composer = DashboardComposer(cache, fetchers.as_slices())

    filters = DashboardFilters(start_date=date(2024, 1, 1), shop_id=3)
    dashboard = await composer.compose(filters.scope_key, filters)
"""

from stockpulse.dashboard.results import AggregateResult, QueryGuard
from stockpulse.dashboard.periods import DashboardFilters, DateWindow, preset_filters
from stockpulse.dashboard.trends import (
    Trend,
    TrendEstimator,
    PeriodOverPeriodTrendEstimator,
    RandomTrendEstimator,
    create_trend_estimator,
)
from stockpulse.dashboard.fetchers import (
    DashboardFetchers,
    SLICE_NAMES,
    TIME_WINDOWED_SLICES,
)
from stockpulse.dashboard.composer import (
    COMPOSED_DATA_TYPE,
    ComposedDashboard,
    DashboardComposer,
)

__all__ = [
    "AggregateResult",
    "QueryGuard",
    "DashboardFilters",
    "DateWindow",
    "preset_filters",
    "Trend",
    "TrendEstimator",
    "PeriodOverPeriodTrendEstimator",
    "RandomTrendEstimator",
    "create_trend_estimator",
    "DashboardFetchers",
    "SLICE_NAMES",
    "TIME_WINDOWED_SLICES",
    "COMPOSED_DATA_TYPE",
    "ComposedDashboard",
    "DashboardComposer",
]
