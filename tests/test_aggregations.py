"""
Tests for dashboard aggregations and date windows.

Runs the slice queries against the seeded SQLite store from conftest.
"""

import pytest
from datetime import date, datetime, time
from unittest.mock import MagicMock

from stockpulse.dashboard import aggregations
from stockpulse.dashboard.aggregations import format_currency
from stockpulse.dashboard.periods import (
    DashboardFilters,
    DateWindow,
    explicit_window,
    preset_filters,
    sales_buckets,
    shop_performance_window,
    transfers_window,
)
from stockpulse.dashboard.results import QueryGuard
from stockpulse.dashboard.trends import (
    PeriodOverPeriodTrendEstimator,
    RandomTrendEstimator,
)

from conftest import FixedTrendEstimator, fixed_today


MARCH_RANGE = dict(start_date=date(2024, 3, 1), end_date=date(2024, 3, 15))


def tile(summary, title):
    return next(item for item in summary if item["title"] == title)


# =============================================================================
# DATE WINDOWS
# =============================================================================

class TestDateWindows:
    """Test filter to window resolution."""

    def test_end_is_inclusive(self):
        window = explicit_window(DashboardFilters(**MARCH_RANGE), fixed_today)
        assert window.start == datetime(2024, 3, 1)
        assert window.end == datetime.combine(date(2024, 3, 15), time.max)

    def test_start_only_runs_to_today(self):
        window = explicit_window(DashboardFilters(start_date=date(2024, 3, 10)), fixed_today)
        assert window.end.date() == date(2024, 3, 15)

    def test_end_only_starts_30_days_earlier(self):
        window = explicit_window(DashboardFilters(end_date=date(2024, 3, 31)), fixed_today)
        assert window.start == datetime(2024, 3, 1)

    def test_no_dates_means_no_explicit_window(self):
        assert explicit_window(DashboardFilters(), fixed_today) is None

    def test_shop_performance_defaults_to_current_month(self):
        window = shop_performance_window(DashboardFilters(), fixed_today)
        assert window.start == datetime(2024, 3, 1)
        assert window.end.date() == date(2024, 3, 31)

    def test_transfers_default_to_trailing_30_days(self):
        window = transfers_window(DashboardFilters(), fixed_today)
        assert window.start == datetime(2024, 2, 14)
        assert window.end.date() == date(2024, 3, 15)

    def test_default_sales_buckets_are_six_months(self):
        labels = [label for label, _ in sales_buckets(DashboardFilters(), fixed_today)]
        assert labels == ["Oct 2023", "Nov 2023", "Dec 2023", "Jan 2024", "Feb 2024", "Mar 2024"]

    def test_sales_buckets_are_clamped_to_range(self):
        filters = DashboardFilters(start_date=date(2024, 1, 15), end_date=date(2024, 2, 10))
        buckets = sales_buckets(filters, fixed_today)

        assert [label for label, _ in buckets] == ["Jan 2024", "Feb 2024"]
        assert buckets[0][1].start == datetime(2024, 1, 15)
        assert buckets[1][1].end.date() == date(2024, 2, 10)

    def test_previous_window_has_same_length(self):
        window = DateWindow(datetime(2024, 3, 1), datetime.combine(date(2024, 3, 15), time.max))
        previous = window.previous()
        assert previous.end < window.start
        assert previous.end - previous.start == window.end - window.start

    def test_presets(self):
        assert preset_filters("7d", today=fixed_today).start_date == date(2024, 3, 8)
        assert preset_filters("ytd", 2, fixed_today) == DashboardFilters(
            start_date=date(2024, 1, 1), end_date=date(2024, 3, 15), shop_id=2
        )
        with pytest.raises(ValueError):
            preset_filters("fortnight", today=fixed_today)

    def test_scope_key(self):
        assert DashboardFilters().scope_key == "global"
        assert DashboardFilters(shop_id=4).scope_key == "shop:4"


# =============================================================================
# FORMATTING & TRENDS
# =============================================================================

class TestFormatting:

    def test_format_currency(self):
        assert format_currency(300) == "Rs. 300"
        assert format_currency(1234567) == "Rs. 1,234,567"
        assert format_currency(1234.5) == "Rs. 1,234.50"
        assert format_currency(None) == "Rs. 0"

    def test_period_over_period_trend(self):
        estimator = PeriodOverPeriodTrendEstimator()
        assert estimator.estimate(110, 100).label == "+10.0%"
        assert estimator.estimate(90, 100).up is False
        assert estimator.estimate(5, 2, percentage=False).label == "+3"
        assert estimator.estimate(42).label == "+0.0%"
        assert estimator.estimate(0, 0).label == "+0.0%"

    def test_random_trend_is_bounded(self):
        import random
        estimator = RandomTrendEstimator(random.Random(7))
        for _ in range(20):
            trend = estimator.estimate(1)
            assert -5.0 <= float(trend.label.rstrip("%")) <= 5.0


# =============================================================================
# QUERY GUARD
# =============================================================================

class TestQueryGuard:

    def test_failed_query_falls_back_and_rolls_back(self):
        db = MagicMock()
        guard = QueryGuard(db)

        def broken():
            raise RuntimeError("relation does not exist")

        assert guard.run(broken, 0, "Failed to count things") == 0
        assert guard.failures == ["Failed to count things"]
        db.rollback.assert_called_once()

        result = guard.result([])
        assert result.success is False
        assert result.data == []
        assert "Failed to count things" in result.message

    def test_successful_queries(self):
        guard = QueryGuard(MagicMock())
        assert guard.run(lambda: 5, 0, "unused") == 5
        assert guard.result(5).success is True


# =============================================================================
# SLICES
# =============================================================================

class TestSummary:
    """Headline tiles."""

    def test_range_example_outstanding_invoices(self, db):
        """Invoices of 100 and 200 in range count; the January one does not."""
        filters = DashboardFilters(shop_id=1, **MARCH_RANGE)
        result = aggregations.compute_summary(db, filters, FixedTrendEstimator(), today=fixed_today)

        assert result.success is True
        outstanding = tile(result.data, "Outstanding Invoices")
        assert outstanding["value"] == "Rs. 300"
        assert outstanding["raw_value"] == 300

    def test_global_summary_without_range(self, db):
        result = aggregations.compute_summary(
            db, DashboardFilters(), FixedTrendEstimator(), today=fixed_today
        )
        summary = result.data

        assert [item["title"] for item in summary] == [
            "Total Inventory Value",
            "Total Retail Value",
            "Total Profit",
            "Pending Transfers",
            "Outstanding Invoices",
            "Low Stock Items",
        ]
        assert tile(summary, "Total Inventory Value")["value"] == "Rs. 4,750"
        assert tile(summary, "Total Profit")["value"] == "Rs. 465"
        assert tile(summary, "Pending Transfers")["value"] == "1"
        assert tile(summary, "Outstanding Invoices")["value"] == "Rs. 700"
        assert tile(summary, "Low Stock Items")["value"] == "4"
        assert tile(summary, "Total Profit")["trend"] == "+1.0%"
        assert tile(summary, "Total Profit")["trend_up"] is True

    def test_shop_scoped_inventory_ignores_dates(self, db):
        filters = DashboardFilters(shop_id=2, start_date=date(2020, 1, 1), end_date=date(2020, 1, 2))
        summary = aggregations.compute_summary(db, filters, FixedTrendEstimator(), today=fixed_today).data

        assert tile(summary, "Total Inventory Value")["value"] == "Rs. 1,600"
        assert tile(summary, "Low Stock Items")["value"] == "3"
        assert tile(summary, "Total Profit")["value"] == "Rs. 0"

    def test_period_over_period_trend_uses_previous_window(self, db):
        filters = DashboardFilters(shop_id=1, start_date=date(2024, 3, 1), end_date=date(2024, 3, 31))
        summary = aggregations.compute_summary(
            db, filters, PeriodOverPeriodTrendEstimator(), today=fixed_today
        ).data

        # March profit 70 vs. nothing in the preceding 31 days
        assert tile(summary, "Total Profit")["trend"] == "+100.0%"

    def test_failed_previous_period_only_neutralizes_trends(self, db, monkeypatch):
        """Headline figures stand when only the comparison window fails."""
        march_start = datetime(2024, 3, 1)

        def failing_before_march(query):
            def wrapped(db, shop_id, window):
                if window is not None and window.end < march_start:
                    raise RuntimeError("statement timeout")
                return query(db, shop_id, window)
            return wrapped

        for name in ("_profit_total", "_pending_transfer_count", "_outstanding_total"):
            monkeypatch.setattr(aggregations, name, failing_before_march(getattr(aggregations, name)))

        filters = DashboardFilters(shop_id=1, start_date=date(2024, 3, 1), end_date=date(2024, 3, 31))
        result = aggregations.compute_summary(
            db, filters, PeriodOverPeriodTrendEstimator(), today=fixed_today
        )

        assert result.success is True
        assert tile(result.data, "Total Profit")["value"] == "Rs. 70"
        assert tile(result.data, "Total Profit")["trend"] == "+0.0%"
        assert tile(result.data, "Outstanding Invoices")["value"] == "Rs. 300"
        assert tile(result.data, "Pending Transfers")["trend"] == "+0"


class TestOtherSlices:

    def test_total_retail_value(self, db):
        result = aggregations.compute_total_retail_value(db, DashboardFilters(), FixedTrendEstimator())
        assert result.success is True
        assert result.data["formatted_value"] == "Rs. 7,700"
        assert result.data["raw_value"] == 7700

    def test_total_retail_value_for_shop(self, db):
        result = aggregations.compute_total_retail_value(db, DashboardFilters(shop_id=2), FixedTrendEstimator())
        assert result.data["formatted_value"] == "Rs. 2,500"

    def test_shop_performance_current_month(self, db):
        result = aggregations.compute_shop_performance(db, DashboardFilters(), today=fixed_today)

        # The empty inactive shop is omitted
        assert result.data == [
            {"name": "Colombo Central", "sales": 300.0, "stock": 110},
            {"name": "Kandy Branch", "sales": 1000.0, "stock": 5},
        ]

    def test_shop_performance_single_shop(self, db):
        result = aggregations.compute_shop_performance(
            db, DashboardFilters(shop_id=1, start_date=date(2024, 1, 1)), today=fixed_today
        )
        assert result.data == [{"name": "Colombo Central", "sales": 700.0, "stock": 110}]

    def test_inventory_distribution(self, db):
        result = aggregations.compute_inventory_distribution(db, DashboardFilters())

        # Toys has no stock and is dropped
        assert result.data == [
            {"name": "Groceries", "value": 100},
            {"name": "Electronics", "value": 15},
        ]

    def test_monthly_sales(self, db):
        result = aggregations.compute_sales(db, DashboardFilters(), today=fixed_today)

        assert result.data == [
            {"month": "Oct 2023", "sales": 0.0},
            {"month": "Nov 2023", "sales": 75.0},
            {"month": "Dec 2023", "sales": 0.0},
            {"month": "Jan 2024", "sales": 400.0},
            {"month": "Feb 2024", "sales": 0.0},
            {"month": "Mar 2024", "sales": 1300.0},
        ]

    def test_recent_transfers(self, db):
        result = aggregations.compute_transfers(db, DashboardFilters(), today=fixed_today)

        assert result.data == [
            {
                "id": "TR-001",
                "source": "Colombo Central",
                "destination": "Kandy Branch",
                "status": "Pending",
                "date": "2024-03-12",
                "items": 2,
            },
            {
                "id": "TR-002",
                "source": "Kandy Branch",
                "destination": "Colombo Central",
                "status": "In_transit",
                "date": "2024-03-01",
                "items": 1,
            },
        ]

    def test_transfers_with_range(self, db):
        filters = DashboardFilters(start_date=date(2024, 1, 1), end_date=date(2024, 1, 31), shop_id=2)
        result = aggregations.compute_transfers(db, filters, today=fixed_today)
        assert [row["id"] for row in result.data] == ["TR-003"]

    def test_list_active_shop_ids(self, db):
        assert aggregations.list_active_shop_ids(db) == [1, 2]

    def test_failing_store_degrades(self):
        """A broken session yields fallbacks and success=False, never an exception."""
        db = MagicMock()
        db.query.side_effect = RuntimeError("connection reset")

        result = aggregations.compute_inventory_distribution(db, DashboardFilters())

        assert result.success is False
        assert result.data == []
