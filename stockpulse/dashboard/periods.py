"""
Dashboard filters and date windows.

A request carries an optional start date, end date and shop. Each
time-windowed slice resolves those into a concrete DateWindow:

- shop performance: current calendar month
- sales: trailing 6 calendar months ending with the current month
- transfers: trailing 30 days
- summary: unbounded unless a range is given

An explicit end is inclusive through the last instant of that day.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from stockpulse.cache.keys import scope_key


MONTH_NAMES = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]

# Lookback when only an end date is given
DEFAULT_LOOKBACK_DAYS = 30
TRANSFER_WINDOW_DAYS = 30
SALES_TREND_MONTHS = 6

Today = Callable[[], date]


@dataclass(frozen=True)
class DashboardFilters:
    """Optional range and shop partition for a dashboard request."""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    shop_id: Optional[int] = None

    @property
    def scope_key(self) -> str:
        return scope_key(self.shop_id)

    @property
    def is_date_filtered(self) -> bool:
        return self.start_date is not None or self.end_date is not None

    def cache_filters(self) -> Dict[str, Optional[date]]:
        """Filter values that distinguish cache entries within one scope."""
        return {"startDate": self.start_date, "endDate": self.end_date}


@dataclass(frozen=True)
class DateWindow:
    """Inclusive datetime bounds."""
    start: datetime
    end: datetime

    def previous(self) -> "DateWindow":
        """The window of equal length immediately before this one."""
        length = self.end - self.start
        end = self.start - timedelta(microseconds=1)
        return DateWindow(start=end - length, end=end)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def month_start(day: date) -> date:
    return day.replace(day=1)


def add_months(day: date, months: int) -> date:
    """First day of the month `months` away from day's month."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def month_end(day: date) -> date:
    return add_months(day, 1) - timedelta(days=1)


def month_label(day: date) -> str:
    return f"{MONTH_NAMES[day.month - 1]} {day.year}"


def explicit_window(filters: DashboardFilters, today: Today = date.today) -> Optional[DateWindow]:
    """
    The window spelled out by the filters, or None when no date is set.

    A start with no end runs through today; an end with no start begins
    30 days earlier.
    """
    if not filters.is_date_filtered:
        return None
    end_day = filters.end_date or today()
    start_day = filters.start_date or (end_day - timedelta(days=DEFAULT_LOOKBACK_DAYS))
    return DateWindow(start=start_of_day(start_day), end=end_of_day(end_day))


def summary_window(filters: DashboardFilters, today: Today = date.today) -> Optional[DateWindow]:
    return explicit_window(filters, today)


def shop_performance_window(filters: DashboardFilters, today: Today = date.today) -> DateWindow:
    window = explicit_window(filters, today)
    if window:
        return window
    current = today()
    return DateWindow(
        start=start_of_day(month_start(current)),
        end=end_of_day(month_end(current)),
    )


def transfers_window(filters: DashboardFilters, today: Today = date.today) -> DateWindow:
    window = explicit_window(filters, today)
    if window:
        return window
    current = today()
    return DateWindow(
        start=start_of_day(current - timedelta(days=TRANSFER_WINDOW_DAYS)),
        end=end_of_day(current),
    )


def sales_buckets(filters: DashboardFilters, today: Today = date.today) -> List[Tuple[str, DateWindow]]:
    """
    Monthly buckets for the sales trend.

    With a range, one bucket per calendar month touched by the range,
    each clamped to it. Without one, the trailing six months.
    """
    window = explicit_window(filters, today)
    if window is None:
        first = add_months(month_start(today()), -(SALES_TREND_MONTHS - 1))
        window = DateWindow(
            start=start_of_day(first),
            end=end_of_day(month_end(today())),
        )

    buckets = []
    current = month_start(window.start.date())
    while start_of_day(current) <= window.end:
        bucket = DateWindow(
            start=max(start_of_day(current), window.start),
            end=min(end_of_day(month_end(current)), window.end),
        )
        buckets.append((month_label(current), bucket))
        current = add_months(current, 1)
    return buckets


# =============================================================================
# PRESETS (used by the cache warmer)
# =============================================================================

def preset_filters(preset: str, shop_id: Optional[int] = None, today: Today = date.today) -> DashboardFilters:
    """
    Resolve a named period ("7d", "30d", "90d", "ytd") to filters.

    Raises ValueError for unknown presets.
    """
    current = today()
    preset = preset.strip().lower()
    if preset == "ytd":
        start = date(current.year, 1, 1)
    elif preset.endswith("d") and preset[:-1].isdigit():
        start = current - timedelta(days=int(preset[:-1]))
    else:
        raise ValueError(f"Unknown period preset: {preset}")
    return DashboardFilters(start_date=start, end_date=current, shop_id=shop_id)
