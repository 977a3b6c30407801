"""
Trend indicators for summary tiles.

Each summary tile shows a change label ("+4.2%", "-3") next to its
value. Estimators are pluggable:

- PeriodOverPeriodTrendEstimator: compares against the preceding window
  of the same length; neutral when no comparison is possible
- RandomTrendEstimator: decorative values, as the legacy dashboard shows
"""

import math
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Trend:
    label: str
    up: bool


NEUTRAL_PERCENT = Trend("+0.0%", True)
NEUTRAL_COUNT = Trend("+0", True)


def format_change(change: float, percentage: bool) -> str:
    sign = "+" if change >= 0 else ""
    if percentage:
        return f"{sign}{change:.1f}%"
    return f"{sign}{math.floor(change)}"


class TrendEstimator(ABC):
    """Produces the trend label for a metric."""

    @abstractmethod
    def estimate(
        self,
        current: float,
        previous: Optional[float] = None,
        percentage: bool = True,
    ) -> Trend:
        ...


class PeriodOverPeriodTrendEstimator(TrendEstimator):
    """
    Change relative to the previous period.

    Percent metrics report relative change; count metrics report the
    absolute difference. Without a previous value the trend is neutral.
    """

    def estimate(self, current, previous=None, percentage=True) -> Trend:
        if previous is None:
            return NEUTRAL_PERCENT if percentage else NEUTRAL_COUNT

        if not percentage:
            change = current - previous
            return Trend(format_change(change, False), change >= 0)

        if previous == 0:
            # No base to compare against
            if current == 0:
                return NEUTRAL_PERCENT
            return Trend("+100.0%", current > 0)

        change = (current - previous) / abs(previous) * 100
        return Trend(format_change(change, True), change >= 0)


class RandomTrendEstimator(TrendEstimator):
    """Random change in [-5, 5). Display only; not derived from data."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def estimate(self, current, previous=None, percentage=True) -> Trend:
        change = self._rng.random() * 10 - 5
        return Trend(format_change(change, percentage), change >= 0)


def create_trend_estimator(mode: str = "period") -> TrendEstimator:
    """Build the estimator for DASHBOARD_TREND_MODE ("period" or "random")."""
    if mode == "random":
        return RandomTrendEstimator()
    return PeriodOverPeriodTrendEstimator()
