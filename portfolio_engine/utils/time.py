"""
Clock abstraction and trading-calendar helpers.

Components that need "today" (the optimizer resolving the current macro
regime, the pipeline stamping its runs) take a Clock instead of calling
datetime.now() directly, so tests can pin the date. The calendar helpers
encode the trading-day conventions used for coverage checks and
rebalance scheduling.
"""

import math
from datetime import date, datetime, timezone
from typing import Protocol

import pandas as pd

TRADING_DAYS_PER_CALENDAR_YEAR = 252
CALENDAR_DAYS_PER_YEAR = 365


class Clock(Protocol):
    """
    Abstract time source protocol.

    Consumers accept a Clock (constructor or function parameter) and call
    clock.now() whenever they need the current time. Pass a RealClock in
    production and a FrozenClock in tests.
    """

    def now(self) -> datetime:
        """Return the current time according to this clock (timezone-aware UTC)."""
        ...


class RealClock:
    """Clock backed by the system clock, always in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """
    Clock that always returns a fixed timestamp.

    **Usage**:
        clock = FrozenClock(datetime(2024, 6, 3, tzinfo=timezone.utc))
        optimizer = RiskParityOptimizer(buckets, classifier=classifier, clock=clock)
        optimizer.resolve_regime()  # regime as of 2024-06-03
    """

    def __init__(self, fixed_now: datetime):
        self._fixed_now = fixed_now

    def now(self) -> datetime:
        return self._fixed_now


def get_real_clock() -> Clock:
    """Factory for the system clock."""
    return RealClock()


def get_frozen_clock(fixed_now: datetime) -> Clock:
    """Factory for a clock pinned at fixed_now."""
    return FrozenClock(fixed_now)


def today(clock: Clock) -> date:
    """Calendar date of clock.now() (UTC)."""
    return clock.now().date()


def expected_trading_days(start: date, end: date) -> int:
    """
    Estimate the number of trading days between two calendar dates.

    **Mathematical**:
        expected = floor(calendar_days * 252 / 365)
    where calendar_days = (end - start).days. Used as the denominator of
    coverage ratios; exchange holidays are not modelled.

    Args:
        start: First day of the requested range.
        end: Last day of the requested range.

    Returns:
        Expected trading days (0 if end <= start).
    """
    calendar_days = (pd.Timestamp(end) - pd.Timestamp(start)).days
    if calendar_days <= 0:
        return 0
    return math.floor(calendar_days * TRADING_DAYS_PER_CALENDAR_YEAR / CALENDAR_DAYS_PER_YEAR)


def period_key(day: pd.Timestamp, frequency: str) -> tuple[int, int]:
    """
    Identify the rebalance period a date falls in.

    Args:
        day: Trading date.
        frequency: "monthly" or "quarterly".

    Returns:
        (year, month) for monthly, (year, quarter) for quarterly.

    Raises:
        ValueError: If frequency is not recognised.
    """
    if frequency == "monthly":
        return (day.year, day.month)
    if frequency == "quarterly":
        return (day.year, (day.month - 1) // 3 + 1)
    raise ValueError(f"Unknown rebalance frequency '{frequency}'. Expected 'monthly' or 'quarterly'.")
