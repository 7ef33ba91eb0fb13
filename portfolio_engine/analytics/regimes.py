"""
Macro regime classification by calendar date.

**Conceptual**: A curated table of historical intervals labels each stretch of
market history with a macro regime (e.g. "monetary_dominance" when central
banks drive asset prices, "fiscal_activism" when government spending and
inflation do). The classifier answers "which regime was in force on this
date?" and is the source of the regime tilt applied by the optimizer.

**Lookup policy**:
  - A date inside an interval (inclusive on both ends) gets that interval's regime.
  - A date after the last interval gets the table's projected regime.
  - A date before the first interval, or inside a gap between intervals,
    gets the table's baseline regime.

The table is passed in explicitly; get_reference_data().regimes is the
shipped default.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

import pandas as pd

from portfolio_engine.analytics.risk_metrics import compute_max_drawdown
from portfolio_engine.config.reference_data import RegimePeriod, RegimeTable
from portfolio_engine.utils.math import compute_annualized_volatility

logger = logging.getLogger(__name__)


def _as_date(day) -> date:
    if isinstance(day, pd.Timestamp):
        return day.date()
    if isinstance(day, datetime):
        return day.date()
    if isinstance(day, date):
        return day
    return pd.Timestamp(day).date()


class RegimeClassifier:
    """
    Maps calendar dates to macro regimes using a RegimeTable.

    Example:
        >>> classifier = RegimeClassifier(get_reference_data().regimes)
        >>> classifier.classify("2015-06-30")
        'monetary_dominance'
    """

    def __init__(self, table: RegimeTable):
        self.table = table
        self._periods = tuple(sorted(table.periods, key=lambda p: p.start_date))

    @property
    def regimes(self) -> list[str]:
        """Every regime label the classifier can return, sorted."""
        labels = {p.regime for p in self._periods}
        labels.update({self.table.baseline_regime, self.table.projected_regime})
        return sorted(labels)

    def find_period(self, day) -> Optional[RegimePeriod]:
        """Return the interval containing the date, or None."""
        target = _as_date(day)
        for period in self._periods:
            if period.contains(target):
                return period
        return None

    def classify(self, day) -> str:
        """
        Return the macro regime in force on a date.

        Args:
            day: date, datetime, Timestamp or ISO date string.

        Returns:
            Regime label (see lookup policy in the module docstring).
        """
        target = _as_date(day)
        period = self.find_period(target)
        if period is not None:
            return period.regime
        if self._periods and target > self._periods[-1].end_date:
            return self.table.projected_regime
        return self.table.baseline_regime

    def classify_series(self, dates) -> pd.Series:
        """Regime label per date, indexed by the dates given."""
        index = pd.DatetimeIndex(dates)
        return pd.Series([self.classify(d) for d in index], index=index, name="regime")

    def periods_in_range(self, start, end) -> list[RegimePeriod]:
        """Intervals that overlap [start, end], in chronological order."""
        first, last = _as_date(start), _as_date(end)
        return [p for p in self._periods if p.start_date <= last and p.end_date >= first]


@dataclass(frozen=True)
class RegimePerformance:
    """
    Portfolio behaviour over the days classified as one regime.

    Attributes:
        regime: Regime label.
        trading_days: Number of daily returns attributed to the regime.
        cumulative_return: Compounded daily return over those days (decimal).
        annualized_volatility: Sample volatility of those daily returns, annualized.
        max_drawdown: Max drawdown of the regime's compounded sub-series (decimal).
    """
    regime: str
    trading_days: int
    cumulative_return: float
    annualized_volatility: float
    max_drawdown: float


def analyze_performance_by_regime(
    values: pd.Series,
    classifier: RegimeClassifier,
    periods_per_year: int = 252,
) -> dict[str, RegimePerformance]:
    """
    Split a portfolio value series by macro regime.

    Each daily return is attributed to the regime of the day it ends on. The
    returns of a regime are compounded into a synthetic sub-series (so
    non-contiguous stretches are chained together) from which cumulative return
    and drawdown are measured.

    Args:
        values: Portfolio value indexed by trading date.
        classifier: RegimeClassifier used to label each date.
        periods_per_year: Annualization factor.

    Returns:
        Regime -> RegimePerformance, for regimes observed in the series.
    """
    values = values.dropna().sort_index()
    if len(values) < 2:
        logger.debug("Regime analysis skipped: fewer than 2 value observations")
        return {}

    returns = values.pct_change().iloc[1:]
    labels = classifier.classify_series(returns.index)

    results = {}
    for regime in labels.unique():
        regime_returns = returns[labels.to_numpy() == regime]
        growth = (1.0 + regime_returns).cumprod()
        results[regime] = RegimePerformance(
            regime=regime,
            trading_days=len(regime_returns),
            cumulative_return=float(growth.iloc[-1] - 1.0),
            annualized_volatility=compute_annualized_volatility(regime_returns, periods_per_year),
            max_drawdown=compute_max_drawdown(growth, initial_value=1.0),
        )

    logger.debug("Regime analysis: %s", {k: v.trading_days for k, v in results.items()})
    return results


def regime_exposure(values: pd.Series, classifier: RegimeClassifier) -> dict[str, float]:
    """Share of trading days spent in each regime (fractions summing to 1)."""
    if values.empty:
        return {}
    labels = classifier.classify_series(values.index)
    counts = labels.value_counts()
    return {regime: float(count / counts.sum()) for regime, count in counts.items()}
