"""
Scenario stress tests for portfolio allocations.

Three kinds of test, all pure functions of their inputs:
  - Historical shock scenarios: each held ticker is mapped to an asset bucket
    (equity/bond/commodity/crypto/other) and the scenario's bucket impact is
    applied at the ticker's weight:
        impact = Σ_i (weight_i / 100) * scenario_impact[bucket(ticker_i)]
    Tickers in the "other" bucket contribute nothing. No re-simulation.
  - Hypothetical market moves scaled by portfolio beta (impact = beta * move).
  - Historical window replay: the allocation is held through an actual price
    window and the resulting return and drawdown are measured. The named
    crisis windows (COVID crash, 2022 bear market, trailing 12 months) come
    from the reference tables; trailing windows resolve against the clock.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Mapping, Optional, Sequence

import pandas as pd

from portfolio_engine.analytics.risk_metrics import compute_max_drawdown, compute_total_return
from portfolio_engine.config.reference_data import (
    AssetBuckets,
    HistoricalPeriod,
    MarketShock,
    StressScenario,
)
from portfolio_engine.data.schemas import AllocationInput, validate_allocation, validate_capital
from portfolio_engine.utils.errors import InsufficientDataError
from portfolio_engine.utils.time import Clock, get_real_clock, today

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StressTestResult:
    """
    Estimated impact of one scenario on an allocation.

    Attributes:
        name: Scenario name.
        description: Scenario description.
        estimated_impact_percent: Weighted impact in percent (e.g. -35.0).
        regime: Macro regime the scenario belongs to, if tagged.
        bucket_weights: Percent of the allocation in each bucket.
    """
    name: str
    description: str
    estimated_impact_percent: float
    regime: str | None = None
    bucket_weights: Mapping[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class HistoricalReplayResult:
    """
    Outcome of holding an allocation through a historical price window.

    Attributes:
        start: First date of the window with data.
        end: Last date of the window with data.
        portfolio_return_percent: Window return in percent.
        portfolio_drawdown_percent: Max drawdown in percent (positive).
        dollar_loss: capital * drawdown.
        asset_breakdown: Ticker -> {"return": %, "drawdown": %}.
        period: Named window replayed, when run from the reference table.
    """
    start: pd.Timestamp
    end: pd.Timestamp
    portfolio_return_percent: float
    portfolio_drawdown_percent: float
    dollar_loss: float
    asset_breakdown: Mapping[str, Mapping[str, float]]
    period: Optional[HistoricalPeriod] = None


class StressTester:
    """
    Applies a fixed scenario table to allocation weights.

    The scenario table, bucket memberships and crisis windows are passed in
    explicitly (usually from config.reference_data.get_reference_data()).
    """

    def __init__(
        self,
        scenarios: Sequence[StressScenario],
        buckets: AssetBuckets,
        market_shocks: Sequence[MarketShock] = (),
        historical_periods: Sequence[HistoricalPeriod] = (),
        clock: Clock | None = None,
    ):
        self.scenarios = tuple(scenarios)
        self.buckets = buckets
        self.market_shocks = tuple(market_shocks)
        self.historical_periods = tuple(historical_periods)
        self.clock = clock or get_real_clock()

    def bucket_weights(self, weights: AllocationInput) -> dict[str, float]:
        """Sum of allocation percent per stress bucket."""
        totals: dict[str, float] = {}
        for entry in validate_allocation(weights):
            bucket = self.buckets.stress_bucket_for(entry.ticker)
            totals[bucket] = totals.get(bucket, 0.0) + entry.weight
        return totals

    def run(self, weights: AllocationInput) -> list[StressTestResult]:
        """
        Estimate each scenario's impact on the allocation.

        Args:
            weights: Allocation in percent (sums to 100 ± 0.1).

        Returns:
            One StressTestResult per scenario, in table order.
        """
        exposure = self.bucket_weights(weights)
        if exposure.get("other"):
            logger.debug("%.2f%% of allocation is unbucketed; zero scenario impact", exposure["other"])

        results = []
        for scenario in self.scenarios:
            impact = sum(
                (weight / 100.0) * scenario.impact_for(bucket)
                for bucket, weight in exposure.items()
            )
            results.append(StressTestResult(
                name=scenario.name,
                description=scenario.description,
                estimated_impact_percent=impact,
                regime=scenario.regime,
                bucket_weights=dict(exposure),
            ))
        return results

    def run_hypothetical(self, beta: float) -> list[StressTestResult]:
        """
        Scale broad-market moves by portfolio beta.

        Args:
            beta: Portfolio beta versus the market benchmark.

        Returns:
            One result per configured market shock (impact = beta * move).
        """
        return [
            StressTestResult(
                name=shock.name,
                description=f"{shock.description} (beta {beta:.2f})",
                estimated_impact_percent=beta * shock.market_move,
            )
            for shock in self.market_shocks
        ]

    def replay_historical_period(
        self,
        weights: AllocationInput,
        prices: pd.DataFrame,
        start,
        end,
        capital: float = 100_000.0,
    ) -> HistoricalReplayResult:
        """
        Hold the allocation through an actual price window.

        Each ticker's capital share grows with its normalised price
        (price_t / price_0) over the dates where every priced ticker trades.
        Tickers with no data in the window are reported with zero return and
        excluded from the portfolio path.

        Args:
            weights: Allocation in percent.
            prices: Wide price table (index = date, columns = tickers).
            start: Window start (inclusive).
            end: Window end (inclusive).
            capital: Portfolio value at the window start.

        Raises:
            InsufficientDataError: If no allocated ticker has two or more prices
                                   in the window.
        """
        allocation = validate_allocation(weights)
        capital = validate_capital(capital)
        start_ts, end_ts = pd.Timestamp(start), pd.Timestamp(end)
        window = prices.loc[(prices.index >= start_ts) & (prices.index <= end_ts)]

        breakdown: dict[str, dict[str, float]] = {}
        priced = []
        for entry in allocation:
            series = window[entry.ticker].dropna() if entry.ticker in window.columns else pd.Series(dtype=float)
            if len(series) < 2:
                logger.warning("%s: no data between %s and %s", entry.ticker, start_ts.date(), end_ts.date())
                breakdown[entry.ticker] = {"return": 0.0, "drawdown": 0.0}
                continue
            breakdown[entry.ticker] = {
                "return": 100.0 * compute_total_return(series),
                "drawdown": 100.0 * compute_max_drawdown(series),
            }
            priced.append(entry)

        common = window[[e.ticker for e in priced]].dropna(how="any")
        if not priced or len(common) < 2:
            raise InsufficientDataError(
                f"Not enough overlapping prices between {start_ts.date()} and {end_ts.date()} to replay."
            )

        portfolio = sum(
            (common[e.ticker] / common[e.ticker].iloc[0]) * e.fraction * capital
            for e in priced
        )
        drawdown = compute_max_drawdown(portfolio)
        return HistoricalReplayResult(
            start=common.index[0],
            end=common.index[-1],
            portfolio_return_percent=100.0 * compute_total_return(portfolio),
            portfolio_drawdown_percent=100.0 * drawdown,
            dollar_loss=capital * drawdown,
            asset_breakdown=breakdown,
        )

    def historical_windows(self, as_of: date | None = None) -> dict[str, tuple[date, date]]:
        """
        Resolve each configured crisis window to calendar dates.

        Args:
            as_of: Date that trailing windows end on (clock's today by default).

        Returns:
            Period id -> (start, end), in table order.
        """
        as_of = as_of or today(self.clock)
        return {period.id: period.window(as_of) for period in self.historical_periods}

    def run_historical_periods(
        self,
        weights: AllocationInput,
        prices_by_window: Mapping[str, pd.DataFrame],
        capital: float = 100_000.0,
        as_of: date | None = None,
    ) -> list[HistoricalReplayResult]:
        """
        Replay the allocation through every configured crisis window.

        Args:
            weights: Allocation in percent.
            prices_by_window: Period id -> wide price table covering that
                              window (see historical_windows()).
            capital: Portfolio value at each window start.
            as_of: Date that trailing windows end on (clock's today by default).

        Returns:
            One HistoricalReplayResult per window with enough data, in table
            order. Windows without prices (or with fewer than two overlapping
            days) are logged and left out.
        """
        windows = self.historical_windows(as_of)
        results = []
        for period in self.historical_periods:
            prices = prices_by_window.get(period.id)
            if prices is None:
                logger.warning("%s: no prices supplied; window not replayed", period.name)
                continue
            start, end = windows[period.id]
            try:
                result = self.replay_historical_period(weights, prices, start, end, capital)
            except InsufficientDataError as e:
                logger.warning("%s: %s", period.name, e)
                continue
            results.append(replace(result, period=period))
        return results
