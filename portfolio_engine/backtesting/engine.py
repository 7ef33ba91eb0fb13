"""
Daily-bar backtest engine for portfolio allocations.

**Conceptual**: The backtest engine brings together the price panel, the
allocation strategy and the whole-share broker to simulate a portfolio over a
historical date range. It walks the trading calendar day by day, lets the
strategy decide when to rebalance, records one portfolio snapshot per day,
and hands the resulting value series to the metrics calculator.

**Calendar**: the sorted union of every date on which any requested ticker has
a usable price inside [start, end]. Each calendar day produces exactly one
snapshot, so the snapshot dates are strictly increasing.

**Day 0**: capital is split across the tickers priced on the first trading day
(per target weight by default, or equally) and whole shares are bought.
If no ticker is priced on day 0 the run fails with NoStartingPriceError.

**Missing prices**: a held ticker with no price on some day is excluded from
that day's valuation only. It is neither sold nor valued at a stale price.

**Validation**: allocation, date range, capital and strategy are checked
before any simulation starts; a malformed request never produces a partial result.
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional, Union

import pandas as pd

from portfolio_engine.analytics.risk_metrics import PerformanceMetrics, compute_performance_metrics
from portfolio_engine.config.settings import DataQualitySettings, EngineSettings
from portfolio_engine.data.loaders import DataQualityReport, PricePanel, assess_coverage, build_price_panel
from portfolio_engine.data.schemas import (
    AllocationEntry,
    AllocationInput,
    validate_allocation,
    validate_capital,
    validate_date_range,
)
from portfolio_engine.execution.paper_broker import Trade, WholeShareBroker
from portfolio_engine.strategies.base import make_strategy
from portfolio_engine.utils.errors import NoStartingPriceError, PartialCoverageWarning

logger = logging.getLogger(__name__)


@dataclass
class BacktestParams:
    """
    Parameters for a backtest run.

    Attributes:
        allocation: Target weights in percent (mapping or list of entries);
                    must sum to 100 ± 0.1 with unique tickers.
        start_date: First calendar day of the backtest (inclusive).
        end_date: Last calendar day of the backtest (inclusive).
        initial_capital: Starting cash. Must be positive.
        strategy: "buy_hold" or "equal_weight_rebalance".
        rebalance_frequency: "monthly" or "quarterly" (rebalancing strategy only).
        initial_weighting: "target" splits day-0 capital per weight; "equal"
                           splits it evenly across priced tickers.
    """
    allocation: AllocationInput
    start_date: Union[pd.Timestamp, str]
    end_date: Union[pd.Timestamp, str]
    initial_capital: float = 100_000.0
    strategy: str = "buy_hold"
    rebalance_frequency: str = "monthly"
    initial_weighting: str = "target"


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Portfolio value at the close of one trading day."""
    date: pd.Timestamp
    total_value: float


@dataclass
class BacktestResult:
    """
    Results from a backtest run.

    Attributes:
        snapshots: One PortfolioSnapshot per trading day, ascending.
        trades: Full trade ledger in execution order.
        final_holdings: Ticker -> whole shares held at the end.
        cash_remaining: Un-invested cash at the end.
        metrics: PerformanceMetrics computed from the value series.
        warnings: Data-completeness warnings (never fatal).
        data_quality: Calendar/ticker completeness report.
        final_prices: Last observed price per held ticker (for weight context).
        allocation: Validated allocation the run used.
    """
    snapshots: list[PortfolioSnapshot]
    trades: list[Trade]
    final_holdings: dict[str, int]
    cash_remaining: float
    metrics: PerformanceMetrics
    warnings: list[PartialCoverageWarning] = field(default_factory=list)
    data_quality: Optional[DataQualityReport] = None
    final_prices: dict[str, float] = field(default_factory=dict)
    allocation: list[AllocationEntry] = field(default_factory=list)

    @property
    def value_series(self) -> pd.Series:
        """Portfolio value indexed by trading date."""
        return pd.Series(
            data=[s.total_value for s in self.snapshots],
            index=pd.DatetimeIndex([s.date for s in self.snapshots], name='date'),
            name='total_value',
            dtype=float,
        )

    def current_weights(self) -> dict[str, float]:
        """
        Ending weight of each held ticker in percent of invested value.

        Cash is excluded, so the weights of a fully-priced portfolio sum to 100.
        Falls back to the target allocation when nothing is held.
        """
        values = {
            ticker: shares * self.final_prices[ticker]
            for ticker, shares in self.final_holdings.items()
            if ticker in self.final_prices
        }
        invested = sum(values.values())
        if invested <= 0:
            return {e.ticker: e.weight for e in self.allocation}
        return {ticker: 100.0 * value / invested for ticker, value in values.items()}


def _last_prices(panel: PricePanel, tickers) -> dict[str, float]:
    prices = {}
    for ticker in tickers:
        series = panel.series(ticker)
        if not series.empty:
            prices[ticker] = float(series.iloc[-1])
    return prices


def run_backtest(
    price_data: Union[PricePanel, Mapping[str, pd.DataFrame]],
    params: BacktestParams,
    benchmark_values: pd.Series | None = None,
    engine_settings: EngineSettings | None = None,
    data_quality_settings: DataQualitySettings | None = None,
) -> BacktestResult:
    """
    Run a daily-bar portfolio backtest.

    **Steps**:
      1. Validate allocation, dates, capital and strategy (fail fast).
      2. Align prices onto the union trading calendar; record coverage warnings.
      3. Day 0: buy whole shares across priced tickers.
      4. Each later day: rebalance if the strategy says so, then value the
         portfolio at that day's prices and record a snapshot.
      5. Compute performance metrics from the value series.

    Args:
        price_data: A PricePanel, or a mapping ticker -> price frame
                    (see data.schemas); frames are aligned inside [start, end].
        params: BacktestParams describing the run.
        benchmark_values: Optional benchmark price/value series indexed by date.
        engine_settings: Numeric conventions (risk-free rate, periods per year).
        data_quality_settings: Coverage warning threshold.

    Returns:
        BacktestResult with snapshots, ledger, holdings, metrics and warnings.

    Raises:
        InputValidationError: If params are malformed.
        NoStartingPriceError: If no ticker has a price on the first trading day.
    """
    engine_settings = engine_settings or EngineSettings()
    data_quality_settings = data_quality_settings or DataQualitySettings()

    allocation = validate_allocation(params.allocation)
    start, end = validate_date_range(params.start_date, params.end_date)
    capital = validate_capital(params.initial_capital)
    strategy = make_strategy(params.strategy, params.rebalance_frequency, params.initial_weighting)
    tickers = [e.ticker for e in allocation]

    if isinstance(price_data, PricePanel):
        panel = build_price_panel(
            {t: _panel_frame(price_data, t) for t in tickers}, tickers, start, end,
        )
    else:
        normalised = {k.strip().upper(): v for k, v in price_data.items()}
        panel = build_price_panel(normalised, tickers, start, end)

    report, warnings = assess_coverage(panel, data_quality_settings.coverage_warning_threshold)

    if len(panel.calendar) == 0:
        raise NoStartingPriceError(
            f"No price data for {tickers} between {start.date()} and {end.date()}."
        )

    first_day = panel.calendar[0]
    first_prices = panel.prices_on(first_day)
    if not first_prices:
        raise NoStartingPriceError(
            f"No ticker has a valid price on the first trading day {first_day.date()}."
        )

    skipped = [t for t in tickers if t not in first_prices]
    if skipped:
        logger.info("%s: no price for %s on day 0; capital split across %s",
                    first_day.date(), skipped, sorted(first_prices))

    broker = WholeShareBroker(initial_cash=capital)
    broker.invest(strategy.initial_targets(allocation, first_prices, capital), first_prices, first_day)
    last_rebalance = first_day

    snapshots: list[PortfolioSnapshot] = []
    for i, day in enumerate(panel.calendar):
        prices = first_prices if i == 0 else panel.prices_on(day)

        if i > 0 and strategy.should_rebalance(day, last_rebalance):
            broker.liquidate(prices, day)
            broker.invest(strategy.rebalance_targets(allocation, prices, broker.cash), prices, day)
            last_rebalance = day
            logger.debug("%s: rebalanced (%s)", day.date(), strategy.name)

        snapshots.append(PortfolioSnapshot(date=day, total_value=broker.market_value(prices)))

    values = pd.Series(
        [s.total_value for s in snapshots],
        index=pd.DatetimeIndex([s.date for s in snapshots]),
        dtype=float,
    )
    metrics = compute_performance_metrics(
        values,
        initial_value=capital,
        benchmark_values=benchmark_values,
        risk_free_rate=engine_settings.risk_free_rate,
        periods_per_year=engine_settings.trading_days_per_year,
    )

    holdings = broker.holdings()
    trades = broker.trades
    logger.info(
        "Backtest %s %s..%s: %d days, %d trades, final value %.2f (%.2f%%)",
        strategy.name, first_day.date(), panel.calendar[-1].date(),
        len(snapshots), len(trades), metrics.final_value, 100.0 * metrics.total_return,
    )

    return BacktestResult(
        snapshots=snapshots,
        trades=trades,
        final_holdings=holdings,
        cash_remaining=broker.cash,
        metrics=metrics,
        warnings=warnings,
        data_quality=report,
        final_prices=_last_prices(panel, holdings),
        allocation=allocation,
    )


def _panel_frame(panel: PricePanel, ticker: str) -> pd.DataFrame:
    if ticker not in panel.prices.columns:
        return pd.DataFrame(columns=['date', 'close_price'])
    series = panel.series(ticker)
    return pd.DataFrame({'date': series.index, 'close_price': series.to_numpy()})
