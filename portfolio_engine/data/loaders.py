"""
Price panel assembly and data-quality reporting.

**Conceptual**: Per-ticker price frames arrive from a PriceSeriesProvider with
their own gaps and date sets. This module aligns them onto one trading
calendar (the sorted union of every date any ticker trades within the
requested range) and measures how complete that calendar is.

**Price selection**: for each row the usable price is `adjusted_close` when it
is present and positive, otherwise `close_price`. Rows whose chosen price is
not positive are dropped and logged; they never reach the simulation.

**Coverage**: expected trading days = floor(calendar_days * 252 / 365).
The whole calendar, and each ticker individually, is flagged with a
PartialCoverageWarning when it observes fewer than `threshold` (default 80%)
of the expected days. A ticker with no rows at all is always flagged.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping

import numpy as np
import pandas as pd

from portfolio_engine.data.schemas import validate_date_range, validate_price_frame
from portfolio_engine.utils.errors import PartialCoverageWarning
from portfolio_engine.utils.time import expected_trading_days
from portfolio_engine.venues.base import PriceSeriesProvider

logger = logging.getLogger(__name__)


@dataclass
class PricePanel:
    """
    Prices for several tickers aligned on a shared trading calendar.

    Attributes:
        prices: Wide DataFrame, index = trading dates (ascending, unique),
                columns = tickers in request order. NaN marks a day on which
                the ticker has no usable price.
        start: Requested range start.
        end: Requested range end.
        rows_per_ticker: Usable price rows per ticker inside the range.
    """
    prices: pd.DataFrame
    start: pd.Timestamp
    end: pd.Timestamp
    rows_per_ticker: Dict[str, int] = field(default_factory=dict)

    @property
    def calendar(self) -> pd.DatetimeIndex:
        return self.prices.index

    @property
    def tickers(self) -> list[str]:
        return list(self.prices.columns)

    def prices_on(self, day: pd.Timestamp) -> dict[str, float]:
        """Tickers with a usable price on `day`, mapped to that price."""
        row = self.prices.loc[day]
        return {ticker: float(price) for ticker, price in row.items() if not np.isnan(price)}

    def series(self, ticker: str) -> pd.Series:
        """Observed prices for one ticker (missing days removed)."""
        return self.prices[ticker].dropna()


@dataclass(frozen=True)
class DataQualityReport:
    """
    Completeness summary returned alongside backtest results.

    Attributes:
        requested_start: First day requested.
        requested_end: Last day requested.
        actual_start: First trading day found (None if no data).
        actual_end: Last trading day found (None if no data).
        total_trading_days: Days in the aligned calendar.
        expected_trading_days: floor(calendar_days * 252 / 365).
        completeness_pct: 100 * total / expected, capped at 100.
        rows_per_ticker: Usable rows per ticker.
        missing_tickers: Tickers with no usable rows.
    """
    requested_start: pd.Timestamp
    requested_end: pd.Timestamp
    actual_start: pd.Timestamp | None
    actual_end: pd.Timestamp | None
    total_trading_days: int
    expected_trading_days: int
    completeness_pct: float
    rows_per_ticker: Mapping[str, int]
    missing_tickers: tuple[str, ...]


def select_prices(df: pd.DataFrame, ticker: str) -> pd.Series:
    """
    Reduce a price frame to a date-indexed series of usable prices.

    Args:
        df: Price frame following the data.schemas contract.
        ticker: Ticker name, used for logging and error context.

    Returns:
        Series indexed by normalised date (ascending), named after the ticker.
    """
    if df.empty:
        return pd.Series(dtype=float, name=ticker, index=pd.DatetimeIndex([]))

    validate_price_frame(df, context=ticker)

    dates = pd.to_datetime(df['date']).dt.normalize()
    if dates.dt.tz is not None:
        dates = dates.dt.tz_localize(None)

    close = pd.to_numeric(df['close_price'], errors='coerce')
    if 'adjusted_close' in df.columns:
        adjusted = pd.to_numeric(df['adjusted_close'], errors='coerce')
        price = adjusted.where(adjusted > 0, close)
    else:
        price = close

    series = pd.Series(price.to_numpy(dtype=float), index=pd.DatetimeIndex(dates), name=ticker)
    bad = ~(series > 0)
    if bad.any():
        logger.warning(
            "%s: skipping %d row(s) with missing or non-positive price", ticker, int(bad.sum())
        )
        series = series[~bad]

    return series.sort_index()


def build_price_panel(
    frames: Mapping[str, pd.DataFrame],
    tickers: Iterable[str],
    start,
    end,
) -> PricePanel:
    """
    Align per-ticker price frames onto the union trading calendar within [start, end].

    Args:
        frames: Mapping ticker -> price frame. Tickers absent from the mapping
                are treated as having no data.
        tickers: Tickers to include, in output column order.
        start: Range start (inclusive).
        end: Range end (inclusive).

    Returns:
        PricePanel whose calendar may be empty if no ticker has data in range.

    Raises:
        SchemaValidationError: If the range or any frame is malformed.
    """
    start_ts, end_ts = validate_date_range(start, end)
    tickers = list(tickers)

    columns = {}
    rows_per_ticker = {}
    for ticker in tickers:
        frame = frames.get(ticker)
        series = select_prices(frame, ticker) if frame is not None else pd.Series(dtype=float, name=ticker)
        if not series.empty:
            series = series[(series.index >= start_ts) & (series.index <= end_ts)]
        columns[ticker] = series
        rows_per_ticker[ticker] = int(len(series))

    non_empty = [s.index for s in columns.values() if not s.empty]
    if non_empty:
        calendar = non_empty[0]
        for index in non_empty[1:]:
            calendar = calendar.union(index)
        calendar = calendar.sort_values()
    else:
        calendar = pd.DatetimeIndex([])

    prices = pd.DataFrame(
        {ticker: columns[ticker].reindex(calendar) for ticker in tickers},
        index=calendar,
        columns=tickers,
        dtype=float,
    )
    prices.index.name = 'date'

    logger.debug(
        "Built price panel: %d tickers, %d trading days (%s to %s)",
        len(tickers), len(calendar), start_ts.date(), end_ts.date(),
    )
    return PricePanel(prices=prices, start=start_ts, end=end_ts, rows_per_ticker=rows_per_ticker)


def load_price_panel(
    provider: PriceSeriesProvider,
    tickers: Iterable[str],
    start,
    end,
) -> PricePanel:
    """Fetch each ticker from a provider and align the results (see build_price_panel)."""
    start_ts, end_ts = validate_date_range(start, end)
    tickers = list(tickers)
    frames = {ticker: provider.fetch_daily_prices(ticker, start_ts, end_ts) for ticker in tickers}
    return build_price_panel(frames, tickers, start_ts, end_ts)


def assess_coverage(
    panel: PricePanel,
    threshold: float = 0.8,
) -> tuple[DataQualityReport, list[PartialCoverageWarning]]:
    """
    Measure calendar and per-ticker completeness against the expected trading days.

    Args:
        panel: Aligned price panel.
        threshold: Minimum observed/expected ratio before a warning is recorded.

    Returns:
        (report, warnings). Warnings never abort the computation.
    """
    expected = expected_trading_days(panel.start, panel.end)
    total = len(panel.calendar)
    warnings: list[PartialCoverageWarning] = []

    if expected > 0 and total < threshold * expected:
        warnings.append(PartialCoverageWarning(
            ticker=None,
            observed_days=total,
            expected_days=expected,
            message=(
                f"Only {total} trading days found, expected ~{expected} "
                f"({100.0 * total / expected:.1f}% coverage)"
            ),
        ))

    missing = []
    for ticker, rows in panel.rows_per_ticker.items():
        if rows == 0:
            missing.append(ticker)
            warnings.append(PartialCoverageWarning(
                ticker=ticker,
                observed_days=0,
                expected_days=expected,
                message=f"{ticker}: no price data in requested range",
            ))
        elif expected > 0 and rows < threshold * expected:
            warnings.append(PartialCoverageWarning(
                ticker=ticker,
                observed_days=rows,
                expected_days=expected,
                message=(
                    f"{ticker}: only {rows} of ~{expected} expected trading days "
                    f"({100.0 * rows / expected:.1f}% coverage)"
                ),
            ))

    for warning in warnings:
        logger.warning("Partial coverage: %s", warning.message)

    completeness = min(100.0, 100.0 * total / expected) if expected > 0 else (100.0 if total else 0.0)
    report = DataQualityReport(
        requested_start=panel.start,
        requested_end=panel.end,
        actual_start=panel.calendar[0] if total else None,
        actual_end=panel.calendar[-1] if total else None,
        total_trading_days=total,
        expected_trading_days=expected,
        completeness_pct=round(completeness, 2),
        rows_per_ticker=dict(panel.rows_per_ticker),
        missing_tickers=tuple(missing),
    )
    return report, warnings
