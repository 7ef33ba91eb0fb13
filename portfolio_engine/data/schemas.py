"""
Data contracts and up-front validation for engine inputs.

**Conceptual**: This module defines the shapes the engine accepts from its
collaborators (per-ticker price frames, allocations, date ranges, capital)
and rejects malformed requests before any simulation starts. Every check
raises SchemaValidationError (an InputValidationError) with a context prefix
naming the ticker or field, so callers can fix the request directly.

**Price frame contract** (one DataFrame per ticker, as returned by a
PriceSeriesProvider):
  - `date`: parseable calendar date, unique per ticker.
  - `close_price`: float.
  - `adjusted_close` (optional): float, preferred over close_price when positive.
  - `volume` (optional): int or float.
Rows may arrive in any order; loaders sort them ascending.

**Allocation contract**: a list of {ticker, weight} entries where weights are
percentages summing to 100 (within 0.1) and each ticker appears once.
"""

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Mapping, Optional, Union

import pandas as pd

from portfolio_engine.utils.errors import InputValidationError


class SchemaValidationError(InputValidationError):
    """
    Raised when an input does not conform to the expected data contract.

    Messages carry enough context (ticker, column, offending value) for
    quick remediation. Never retried: the same input always fails the same way.
    """
    pass


PRICE_REQUIRED_COLUMNS = [
    'date',
    'close_price',
]

PRICE_OPTIONAL_COLUMNS = [
    'adjusted_close',
    'volume',
]

WEIGHT_SUM_TARGET = 100.0
WEIGHT_SUM_TOLERANCE = 0.1


@dataclass(frozen=True)
class PriceBar:
    """
    One daily price observation for a ticker; keyed by (ticker, date).

    Attributes:
        ticker: Upper-case ticker symbol.
        date: Trading date.
        close_price: Raw closing price.
        adjusted_close: Split/dividend adjusted close, if the source provides it.
        volume: Shares traded, if known.
    """
    ticker: str
    date: date
    close_price: float
    adjusted_close: Optional[float] = None
    volume: Optional[float] = None

    @property
    def price(self) -> float:
        """Adjusted close when positive, otherwise close price."""
        if self.adjusted_close is not None and self.adjusted_close > 0:
            return self.adjusted_close
        return self.close_price


@dataclass(frozen=True)
class AllocationEntry:
    """
    Target weight for one ticker, in percent (25.0 = 25%).

    Attributes:
        ticker: Upper-case ticker symbol.
        weight: Target weight in percent, >= 0.
    """
    ticker: str
    weight: float

    @property
    def fraction(self) -> float:
        return self.weight / 100.0


AllocationInput = Union[
    Mapping[str, float],
    Iterable[Union[AllocationEntry, Mapping[str, float], tuple]],
]


def bars_to_frame(bars: Iterable[PriceBar]) -> pd.DataFrame:
    """Convert PriceBar records into a price frame following the contract above."""
    rows = [
        {
            'date': pd.Timestamp(bar.date),
            'close_price': bar.close_price,
            'adjusted_close': bar.adjusted_close,
            'volume': bar.volume,
        }
        for bar in bars
    ]
    return pd.DataFrame(rows, columns=PRICE_REQUIRED_COLUMNS + PRICE_OPTIONAL_COLUMNS)


def validate_price_frame(
    df: pd.DataFrame,
    context: str | None = None,
) -> None:
    """
    Validate that a DataFrame conforms to the price frame contract.

    **Functionally**:
      - Checks that `date` and `close_price` columns are present.
      - Verifies that `date` values parse as dates.
      - Rejects duplicate dates (each (ticker, date) must be unique).

    Non-positive prices are NOT rejected here: they are data-quality issues
    handled by skipping the row when building the price panel.

    Args:
        df: DataFrame to validate.
        context: Optional description of the source (e.g. "SPY"), used as
                 the error-message prefix.

    Raises:
        SchemaValidationError: If the frame violates the contract.
    """
    ctx = f"{context}: " if context else ""

    missing_cols = set(PRICE_REQUIRED_COLUMNS) - set(df.columns)
    if missing_cols:
        raise SchemaValidationError(
            f"{ctx}Missing required columns: {sorted(missing_cols)}. "
            f"Expected columns: {PRICE_REQUIRED_COLUMNS}. "
            f"Found columns: {list(df.columns)}."
        )

    try:
        dates = pd.to_datetime(df['date']).dt.normalize()
    except (ValueError, TypeError) as e:
        raise SchemaValidationError(
            f"{ctx}'date' column contains non-parseable values. Error: {e}"
        )

    duplicated = dates[dates.duplicated()]
    if not duplicated.empty:
        raise SchemaValidationError(
            f"{ctx}Duplicate dates found: {sorted(set(d.date().isoformat() for d in duplicated))[:5]}."
        )


def _coerce_entry(item) -> AllocationEntry:
    if isinstance(item, AllocationEntry):
        return item
    if isinstance(item, Mapping):
        if 'ticker' not in item or 'weight' not in item:
            raise SchemaValidationError(
                f"Allocation entry must have 'ticker' and 'weight' keys, got: {dict(item)}"
            )
        return AllocationEntry(ticker=item['ticker'], weight=item['weight'])
    if isinstance(item, tuple) and len(item) == 2:
        return AllocationEntry(ticker=item[0], weight=item[1])
    raise SchemaValidationError(f"Unrecognised allocation entry: {item!r}")


def validate_allocation(allocation: AllocationInput) -> list[AllocationEntry]:
    """
    Validate and normalise a portfolio allocation.

    **Rules**:
      - At least one entry.
      - Tickers are non-blank strings; normalised to upper case and stripped.
      - No ticker appears twice (after normalisation).
      - Weights are finite numbers >= 0.
      - Weights sum to 100 within ±0.1.

    Args:
        allocation: Mapping ticker -> weight, or an iterable of AllocationEntry,
                    {"ticker", "weight"} dicts, or (ticker, weight) tuples.

    Returns:
        List of AllocationEntry in input order.

    Raises:
        SchemaValidationError: If any rule is violated.
    """
    if isinstance(allocation, Mapping):
        raw_entries = [AllocationEntry(ticker=t, weight=w) for t, w in allocation.items()]
    else:
        raw_entries = [_coerce_entry(item) for item in allocation]

    if not raw_entries:
        raise SchemaValidationError("Allocation is empty. Provide at least one ticker.")

    entries = []
    seen = set()
    for entry in raw_entries:
        if not isinstance(entry.ticker, str) or not entry.ticker.strip():
            raise SchemaValidationError(f"Ticker must be a non-empty string, got: {entry.ticker!r}")
        ticker = entry.ticker.strip().upper()
        if ticker in seen:
            raise SchemaValidationError(f"Duplicate ticker in allocation: {ticker}")
        seen.add(ticker)

        try:
            weight = float(entry.weight)
        except (TypeError, ValueError):
            raise SchemaValidationError(f"{ticker}: weight must be a number, got: {entry.weight!r}")
        if weight != weight or weight < 0 or weight == float("inf"):
            raise SchemaValidationError(f"{ticker}: weight must be a finite non-negative number, got: {weight}")

        entries.append(AllocationEntry(ticker=ticker, weight=weight))

    total = sum(e.weight for e in entries)
    if abs(total - WEIGHT_SUM_TARGET) > WEIGHT_SUM_TOLERANCE:
        raise SchemaValidationError(
            f"Allocation weights must sum to {WEIGHT_SUM_TARGET:g} "
            f"(±{WEIGHT_SUM_TOLERANCE:g}), got: {total:.4f}"
        )

    return entries


def validate_tickers(tickers: Iterable[str], minimum: int = 1) -> list[str]:
    """
    Validate a ticker list: non-blank, unique after upper-casing, at least `minimum` long.

    Returns:
        Normalised ticker list in input order.

    Raises:
        SchemaValidationError: If the list is too short, has blanks or duplicates.
    """
    normalised = []
    for ticker in tickers:
        if not isinstance(ticker, str) or not ticker.strip():
            raise SchemaValidationError(f"Ticker must be a non-empty string, got: {ticker!r}")
        symbol = ticker.strip().upper()
        if symbol in normalised:
            raise SchemaValidationError(f"Duplicate ticker: {symbol}")
        normalised.append(symbol)

    if len(normalised) < minimum:
        raise SchemaValidationError(
            f"At least {minimum} ticker(s) required, got {len(normalised)}."
        )
    return normalised


def validate_date_range(start, end) -> tuple[pd.Timestamp, pd.Timestamp]:
    """
    Validate and normalise a date range.

    Returns:
        (start, end) as midnight Timestamps.

    Raises:
        SchemaValidationError: If either bound is unparseable or start >= end.
    """
    try:
        start_ts = pd.Timestamp(start)
        end_ts = pd.Timestamp(end)
    except (ValueError, TypeError) as e:
        raise SchemaValidationError(f"Invalid date range ({start!r}, {end!r}): {e}")

    if pd.isna(start_ts) or pd.isna(end_ts):
        raise SchemaValidationError(f"Invalid date range ({start!r}, {end!r}): both bounds are required.")

    start_ts = start_ts.normalize()
    end_ts = end_ts.normalize()

    if start_ts.tzinfo is not None:
        start_ts = start_ts.tz_localize(None)
    if end_ts.tzinfo is not None:
        end_ts = end_ts.tz_localize(None)

    if start_ts >= end_ts:
        raise SchemaValidationError(
            f"Date range is empty: start {start_ts.date()} must be before end {end_ts.date()}."
        )
    return start_ts, end_ts


def validate_capital(initial_capital: float) -> float:
    """
    Validate starting capital.

    Raises:
        SchemaValidationError: If capital is not a positive finite number.
    """
    try:
        capital = float(initial_capital)
    except (TypeError, ValueError):
        raise SchemaValidationError(f"Initial capital must be a number, got: {initial_capital!r}")
    if not capital > 0 or capital == float("inf"):
        raise SchemaValidationError(f"Initial capital must be positive, got: {capital}")
    return capital
