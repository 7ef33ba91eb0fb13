"""
In-memory price provider backed by pre-loaded DataFrames.

Serves as the read-only price cache for analysis runs: frames are validated
and normalised once at construction and never mutated afterwards, and every
fetch returns a fresh copy, so concurrent readers cannot interfere with each
other. Also used as the test double for PriceSeriesProvider.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable

import pandas as pd

from portfolio_engine.data.schemas import (
    PRICE_OPTIONAL_COLUMNS,
    PRICE_REQUIRED_COLUMNS,
    PriceBar,
    bars_to_frame,
    validate_price_frame,
)

logger = logging.getLogger(__name__)

FRAME_COLUMNS = PRICE_REQUIRED_COLUMNS + PRICE_OPTIONAL_COLUMNS


def _normalise_frame(df: pd.DataFrame, ticker: str) -> pd.DataFrame:
    validate_price_frame(df, context=ticker)

    frame = df.copy()
    frame['date'] = pd.to_datetime(frame['date']).dt.normalize()
    if frame['date'].dt.tz is not None:
        frame['date'] = frame['date'].dt.tz_localize(None)
    for column in PRICE_OPTIONAL_COLUMNS:
        if column not in frame.columns:
            frame[column] = float('nan')

    return frame[FRAME_COLUMNS].sort_values('date').reset_index(drop=True)


class InMemoryPriceProvider:
    """
    PriceSeriesProvider over a dictionary of per-ticker frames.

    Tickers are matched case-insensitively. Unknown tickers return an empty
    frame rather than raising, matching the partial-coverage contract.
    """

    def __init__(self, frames: Dict[str, pd.DataFrame]):
        """
        Args:
            frames: Mapping ticker -> price frame (see data.schemas contract).

        Raises:
            SchemaValidationError: If any frame violates the contract.
        """
        self._frames: Dict[str, pd.DataFrame] = {
            ticker.strip().upper(): _normalise_frame(df, ticker.strip().upper())
            for ticker, df in frames.items()
        }

    @classmethod
    def from_bars(cls, bars: Iterable[PriceBar]) -> "InMemoryPriceProvider":
        """Build a provider from PriceBar records (any ticker mix, any order)."""
        by_ticker: Dict[str, list] = {}
        for bar in bars:
            by_ticker.setdefault(bar.ticker.upper(), []).append(bar)
        return cls({ticker: bars_to_frame(group) for ticker, group in by_ticker.items()})

    @classmethod
    def from_csv_directory(cls, directory: Path | str) -> "InMemoryPriceProvider":
        """
        Load every `<TICKER>.csv` in a directory.

        Each CSV needs `date` and `close_price` columns; `adjusted_close` and
        `volume` are optional.

        Raises:
            FileNotFoundError: If the directory does not exist.
            SchemaValidationError: If a CSV violates the price frame contract.
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise FileNotFoundError(f"Price directory not found: {directory}")

        frames = {}
        for csv_path in sorted(directory.glob("*.csv")):
            frames[csv_path.stem] = pd.read_csv(csv_path)
            logger.debug("Loaded %d rows for %s from %s", len(frames[csv_path.stem]), csv_path.stem, csv_path)

        if not frames:
            logger.warning("No CSV files found in %s", directory)
        return cls(frames)

    @property
    def tickers(self) -> list[str]:
        return sorted(self._frames)

    def fetch_daily_prices(
        self,
        ticker: str,
        start: pd.Timestamp,
        end: pd.Timestamp,
    ) -> pd.DataFrame:
        start = pd.Timestamp(start).normalize()
        end = pd.Timestamp(end).normalize()
        if start.tzinfo is not None:
            start = start.tz_localize(None)
        if end.tzinfo is not None:
            end = end.tz_localize(None)
        if start > end:
            raise ValueError(f"start ({start.date()}) must not be after end ({end.date()})")

        frame = self._frames.get(ticker.strip().upper())
        if frame is None:
            return pd.DataFrame(columns=FRAME_COLUMNS)

        mask = (frame['date'] >= start) & (frame['date'] <= end)
        return frame.loc[mask].reset_index(drop=True).copy()
