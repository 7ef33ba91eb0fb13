"""
Base abstraction for historical price providers.

**Conceptual**: The engine never fetches or caches prices itself. It consumes
daily price series from a PriceSeriesProvider, an external collaborator that
may be an HTTP client, a database, a cache, or an in-memory table in tests.
Defining the contract as a Protocol keeps the backtest and analytics code
vendor-agnostic: any object with a matching `fetch_daily_prices` method works.

**Contract all providers follow**:
  1. Columns `date` and `close_price`, optionally `adjusted_close` and `volume`
     (see portfolio_engine.data.schemas).
  2. Rows cover the inclusive range [start, end]; coverage may be partial.
  3. A ticker with no data returns an empty DataFrame with those columns,
     not an error. Missing history is a data-quality warning, not a failure.
  4. Concurrent calls are safe. Many analysis requests may read the same
     provider at once, and providers must not hand out shared mutable frames.
"""

from typing import Protocol
import pandas as pd


class PriceSeriesProvider(Protocol):
    """
    Protocol for fetching daily historical prices for one ticker.

    **Example usage**:
        >>> provider = InMemoryPriceProvider({"SPY": spy_frame})
        >>> prices = provider.fetch_daily_prices(
        ...     "SPY",
        ...     start=pd.Timestamp("2020-01-01"),
        ...     end=pd.Timestamp("2020-12-31"),
        ... )
        >>> prices.columns.tolist()
        ['date', 'close_price', 'adjusted_close', 'volume']
    """

    def fetch_daily_prices(
        self,
        ticker: str,
        start: pd.Timestamp,
        end: pd.Timestamp,
    ) -> pd.DataFrame:
        """
        Fetch daily prices for a ticker over an inclusive date range.

        Args:
            ticker: Ticker symbol (e.g. "SPY").
            start: First date to include.
            end: Last date to include.

        Returns:
            DataFrame following the price frame contract, sorted ascending by
            date. Empty (with columns) if the ticker has no data in range.

        Raises:
            ValueError: If start > end.
        """
        ...
