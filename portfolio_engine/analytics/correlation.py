"""
Pairwise correlation of daily log returns.

**Alignment**: each ticker's log returns are computed over its own observed
prices. Every pair is then aligned independently on the exact dates present in
both return series (inner join). A day missing from one series drops out of
that pair's sample only, not from other pairs.

**Sample-size policy**: a pair with fewer than `min_points` aligned returns
(20 by default) is reported as 0.0 and flagged low-confidence rather than
computed. Small samples produce large spurious correlations.

**Guarantees**: the matrix is symmetric, the diagonal is exactly 1.0, and
every off-diagonal value lies in [-1, 1].
"""

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Iterable, Mapping

import numpy as np
import pandas as pd

from portfolio_engine.data.loaders import load_price_panel
from portfolio_engine.data.schemas import validate_tickers
from portfolio_engine.utils.math import compute_return_series
from portfolio_engine.venues.base import PriceSeriesProvider

logger = logging.getLogger(__name__)


@dataclass
class CorrelationResult:
    """
    Correlation matrix with per-pair diagnostics.

    Attributes:
        matrix: Square DataFrame (tickers × tickers).
        sample_sizes: Aligned return count per pair (diagonal = own return count).
        low_confidence: Pairs (sorted ticker tuples) reported as 0 for lack of data.
    """
    matrix: pd.DataFrame
    sample_sizes: pd.DataFrame
    low_confidence: set[tuple[str, str]] = field(default_factory=set)

    @property
    def tickers(self) -> list[str]:
        return list(self.matrix.columns)

    def get(self, first: str, second: str) -> float:
        return float(self.matrix.loc[first.upper(), second.upper()])

    def is_low_confidence(self, first: str, second: str) -> bool:
        return tuple(sorted((first.upper(), second.upper()))) in self.low_confidence

    def as_pairs(self, decimals: int | None = None) -> dict[tuple[str, str], float]:
        """Full matrix keyed by (row ticker, column ticker)."""
        pairs = {}
        for a in self.tickers:
            for b in self.tickers:
                value = float(self.matrix.loc[a, b])
                pairs[(a, b)] = round(value, decimals) if decimals is not None else value
        return pairs


def pearson_correlation(x: pd.Series, y: pd.Series) -> float:
    """
    Pearson correlation cov(x, y) / sqrt(var(x) * var(y)) over aligned values.

    Returns:
        Correlation clipped to [-1, 1]; 0.0 if either series has no variance.
    """
    x_values = x.to_numpy(dtype=float)
    y_values = y.to_numpy(dtype=float)
    x_dev = x_values - x_values.mean()
    y_dev = y_values - y_values.mean()
    denominator = np.sqrt((x_dev ** 2).sum() * (y_dev ** 2).sum())
    if denominator <= 0 or np.isnan(denominator):
        return 0.0
    return float(np.clip((x_dev * y_dev).sum() / denominator, -1.0, 1.0))


class CorrelationEngine:
    """Computes correlation matrices with the minimum-sample policy above."""

    def __init__(self, min_points: int = 20):
        self.min_points = min_points

    def compute(self, prices: Mapping[str, pd.Series] | pd.DataFrame) -> CorrelationResult:
        """
        Correlate daily log returns of every ticker pair.

        Args:
            prices: Wide price DataFrame (index = date, NaN = missing) or a
                    mapping ticker -> date-indexed price Series.

        Returns:
            CorrelationResult over the tickers in input order.

        Raises:
            InputValidationError: If fewer than two tickers are supplied or a
                                  series is malformed.
        """
        if isinstance(prices, pd.DataFrame):
            series_by_ticker = {c: prices[c].dropna() for c in prices.columns}
        else:
            series_by_ticker = {t: s.dropna() for t, s in prices.items()}

        tickers = validate_tickers(series_by_ticker.keys(), minimum=2)
        returns = {
            ticker: compute_return_series(series.sort_index(), kind="log")
            for ticker, series in zip(tickers, series_by_ticker.values())
        }

        matrix = pd.DataFrame(0.0, index=tickers, columns=tickers)
        sizes = pd.DataFrame(0, index=tickers, columns=tickers)
        low_confidence = set()

        for ticker in tickers:
            matrix.loc[ticker, ticker] = 1.0
            sizes.loc[ticker, ticker] = len(returns[ticker])

        for a, b in combinations(tickers, 2):
            aligned = pd.concat([returns[a], returns[b]], axis=1, join="inner").dropna()
            n = len(aligned)
            sizes.loc[a, b] = sizes.loc[b, a] = n

            if n < self.min_points:
                low_confidence.add(tuple(sorted((a, b))))
                logger.warning(
                    "Correlation %s/%s: only %d aligned returns (< %d); reported as 0",
                    a, b, n, self.min_points,
                )
                continue

            value = pearson_correlation(aligned.iloc[:, 0], aligned.iloc[:, 1])
            matrix.loc[a, b] = matrix.loc[b, a] = value

        return CorrelationResult(matrix=matrix, sample_sizes=sizes, low_confidence=low_confidence)

    def compute_from_provider(
        self,
        provider: PriceSeriesProvider,
        tickers: Iterable[str],
        start,
        end,
    ) -> CorrelationResult:
        """Fetch prices for each ticker and correlate them (see compute)."""
        tickers = validate_tickers(tickers, minimum=2)
        panel = load_price_panel(provider, tickers, start, end)
        return self.compute(panel.prices)
