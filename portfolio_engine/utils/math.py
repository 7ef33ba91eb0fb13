"""
Return calculations shared by every analytics component.

This module turns aligned price series into daily simple or log returns and
annualized volatility. Metrics, Monte Carlo projection, correlation and the
inverse-volatility optimizer all consume returns through these functions, so
the conventions (chronological order, first observation dropped, sample
standard deviation) are defined exactly once.
"""

import numpy as np
import pandas as pd

from portfolio_engine.utils.errors import InputValidationError

RETURN_KINDS = ("simple", "log")


def compute_simple_returns(prices: pd.Series) -> pd.Series:
    """
    Convert a price series into simple (arithmetic) returns.

    **Mathematical**: For each period t:
        r_t = (P_t / P_{t-1}) - 1

    **Functionally**:
    - Input: pandas Series of prices, indexed in chronological order (oldest to newest).
    - Output: pandas Series of simple returns, aligned to input index.
    - The first value will be NaN (no prior price to compare).

    Args:
        prices: Time series of asset prices (daily bars expected).

    Returns:
        Time series of simple returns, same index as input.
    """
    return prices.pct_change()


def compute_log_returns(prices: pd.Series) -> pd.Series:
    """
    Convert a price series into logarithmic (continuously compounded) returns.

    **Mathematical**: For each period t:
        r_t = ln(P_t) - ln(P_{t-1}) = ln(P_t / P_{t-1})

    **Functionally**:
    - First value is NaN (no prior price).
    - Assumes strictly positive prices (ln undefined for zero/negative).
    - Log returns are used for correlation and volatility estimation because
      they are additive across periods.

    Args:
        prices: Time series of asset prices (must be positive).

    Returns:
        Time series of log returns, same index as input.
    """
    return np.log(prices).diff()


def compute_return_series(prices: pd.Series, kind: str = "simple") -> pd.Series:
    """
    Derive a clean daily return series from a chronological price series.

    **Invariants of the output**:
      - length = len(prices) - 1 (the first observation has no prior price).
      - dates strictly increasing, no duplicates.

    Args:
        prices: Price series indexed by date, oldest first.
        kind: "simple" or "log".

    Returns:
        Return series indexed by the later date of each pair.

    Raises:
        InputValidationError: If kind is unknown, the index has duplicate or
                              out-of-order dates, or any price is non-positive.
    """
    if kind not in RETURN_KINDS:
        raise InputValidationError(f"Unknown return kind '{kind}'. Expected one of {RETURN_KINDS}.")

    if not prices.index.is_unique:
        raise InputValidationError("Price series has duplicate dates.")
    if not prices.index.is_monotonic_increasing:
        raise InputValidationError("Price series dates must be strictly increasing.")
    if (prices <= 0).any():
        raise InputValidationError("Price series contains non-positive prices.")

    if kind == "log":
        returns = compute_log_returns(prices)
    else:
        returns = compute_simple_returns(prices)

    return returns.iloc[1:]


def compute_return_panel(price_panel: pd.DataFrame, kind: str = "simple") -> pd.DataFrame:
    """
    Compute same-day returns for several tickers over their common dates.

    **Why common dates?** Bootstrap resampling draws one historical day's
    returns across all assets together. Only days where every ticker has a
    price (and the previous common day too) produce a usable return vector.

    Args:
        price_panel: Wide DataFrame (index = date, columns = tickers); NaN marks
                     a missing price.
        kind: "simple" or "log".

    Returns:
        Wide DataFrame of returns over the common dates, first common day dropped.
    """
    common = price_panel.dropna(how="any")
    if common.empty:
        return pd.DataFrame(columns=price_panel.columns, dtype=float)

    return pd.DataFrame(
        {ticker: compute_return_series(common[ticker], kind=kind) for ticker in common.columns},
        columns=list(common.columns),
    )


def compute_annualized_volatility(
    returns: pd.Series,
    periods_per_year: int = 252
) -> float:
    """
    Compute annualized volatility (standard deviation of returns).

    **Mathematical**: Given periodic returns with sample standard deviation σ:
        σ_annualized = σ * sqrt(periods_per_year)

    **Edge cases**:
    - Fewer than two non-null returns yields 0.0 (no dispersion is measurable).

    Args:
        returns: Time series of periodic returns.
        periods_per_year: Number of periods per year (252 for daily).

    Returns:
        Annualized volatility as a decimal (e.g. 0.20 = 20%).
    """
    clean_returns = returns.dropna()
    if len(clean_returns) < 2:
        return 0.0
    return float(clean_returns.std(ddof=1) * np.sqrt(periods_per_year))
