"""
Synthetic market data generators for testing and validation.

Geometric Brownian Motion price paths with a fixed seed give backtests,
metrics, projections and correlation checks a controlled market in which the
drift and volatility are known in advance. The panel helpers lay several such
paths on a business-day calendar in the same shapes the engine consumes:
a wide price table (date × ticker) or per-ticker price frames.
"""

from typing import Mapping, Sequence

import numpy as np
import pandas as pd


def generate_gbm_paths(
    initial_price: float,
    drift: float,
    volatility: float,
    n_steps: int,
    dt: float = 1 / 252,
    seed: int | None = None,
) -> pd.Series:
    """
    Generate a price path using Geometric Brownian Motion (GBM).

    **Conceptual**: GBM is the classic model for equity prices, exhibiting
    trending and compounding behavior. It assumes log returns are normally
    distributed and independent, with constant drift (μ) and volatility (σ).

    **Mathematical**: The discrete update for each time step is:
        S_{t+1} = S_t * exp((μ - 0.5 * σ^2) * dt + σ * sqrt(dt) * Z_t)
    where Z_t ~ N(0, 1). The (μ - 0.5 * σ^2) term is the Itô correction
    ensuring the expected price grows at rate μ.

    **Edge cases**:
    - n_steps = 0 → returns just [initial_price].
    - volatility = 0 → deterministic exponential path S_t = S_0 * exp(μ t dt).

    Args:
        initial_price: Starting price of the asset (must be positive).
        drift: Annualized drift rate (e.g., 0.10 for 10%).
        volatility: Annualized volatility (e.g., 0.20 for 20%).
        n_steps: Number of steps to simulate.
        dt: Time increment per step (1/252 for daily).
        seed: Random seed for reproducibility.

    Returns:
        pandas Series of prices indexed by step number (length n_steps + 1).
    """
    rng = np.random.default_rng(seed)
    z = rng.standard_normal(n_steps)

    log_steps = (drift - 0.5 * volatility ** 2) * dt + volatility * np.sqrt(dt) * z
    log_path = np.concatenate([[0.0], np.cumsum(log_steps)])

    return pd.Series(initial_price * np.exp(log_path), index=range(n_steps + 1), name='price')


def generate_price_panel(
    tickers: Sequence[str],
    start: str | pd.Timestamp,
    n_days: int,
    drifts: Mapping[str, float] | float = 0.08,
    volatilities: Mapping[str, float] | float = 0.20,
    initial_prices: Mapping[str, float] | float = 100.0,
    seed: int | None = None,
) -> pd.DataFrame:
    """
    Generate independent GBM prices for several tickers on business days.

    Ticker i uses seed + i, so adding a ticker leaves the others unchanged.

    Args:
        tickers: Column names, in order.
        start: First business day.
        n_days: Number of business days (rows).
        drifts: Annualized drift per ticker, or one value for all.
        volatilities: Annualized volatility per ticker, or one value for all.
        initial_prices: Day-0 price per ticker, or one value for all.
        seed: Base seed.

    Returns:
        Wide DataFrame indexed by date (name 'date'), one column per ticker.
    """
    def pick(value, ticker):
        return value[ticker] if isinstance(value, Mapping) else value

    dates = pd.bdate_range(start=start, periods=n_days, name='date')
    columns = {}
    for i, ticker in enumerate(tickers):
        path = generate_gbm_paths(
            initial_price=pick(initial_prices, ticker),
            drift=pick(drifts, ticker),
            volatility=pick(volatilities, ticker),
            n_steps=n_days - 1,
            seed=None if seed is None else seed + i,
        )
        columns[ticker] = path.to_numpy()

    return pd.DataFrame(columns, index=dates)


def panel_to_frames(prices: pd.DataFrame) -> dict[str, pd.DataFrame]:
    """
    Split a wide price table into per-ticker frames (date, close_price).

    Missing (NaN) prices are dropped, so each frame holds only the days the
    ticker actually trades.
    """
    frames = {}
    for ticker in prices.columns:
        series = prices[ticker].dropna()
        frames[ticker] = pd.DataFrame({
            'date': series.index,
            'close_price': series.to_numpy(dtype=float),
        })
    return frames
