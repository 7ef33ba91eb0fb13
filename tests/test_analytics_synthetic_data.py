"""
Tests for portfolio_engine/analytics/synthetic_data.py

These tests verify that the GBM generator produces series of expected length,
honors reproducibility via seeds and behaves deterministically with zero
volatility, and that the panel helpers lay prices on a business-day calendar.
"""

import numpy as np
import pandas as pd
import pytest

from portfolio_engine.analytics.synthetic_data import (
    generate_gbm_paths,
    generate_price_panel,
    panel_to_frames,
)


def test_generate_gbm_paths_correct_length():
    """Test that GBM generates a series of correct length."""
    n_steps = 100
    prices = generate_gbm_paths(
        initial_price=100.0,
        drift=0.10,
        volatility=0.20,
        n_steps=n_steps,
        seed=42,
    )

    # Should have n_steps + 1 values (including initial price)
    assert len(prices) == n_steps + 1
    assert prices.iloc[0] == 100.0


def test_generate_gbm_paths_zero_volatility():
    """Test that GBM with zero volatility produces deterministic exponential growth."""
    prices = generate_gbm_paths(
        initial_price=100.0,
        drift=0.10,
        volatility=0.0,
        n_steps=252,
        dt=1 / 252,
        seed=42,
    )

    # 100 * exp(0.10 * 1) after one year of daily steps
    assert np.isclose(prices.iloc[-1], 100.0 * np.exp(0.10), rtol=1e-6)


def test_generate_gbm_paths_seed_reproducibility():
    """Test that GBM with same seed produces identical paths."""
    params = dict(initial_price=100.0, drift=0.10, volatility=0.20, n_steps=100, seed=123)

    pd.testing.assert_series_equal(generate_gbm_paths(**params), generate_gbm_paths(**params))


def test_generate_gbm_paths_positive():
    """Test that GBM prices stay positive even with high volatility."""
    prices = generate_gbm_paths(initial_price=10.0, drift=-0.5, volatility=1.5, n_steps=500, seed=7)

    assert (prices > 0).all()


def test_generate_gbm_paths_zero_steps():
    prices = generate_gbm_paths(initial_price=50.0, drift=0.1, volatility=0.2, n_steps=0, seed=1)

    assert prices.tolist() == [50.0]


def test_generate_price_panel_shape_and_calendar():
    """Test one column per ticker on consecutive business days."""
    panel = generate_price_panel(['SPY', 'TLT'], start='2024-01-01', n_days=10, seed=3)

    assert list(panel.columns) == ['SPY', 'TLT']
    assert len(panel) == 10
    assert panel.index.name == 'date'
    assert (panel.index.dayofweek < 5).all()
    assert (panel.iloc[0] == 100.0).all()


def test_generate_price_panel_ticker_seeds_independent():
    """Test that adding a ticker leaves existing tickers' paths unchanged."""
    one = generate_price_panel(['A'], start='2024-01-01', n_days=50, seed=9)
    two = generate_price_panel(['A', 'B'], start='2024-01-01', n_days=50, seed=9)

    np.testing.assert_allclose(one['A'].to_numpy(), two['A'].to_numpy())
    assert not np.allclose(two['A'].to_numpy(), two['B'].to_numpy())


def test_generate_price_panel_per_ticker_parameters():
    panel = generate_price_panel(
        ['FLAT', 'UP'], start='2024-01-01', n_days=253,
        drifts={'FLAT': 0.0, 'UP': 0.10},
        volatilities=0.0,
        initial_prices={'FLAT': 10.0, 'UP': 20.0},
    )

    assert np.allclose(panel['FLAT'], 10.0)
    assert np.isclose(panel['UP'].iloc[-1], 20.0 * np.exp(0.10))


def test_panel_to_frames_drops_missing():
    panel = generate_price_panel(['A', 'B'], start='2024-01-01', n_days=5, seed=2)
    panel.iloc[1, 1] = np.nan

    frames = panel_to_frames(panel)

    assert list(frames['A'].columns) == ['date', 'close_price']
    assert len(frames['A']) == 5
    assert len(frames['B']) == 4
