"""
Tests for portfolio_engine/analytics/risk_metrics.py

These tests verify each metric against hand-computed values and check the
"undefined ratio is 0" conventions on flat and very short series.
"""

import numpy as np
import pandas as pd
import pytest
from scipy import stats

from portfolio_engine.analytics.risk_metrics import (
    compute_alpha,
    compute_annualized_return,
    compute_beta_and_correlation,
    compute_calmar_ratio,
    compute_conditional_value_at_risk,
    compute_drawdown_details,
    compute_drawdown_series,
    compute_information_ratio,
    compute_max_drawdown,
    compute_performance_metrics,
    compute_return_moments,
    compute_sharpe_ratio,
    compute_sortino_ratio,
    compute_total_return,
    compute_ulcer_index,
    compute_value_at_risk,
)


def make_value_series(values, start='2024-01-02'):
    """Create a value series on consecutive business days."""
    return pd.Series(values, index=pd.bdate_range(start, periods=len(values)), dtype=float)


def test_total_return_uses_initial_capital():
    """Test (V_T / V_0) - 1 with and without explicit starting capital."""
    values = make_value_series([95.0, 110.0])

    assert np.isclose(compute_total_return(values), 110.0 / 95.0 - 1.0)
    assert np.isclose(compute_total_return(values, initial_value=100.0), 0.10)


def test_annualized_return_one_year_is_total_return():
    """Test that 252 trading days annualize to the total return itself."""
    assert np.isclose(compute_annualized_return(0.10, 252), 0.10)
    assert np.isclose(compute_annualized_return(0.21, 504), 0.10)


def test_annualized_return_edge_cases():
    assert compute_annualized_return(0.5, 1) == 0.0
    assert compute_annualized_return(-1.0, 100) == -1.0


def test_sharpe_ratio():
    """Test (R - rf) / σ and the zero-volatility convention."""
    assert np.isclose(compute_sharpe_ratio(0.12, 0.20, risk_free_rate=0.04), 0.4)
    assert compute_sharpe_ratio(0.12, 0.0) == 0.0


def test_sortino_requires_two_negative_returns():
    """Test that one negative return leaves downside undefined (ratio 0)."""
    returns = pd.Series([0.01, -0.02, 0.03])
    assert compute_sortino_ratio(returns, 0.10) == 0.0

    returns = pd.Series([0.01, -0.02, 0.03, -0.01])
    downside = pd.Series([-0.02, -0.01]).std(ddof=1) * np.sqrt(252)
    assert np.isclose(compute_sortino_ratio(returns, 0.10), (0.10 - 0.04) / downside)


def test_max_drawdown_from_running_peak():
    """
    Test peak-to-trough drawdown.

    Scenario: 100 -> 120 -> 90 -> 130.
    Expected: (120 - 90) / 120 = 0.25.
    """
    values = make_value_series([100.0, 120.0, 90.0, 130.0])

    assert np.isclose(compute_max_drawdown(values), 0.25)
    drawdowns = compute_drawdown_series(values)
    assert (drawdowns >= 0).all() and (drawdowns <= 1).all()


def test_max_drawdown_seeded_with_initial_capital():
    """Test that the first snapshot below starting capital counts as drawdown."""
    values = make_value_series([90.0, 95.0])

    assert compute_max_drawdown(values) == pytest.approx(0.0)
    assert np.isclose(compute_max_drawdown(values, initial_value=100.0), 0.10)


def test_calmar_ratio():
    assert np.isclose(compute_calmar_ratio(0.15, 0.30), 0.5)
    assert compute_calmar_ratio(0.15, 0.0) == 0.0


def test_beta_and_correlation_of_levered_series():
    """Test that portfolio returns of 2 × benchmark give beta 2, correlation 1."""
    benchmark = pd.Series([0.01, -0.02, 0.015, 0.005, -0.01])
    portfolio = 2.0 * benchmark

    beta, correlation = compute_beta_and_correlation(portfolio, benchmark)

    assert np.isclose(beta, 2.0)
    assert np.isclose(correlation, 1.0)


def test_beta_flat_benchmark_is_zero():
    beta, correlation = compute_beta_and_correlation(pd.Series([0.01, 0.02, 0.03]), pd.Series([0.0, 0.0, 0.0]))
    assert beta == 0.0 and correlation == 0.0


def test_alpha():
    """Test Jensen's alpha: R_p - (rf + beta (R_b - rf))."""
    assert np.isclose(compute_alpha(0.12, 1.0, 0.10, 0.04), 0.02)


def test_value_at_risk_and_cvar():
    """Test historical VaR and CVaR at 95% on 100 evenly spread returns."""
    returns = pd.Series(np.linspace(-0.05, 0.05, 101))

    var = compute_value_at_risk(returns)
    cvar = compute_conditional_value_at_risk(returns)

    assert np.isclose(var, np.percentile(returns, 5))
    assert cvar <= var
    assert np.isclose(cvar, returns[returns <= var].mean())


def test_constant_series_has_zero_ratios():
    """
    Test that a flat value series yields zero for every ratio.

    Expected: no return, no volatility, no drawdown, Sharpe/Sortino/Calmar 0.
    """
    metrics = compute_performance_metrics(make_value_series([100.0] * 30), initial_value=100.0)

    assert metrics.total_return == 0.0
    assert metrics.volatility == 0.0
    assert metrics.sharpe_ratio == 0.0
    assert metrics.sortino_ratio == 0.0
    assert metrics.calmar_ratio == 0.0
    assert metrics.max_drawdown == 0.0


def test_single_point_series():
    """Test that fewer than two points report zero ratios without raising."""
    metrics = compute_performance_metrics(make_value_series([105.0]), initial_value=100.0)

    assert np.isclose(metrics.total_return, 0.05)
    assert metrics.annualized_return == 0.0
    assert metrics.trading_days == 1
    assert metrics.beta is None


def test_performance_metrics_with_benchmark():
    """Test that a benchmark enables beta, alpha and correlation."""
    rng = np.random.default_rng(3)
    bench = make_value_series(100.0 * np.cumprod(1.0 + rng.normal(0.0005, 0.01, 120)))
    portfolio = bench * 1000.0

    metrics = compute_performance_metrics(portfolio, benchmark_values=bench)

    assert np.isclose(metrics.beta, 1.0)
    assert np.isclose(metrics.benchmark_correlation, 1.0)
    assert np.isclose(metrics.alpha, metrics.annualized_return - (
        0.04 + metrics.beta * (metrics.benchmark_annualized_return - 0.04)))
    assert 0.0 <= metrics.max_drawdown <= 1.0


def test_to_dict_percent():
    """Test that the percent view scales return fields and rounds ratios."""
    metrics = compute_performance_metrics(make_value_series([100.0, 110.0, 99.0, 121.0]), initial_value=100.0)

    data = metrics.to_dict(percent=True)

    assert data['total_return'] == 21.0
    assert data['max_drawdown'] == 10.0
    assert data['beta'] is None


def test_drawdown_details_peak_trough_and_recovery():
    """
    Test drawdown timing.

    Scenario: 100 -> 120 -> 90 -> 100 -> 130.
    Expected: peak on day 1, trough on day 2, one day down, recovered two
    days after the trough (130 >= 120).
    """
    values = make_value_series([100.0, 120.0, 90.0, 100.0, 130.0])

    details = compute_drawdown_details(values)

    assert np.isclose(details.max_drawdown, 0.25)
    assert details.peak_date == values.index[1]
    assert details.trough_date == values.index[2]
    assert details.drawdown_duration == 1
    assert details.recovery_duration == 2


def test_drawdown_details_without_recovery():
    values = make_value_series([100.0, 120.0, 90.0, 100.0])

    details = compute_drawdown_details(values)

    assert details.recovery_duration is None
    assert details.drawdown_duration == 1


def test_drawdown_details_peak_at_starting_capital():
    """Test that a decline from the starting capital has no peak date."""
    values = make_value_series([90.0, 95.0])

    details = compute_drawdown_details(values, initial_value=100.0)

    assert details.peak_date is None
    assert details.trough_date == values.index[0]
    assert details.drawdown_duration == 1
    assert details.recovery_duration is None


def test_drawdown_details_rising_series():
    details = compute_drawdown_details(make_value_series([100.0, 101.0, 102.0]))

    assert details.max_drawdown == 0.0
    assert details.trough_date is None
    assert details.drawdown_duration == 0


def test_ulcer_index():
    """
    Test RMS drawdown.

    Scenario: 100 -> 120 -> 90 -> 120; drawdowns 0, 0, 0.25, 0.
    Expected: sqrt(0.25² / 4) = 0.125.
    """
    values = make_value_series([100.0, 120.0, 90.0, 120.0])

    assert np.isclose(compute_ulcer_index(values), 0.125)
    assert compute_ulcer_index(make_value_series([100.0, 110.0])) == 0.0


def test_information_ratio():
    """
    Test mean excess return over tracking error, annualized.

    Scenario: excess returns 0.01, 0.0, 0.02 (mean 0.01, sample std 0.01).
    Expected: IR = sqrt(252).
    """
    portfolio = pd.Series([0.02, 0.01, 0.03])
    benchmark = pd.Series([0.01, 0.01, 0.01])

    assert np.isclose(compute_information_ratio(portfolio, benchmark), np.sqrt(252))


def test_information_ratio_zero_tracking_error():
    returns = pd.Series([0.01, -0.02, 0.015])

    assert compute_information_ratio(returns, returns) == 0.0
    assert compute_information_ratio(pd.Series([0.01]), pd.Series([0.0])) == 0.0


def test_return_moments_match_bias_corrected_estimators():
    """Test skewness/excess kurtosis against scipy's bias-corrected estimators."""
    returns = pd.Series([0.01, 0.02, -0.01, 0.03, 0.10, -0.02])

    skewness, kurtosis = compute_return_moments(returns)

    assert np.isclose(skewness, stats.skew(returns, bias=False))
    assert np.isclose(kurtosis, stats.kurtosis(returns, fisher=True, bias=False))
    assert skewness > 0  # one large up day


def test_return_moments_short_or_flat_series():
    """Test that skewness needs 3 returns, kurtosis 4, and flat returns give zeros."""
    assert compute_return_moments(pd.Series([0.01, 0.02])) == (0.0, 0.0)
    skewness, kurtosis = compute_return_moments(pd.Series([0.01, 0.02, 0.06]))
    assert skewness != 0.0
    assert kurtosis == 0.0
    assert compute_return_moments(pd.Series([0.01] * 10)) == (0.0, 0.0)


def test_performance_metrics_carry_drawdown_and_distribution_stats():
    """Test that the bundle includes drawdown timing, Ulcer Index and moments."""
    values = make_value_series([100.0, 120.0, 90.0, 100.0, 130.0])

    metrics = compute_performance_metrics(values, initial_value=100.0)

    assert metrics.drawdown_duration == 1
    assert metrics.recovery_duration == 2
    assert np.isclose(metrics.ulcer_index, compute_ulcer_index(values, 100.0))
    skewness, kurtosis = compute_return_moments(values.pct_change().dropna())
    assert np.isclose(metrics.skewness, skewness)
    assert np.isclose(metrics.kurtosis, kurtosis)
    assert metrics.information_ratio is None

    data = metrics.to_dict(percent=True)
    assert data['ulcer_index'] == round(100.0 * metrics.ulcer_index, 2)
    assert data['recovery_duration'] == 2


def test_performance_metrics_information_ratio_with_benchmark():
    """Test that a benchmark enables the information ratio."""
    rng = np.random.default_rng(11)
    bench = make_value_series(100.0 * np.cumprod(1.0 + rng.normal(0.0004, 0.01, 120)))
    portfolio = make_value_series(100.0 * np.cumprod(1.0 + rng.normal(0.0008, 0.012, 120)))

    metrics = compute_performance_metrics(portfolio, benchmark_values=bench)

    expected = compute_information_ratio(portfolio.pct_change().dropna(), bench.pct_change().dropna())
    assert np.isclose(metrics.information_ratio, expected)
    assert metrics.information_ratio != 0.0
