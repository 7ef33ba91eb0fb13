"""
Risk and performance metrics for portfolio value series.

This module turns a daily portfolio value series (one value per trading day)
into the standard risk/return statistics reported with every backtest:
  - Core performance: total return, annualized return, volatility
  - Risk-adjusted: Sharpe, Sortino, Calmar
  - Drawdown: running-peak drawdown series, maximum drawdown with its
    duration and recovery time, Ulcer Index
  - Relative-to-benchmark: beta, alpha, correlation, information ratio
  - Tail risk: historical VaR and CVaR at 95%, skewness, excess kurtosis

**Conventions**:
  - Inputs are decimals (0.25 = 25%); PerformanceMetrics.to_dict(percent=True)
    converts for display.
  - Annualization uses the actual trading-day count of the series and
    252 periods per year, never calendar days.
  - Undefined ratios (zero volatility, no drawdown, no downside, fewer than
    two points) are reported as 0.0 rather than NaN or an exception.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Optional

import numpy as np
import pandas as pd
from scipy import stats

from portfolio_engine.utils.math import compute_annualized_volatility, compute_simple_returns

logger = logging.getLogger(__name__)

_EPSILON = 1e-12


@dataclass(frozen=True)
class PerformanceMetrics:
    """
    Immutable bundle of statistics for one value series.

    All return/risk fields are decimals. beta, alpha, benchmark_correlation
    and information_ratio are None when no benchmark was supplied.
    drawdown_duration is the number of trading days from the peak to the
    trough of the maximum drawdown; recovery_duration is the number of
    trading days from that trough back to the peak value, or None if the
    series never recovers.
    """
    total_return: float
    annualized_return: float
    volatility: float
    sharpe_ratio: float
    sortino_ratio: float
    max_drawdown: float
    calmar_ratio: float
    value_at_risk_95: float
    conditional_value_at_risk_95: float
    initial_value: float
    final_value: float
    trading_days: int
    skewness: float = 0.0
    kurtosis: float = 0.0
    ulcer_index: float = 0.0
    drawdown_duration: int = 0
    recovery_duration: Optional[int] = 0
    beta: Optional[float] = None
    alpha: Optional[float] = None
    benchmark_correlation: Optional[float] = None
    benchmark_annualized_return: Optional[float] = None
    information_ratio: Optional[float] = None

    def to_dict(self, percent: bool = False) -> dict:
        """
        Plain-dict view for reporting.

        Args:
            percent: If True, return-like fields are multiplied by 100 and
                     rounded to 2 decimals; ratios are rounded to 2 decimals.
        """
        data = asdict(self)
        if not percent:
            return data

        percent_fields = (
            "total_return", "annualized_return", "volatility", "max_drawdown",
            "value_at_risk_95", "conditional_value_at_risk_95", "alpha",
            "benchmark_annualized_return", "ulcer_index",
        )
        ratio_fields = (
            "sharpe_ratio", "sortino_ratio", "calmar_ratio", "beta", "benchmark_correlation",
            "information_ratio", "skewness", "kurtosis",
        )
        for key in percent_fields:
            if data[key] is not None:
                data[key] = round(data[key] * 100.0, 2)
        for key in ratio_fields:
            if data[key] is not None:
                data[key] = round(data[key], 2)
        data["final_value"] = round(data["final_value"], 2)
        return data


def compute_total_return(values: pd.Series, initial_value: float | None = None) -> float:
    """
    Compute the overall return from the starting capital to the final value.

    **Mathematical**:
        Total Return = (V_T / V_0) - 1
    where V_0 is the initial capital when supplied, otherwise the first value.

    Args:
        values: Portfolio value series (chronological).
        initial_value: Starting capital; defaults to values.iloc[0].

    Returns:
        Total return as a decimal (0.0 for an empty series).
    """
    if values.empty:
        return 0.0
    start = values.iloc[0] if initial_value is None else initial_value
    if start <= 0:
        return 0.0
    return float(values.iloc[-1] / start - 1.0)


def compute_annualized_return(
    total_return: float,
    trading_days: int,
    periods_per_year: int = 252,
) -> float:
    """
    Annualize a total return over a horizon measured in trading days.

    **Mathematical**:
        annualized = (1 + total_return)^(periods_per_year / trading_days) - 1

    Using trading days (not calendar days) keeps short backtests from
    producing absurd figures when the calendar is sparse.

    **Edge cases**:
    - trading_days < 2 returns 0.0 (no horizon to annualize over).
    - A total loss (total_return <= -1) returns -1.0.

    Returns:
        Annualized return as a decimal.
    """
    if trading_days < 2:
        return 0.0
    growth = 1.0 + total_return
    if growth <= 0:
        return -1.0
    return float(growth ** (periods_per_year / trading_days) - 1.0)


def compute_daily_returns(values: pd.Series) -> pd.Series:
    """Simple day-over-day returns of a value series (n - 1 values)."""
    returns = compute_simple_returns(values).iloc[1:]
    return returns.replace([np.inf, -np.inf], np.nan).dropna()


def compute_sharpe_ratio(
    annualized_return: float,
    volatility: float,
    risk_free_rate: float = 0.04,
) -> float:
    """
    Compute the Sharpe ratio: excess annualized return per unit of volatility.

    **Mathematical**:
        Sharpe = (annualized_return - risk_free_rate) / volatility

    Returns:
        Sharpe ratio, or 0.0 if volatility is zero.
    """
    if volatility < _EPSILON or np.isnan(volatility):
        return 0.0
    return float((annualized_return - risk_free_rate) / volatility)


def compute_downside_deviation(daily_returns: pd.Series, periods_per_year: int = 252) -> float:
    """
    Annualized standard deviation of the negative daily returns only.

    Returns:
        Downside deviation, or 0.0 with fewer than two negative returns.
    """
    downside = daily_returns[daily_returns < 0]
    if len(downside) < 2:
        return 0.0
    return float(downside.std(ddof=1) * np.sqrt(periods_per_year))


def compute_sortino_ratio(
    daily_returns: pd.Series,
    annualized_return: float,
    risk_free_rate: float = 0.04,
    periods_per_year: int = 252,
) -> float:
    """
    Compute the Sortino ratio: excess return per unit of downside deviation.

    **Mathematical**:
        Sortino = (annualized_return - risk_free_rate) / downside_deviation
    where downside_deviation is the annualized sample stdev of negative returns.

    Unlike Sharpe, upside volatility is not penalised.

    The sample stdev needs at least two negative returns: a series with zero
    or one down day has no measurable downside and reports 0.0.

    Returns:
        Sortino ratio, or 0.0 with fewer than two negative daily returns.
    """
    downside_deviation = compute_downside_deviation(daily_returns, periods_per_year)
    if downside_deviation < _EPSILON:
        return 0.0
    return float((annualized_return - risk_free_rate) / downside_deviation)


def compute_drawdown_series(values: pd.Series, initial_value: float | None = None) -> pd.Series:
    """
    Compute the drawdown from the running peak at every point.

    **Mathematical**:
        peak_t = max(V_0, ..., V_t), seeded with the initial capital
        drawdown_t = (peak_t - V_t) / peak_t

    The running peak only ever increases, so drawdown_t is in [0, 1] for a
    non-negative value series.

    Args:
        values: Portfolio value series.
        initial_value: Optional starting capital used to seed the running peak.

    Returns:
        Drawdown series (values >= 0), same index as input.
    """
    if values.empty:
        return values.astype(float)

    running_peak = values.cummax()
    if initial_value is not None:
        running_peak = running_peak.clip(lower=initial_value)

    drawdown = (running_peak - values) / running_peak
    return drawdown.fillna(0.0)


def compute_max_drawdown(values: pd.Series, initial_value: float | None = None) -> float:
    """
    Largest peak-to-trough decline as a positive fraction (0.3 = 30% drawdown).

    Returns:
        Maximum drawdown in [0, 1]; 0.0 for an empty or never-declining series.
    """
    if values.empty:
        return 0.0
    return float(compute_drawdown_series(values, initial_value).max())


@dataclass(frozen=True)
class DrawdownDetails:
    """
    Location and timing of the maximum drawdown.

    Attributes:
        max_drawdown: Largest peak-to-trough decline (fraction).
        peak_date: Date of the peak, or None when the peak is the starting
                   capital (before the first value).
        trough_date: Date of the trough, or None with no drawdown.
        drawdown_duration: Trading days from peak to trough.
        recovery_duration: Trading days from trough until the value first
                           regains the peak, or None if it never does.
    """
    max_drawdown: float
    peak_date: Optional[pd.Timestamp]
    trough_date: Optional[pd.Timestamp]
    drawdown_duration: int
    recovery_duration: Optional[int]


def compute_drawdown_details(values: pd.Series, initial_value: float | None = None) -> DrawdownDetails:
    """
    Find the peak, trough and recovery of the maximum drawdown.

    **Functionally**:
    - The trough is the first point where the drawdown series is largest.
    - The peak is the last point at or before the trough whose value equals
      the running peak there. When the running peak was seeded by
      `initial_value` and never reached by the series, the peak sits one
      step before the first value (peak_date None).
    - Recovery is the first point at or after the trough whose value is at
      least the peak value.

    Example:
        100 -> 120 -> 90 -> 100 -> 130: peak 120 (day 1), trough 90 (day 2),
        drawdown_duration 1, recovery_duration 2.

    Returns:
        DrawdownDetails; all zero/None for an empty or never-declining series.
    """
    if values.empty:
        return DrawdownDetails(0.0, None, None, 0, 0)

    vals = values.to_numpy(dtype=float)
    peaks = np.maximum.accumulate(vals)
    if initial_value is not None:
        peaks = np.maximum(peaks, initial_value)
    drawdowns = compute_drawdown_series(values, initial_value).to_numpy(dtype=float)

    trough = int(np.argmax(drawdowns))
    max_drawdown = float(drawdowns[trough])
    if max_drawdown < _EPSILON:
        return DrawdownDetails(0.0, None, None, 0, 0)

    peak_value = peaks[trough]
    at_peak = np.nonzero(vals[:trough + 1] >= peak_value)[0]
    peak_pos = int(at_peak[-1]) if at_peak.size else -1

    recovered = np.nonzero(vals[trough:] >= peak_value)[0]
    return DrawdownDetails(
        max_drawdown=max_drawdown,
        peak_date=values.index[peak_pos] if peak_pos >= 0 else None,
        trough_date=values.index[trough],
        drawdown_duration=trough - peak_pos,
        recovery_duration=int(recovered[0]) if recovered.size else None,
    )


def compute_ulcer_index(values: pd.Series, initial_value: float | None = None) -> float:
    """
    Compute the Ulcer Index: root-mean-square of the drawdown series.

    **Conceptual**: Max drawdown reports only the single worst decline. The
    Ulcer Index also weighs how deep and how long every decline was, so a
    portfolio that sits 10% under water for months scores worse than one
    that dips 10% for a day.

    **Mathematical**:
        UI = sqrt( (1/n) Σ drawdown_t² )

    Returns:
        Ulcer Index as a decimal (0.05 = 5%); 0.0 for an empty series.
    """
    if values.empty:
        return 0.0
    drawdowns = compute_drawdown_series(values, initial_value)
    return float(np.sqrt((drawdowns ** 2).mean()))


def compute_calmar_ratio(annualized_return: float, max_drawdown: float) -> float:
    """
    Compute the Calmar ratio: annualized return per unit of maximum drawdown.

    Returns:
        Calmar ratio, or 0.0 if there was no drawdown.
    """
    if max_drawdown < _EPSILON:
        return 0.0
    return float(annualized_return / max_drawdown)


def compute_beta_and_correlation(
    returns: pd.Series,
    benchmark_returns: pd.Series
) -> tuple[float, float]:
    """
    Compute beta and correlation of portfolio returns versus a benchmark.

    **Mathematical**:
        Beta = Cov(r_p, r_b) / Var(r_b)
        Correlation = Corr(r_p, r_b)
    over the dates present in both series.

    Returns:
        (beta, correlation); each 0.0 when fewer than two aligned points exist
        or the benchmark (or portfolio) has no variance.
    """
    aligned = pd.DataFrame({
        'portfolio': returns,
        'benchmark': benchmark_returns
    }).dropna()

    if len(aligned) < 2:
        return 0.0, 0.0

    port_ret = aligned['portfolio']
    bench_ret = aligned['benchmark']

    benchmark_variance = bench_ret.var(ddof=1)
    if benchmark_variance < _EPSILON:
        return 0.0, 0.0

    beta = port_ret.cov(bench_ret) / benchmark_variance
    correlation = port_ret.corr(bench_ret)
    if np.isnan(correlation):
        correlation = 0.0

    return float(beta), float(correlation)


def compute_alpha(
    annualized_return: float,
    beta: float,
    benchmark_annualized_return: float,
    risk_free_rate: float = 0.04,
) -> float:
    """
    Jensen's alpha against a benchmark.

    **Mathematical**:
        alpha = R_p - (r_f + beta * (R_b - r_f))
    """
    return float(annualized_return - (risk_free_rate + beta * (benchmark_annualized_return - risk_free_rate)))


def compute_information_ratio(
    returns: pd.Series,
    benchmark_returns: pd.Series,
    periods_per_year: int = 252
) -> float:
    """
    Compute the Information Ratio: excess return vs benchmark per unit of tracking error.

    **Conceptual**: The Information Ratio (IR) measures active return (return
    above benchmark) per unit of active risk (tracking error). It answers
    "is the allocation rewarded for deviating from the benchmark?"

    **Mathematical**: Given portfolio returns r_p and benchmark returns r_b:
        IR = mean(r_p - r_b) / std(r_p - r_b) * sqrt(periods_per_year)

    **Edge cases**:
    - Identical returns (zero tracking error) → 0.0.
    - Fewer than two aligned dates → 0.0.
    - Misaligned indices drop non-overlapping dates.

    Returns:
        Information ratio as a scalar.
    """
    aligned = pd.DataFrame({
        'portfolio': returns,
        'benchmark': benchmark_returns
    }).dropna()
    if len(aligned) < 2:
        return 0.0

    excess_returns = aligned['portfolio'] - aligned['benchmark']
    tracking_error = excess_returns.std(ddof=1)
    if tracking_error < 1e-10 or np.isnan(tracking_error):
        return 0.0

    return float(excess_returns.mean() / tracking_error * np.sqrt(periods_per_year))


def compute_value_at_risk(daily_returns: pd.Series, confidence: float = 0.95) -> float:
    """
    Historical one-day Value-at-Risk.

    **Mathematical**: the (1 - confidence) percentile of daily returns,
    e.g. the 5th percentile for 95% confidence (linear interpolation).

    Returns:
        VaR as a return (typically negative); 0.0 for an empty series.
    """
    clean = daily_returns.dropna()
    if clean.empty:
        return 0.0
    return float(np.percentile(clean.to_numpy(), (1.0 - confidence) * 100.0))


def compute_conditional_value_at_risk(daily_returns: pd.Series, confidence: float = 0.95) -> float:
    """
    Historical Conditional VaR (expected shortfall).

    **Mathematical**: mean of daily returns at or below the VaR threshold.

    Returns:
        CVaR as a return; 0.0 for an empty series.
    """
    clean = daily_returns.dropna()
    if clean.empty:
        return 0.0
    var = compute_value_at_risk(clean, confidence)
    tail = clean[clean <= var]
    if tail.empty:
        return var
    return float(tail.mean())


def compute_return_moments(daily_returns: pd.Series) -> tuple[float, float]:
    """
    Sample skewness and excess kurtosis of daily returns.

    Both use the bias-corrected estimators (adjusted Fisher-Pearson skewness,
    Fisher excess kurtosis, so a normal distribution scores 0).

    Returns:
        (skewness, kurtosis). Skewness is 0.0 with fewer than 3 returns,
        kurtosis 0.0 with fewer than 4; both are 0.0 for constant returns.
    """
    clean = daily_returns.dropna().to_numpy(dtype=float)
    if len(clean) < 3 or clean.std() < _EPSILON:
        return 0.0, 0.0

    skewness = float(stats.skew(clean, bias=False))
    kurtosis = float(stats.kurtosis(clean, fisher=True, bias=False)) if len(clean) >= 4 else 0.0
    return skewness, kurtosis


def compute_performance_metrics(
    values: pd.Series,
    initial_value: float | None = None,
    benchmark_values: pd.Series | None = None,
    risk_free_rate: float = 0.04,
    periods_per_year: int = 252,
) -> PerformanceMetrics:
    """
    Compute the full metric bundle for a portfolio value series.

    Args:
        values: Portfolio value per trading day, indexed by date (chronological).
        initial_value: Starting capital; defaults to the first value.
        benchmark_values: Optional benchmark value/price series indexed by date.
                          Enables beta, alpha, correlation and the
                          information ratio.
        risk_free_rate: Annualized risk-free rate (decimal).
        periods_per_year: Trading days per year.

    Returns:
        PerformanceMetrics. With fewer than two points every ratio is 0.0.
    """
    values = values.astype(float)
    if initial_value is not None:
        start_value = float(initial_value)
    else:
        start_value = float(values.iloc[0]) if not values.empty else 0.0
    trading_days = int(len(values))
    final_value = float(values.iloc[-1]) if trading_days else start_value

    total_return = compute_total_return(values, start_value if start_value > 0 else None)

    if trading_days < 2:
        logger.debug("Fewer than 2 value points; ratio metrics reported as 0")
        return PerformanceMetrics(
            total_return=total_return,
            annualized_return=0.0,
            volatility=0.0,
            sharpe_ratio=0.0,
            sortino_ratio=0.0,
            max_drawdown=0.0,
            calmar_ratio=0.0,
            value_at_risk_95=0.0,
            conditional_value_at_risk_95=0.0,
            initial_value=start_value,
            final_value=final_value,
            trading_days=trading_days,
            beta=0.0 if benchmark_values is not None else None,
            alpha=0.0 if benchmark_values is not None else None,
            benchmark_correlation=0.0 if benchmark_values is not None else None,
            benchmark_annualized_return=0.0 if benchmark_values is not None else None,
            information_ratio=0.0 if benchmark_values is not None else None,
        )

    daily_returns = compute_daily_returns(values)
    annualized_return = compute_annualized_return(total_return, trading_days, periods_per_year)
    volatility = compute_annualized_volatility(daily_returns, periods_per_year)
    peak_seed = start_value if start_value > 0 else None
    drawdown = compute_drawdown_details(values, peak_seed)
    max_drawdown = drawdown.max_drawdown
    skewness, kurtosis = compute_return_moments(daily_returns)

    beta = alpha = correlation = benchmark_annualized = information_ratio = None
    if benchmark_values is not None:
        benchmark_values = benchmark_values.astype(float).dropna()
        benchmark_values = benchmark_values[
            (benchmark_values.index >= values.index[0]) & (benchmark_values.index <= values.index[-1])
        ]
        benchmark_returns = compute_daily_returns(benchmark_values)
        beta, correlation = compute_beta_and_correlation(daily_returns, benchmark_returns)
        benchmark_annualized = compute_annualized_return(
            compute_total_return(benchmark_values), len(benchmark_values), periods_per_year
        )
        alpha = compute_alpha(annualized_return, beta, benchmark_annualized, risk_free_rate)
        information_ratio = compute_information_ratio(daily_returns, benchmark_returns, periods_per_year)

    return PerformanceMetrics(
        total_return=total_return,
        annualized_return=annualized_return,
        volatility=volatility,
        sharpe_ratio=compute_sharpe_ratio(annualized_return, volatility, risk_free_rate),
        sortino_ratio=compute_sortino_ratio(daily_returns, annualized_return, risk_free_rate, periods_per_year),
        max_drawdown=max_drawdown,
        calmar_ratio=compute_calmar_ratio(annualized_return, max_drawdown),
        value_at_risk_95=compute_value_at_risk(daily_returns),
        conditional_value_at_risk_95=compute_conditional_value_at_risk(daily_returns),
        initial_value=start_value,
        final_value=final_value,
        trading_days=trading_days,
        skewness=skewness,
        kurtosis=kurtosis,
        ulcer_index=compute_ulcer_index(values, peak_seed),
        drawdown_duration=drawdown.drawdown_duration,
        recovery_duration=drawdown.recovery_duration,
        beta=beta,
        alpha=alpha,
        benchmark_correlation=correlation,
        benchmark_annualized_return=benchmark_annualized,
        information_ratio=information_ratio,
    )
