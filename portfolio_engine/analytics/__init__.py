"""
Risk/performance metrics, projections, stress tests, and allocation analytics.

Includes Sharpe/Sortino/Calmar and drawdown metrics, Monte Carlo bootstrap
projections, scenario stress tests, correlation matrices, macro regime
classification, and regime-tilted inverse-volatility weighting.
"""
