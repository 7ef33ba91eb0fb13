"""
portfolio_engine: backtesting and risk analytics for multi-asset portfolios.

Simulates allocations over historical daily prices, derives risk/return
statistics, projects outcomes by bootstrap resampling, stress-tests weights
against historical shocks, and derives regime-tilted inverse-volatility weights.
"""

__version__ = "0.1.0"
