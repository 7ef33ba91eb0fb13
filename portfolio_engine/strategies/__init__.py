"""
Allocation strategy interfaces and implementations.

Defines when a backtest rebalances and how capital is split across tickers.
"""
