"""
Backtest engine for allocation strategies over daily price calendars.

Walks the trading calendar with a whole-share broker to produce portfolio value
series, trade ledgers, and data-quality reports.
"""
