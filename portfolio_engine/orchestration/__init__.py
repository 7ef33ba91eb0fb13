"""
Multi-step analysis pipelines.

Coordinates backtest, metrics, projection, stress test, correlation and
optimization steps so each can be retried without recomputing the others.
"""
