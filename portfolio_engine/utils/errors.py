"""
Error taxonomy for the backtesting and risk-analytics engine.

**Conceptual**: Every failure the engine can surface to a caller falls into one
of a small number of typed categories, so callers can decide whether to fix
their request, wait for more data, or accept a degraded result:
  - InputValidationError: the request itself is malformed (bad tickers,
    weights not summing to 100, empty date range, non-positive capital).
    Raised before any simulation starts and never worth retrying.
  - InsufficientDataError: the inputs are well-formed but there is not enough
    price history to compute a result that has no neutral default.
  - NoStartingPriceError: a backtest cannot open any position on its first
    trading day. Fatal for that backtest run only.

Data-quality shortfalls that do not stop a computation are recorded as
PartialCoverageWarning records and returned inside result objects.
"""

from dataclasses import dataclass


class PortfolioEngineError(Exception):
    """Base class for all errors raised by portfolio_engine."""
    pass


class InputValidationError(PortfolioEngineError, ValueError):
    """
    Raised when a request is malformed.

    Subclasses ValueError so callers that already guard numeric parsing with
    `except ValueError` keep working.
    """
    pass


class InsufficientDataError(PortfolioEngineError):
    """
    Raised when there are too few data points and no neutral fallback exists.

    Metrics with a defined "no data" value (e.g. Sharpe = 0 for fewer than two
    snapshots) return that value instead of raising.
    """
    pass


class NoStartingPriceError(PortfolioEngineError):
    """Raised when no ticker has a positive price on the first trading day."""
    pass


@dataclass(frozen=True)
class PartialCoverageWarning:
    """
    Data-quality warning attached to a result; never raised.

    Attributes:
        ticker: Ticker the warning refers to, or None for the whole calendar.
        observed_days: Number of trading days with a usable price.
        expected_days: Expected trading days for the requested range
                       (calendar days * 252 / 365, floored).
        message: Human-readable description.
    """
    ticker: str | None
    observed_days: int
    expected_days: int
    message: str

    @property
    def coverage_ratio(self) -> float:
        """Observed / expected trading days (0.0 when nothing is expected)."""
        if self.expected_days <= 0:
            return 0.0
        return self.observed_days / self.expected_days
