"""
Allocation strategies for portfolio backtests.

**Conceptual**: A strategy answers two questions for the backtest engine:
  1. How should the starting capital be split on the first trading day?
  2. On a later trading day, is it time to rebalance, and if so how should
     the liquidated cash be split?

Execution (whole-share rounding, ledger) stays in the broker; the strategy
only produces dollar targets per ticker.

**Available strategies**:
  - buy_hold: invest once on day 0, never trade again.
  - equal_weight_rebalance: invest on day 0, then on the first trading day of
    each new month (or quarter) sell everything and re-buy equal dollar
    amounts across the allocation's tickers priced that day.
"""

from typing import Iterable, Mapping, Protocol

import pandas as pd

from portfolio_engine.data.schemas import AllocationEntry
from portfolio_engine.utils.errors import InputValidationError
from portfolio_engine.utils.time import period_key

STRATEGY_NAMES = ("buy_hold", "equal_weight_rebalance")
REBALANCE_FREQUENCIES = ("monthly", "quarterly")
INITIAL_WEIGHTINGS = ("target", "equal")

# Accepted spellings from older request payloads
_STRATEGY_ALIASES = {
    "buy_and_hold": "buy_hold",
    "equal_weight": "equal_weight_rebalance",
}


def split_equally(cash: float, tickers: Iterable[str]) -> dict[str, float]:
    """Divide cash into equal dollar amounts across tickers."""
    tickers = list(tickers)
    if not tickers:
        return {}
    per_ticker = cash / len(tickers)
    return {ticker: per_ticker for ticker in tickers}


def split_by_weight(
    cash: float,
    allocation: Iterable[AllocationEntry],
    available: Iterable[str],
) -> dict[str, float]:
    """
    Divide cash per target weight, renormalised over the available tickers.

    Tickers without a price (not in `available`) get nothing and their weight
    is redistributed pro rata. If every available ticker has zero weight, falls
    back to an equal split.
    """
    available = set(available)
    weights = {e.ticker: e.weight for e in allocation if e.ticker in available}
    total = sum(weights.values())
    if total <= 0:
        return split_equally(cash, weights)
    return {ticker: cash * weight / total for ticker, weight in weights.items()}


class RebalanceStrategy(Protocol):
    """
    Strategy interface consumed by the backtest engine.

    Any object with these three methods can drive run_backtest.
    """

    name: str

    def initial_targets(
        self,
        allocation: list[AllocationEntry],
        prices: Mapping[str, float],
        cash: float,
    ) -> dict[str, float]:
        """Dollar amount to invest per ticker on day 0 (only priced tickers)."""
        ...

    def should_rebalance(self, day: pd.Timestamp, last_rebalance: pd.Timestamp) -> bool:
        """Whether `day` starts a new rebalance period relative to `last_rebalance`."""
        ...

    def rebalance_targets(
        self,
        allocation: list[AllocationEntry],
        prices: Mapping[str, float],
        cash: float,
    ) -> dict[str, float]:
        """Dollar amount to re-buy per ticker after liquidation."""
        ...


class BuyAndHoldStrategy:
    """Invest once on the first trading day; never rebalance."""

    name = "buy_hold"

    def __init__(self, initial_weighting: str = "target"):
        if initial_weighting not in INITIAL_WEIGHTINGS:
            raise InputValidationError(
                f"Unknown initial weighting '{initial_weighting}'. Expected one of {INITIAL_WEIGHTINGS}."
            )
        self.initial_weighting = initial_weighting

    def initial_targets(self, allocation, prices, cash):
        priced = [e.ticker for e in allocation if e.ticker in prices]
        if self.initial_weighting == "equal":
            return split_equally(cash, priced)
        return split_by_weight(cash, allocation, priced)

    def should_rebalance(self, day, last_rebalance):
        return False

    def rebalance_targets(self, allocation, prices, cash):
        return {}


class EqualWeightRebalanceStrategy(BuyAndHoldStrategy):
    """
    Periodically reset to equal dollar weights.

    A rebalance fires on the first trading day whose calendar month (or
    quarter) differs from the last rebalance point; day 0 counts as the
    first rebalance point.
    """

    name = "equal_weight_rebalance"

    def __init__(self, frequency: str = "monthly", initial_weighting: str = "target"):
        super().__init__(initial_weighting=initial_weighting)
        if frequency not in REBALANCE_FREQUENCIES:
            raise InputValidationError(
                f"Unknown rebalance frequency '{frequency}'. Expected one of {REBALANCE_FREQUENCIES}."
            )
        self.frequency = frequency

    def should_rebalance(self, day, last_rebalance):
        return period_key(day, self.frequency) != period_key(last_rebalance, self.frequency)

    def rebalance_targets(self, allocation, prices, cash):
        return split_equally(cash, [e.ticker for e in allocation if e.ticker in prices])


def make_strategy(
    name: str,
    rebalance_frequency: str = "monthly",
    initial_weighting: str = "target",
) -> RebalanceStrategy:
    """
    Build a strategy from its request name.

    Args:
        name: "buy_hold" or "equal_weight_rebalance" (aliases "buy_and_hold",
              "equal_weight" accepted).
        rebalance_frequency: "monthly" or "quarterly"; ignored for buy_hold.
        initial_weighting: "target" (per-weight day-0 split) or "equal".

    Raises:
        InputValidationError: If any argument is not recognised.
    """
    canonical = _STRATEGY_ALIASES.get(name, name)
    if canonical == "buy_hold":
        return BuyAndHoldStrategy(initial_weighting=initial_weighting)
    if canonical == "equal_weight_rebalance":
        return EqualWeightRebalanceStrategy(
            frequency=rebalance_frequency,
            initial_weighting=initial_weighting,
        )
    raise InputValidationError(f"Unknown strategy '{name}'. Expected one of {STRATEGY_NAMES}.")
