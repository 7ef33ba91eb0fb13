"""
Whole-share paper broker for portfolio backtests.

**Conceptual**: This module implements a simplified broker that simulates
portfolio evolution during backtests. The broker holds cash and integer share
counts, converts dollar targets into whole-share purchases, liquidates at a
given day's prices, and appends every fill to a trade ledger. It's called
"paper" because no real money changes hands.

**Financial assumptions** (fixed; results are reproduced exactly by tests):
  - Trading happens at the day's price passed in by the engine.
  - Whole shares only: shares bought = floor(dollars / price). Flooring can
    never overdraw the dollars assigned to a ticker, and leftover cash stays
    un-invested.
  - No slippage, fees, taxes, shorting or leverage.
  - Valuation on a day includes only tickers priced that day. A held ticker
    with no price is excluded from that day's value but is NOT sold; its
    shares remain in holdings and count again once a price reappears.
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, List

import pandas as pd

from portfolio_engine.utils.errors import InputValidationError

logger = logging.getLogger(__name__)

BUY = "BUY"
SELL = "SELL"


@dataclass
class Holding:
    """
    Mutable position state owned by one in-progress backtest run.

    Attributes:
        ticker: Ticker symbol.
        shares: Whole shares held (non-negative).
    """
    ticker: str
    shares: int

    def market_value(self, price: float) -> float:
        return self.shares * price


@dataclass(frozen=True)
class Trade:
    """
    Immutable ledger entry.

    Attributes:
        date: Trading day of the fill.
        ticker: Ticker symbol.
        action: "BUY" or "SELL".
        shares: Whole shares traded (positive).
        price: Fill price.
    """
    date: pd.Timestamp
    ticker: str
    action: str
    shares: int
    price: float

    @property
    def value(self) -> float:
        return self.shares * self.price

    @property
    def signed_shares(self) -> int:
        """+shares for a BUY, -shares for a SELL."""
        return self.shares if self.action == BUY else -self.shares


class WholeShareBroker:
    """
    Paper (simulated) broker with whole-share fills and an append-only ledger.

    **Why dollar targets instead of weights?**
      - The engine decides how capital is split (per-weight on day 0, equal
        dollars on rebalance days); the broker only has to turn dollars into
        shares at a price, which keeps the floor-rounding rule in one place.
    """

    def __init__(self, initial_cash: float):
        """
        Args:
            initial_cash: Starting cash balance. Must be positive.

        Raises:
            InputValidationError: If initial_cash <= 0.
        """
        if not initial_cash > 0:
            raise InputValidationError(f"initial_cash must be positive, got {initial_cash}")

        self._cash = float(initial_cash)
        self._holdings: Dict[str, Holding] = {}
        self._trades: List[Trade] = []

    @property
    def cash(self) -> float:
        return self._cash

    @property
    def trades(self) -> list[Trade]:
        """Copy of the ledger in execution order."""
        return list(self._trades)

    def holdings(self) -> dict[str, int]:
        """Non-zero share counts by ticker."""
        return {t: h.shares for t, h in self._holdings.items() if h.shares > 0}

    def market_value(self, prices: dict[str, float]) -> float:
        """
        Portfolio value = cash + Σ(shares × price) over tickers priced today.

        Args:
            prices: Ticker -> price for the day. Held tickers absent from this
                    mapping contribute nothing to the value.
        """
        invested = sum(
            holding.market_value(prices[ticker])
            for ticker, holding in self._holdings.items()
            if ticker in prices
        )
        return self._cash + invested

    def buy(self, ticker: str, dollars: float, price: float, day: pd.Timestamp) -> Trade | None:
        """
        Spend up to `dollars` on whole shares of `ticker`.

        Returns:
            The Trade appended to the ledger, or None if not even one share fits.

        Raises:
            ValueError: If price is not positive.
        """
        if not price > 0:
            raise ValueError(f"Cannot buy {ticker} at non-positive price {price}")

        shares = math.floor(dollars / price)
        if shares <= 0:
            return None

        self._cash -= shares * price
        holding = self._holdings.setdefault(ticker, Holding(ticker=ticker, shares=0))
        holding.shares += shares

        trade = Trade(date=day, ticker=ticker, action=BUY, shares=shares, price=price)
        self._trades.append(trade)
        logger.debug("%s BUY %d %s @ %.4f", day.date(), shares, ticker, price)
        return trade

    def sell_all(self, ticker: str, price: float, day: pd.Timestamp) -> Trade | None:
        """
        Liquidate the full position in `ticker`.

        Returns:
            The Trade appended to the ledger, or None if nothing is held.
        """
        holding = self._holdings.get(ticker)
        if holding is None or holding.shares <= 0:
            return None
        if not price > 0:
            raise ValueError(f"Cannot sell {ticker} at non-positive price {price}")

        shares = holding.shares
        self._cash += shares * price
        holding.shares = 0
        del self._holdings[ticker]

        trade = Trade(date=day, ticker=ticker, action=SELL, shares=shares, price=price)
        self._trades.append(trade)
        logger.debug("%s SELL %d %s @ %.4f", day.date(), shares, ticker, price)
        return trade

    def liquidate(self, prices: dict[str, float], day: pd.Timestamp) -> list[Trade]:
        """
        Sell every holding that has a price today; unpriced holdings are kept.

        Returns:
            SELL trades in ticker order.
        """
        trades = []
        for ticker in sorted(self._holdings):
            if ticker in prices:
                trade = self.sell_all(ticker, prices[ticker], day)
                if trade is not None:
                    trades.append(trade)
            else:
                logger.debug("%s: %s has no price, kept through liquidation", day.date(), ticker)
        return trades

    def invest(
        self,
        dollar_targets: dict[str, float],
        prices: dict[str, float],
        day: pd.Timestamp,
    ) -> list[Trade]:
        """
        Buy whole shares for each ticker's dollar target, in mapping order.

        Args:
            dollar_targets: Ticker -> dollars to spend. Every ticker must be priced.
            prices: Ticker -> price for the day.
            day: Trading day.

        Returns:
            BUY trades actually executed (targets below one share are skipped).
        """
        trades = []
        for ticker, dollars in dollar_targets.items():
            trade = self.buy(ticker, dollars, prices[ticker], day)
            if trade is not None:
                trades.append(trade)
        return trades
