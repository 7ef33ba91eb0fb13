"""
Inverse-volatility weights with a macro-regime tilt.

**Conceptual**: Each asset is weighted in inverse proportion to its
volatility, so calmer assets carry more capital and every asset contributes a
comparable amount of stand-alone risk. The weights are then tilted toward
"defensive" holdings (bonds, gold, TIPS) or "growth" holdings (high-beta tech)
depending on the regime, and renormalized.

The weighting is a heuristic: it does not solve for equal risk
contributions with the covariance matrix and does not cluster assets. The
correlation matrix is reported alongside the weights (and used for the
expected-volatility estimate) but does not influence the weights.

**Mathematical**:
    raw_i      = 1 / max(σ_i, floor)
    w_i        = raw_i / Σ_j raw_j
    tilted_i   = w_i * m(regime, bucket(i))     (m = 1 for untilted tickers)
    final_i    = tilted_i / Σ_j tilted_j
    σ_portfolio = sqrt(Σ_i Σ_j final_i final_j σ_i σ_j ρ_ij)

**Regimes**: multiplier sets are keyed by tilt regime (low_vol, normal,
high_vol, crisis). Macro regimes from the RegimeClassifier are mapped through
AssetBuckets.regime_aliases; a label with no multiplier set uses the neutral
set (all multipliers 1).
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

import numpy as np
import pandas as pd

from portfolio_engine.analytics.correlation import CorrelationEngine
from portfolio_engine.analytics.regimes import RegimeClassifier
from portfolio_engine.config.reference_data import AssetBuckets
from portfolio_engine.config.settings import EngineSettings
from portfolio_engine.data.loaders import load_price_panel
from portfolio_engine.data.schemas import validate_tickers
from portfolio_engine.utils.errors import InputValidationError
from portfolio_engine.utils.math import compute_annualized_volatility, compute_return_series
from portfolio_engine.utils.time import Clock, get_real_clock, today
from portfolio_engine.venues.base import PriceSeriesProvider

logger = logging.getLogger(__name__)

WEIGHT_DECIMALS = 2
CORRELATION_DECIMALS = 3


@dataclass
class OptimizationResult:
    """
    Output of an optimization run.

    Attributes:
        weights: Ticker -> weight in percent (2 decimals, sums to 100).
        regime: Regime label the tilt was resolved from (as requested or classified).
        applied_regime: Multiplier set actually applied.
        expected_volatility: Annualized portfolio volatility (decimal), or
                             None when no correlation matrix was available.
        volatilities: Ticker -> annualized volatility (decimal).
        correlation_matrix: Ticker × ticker correlations (3 decimals), if computed.
        low_confidence_pairs: Correlation pairs reported as 0 for lack of data.
    """
    weights: dict[str, float]
    regime: str
    applied_regime: str
    volatilities: dict[str, float]
    expected_volatility: Optional[float] = None
    correlation_matrix: Optional[pd.DataFrame] = None
    low_confidence_pairs: frozenset = frozenset()


def inverse_volatility_weights(volatilities: Mapping[str, float], floor: float) -> dict[str, float]:
    """Weights proportional to 1 / max(vol, floor), as fractions summing to 1."""
    inverse = {ticker: 1.0 / max(float(vol), floor) for ticker, vol in volatilities.items()}
    total = sum(inverse.values())
    return {ticker: value / total for ticker, value in inverse.items()}


def to_percent_weights(fractions: Mapping[str, float], decimals: int = WEIGHT_DECIMALS) -> dict[str, float]:
    """
    Round fractional weights to percentages that still sum to exactly 100.

    The rounding residual is assigned to the largest weight.
    """
    rounded = {ticker: round(100.0 * w, decimals) for ticker, w in fractions.items()}
    residual = round(100.0 - sum(rounded.values()), decimals)
    if residual and rounded:
        largest = max(rounded, key=rounded.get)
        rounded[largest] = round(rounded[largest] + residual, decimals)
    return rounded


def expected_portfolio_volatility(
    weights: Mapping[str, float],
    volatilities: Mapping[str, float],
    correlation: pd.DataFrame,
) -> float:
    """sqrt(w' Σ w) with Σ_ij = σ_i σ_j ρ_ij; weights are fractions."""
    tickers = list(weights)
    w = np.array([weights[t] for t in tickers])
    sigma = np.array([volatilities[t] for t in tickers])
    rho = correlation.loc[tickers, tickers].to_numpy(dtype=float)
    variance = float(w @ (np.outer(sigma, sigma) * rho) @ w)
    return float(np.sqrt(max(variance, 0.0)))


class RiskParityOptimizer:
    """
    Inverse-volatility optimizer with regime multipliers.

    Example:
        >>> reference = get_reference_data()
        >>> optimizer = RiskParityOptimizer(reference.buckets,
        ...                                 classifier=RegimeClassifier(reference.regimes))
        >>> optimizer.optimize({"SPY": 0.18, "TLT": 0.12, "GLD": 0.15}, regime="high_vol").weights
    """

    def __init__(
        self,
        buckets: AssetBuckets,
        engine_settings: EngineSettings | None = None,
        classifier: RegimeClassifier | None = None,
        clock: Clock | None = None,
    ):
        self.buckets = buckets
        self.engine_settings = engine_settings or EngineSettings()
        self.classifier = classifier
        self.clock = clock or get_real_clock()

    def resolve_regime(self, regime: str | None = None, as_of=None) -> str:
        """
        Pick the regime label for a run.

        An explicit label wins. Otherwise the classifier labels `as_of` (or the
        clock's today). Without a classifier the neutral regime is used.
        """
        if regime is not None:
            return regime
        if self.classifier is None:
            return self.buckets.neutral_regime
        day = as_of if as_of is not None else today(self.clock)
        return self.classifier.classify(day)

    def multipliers_for(self, regime: str) -> tuple[str, Mapping[str, float]]:
        """Return (applied tilt regime, {"growth": m, "defensive": m})."""
        multipliers = self.buckets.regime_multipliers
        tilt = self.buckets.regime_aliases.get(regime, regime)
        if tilt not in multipliers:
            logger.warning("Unknown regime '%s'; using neutral multipliers (%s)",
                           regime, self.buckets.neutral_regime)
            tilt = self.buckets.neutral_regime
        return tilt, multipliers[tilt]

    def apply_regime(self, weights: Mapping[str, float], regime: str) -> tuple[str, dict[str, float]]:
        """Scale growth/defensive weights by the regime's multipliers and renormalize."""
        tilt, multipliers = self.multipliers_for(regime)
        adjusted = {}
        for ticker, weight in weights.items():
            bucket = self.buckets.tilt_bucket_for(ticker)
            adjusted[ticker] = weight * (multipliers.get(bucket, 1.0) if bucket else 1.0)
        total = sum(adjusted.values())
        return tilt, {ticker: value / total for ticker, value in adjusted.items()}

    def optimize(
        self,
        volatilities: Mapping[str, float],
        regime: str | None = None,
        as_of=None,
        correlation: pd.DataFrame | None = None,
        low_confidence_pairs: Iterable[tuple[str, str]] = (),
    ) -> OptimizationResult:
        """
        Derive regime-tilted inverse-volatility weights.

        Args:
            volatilities: Ticker -> annualized volatility (decimal, >= 0).
            regime: Regime label; resolved from as_of / the clock when omitted.
            as_of: Date used to classify the regime when no label is given.
            correlation: Optional correlation matrix for the expected-volatility estimate.
            low_confidence_pairs: Passed through to the result.

        Returns:
            OptimizationResult with percent weights summing to 100.

        Raises:
            InputValidationError: If tickers are malformed or a volatility is
                                  negative or not finite.
        """
        tickers = validate_tickers(volatilities.keys(), minimum=1)
        vols = {}
        for ticker, vol in zip(tickers, volatilities.values()):
            vol = float(vol)
            if not np.isfinite(vol) or vol < 0:
                raise InputValidationError(f"{ticker}: volatility must be a non-negative number, got: {vol}")
            vols[ticker] = vol

        label = self.resolve_regime(regime, as_of)
        base = inverse_volatility_weights(vols, self.engine_settings.volatility_floor)
        applied, tilted = self.apply_regime(base, label)

        expected = None
        if correlation is not None:
            expected = expected_portfolio_volatility(tilted, vols, correlation)

        weights = to_percent_weights(tilted)
        logger.info("Optimized %d tickers for regime %s (%s): %s", len(weights), label, applied, weights)

        return OptimizationResult(
            weights=weights,
            regime=label,
            applied_regime=applied,
            volatilities=vols,
            expected_volatility=expected,
            correlation_matrix=correlation,
            low_confidence_pairs=frozenset(low_confidence_pairs),
        )

    def estimate_volatilities(self, prices: pd.DataFrame) -> dict[str, float]:
        """
        Annualized volatility of each column's daily log returns.

        A ticker with fewer than two returns is assigned
        engine_settings.default_volatility.
        """
        periods = self.engine_settings.trading_days_per_year
        vols = {}
        for ticker in prices.columns:
            returns = compute_return_series(prices[ticker].dropna().sort_index(), kind="log")
            if len(returns) < 2:
                logger.warning("%s: fewer than 2 returns; assuming volatility %.2f",
                               ticker, self.engine_settings.default_volatility)
                vols[ticker] = self.engine_settings.default_volatility
            else:
                vols[ticker] = compute_annualized_volatility(returns, periods)
        return vols

    def optimize_from_prices(
        self,
        prices: pd.DataFrame,
        regime: str | None = None,
        as_of=None,
    ) -> OptimizationResult:
        """
        Estimate volatilities and correlations from prices, then optimize.

        Args:
            prices: Wide price table (index = date, columns = tickers, NaN = missing).
            regime: Regime label; resolved from as_of / the clock when omitted.
            as_of: Date used to classify the regime; defaults to the clock's today.
        """
        tickers = validate_tickers(prices.columns, minimum=2)
        prices = prices.set_axis(tickers, axis=1)
        vols = self.estimate_volatilities(prices)

        correlation = CorrelationEngine(self.engine_settings.min_correlation_points).compute(prices)
        matrix = correlation.matrix.round(CORRELATION_DECIMALS)

        return self.optimize(
            vols,
            regime=regime,
            as_of=as_of,
            correlation=matrix,
            low_confidence_pairs=correlation.low_confidence,
        )

    def optimize_from_provider(
        self,
        provider: PriceSeriesProvider,
        tickers: Iterable[str],
        start,
        end,
        regime: str | None = None,
    ) -> OptimizationResult:
        """Fetch prices over [start, end] and optimize (see optimize_from_prices)."""
        tickers = validate_tickers(tickers, minimum=2)
        panel = load_price_panel(provider, tickers, start, end)
        return self.optimize_from_prices(panel.prices, regime=regime)
