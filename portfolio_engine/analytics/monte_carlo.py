"""
Monte Carlo projection of portfolio value by bootstrap resampling.

**Conceptual**: Historical daily returns are treated as an urn of possible
trading days. Each simulated path draws one historical day per future trading
day (uniformly, with replacement) and compounds the portfolio by that day's
weighted return. Drawing the *same* historical day for every asset keeps the
cross-asset correlation structure observed in history.

**Mathematical**: with weights w (fractions summing to 1) and a historical
return matrix R (days × assets), the portfolio return of day d is
    p_d = Σ_i w_i R[d, i]
and a path of H days starting from V_0 is
    V_t = V_0 * Π_{k<=t} (1 + p_{d_k}),   d_k ~ Uniform{0..D-1}
i.e. weights are held constant (rebalanced daily) along the path.

**Parallelism and determinism**: paths are split into shards, one per worker
thread. Worker i draws from np.random.default_rng(base_seed + i), so a fixed
base seed and worker count reproduce identical results regardless of thread
scheduling. Shard outputs are concatenated in worker order before any
percentile is taken.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd
from scipy import stats

from portfolio_engine.config.settings import EngineSettings, MonteCarloSettings
from portfolio_engine.data.schemas import AllocationInput, validate_allocation
from portfolio_engine.utils.errors import InputValidationError, InsufficientDataError
from portfolio_engine.utils.math import compute_return_panel

logger = logging.getLogger(__name__)

DEFAULT_PERCENTILES = (5, 25, 50, 75, 95)


@dataclass(frozen=True)
class MonteCarloSummary:
    """
    Distribution statistics of simulated ending values.

    Attributes:
        mean_final_value: Mean ending value.
        median_final_value: Median ending value.
        std_final_value: Sample standard deviation of ending values.
        min_final_value: Worst simulated ending value.
        max_final_value: Best simulated ending value.
        skewness: Sample skewness of ending values.
        excess_kurtosis: Fisher (excess) kurtosis of ending values.
        probability_of_loss: Share of paths ending below the initial value.
        median_cagr: Annualized growth rate of the median ending value.
    """
    mean_final_value: float
    median_final_value: float
    std_final_value: float
    min_final_value: float
    max_final_value: float
    skewness: float
    excess_kurtosis: float
    probability_of_loss: float
    median_cagr: float


@dataclass
class MonteCarloResult:
    """
    Output of a projection run.

    Attributes:
        percentile_bands: Percentile -> ending value.
        yearly_bands: DataFrame indexed by year (0..horizon), one column per
                      percentile, giving the value distribution at each
                      year-end checkpoint.
        summary: MonteCarloSummary of ending values.
        final_values: Ending value of every path (worker order).
        initial_value: Starting value of every path.
        years: Projection horizon in years.
        simulations: Number of simulated paths.
        seed: Base seed used (recorded even when drawn from fresh entropy).
        paths: Full (simulations × days+1) value matrix when requested.
    """
    percentile_bands: dict[int, float]
    yearly_bands: pd.DataFrame
    summary: MonteCarloSummary
    final_values: np.ndarray
    initial_value: float
    years: int
    simulations: int
    seed: int
    paths: Optional[np.ndarray] = field(default=None, repr=False)


def _simulate_shard(
    portfolio_returns: np.ndarray,
    n_paths: int,
    years: int,
    days_per_year: int,
    initial_value: float,
    seed: int,
    keep_paths: bool,
) -> tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
    """
    Simulate one shard of paths a year at a time.

    Returns:
        (final values, year-end values with year 0 first, full paths or None).
    """
    rng = np.random.default_rng(seed)
    current = np.full(n_paths, float(initial_value))
    checkpoints = np.empty((n_paths, years + 1))
    checkpoints[:, 0] = current

    paths = None
    if keep_paths:
        paths = np.empty((n_paths, years * days_per_year + 1))
        paths[:, 0] = current

    for year in range(years):
        draws = rng.integers(0, len(portfolio_returns), size=(n_paths, days_per_year))
        growth = np.cumprod(1.0 + portfolio_returns[draws], axis=1)
        if paths is not None:
            start = year * days_per_year + 1
            paths[:, start:start + days_per_year] = current[:, None] * growth
        current = current * growth[:, -1]
        checkpoints[:, year + 1] = current

    return current, checkpoints, paths


class MonteCarloProjector:
    """
    Bootstrap projector with path-level sharding across a thread pool.

    Example:
        >>> projector = MonteCarloProjector(MonteCarloSettings(workers=4))
        >>> result = projector.project(returns, {"SPY": 60, "TLT": 40},
        ...                            years=10, simulations=1000, seed=7)
        >>> result.percentile_bands[50]
    """

    def __init__(
        self,
        settings: MonteCarloSettings | None = None,
        engine_settings: EngineSettings | None = None,
    ):
        self.settings = settings or MonteCarloSettings()
        self.engine_settings = engine_settings or EngineSettings()

    def _validate(self, years: int, simulations: int) -> None:
        if isinstance(years, bool) or not isinstance(years, (int, np.integer)):
            raise InputValidationError(f"years must be an integer, got: {years!r}")
        if not 1 <= years <= self.settings.max_years:
            raise InputValidationError(
                f"years must be between 1 and {self.settings.max_years}, got: {years}"
            )
        if not 1 <= simulations <= self.settings.max_simulations:
            raise InputValidationError(
                f"simulations must be between 1 and {self.settings.max_simulations}, got: {simulations}"
            )

    def project(
        self,
        returns: pd.DataFrame,
        weights: AllocationInput,
        years: int,
        simulations: int | None = None,
        initial_value: float = 100_000.0,
        seed: int | None = None,
        percentiles: tuple[int, ...] = DEFAULT_PERCENTILES,
        include_paths: bool = False,
    ) -> MonteCarloResult:
        """
        Project portfolio value forward by same-day bootstrap resampling.

        Args:
            returns: Daily simple returns, index = historical dates, one column
                     per ticker, aligned on common dates (no NaN rows).
            weights: Allocation in percent; every ticker must be a column of `returns`.
            years: Horizon in years (252 trading days each).
            simulations: Number of paths; defaults to settings.default_simulations.
            initial_value: Starting portfolio value.
            seed: Base seed; falls back to settings.seed, then fresh entropy.
            percentiles: Percentiles reported in the bands.
            include_paths: Also return the full path matrix.

        Returns:
            MonteCarloResult.

        Raises:
            InputValidationError: For bad weights, horizon or simulation count.
            InsufficientDataError: If there are no complete historical return days.
        """
        simulations = self.settings.default_simulations if simulations is None else int(simulations)
        self._validate(years, simulations)
        if not initial_value > 0:
            raise InputValidationError(f"initial_value must be positive, got: {initial_value}")

        allocation = validate_allocation(weights)
        tickers = [e.ticker for e in allocation]
        missing = [t for t in tickers if t not in returns.columns]
        if missing:
            raise InputValidationError(f"No return history supplied for: {missing}")

        history = returns[tickers].dropna(how="any")
        if history.empty:
            raise InsufficientDataError("No historical days with returns for every allocated ticker.")

        weight_vector = np.array([e.fraction for e in allocation])
        weight_vector = weight_vector / weight_vector.sum()
        portfolio_returns = history.to_numpy(dtype=float) @ weight_vector

        if seed is None:
            seed = self.settings.seed
        if seed is None:
            seed = int(np.random.SeedSequence().entropy % (2 ** 32))

        periods = self.engine_settings.trading_days_per_year
        n_days = periods * years

        n_workers = min(self.settings.workers, simulations)
        shard_sizes = [len(s) for s in np.array_split(np.arange(simulations), n_workers)]

        logger.debug(
            "Monte Carlo: %d paths x %d days over %d historical days, %d workers, seed %d",
            simulations, n_days, len(portfolio_returns), n_workers, seed,
        )

        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = [
                executor.submit(
                    _simulate_shard,
                    portfolio_returns, size, years, periods,
                    initial_value, seed + worker_index, include_paths,
                )
                for worker_index, size in enumerate(shard_sizes)
            ]
            shards = [f.result() for f in futures]

        final_values = np.concatenate([s[0] for s in shards])
        checkpoint_values = np.concatenate([s[1] for s in shards], axis=0)
        paths = np.concatenate([s[2] for s in shards], axis=0) if include_paths else None

        bands = {p: float(np.percentile(final_values, p)) for p in percentiles}
        yearly = pd.DataFrame(
            {p: np.percentile(checkpoint_values, p, axis=0) for p in percentiles},
            index=pd.RangeIndex(0, years + 1, name="year"),
        )

        summary = self._summarise(final_values, initial_value, years)
        logger.info(
            "Monte Carlo %d paths / %d years: median %.2f, P(loss) %.1f%%",
            simulations, years, summary.median_final_value, 100.0 * summary.probability_of_loss,
        )

        return MonteCarloResult(
            percentile_bands=bands,
            yearly_bands=yearly,
            summary=summary,
            final_values=final_values,
            initial_value=float(initial_value),
            years=years,
            simulations=simulations,
            seed=seed,
            paths=paths,
        )

    def project_from_prices(
        self,
        prices: pd.DataFrame,
        weights: AllocationInput,
        years: int,
        **kwargs,
    ) -> MonteCarloResult:
        """
        Same as project(), starting from a wide price table (date × ticker).

        Returns are taken over the dates on which every ticker is priced.
        """
        tickers = [e.ticker for e in validate_allocation(weights) if e.ticker in prices.columns]
        returns = compute_return_panel(prices[tickers], kind="simple")
        return self.project(returns, weights, years, **kwargs)

    @staticmethod
    def _summarise(final_values: np.ndarray, initial_value: float, years: int) -> MonteCarloSummary:
        median = float(np.median(final_values))
        if len(final_values) > 2 and np.ptp(final_values) > 0:
            skewness = float(stats.skew(final_values))
            kurtosis = float(stats.kurtosis(final_values))
        else:
            skewness = kurtosis = 0.0

        return MonteCarloSummary(
            mean_final_value=float(np.mean(final_values)),
            median_final_value=median,
            std_final_value=float(np.std(final_values, ddof=1)) if len(final_values) > 1 else 0.0,
            min_final_value=float(np.min(final_values)),
            max_final_value=float(np.max(final_values)),
            skewness=skewness,
            excess_kurtosis=kurtosis,
            probability_of_loss=float(np.mean(final_values < initial_value)),
            median_cagr=float((median / initial_value) ** (1.0 / years) - 1.0) if median > 0 else -1.0,
        )
