"""
Configuration settings for the backtesting and risk-analytics engine.

**Conceptual**: This module provides strongly-typed configuration objects that
load from environment variables (via .env files). All settings are validated
when constructed, so a bad value fails fast at startup rather than halfway
through a Monte Carlo run.

**Why centralized config?**
  - Single source of truth for numeric conventions (risk-free rate, trading
    days per year, minimum sample sizes, volatility floor).
  - Easy to test (inject fake settings instead of reading from environment).
  - Caller-facing bounds (maximum simulation count and horizon) live in one place.

This module uses python-dotenv to load .env files and dataclasses for type safety.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load .env from project root (dev/local environments); existing env vars win
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _read_float(name: str, default: float) -> float:
    """Read a float environment variable, raising ValueError naming the variable."""
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got: {raw}")


def _read_int(name: str, default: int) -> int:
    """Read an integer environment variable, raising ValueError naming the variable."""
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw}")


@dataclass(frozen=True)
class EngineSettings:
    """
    Numeric conventions shared by the backtest and metrics components.

    **Conventions**:
      - Returns are annualized with a fixed trading-day count (252 by default),
        never with calendar days.
      - The risk-free rate is annualized (0.04 = 4%) and used by Sharpe,
        Sortino and alpha.

    Attributes:
        risk_free_rate: Annualized risk-free rate (decimal).
        trading_days_per_year: Trading days used for annualization.
        min_correlation_points: Minimum aligned return pairs before a
                                correlation is computed instead of reported as 0.
        volatility_floor: Minimum volatility used by inverse-volatility weighting.
        default_volatility: Volatility assumed for a ticker with fewer than
                            two returns.
    """
    risk_free_rate: float = 0.04
    trading_days_per_year: int = 252
    min_correlation_points: int = 20
    volatility_floor: float = 0.05
    default_volatility: float = 0.20

    def __post_init__(self):
        """Validate settings after initialization."""
        if self.trading_days_per_year <= 0:
            raise ValueError(
                f"TRADING_DAYS_PER_YEAR must be positive, got: {self.trading_days_per_year}"
            )
        if self.min_correlation_points < 2:
            raise ValueError(
                f"MIN_CORRELATION_POINTS must be at least 2, got: {self.min_correlation_points}"
            )
        if self.volatility_floor <= 0:
            raise ValueError(
                f"VOLATILITY_FLOOR must be positive, got: {self.volatility_floor}"
            )
        if self.default_volatility <= 0:
            raise ValueError(
                f"DEFAULT_VOLATILITY must be positive, got: {self.default_volatility}"
            )

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """
        Load engine settings from environment variables.

        **Environment variables** (all optional):
          - RISK_FREE_RATE (default 0.04)
          - TRADING_DAYS_PER_YEAR (default 252)
          - MIN_CORRELATION_POINTS (default 20)
          - VOLATILITY_FLOOR (default 0.05)
          - DEFAULT_VOLATILITY (default 0.20)

        Returns:
            EngineSettings with values loaded from environment.

        Raises:
            ValueError: If a variable cannot be parsed or fails validation.
        """
        return cls(
            risk_free_rate=_read_float("RISK_FREE_RATE", 0.04),
            trading_days_per_year=_read_int("TRADING_DAYS_PER_YEAR", 252),
            min_correlation_points=_read_int("MIN_CORRELATION_POINTS", 20),
            volatility_floor=_read_float("VOLATILITY_FLOOR", 0.05),
            default_volatility=_read_float("DEFAULT_VOLATILITY", 0.20),
        )


@dataclass(frozen=True)
class MonteCarloSettings:
    """
    Configuration for bootstrap projections.

    **Bounds**: simulation count and horizon are capped so that every
    projection finishes in bounded time; requests above the caps are rejected
    as invalid input rather than silently truncated.

    Attributes:
        default_simulations: Simulation count used when a caller does not specify one.
        max_simulations: Upper bound accepted from callers.
        max_years: Upper bound on projection horizon in years.
        workers: Number of worker threads paths are sharded across.
        seed: Base seed for reproducible runs; None draws fresh entropy.
    """
    default_simulations: int = 1000
    max_simulations: int = 10000
    max_years: int = 30
    workers: int = 4
    seed: Optional[int] = None

    def __post_init__(self):
        """Validate settings after initialization."""
        if self.default_simulations <= 0:
            raise ValueError(
                f"MONTE_CARLO_SIMULATIONS must be positive, got: {self.default_simulations}"
            )
        if self.max_simulations < self.default_simulations:
            raise ValueError(
                "MONTE_CARLO_MAX_SIMULATIONS must be >= MONTE_CARLO_SIMULATIONS, "
                f"got: {self.max_simulations} < {self.default_simulations}"
            )
        if self.max_years <= 0:
            raise ValueError(f"MONTE_CARLO_MAX_YEARS must be positive, got: {self.max_years}")
        if self.workers <= 0:
            raise ValueError(f"MONTE_CARLO_WORKERS must be positive, got: {self.workers}")

    @classmethod
    def from_env(cls) -> "MonteCarloSettings":
        """
        Load Monte Carlo settings from environment variables.

        **Environment variables** (all optional):
          - MONTE_CARLO_SIMULATIONS (default 1000)
          - MONTE_CARLO_MAX_SIMULATIONS (default 10000)
          - MONTE_CARLO_MAX_YEARS (default 30)
          - MONTE_CARLO_WORKERS (default 4)
          - MONTE_CARLO_SEED (default unset = non-deterministic)

        Returns:
            MonteCarloSettings with values loaded from environment.
        """
        seed_str = os.getenv("MONTE_CARLO_SEED", "")
        seed = None
        if seed_str:
            try:
                seed = int(seed_str)
            except ValueError:
                raise ValueError(f"MONTE_CARLO_SEED must be an integer, got: {seed_str}")

        return cls(
            default_simulations=_read_int("MONTE_CARLO_SIMULATIONS", 1000),
            max_simulations=_read_int("MONTE_CARLO_MAX_SIMULATIONS", 10000),
            max_years=_read_int("MONTE_CARLO_MAX_YEARS", 30),
            workers=_read_int("MONTE_CARLO_WORKERS", 4),
            seed=seed,
        )


@dataclass(frozen=True)
class DataQualitySettings:
    """
    Thresholds for data-completeness warnings.

    Attributes:
        coverage_warning_threshold: A ticker (or the whole calendar) observing
                                    fewer than this fraction of the expected
                                    trading days gets a PartialCoverageWarning.
    """
    coverage_warning_threshold: float = 0.8

    def __post_init__(self):
        """Validate settings after initialization."""
        if not 0.0 < self.coverage_warning_threshold <= 1.0:
            raise ValueError(
                "COVERAGE_WARNING_THRESHOLD must be in (0, 1], "
                f"got: {self.coverage_warning_threshold}"
            )

    @classmethod
    def from_env(cls) -> "DataQualitySettings":
        """Load data-quality settings from COVERAGE_WARNING_THRESHOLD (default 0.8)."""
        return cls(
            coverage_warning_threshold=_read_float("COVERAGE_WARNING_THRESHOLD", 0.8),
        )


@dataclass(frozen=True)
class Settings:
    """
    Global settings for the engine.

    **Conceptual**: Top-level settings object aggregating all subsystem
    settings. Components accept the sub-object they need as an explicit
    argument; only entrypoints (CLI, pipeline) call get_settings().

    Attributes:
        engine: Numeric conventions for backtests, metrics and optimization.
        monte_carlo: Projection defaults and bounds.
        data_quality: Coverage warning thresholds.
        log_level: Logging level name applied by command-line entrypoints.
    """
    engine: EngineSettings = field(default_factory=EngineSettings)
    monte_carlo: MonteCarloSettings = field(default_factory=MonteCarloSettings)
    data_quality: DataQualitySettings = field(default_factory=DataQualitySettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Load global settings from environment variables.

        Returns:
            Settings object with all subsystem settings loaded from environment.

        Raises:
            ValueError: If any variable is malformed or out of range.
        """
        return cls(
            engine=EngineSettings.from_env(),
            monte_carlo=MonteCarloSettings.from_env(),
            data_quality=DataQualitySettings.from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


# Convenience singleton for accessing settings throughout the application
_default_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the global settings singleton (lazy-loaded from environment).

    **Why lazy loading?**
      - Settings are only read when actually needed (not at module import).
      - Tests can call reset_settings() and change environment variables
        before the next access.

    Returns:
        Global Settings singleton.
    """
    global _default_settings

    if _default_settings is None:
        _default_settings = Settings.from_env()

    return _default_settings


def reset_settings():
    """
    Reset the global settings singleton (for testing).

    Returns:
        None (side effect: clears global settings cache).
    """
    global _default_settings
    _default_settings = None
