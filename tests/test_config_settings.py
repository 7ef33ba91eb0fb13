"""
Tests for portfolio_engine/config/settings.py

These tests verify defaults, environment loading and validation of the
frozen settings dataclasses, plus the lazy singleton.
"""

import pytest

from portfolio_engine.config.settings import (
    DataQualitySettings,
    EngineSettings,
    MonteCarloSettings,
    Settings,
    get_settings,
    reset_settings,
)

ENV_VARS = [
    "RISK_FREE_RATE",
    "TRADING_DAYS_PER_YEAR",
    "MIN_CORRELATION_POINTS",
    "VOLATILITY_FLOOR",
    "DEFAULT_VOLATILITY",
    "MONTE_CARLO_SIMULATIONS",
    "MONTE_CARLO_MAX_SIMULATIONS",
    "MONTE_CARLO_MAX_YEARS",
    "MONTE_CARLO_WORKERS",
    "MONTE_CARLO_SEED",
    "COVERAGE_WARNING_THRESHOLD",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every engine variable so defaults apply."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_engine_settings_defaults(clean_env):
    """Test that unset variables fall back to the documented defaults."""
    settings = EngineSettings.from_env()

    assert settings.risk_free_rate == 0.04
    assert settings.trading_days_per_year == 252
    assert settings.min_correlation_points == 20
    assert settings.volatility_floor == 0.05
    assert settings.default_volatility == 0.20


def test_engine_settings_from_env(clean_env):
    """Test that environment variables override defaults."""
    clean_env.setenv("RISK_FREE_RATE", "0.02")
    clean_env.setenv("MIN_CORRELATION_POINTS", "30")

    settings = EngineSettings.from_env()

    assert settings.risk_free_rate == 0.02
    assert settings.min_correlation_points == 30


def test_engine_settings_rejects_unparseable_value(clean_env):
    """Test that a malformed variable raises ValueError naming it."""
    clean_env.setenv("TRADING_DAYS_PER_YEAR", "many")

    with pytest.raises(ValueError, match="TRADING_DAYS_PER_YEAR"):
        EngineSettings.from_env()


def test_engine_settings_rejects_non_positive_floor():
    """Test that a zero volatility floor is rejected at construction."""
    with pytest.raises(ValueError, match="VOLATILITY_FLOOR"):
        EngineSettings(volatility_floor=0.0)


def test_monte_carlo_settings_seed_from_env(clean_env):
    """Test that MONTE_CARLO_SEED is parsed as an integer, unset means None."""
    assert MonteCarloSettings.from_env().seed is None

    clean_env.setenv("MONTE_CARLO_SEED", "42")
    assert MonteCarloSettings.from_env().seed == 42


def test_monte_carlo_settings_max_below_default_rejected():
    """Test that the cap on simulations cannot be below the default count."""
    with pytest.raises(ValueError, match="MONTE_CARLO_MAX_SIMULATIONS"):
        MonteCarloSettings(default_simulations=500, max_simulations=100)


def test_data_quality_threshold_bounds():
    """Test that the coverage threshold must lie in (0, 1]."""
    assert DataQualitySettings(coverage_warning_threshold=1.0).coverage_warning_threshold == 1.0
    with pytest.raises(ValueError, match="COVERAGE_WARNING_THRESHOLD"):
        DataQualitySettings(coverage_warning_threshold=1.5)


def test_settings_are_frozen():
    """Test that settings objects cannot be mutated after construction."""
    settings = Settings()
    with pytest.raises(AttributeError):
        settings.log_level = "DEBUG"


def test_get_settings_singleton_and_reset(clean_env):
    """Test lazy loading, caching, and reset picking up new environment values."""
    first = get_settings()
    assert get_settings() is first

    clean_env.setenv("LOG_LEVEL", "debug")
    assert get_settings().log_level == "INFO"

    reset_settings()
    assert get_settings().log_level == "DEBUG"
