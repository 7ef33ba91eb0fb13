"""
Tests for portfolio_engine/config/reference_data.py

These tests verify that the shipped reference tables parse into immutable
objects, that bucket lookups behave for mapped and unmapped tickers, and that
malformed tables are rejected with ValueError.
"""

import json
from datetime import date

import pytest

from portfolio_engine.config.reference_data import (
    REFERENCE_DIR,
    get_reference_data,
    load_reference_data,
)


def test_shipped_tables_load():
    """Test that the packaged JSON files parse into a complete ReferenceData."""
    reference = load_reference_data()

    assert reference.regimes.version == "2024.1"
    assert reference.regimes.baseline_regime == "monetary_dominance"
    assert reference.regimes.projected_regime == "fiscal_activism"
    assert len(reference.regimes.periods) == 5
    assert len(reference.scenarios) == 5
    assert [s.market_move for s in reference.market_shocks] == [-10, -20, -30, 10, 20]


def test_regime_periods_sorted_by_start():
    """Test that periods come back in chronological order."""
    periods = load_reference_data().regimes.periods
    starts = [p.start_date for p in periods]
    assert starts == sorted(starts)
    assert periods[0].start_date == date(1973, 1, 1)


def test_stagflation_scenario_impacts():
    """Test the bucket impacts of the 1970s Stagflation scenario."""
    scenario = next(s for s in load_reference_data().scenarios if s.name == "1970s Stagflation")

    assert scenario.impact_for("equity") == -45.0
    assert scenario.impact_for("bond") == -35.0
    assert scenario.impact_for("commodity") == 120.0
    assert scenario.impact_for("crypto") == -60.0
    assert scenario.impact_for("other") == 0.0


def test_scenario_impacts_are_read_only():
    """Test that scenario impact tables cannot be mutated at runtime."""
    scenario = load_reference_data().scenarios[0]
    with pytest.raises(TypeError):
        scenario.impacts["equity"] = 0.0


def test_stress_bucket_lookup():
    """Test bucket membership, case-insensitivity and the 'other' fallback."""
    buckets = load_reference_data().buckets

    assert buckets.stress_bucket_for("SPY") == "equity"
    assert buckets.stress_bucket_for("tlt") == "bond"
    assert buckets.stress_bucket_for("GLD") == "commodity"
    assert buckets.stress_bucket_for("IBIT") == "crypto"
    assert buckets.stress_bucket_for("ZZZZ") == "other"


def test_tilt_bucket_lookup():
    """Test defensive/growth membership and None for untilted tickers."""
    buckets = load_reference_data().buckets

    assert buckets.tilt_bucket_for("TLT") == "defensive"
    assert buckets.tilt_bucket_for("QQQ") == "growth"
    assert buckets.tilt_bucket_for("SPY") is None


def test_regime_aliases_map_to_multiplier_sets():
    """Test that every macro regime alias points at a defined multiplier set."""
    buckets = load_reference_data().buckets
    for macro, tilt in buckets.regime_aliases.items():
        assert tilt in buckets.regime_multipliers, macro
    assert buckets.regime_multipliers[buckets.neutral_regime]["growth"] == 1.0


def test_get_reference_data_is_cached():
    """Test that the process-wide tables are parsed once."""
    assert get_reference_data() is get_reference_data()


def _copy_reference_dir(tmp_path):
    for name in ("regimes.json", "stress_scenarios.json", "asset_buckets.json"):
        (tmp_path / name).write_text((REFERENCE_DIR / name).read_text())
    return tmp_path


def test_alternate_tables_from_directory(tmp_path):
    """Test that callers can load an alternate regime table."""
    directory = _copy_reference_dir(tmp_path)
    payload = json.loads((directory / "regimes.json").read_text())
    payload["version"] = "test"
    payload["periods"] = payload["periods"][:1]
    (directory / "regimes.json").write_text(json.dumps(payload))

    reference = load_reference_data(directory)

    assert reference.regimes.version == "test"
    assert len(reference.regimes.periods) == 1


def test_unknown_scenario_bucket_rejected(tmp_path):
    """Test that a scenario naming an unknown bucket fails to load."""
    directory = _copy_reference_dir(tmp_path)
    payload = json.loads((directory / "stress_scenarios.json").read_text())
    payload["scenarios"][0]["impacts"]["real_estate"] = -20
    (directory / "stress_scenarios.json").write_text(json.dumps(payload))

    with pytest.raises(ValueError, match="unknown buckets"):
        load_reference_data(directory)


def test_inverted_regime_period_rejected(tmp_path):
    """Test that a period ending before it starts fails to load."""
    directory = _copy_reference_dir(tmp_path)
    payload = json.loads((directory / "regimes.json").read_text())
    payload["periods"][0]["end_date"] = "1960-01-01"
    (directory / "regimes.json").write_text(json.dumps(payload))

    with pytest.raises(ValueError, match="ends before it starts"):
        load_reference_data(directory)


def test_missing_file_rejected(tmp_path):
    """Test that a directory without the tables raises ValueError."""
    with pytest.raises(ValueError, match="Failed to load reference table"):
        load_reference_data(tmp_path)


def test_historical_periods_load():
    """Test the crisis windows: two fixed windows and a trailing 12-month one."""
    periods = load_reference_data().historical_periods

    assert [p.id for p in periods] == ["covid-2020", "bear-2022", "normal"]
    covid = periods[0]
    assert covid.window(date(2030, 1, 1)) == (date(2020, 2, 19), date(2020, 3, 23))
    assert covid.recovery_days == 148
    assert periods[1].recovery_days is None
    assert periods[2].window(date(2024, 6, 30)) == (date(2023, 7, 1), date(2024, 6, 30))


def test_historical_period_without_trailing_days_rejected(tmp_path):
    """Test that a trailing window must be a positive number of days."""
    directory = _copy_reference_dir(tmp_path)
    payload = json.loads((directory / "stress_scenarios.json").read_text())
    payload["historical_periods"][2]["trailing_days"] = 0
    (directory / "stress_scenarios.json").write_text(json.dumps(payload))

    with pytest.raises(ValueError, match="positive trailing_days"):
        load_reference_data(directory)


def test_historical_period_missing_dates_rejected(tmp_path):
    directory = _copy_reference_dir(tmp_path)
    payload = json.loads((directory / "stress_scenarios.json").read_text())
    del payload["historical_periods"][0]["end_date"]
    (directory / "stress_scenarios.json").write_text(json.dumps(payload))

    with pytest.raises(ValueError, match="missing field"):
        load_reference_data(directory)
