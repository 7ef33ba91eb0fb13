"""
Versioned reference tables: macro regimes, stress scenarios, asset buckets.

**Conceptual**: The regime calendar, the historical shock table and the
ticker-to-bucket memberships are static research data, not code. They ship as
JSON files under `config/reference/`, are parsed once per process into
immutable objects, and are passed explicitly into RegimeClassifier,
StressTester and RiskParityOptimizer. Tests can build alternate tables with
the same dataclasses without touching the files.

**Files**:
  - regimes.json: {version, baseline_regime, projected_regime, periods[]}
  - stress_scenarios.json: {version, scenarios[], historical_periods[],
    hypothetical_market_shocks[]}
  - asset_buckets.json: {version, stress_buckets, tilt_buckets,
    regime_multipliers, neutral_regime, regime_aliases}
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

REFERENCE_DIR = Path(__file__).parent / "reference"

STRESS_BUCKETS = ("equity", "bond", "commodity", "crypto")


@dataclass(frozen=True)
class RegimePeriod:
    """
    Historical record of one macro regime interval (inclusive on both ends).

    Attributes:
        start_date: First calendar day of the interval.
        end_date: Last calendar day of the interval.
        regime: Macro regime label (e.g. "monetary_dominance").
        inflation_rate: Average inflation over the period, in percent.
        volatility_level: Typical equity volatility (VIX-like level) over the period.
    """
    start_date: date
    end_date: date
    regime: str
    inflation_rate: float
    volatility_level: float

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class RegimeTable:
    """Regime intervals sorted by start date plus the fallback labels."""
    periods: tuple[RegimePeriod, ...]
    baseline_regime: str
    projected_regime: str
    version: str = "unversioned"


@dataclass(frozen=True)
class StressScenario:
    """
    Named historical shock with percentage impacts per asset bucket.

    Attributes:
        name: Scenario name (e.g. "1970s Stagflation").
        description: One-line description shown to users.
        impacts: Bucket -> impact percent (e.g. {"equity": -45.0}).
                 Buckets missing from the mapping have zero impact.
        regime: Macro regime the scenario is associated with, if any.
    """
    name: str
    description: str
    impacts: Mapping[str, float]
    regime: Optional[str] = None

    def impact_for(self, bucket: str) -> float:
        return float(self.impacts.get(bucket, 0.0))


@dataclass(frozen=True)
class HistoricalPeriod:
    """
    Named crisis window replayed against actual prices.

    A window is either fixed (start_date and end_date) or trailing
    (`trailing_days` calendar days up to the as-of date).

    Attributes:
        id: Stable identifier (e.g. "covid-2020").
        name: Display name.
        description: One-line description shown to users.
        market_drawdown: Broad-market drawdown over the window, in percent.
        recovery_days: Days the broad market took to recover, None if it had
                       not recovered (or the window is trailing).
    """
    id: str
    name: str
    description: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    trailing_days: Optional[int] = None
    market_drawdown: float = 0.0
    recovery_days: Optional[int] = None

    def window(self, as_of: date) -> tuple[date, date]:
        """Return (start, end) of the window, resolving trailing windows at `as_of`."""
        if self.trailing_days is not None:
            return as_of - timedelta(days=self.trailing_days), as_of
        return self.start_date, self.end_date


@dataclass(frozen=True)
class MarketShock:
    """Hypothetical broad-market move in percent, scaled by portfolio beta."""
    name: str
    description: str
    market_move: float


@dataclass(frozen=True)
class AssetBuckets:
    """
    Static ticker memberships used for stress tests and regime tilts.

    Attributes:
        stress_buckets: Bucket name -> tickers, for scenario impacts.
        tilt_buckets: "defensive"/"growth" -> tickers, for regime multipliers.
        regime_multipliers: Tilt regime -> {"growth": x, "defensive": y}.
        neutral_regime: Multiplier set used for unknown regime labels.
        regime_aliases: Macro regime label -> tilt regime label.
    """
    stress_buckets: Mapping[str, frozenset]
    tilt_buckets: Mapping[str, frozenset]
    regime_multipliers: Mapping[str, Mapping[str, float]]
    neutral_regime: str = "normal"
    regime_aliases: Mapping[str, str] = field(default_factory=dict)

    def stress_bucket_for(self, ticker: str) -> str:
        """Return the stress bucket of a ticker, or "other" when unmapped."""
        symbol = ticker.upper()
        for bucket, members in self.stress_buckets.items():
            if symbol in members:
                return bucket
        return "other"

    def tilt_bucket_for(self, ticker: str) -> Optional[str]:
        """Return "defensive", "growth", or None for untilted tickers."""
        symbol = ticker.upper()
        for bucket, members in self.tilt_buckets.items():
            if symbol in members:
                return bucket
        return None


@dataclass(frozen=True)
class ReferenceData:
    """All reference tables loaded together."""
    regimes: RegimeTable
    scenarios: tuple[StressScenario, ...]
    market_shocks: tuple[MarketShock, ...]
    buckets: AssetBuckets
    historical_periods: tuple[HistoricalPeriod, ...] = ()


def _read_json(path: Path) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to load reference table {path}: {e}")


def _parse_regimes(payload: dict) -> RegimeTable:
    periods = []
    for entry in payload["periods"]:
        period = RegimePeriod(
            start_date=date.fromisoformat(entry["start_date"]),
            end_date=date.fromisoformat(entry["end_date"]),
            regime=entry["regime"],
            inflation_rate=float(entry["inflation_rate"]),
            volatility_level=float(entry["volatility_level"]),
        )
        if period.end_date < period.start_date:
            raise ValueError(
                f"Regime period {entry['start_date']}..{entry['end_date']} ends before it starts"
            )
        periods.append(period)

    periods.sort(key=lambda p: p.start_date)
    return RegimeTable(
        periods=tuple(periods),
        baseline_regime=payload["baseline_regime"],
        projected_regime=payload["projected_regime"],
        version=payload.get("version", "unversioned"),
    )


def _parse_scenarios(payload: dict) -> tuple[tuple[StressScenario, ...], tuple[MarketShock, ...]]:
    scenarios = []
    for entry in payload["scenarios"]:
        impacts = {bucket: float(value) for bucket, value in entry["impacts"].items()}
        unknown = set(impacts) - set(STRESS_BUCKETS)
        if unknown:
            raise ValueError(f"Scenario '{entry['name']}' has unknown buckets: {sorted(unknown)}")
        scenarios.append(StressScenario(
            name=entry["name"],
            description=entry["description"],
            impacts=MappingProxyType(impacts),
            regime=entry.get("regime"),
        ))

    shocks = tuple(
        MarketShock(
            name=entry["name"],
            description=entry["description"],
            market_move=float(entry["market_move"]),
        )
        for entry in payload.get("hypothetical_market_shocks", [])
    )
    return tuple(scenarios), shocks


def _parse_historical_periods(payload: dict) -> tuple[HistoricalPeriod, ...]:
    periods = []
    for entry in payload.get("historical_periods", []):
        trailing = entry.get("trailing_days")
        if trailing is not None:
            if int(trailing) <= 0:
                raise ValueError(f"Historical period '{entry['id']}' needs positive trailing_days")
            start = end = None
        else:
            start = date.fromisoformat(entry["start_date"])
            end = date.fromisoformat(entry["end_date"])
            if end <= start:
                raise ValueError(f"Historical period '{entry['id']}' ends before it starts")

        recovery = entry.get("recovery_days")
        periods.append(HistoricalPeriod(
            id=entry["id"],
            name=entry["name"],
            description=entry["description"],
            start_date=start,
            end_date=end,
            trailing_days=int(trailing) if trailing is not None else None,
            market_drawdown=float(entry.get("market_drawdown", 0.0)),
            recovery_days=int(recovery) if recovery is not None else None,
        ))
    return tuple(periods)


def _parse_buckets(payload: dict) -> AssetBuckets:
    def freeze(groups: dict) -> Mapping[str, frozenset]:
        return MappingProxyType({
            name: frozenset(t.upper() for t in tickers) for name, tickers in groups.items()
        })

    multipliers = MappingProxyType({
        regime: MappingProxyType({k: float(v) for k, v in values.items()})
        for regime, values in payload["regime_multipliers"].items()
    })
    neutral = payload.get("neutral_regime", "normal")
    if neutral not in multipliers:
        raise ValueError(f"neutral_regime '{neutral}' has no multiplier set")

    return AssetBuckets(
        stress_buckets=freeze(payload["stress_buckets"]),
        tilt_buckets=freeze(payload["tilt_buckets"]),
        regime_multipliers=multipliers,
        neutral_regime=neutral,
        regime_aliases=MappingProxyType(dict(payload.get("regime_aliases", {}))),
    )


def load_reference_data(directory: Path = REFERENCE_DIR) -> ReferenceData:
    """
    Parse all reference tables from a directory of JSON files.

    Args:
        directory: Directory containing regimes.json, stress_scenarios.json
                   and asset_buckets.json.

    Returns:
        ReferenceData with immutable tables.

    Raises:
        ValueError: If a file is missing, malformed, or internally inconsistent.
    """
    directory = Path(directory)
    try:
        regimes = _parse_regimes(_read_json(directory / "regimes.json"))
        scenario_payload = _read_json(directory / "stress_scenarios.json")
        scenarios, shocks = _parse_scenarios(scenario_payload)
        historical_periods = _parse_historical_periods(scenario_payload)
        buckets = _parse_buckets(_read_json(directory / "asset_buckets.json"))
    except KeyError as e:
        raise ValueError(f"Reference table in {directory} is missing field {e}")

    logger.debug(
        "Loaded reference data from %s (regimes v%s, %d periods, %d scenarios)",
        directory, regimes.version, len(regimes.periods), len(scenarios),
    )
    return ReferenceData(
        regimes=regimes,
        scenarios=scenarios,
        market_shocks=shocks,
        buckets=buckets,
        historical_periods=historical_periods,
    )


_default_reference: Optional[ReferenceData] = None


def get_reference_data() -> ReferenceData:
    """Return the process-wide reference tables, loading them on first use."""
    global _default_reference

    if _default_reference is None:
        _default_reference = load_reference_data()

    return _default_reference


def reset_reference_data():
    """Clear the cached reference tables (for testing)."""
    global _default_reference
    _default_reference = None
