#!/usr/bin/env python3
"""
Run a full portfolio analysis over local price files.

**Purpose**: Loads one CSV per ticker from a directory, then runs the analysis
pipeline (backtest, metrics, Monte Carlo projection, stress test, correlation,
optimization) for an allocation and date range given on the command line.

**Usage**:
    python actions/run_portfolio_analysis.py SPY=50 QQQ=50 --start 2020-01-01 --end 2020-12-31
    python actions/run_portfolio_analysis.py SPY=60 TLT=30 GLD=10 --start 2015-01-01 --end 2024-12-31 \\
        --strategy equal_weight_rebalance --frequency quarterly --benchmark SPY --json out.json

**Input files**: <price-dir>/<TICKER>.csv with columns `date`, `close_price`
and optionally `adjusted_close`, `volume`.

**Exit codes**:
  - 0: Every step completed
  - 1: Invalid arguments or request
  - 2: One or more steps failed or were skipped (the rest are still reported)
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to Python path so we can import portfolio_engine
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from portfolio_engine.config.settings import get_settings
from portfolio_engine.orchestration.pipeline import (
    STEP_ORDER,
    AnalysisPipeline,
    AnalysisReport,
    AnalysisRequest,
    report_to_dict,
)
from portfolio_engine.strategies.base import INITIAL_WEIGHTINGS, REBALANCE_FREQUENCIES, STRATEGY_NAMES
from portfolio_engine.utils.errors import InputValidationError
from portfolio_engine.utils.logging_setup import configure_logging
from portfolio_engine.venues.memory_provider import InMemoryPriceProvider


def parse_allocation(pairs: list[str]) -> dict[str, float]:
    """
    Parse TICKER=WEIGHT pairs into an allocation mapping.

    Raises:
        ValueError: If a pair is malformed.
    """
    allocation = {}
    for pair in pairs:
        ticker, sep, weight = pair.partition("=")
        if not sep or not ticker.strip():
            raise ValueError(f"Expected TICKER=WEIGHT, got: '{pair}'")
        try:
            allocation[ticker.strip().upper()] = float(weight)
        except ValueError:
            raise ValueError(f"Weight for {ticker} is not a number: '{weight}'")
    return allocation


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Backtest, project and stress-test a portfolio allocation",
        epilog="""
Examples:
  # 50/50 buy-and-hold over 2020
  python actions/run_portfolio_analysis.py SPY=50 QQQ=50 --start 2020-01-01 --end 2020-12-31

  # Quarterly equal-weight rebalancing with a benchmark, results written as JSON
  python actions/run_portfolio_analysis.py SPY=60 TLT=40 --start 2015-01-01 --end 2024-12-31 \\
      --strategy equal_weight_rebalance --frequency quarterly --benchmark SPY --json out.json
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("allocation", nargs="+", help="TICKER=WEIGHT pairs, weights in percent summing to 100")
    parser.add_argument("--start", required=True, help="Start date YYYY-MM-DD")
    parser.add_argument("--end", required=True, help="End date YYYY-MM-DD")
    parser.add_argument("--capital", type=float, default=100_000.0, help="Initial capital (default: 100000)")
    parser.add_argument("--strategy", choices=STRATEGY_NAMES, default="buy_hold")
    parser.add_argument("--frequency", choices=REBALANCE_FREQUENCIES, default="monthly",
                        help="Rebalance frequency for equal_weight_rebalance")
    parser.add_argument("--weighting", choices=INITIAL_WEIGHTINGS, default="target",
                        help="Day-0 capital split (default: target weights)")
    parser.add_argument("--benchmark", default=None, help="Benchmark ticker for beta/alpha")
    parser.add_argument("--years", type=int, default=10, help="Monte Carlo horizon in years (default: 10)")
    parser.add_argument("--simulations", type=int, default=None, help="Monte Carlo paths")
    parser.add_argument("--seed", type=int, default=None, help="Monte Carlo seed")
    parser.add_argument("--regime", default=None, help="Optimizer regime (default: classify today)")
    parser.add_argument("--price-dir", default="data/prices", help="Directory of <TICKER>.csv files")
    parser.add_argument("--json", dest="json_path", default=None, help="Write the full report to this file")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser.parse_args(argv)


def print_report(report: AnalysisReport) -> None:
    """Print a human-readable summary of the report."""
    print("=" * 72)
    print("Portfolio Analysis")
    print("=" * 72)

    if report.backtest is not None:
        m = report.backtest.metrics
        print(f"Final value:        {m.final_value:>14,.2f}   (from {m.initial_value:,.2f})")
        print(f"Total return:       {100 * m.total_return:>13.2f}%")
        print(f"Annualized return:  {100 * m.annualized_return:>13.2f}%")
        print(f"Volatility:         {100 * m.volatility:>13.2f}%")
        print(f"Sharpe / Sortino:   {m.sharpe_ratio:>7.2f} / {m.sortino_ratio:.2f}")
        print(f"Max drawdown:       {100 * m.max_drawdown:>13.2f}%")
        recovery = "not recovered" if m.recovery_duration is None else f"recovered in {m.recovery_duration}d"
        print(f"  {m.drawdown_duration}d peak to trough, {recovery}; Ulcer Index {100 * m.ulcer_index:.2f}%")
        if m.beta is not None:
            print(f"Beta / Alpha:       {m.beta:>7.2f} / {100 * m.alpha:.2f}%")
            print(f"Information ratio:  {m.information_ratio:>7.2f}")
        print(f"Trades:             {len(report.backtest.trades):>14d}")
        for warning in report.backtest.warnings:
            print(f"  ! {warning.message}")
        print()

    if report.monte_carlo is not None:
        mc = report.monte_carlo
        print(f"Monte Carlo ({mc.simulations} paths, {mc.years} years, seed {mc.seed}):")
        for p, value in mc.percentile_bands.items():
            print(f"  P{p:<3d} {value:>16,.2f}")
        print(f"  P(loss) {100 * mc.summary.probability_of_loss:.1f}%")
        print()

    if report.stress_test is not None:
        print("Stress scenarios:")
        for result in report.stress_test.scenarios + report.stress_test.hypothetical:
            print(f"  {result.name:<32s} {result.estimated_impact_percent:>8.2f}%")
        for replay in report.stress_test.historical:
            print(f"  {replay.period.name:<32s} {replay.portfolio_return_percent:>8.2f}%"
                  f"   (max drawdown {replay.portfolio_drawdown_percent:.2f}%)")
        for period_id in report.stress_test.unavailable_periods:
            print(f"  {period_id:<32s}      n/a   (no prices in window)")
        print()

    if report.optimization is not None:
        opt = report.optimization
        print(f"Optimized weights (regime {opt.regime} -> {opt.applied_regime}):")
        for ticker, weight in opt.weights.items():
            print(f"  {ticker:<8s} {weight:>6.2f}%")
        if opt.expected_volatility is not None:
            print(f"  Expected volatility {100 * opt.expected_volatility:.2f}%")
        print()

    for step in STEP_ORDER:
        if step in report.failures:
            failure = report.failures[step]
            print(f"✗ {step}: {failure.error_type}: {failure.message}", file=sys.stderr)
        elif step in report.skipped:
            print(f"- {step}: skipped ({report.skipped[step]} did not complete)", file=sys.stderr)


def main(argv=None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level)

    try:
        allocation = parse_allocation(args.allocation)
        provider = InMemoryPriceProvider.from_csv_directory(args.price_dir)
        request = AnalysisRequest(
            allocation=allocation,
            start_date=args.start,
            end_date=args.end,
            initial_capital=args.capital,
            strategy=args.strategy,
            rebalance_frequency=args.frequency,
            initial_weighting=args.weighting,
            benchmark=args.benchmark,
            projection_years=args.years,
            simulations=args.simulations,
            seed=args.seed,
            regime=args.regime,
        )
        pipeline = AnalysisPipeline(provider, request, settings=settings)
    except (InputValidationError, ValueError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    report = pipeline.run()
    print_report(report)

    if args.json_path:
        output = Path(args.json_path)
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w") as f:
            json.dump(report_to_dict(report), f, indent=2)
        print(f"Saved report to {output}")

    return 0 if report.complete else 2


if __name__ == "__main__":
    sys.exit(main())
