"""
Retryable multi-step portfolio analysis.

**Conceptual**: A full analysis chains several independent computations over
the same request: backtest, metrics, Monte Carlo projection, stress test,
correlation and optimization. Each is a named step whose output is stored as
soon as it finishes. A step that raises is recorded as a StepFailure and does
not invalidate the outputs already stored; steps that depend on it are marked
skipped. retry(step) re-runs a single step (and then any dependents that were
skipped because of it) reusing the cached upstream outputs.

**Step graph**:
    backtest ──> metrics ──> stress_test
        └──────────────────────┘
    monte_carlo            (prices only)
    correlation ──> optimization

Request validation (allocation, dates, capital, strategy) happens in the
constructor and raises InputValidationError immediately: a malformed request
never produces a partial report.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

import pandas as pd

from portfolio_engine.analytics.correlation import CorrelationEngine, CorrelationResult
from portfolio_engine.analytics.monte_carlo import MonteCarloProjector, MonteCarloResult
from portfolio_engine.analytics.optimizer import (
    CORRELATION_DECIMALS,
    OptimizationResult,
    RiskParityOptimizer,
)
from portfolio_engine.analytics.regimes import (
    RegimeClassifier,
    RegimePerformance,
    analyze_performance_by_regime,
)
from portfolio_engine.analytics.risk_metrics import PerformanceMetrics
from portfolio_engine.analytics.stress_testing import (
    HistoricalReplayResult,
    StressTester,
    StressTestResult,
)
from portfolio_engine.backtesting.engine import BacktestParams, BacktestResult, run_backtest
from portfolio_engine.config.reference_data import RegimePeriod, ReferenceData, get_reference_data
from portfolio_engine.config.settings import Settings, get_settings
from portfolio_engine.data.loaders import PricePanel, load_price_panel, select_prices
from portfolio_engine.data.schemas import (
    AllocationInput,
    validate_allocation,
    validate_capital,
    validate_date_range,
)
from portfolio_engine.strategies.base import make_strategy
from portfolio_engine.utils.errors import InputValidationError, PortfolioEngineError
from portfolio_engine.utils.time import Clock, get_real_clock
from portfolio_engine.venues.base import PriceSeriesProvider

logger = logging.getLogger(__name__)

STEP_ORDER = ("backtest", "metrics", "monte_carlo", "stress_test", "correlation", "optimization")

STEP_DEPENDENCIES = {
    "backtest": (),
    "metrics": ("backtest",),
    "monte_carlo": (),
    "stress_test": ("backtest", "metrics"),
    "correlation": (),
    "optimization": ("correlation",),
}

COMPLETED = "completed"
FAILED = "failed"
SKIPPED = "skipped"
PENDING = "pending"


@dataclass
class AnalysisRequest:
    """
    Everything needed to run a full analysis.

    Attributes:
        allocation: Target weights in percent.
        start_date: Backtest / history start (inclusive).
        end_date: Backtest / history end (inclusive).
        initial_capital: Starting cash for the backtest and projection.
        strategy: "buy_hold" or "equal_weight_rebalance".
        rebalance_frequency: "monthly" or "quarterly".
        initial_weighting: "target" or "equal" day-0 split.
        benchmark: Optional benchmark ticker for beta/alpha.
        projection_years: Monte Carlo horizon.
        simulations: Monte Carlo path count (settings default when None).
        seed: Monte Carlo base seed.
        regime: Explicit optimizer regime; classified from the clock when None.
    """
    allocation: AllocationInput
    start_date: Any
    end_date: Any
    initial_capital: float = 100_000.0
    strategy: str = "buy_hold"
    rebalance_frequency: str = "monthly"
    initial_weighting: str = "target"
    benchmark: Optional[str] = None
    projection_years: int = 10
    simulations: Optional[int] = None
    seed: Optional[int] = None
    regime: Optional[str] = None


@dataclass(frozen=True)
class StepFailure:
    """
    Record of a step that raised.

    Attributes:
        step: Step name.
        error_type: Exception class name.
        message: Exception message.
        attempts: Number of times the step has been attempted.
        retryable: False for input validation failures.
    """
    step: str
    error_type: str
    message: str
    attempts: int = 1
    retryable: bool = True


@dataclass
class MetricsReport:
    """Output of the metrics step."""
    performance: PerformanceMetrics
    by_regime: dict[str, RegimePerformance]
    regime_periods: list[RegimePeriod]


@dataclass
class StressReport:
    """
    Output of the stress_test step.

    Scenario and hypothetical impacts use the backtest's ending weights;
    crisis-window replays hold the requested allocation. Window ids with no
    usable prices are listed in unavailable_periods.
    """
    weights: dict[str, float]
    scenarios: list[StressTestResult]
    hypothetical: list[StressTestResult] = field(default_factory=list)
    historical: list[HistoricalReplayResult] = field(default_factory=list)
    unavailable_periods: list[str] = field(default_factory=list)


@dataclass
class AnalysisReport:
    """Snapshot of a pipeline's outputs, failures and skipped steps."""
    generated_at: datetime
    results: dict[str, Any]
    failures: dict[str, StepFailure]
    skipped: dict[str, str]

    @property
    def complete(self) -> bool:
        return not self.failures and not self.skipped and all(s in self.results for s in STEP_ORDER)

    @property
    def backtest(self) -> Optional[BacktestResult]:
        return self.results.get("backtest")

    @property
    def metrics(self) -> Optional[MetricsReport]:
        return self.results.get("metrics")

    @property
    def monte_carlo(self) -> Optional[MonteCarloResult]:
        return self.results.get("monte_carlo")

    @property
    def stress_test(self) -> Optional[StressReport]:
        return self.results.get("stress_test")

    @property
    def correlation(self) -> Optional[CorrelationResult]:
        return self.results.get("correlation")

    @property
    def optimization(self) -> Optional[OptimizationResult]:
        return self.results.get("optimization")


class AnalysisPipeline:
    """
    Runs the analysis steps for one request against one price provider.

    Example:
        >>> pipeline = AnalysisPipeline(provider, AnalysisRequest(
        ...     allocation={"SPY": 60, "TLT": 40},
        ...     start_date="2020-01-01", end_date="2020-12-31"))
        >>> report = pipeline.run()
        >>> report.failures            # {} when every step succeeded
        >>> pipeline.retry("monte_carlo")
    """

    def __init__(
        self,
        provider: PriceSeriesProvider,
        request: AnalysisRequest,
        settings: Settings | None = None,
        reference: ReferenceData | None = None,
        clock: Clock | None = None,
    ):
        self.provider = provider
        self.request = request
        self.settings = settings or get_settings()
        self.reference = reference or get_reference_data()
        self.clock = clock or get_real_clock()

        self.allocation = validate_allocation(request.allocation)
        self.start, self.end = validate_date_range(request.start_date, request.end_date)
        self.capital = validate_capital(request.initial_capital)
        make_strategy(request.strategy, request.rebalance_frequency, request.initial_weighting)
        self.tickers = [e.ticker for e in self.allocation]

        self.classifier = RegimeClassifier(self.reference.regimes)
        self.results: dict[str, Any] = {}
        self.failures: dict[str, StepFailure] = {}
        self.skipped: dict[str, str] = {}
        self._attempts: dict[str, int] = {}
        self._panel: Optional[PricePanel] = None

        self._steps: dict[str, Callable[[], Any]] = {
            "backtest": self._run_backtest,
            "metrics": self._run_metrics,
            "monte_carlo": self._run_monte_carlo,
            "stress_test": self._run_stress_test,
            "correlation": self._run_correlation,
            "optimization": self._run_optimization,
        }

    def status(self, step: str) -> str:
        """One of completed, failed, skipped, pending."""
        if step in self.results:
            return COMPLETED
        if step in self.failures:
            return FAILED
        if step in self.skipped:
            return SKIPPED
        return PENDING

    def run(self, steps=STEP_ORDER) -> AnalysisReport:
        """Run the given steps (all by default) in dependency order."""
        for step in steps:
            self.run_step(step)
        return self.report()

    def run_step(self, step: str) -> Any:
        """
        Run one step unless it already completed.

        Returns:
            The step's output, or None if it failed or was skipped.

        Raises:
            KeyError: If the step name is unknown.
        """
        if step not in self._steps:
            raise KeyError(f"Unknown step '{step}'. Expected one of {STEP_ORDER}.")
        if step in self.results:
            return self.results[step]

        blocked = [dep for dep in STEP_DEPENDENCIES[step] if dep not in self.results]
        for dependency in blocked:
            if dependency in self.failures or dependency in self.skipped:
                self.skipped[step] = dependency
                logger.warning("Step %s skipped: dependency %s did not complete", step, dependency)
                return None
        for dependency in blocked:
            if self.run_step(dependency) is None and dependency not in self.results:
                self.skipped[step] = dependency
                return None

        self._attempts[step] = self._attempts.get(step, 0) + 1
        self.skipped.pop(step, None)
        logger.debug("Step %s: attempt %d", step, self._attempts[step])

        try:
            output = self._steps[step]()
        except Exception as e:
            failure = StepFailure(
                step=step,
                error_type=type(e).__name__,
                message=str(e),
                attempts=self._attempts[step],
                retryable=not isinstance(e, InputValidationError),
            )
            self.failures[step] = failure
            logger.error("Step %s failed (%s): %s", step, failure.error_type, failure.message)
            return None

        self.failures.pop(step, None)
        self.results[step] = output
        logger.info("Step %s completed", step)
        return output

    def retry(self, step: str) -> Any:
        """
        Re-run a failed or skipped step, then any dependents it unblocks.

        Cached outputs of other steps are reused as-is.

        Raises:
            PortfolioEngineError: If the step's last failure was an input
                                  validation error.
        """
        failure = self.failures.get(step)
        if failure is not None and not failure.retryable:
            raise PortfolioEngineError(
                f"Step '{step}' failed input validation ({failure.message}); not retrying."
            )

        self.results.pop(step, None)
        self.failures.pop(step, None)
        output = self.run_step(step)

        if step in self.results:
            for dependent in STEP_ORDER:
                if self.skipped.get(dependent) == step:
                    del self.skipped[dependent]
                    self.run_step(dependent)
        return output

    def report(self) -> AnalysisReport:
        return AnalysisReport(
            generated_at=self.clock.now(),
            results=dict(self.results),
            failures=dict(self.failures),
            skipped=dict(self.skipped),
        )

    def _price_panel(self) -> PricePanel:
        if self._panel is None:
            self._panel = load_price_panel(self.provider, self.tickers, self.start, self.end)
        return self._panel

    def _benchmark_values(self) -> Optional[pd.Series]:
        if not self.request.benchmark:
            return None
        ticker = self.request.benchmark.strip().upper()
        frame = self.provider.fetch_daily_prices(ticker, self.start, self.end)
        if frame.empty:
            logger.warning("Benchmark %s has no data; beta/alpha not computed", ticker)
            return None
        return select_prices(frame, ticker)

    def _run_backtest(self) -> BacktestResult:
        params = BacktestParams(
            allocation=self.allocation,
            start_date=self.start,
            end_date=self.end,
            initial_capital=self.capital,
            strategy=self.request.strategy,
            rebalance_frequency=self.request.rebalance_frequency,
            initial_weighting=self.request.initial_weighting,
        )
        return run_backtest(
            self._price_panel(),
            params,
            benchmark_values=self._benchmark_values(),
            engine_settings=self.settings.engine,
            data_quality_settings=self.settings.data_quality,
        )

    def _run_metrics(self) -> MetricsReport:
        backtest: BacktestResult = self.results["backtest"]
        return MetricsReport(
            performance=backtest.metrics,
            by_regime=analyze_performance_by_regime(
                backtest.value_series, self.classifier, self.settings.engine.trading_days_per_year,
            ),
            regime_periods=self.classifier.periods_in_range(self.start, self.end),
        )

    def _run_monte_carlo(self) -> MonteCarloResult:
        projector = MonteCarloProjector(self.settings.monte_carlo, self.settings.engine)
        return projector.project_from_prices(
            self._price_panel().prices,
            self.allocation,
            self.request.projection_years,
            simulations=self.request.simulations,
            initial_value=self.capital,
            seed=self.request.seed,
        )

    def _run_stress_test(self) -> StressReport:
        backtest: BacktestResult = self.results["backtest"]
        metrics: MetricsReport = self.results["metrics"]
        tester = StressTester(
            self.reference.scenarios,
            self.reference.buckets,
            self.reference.market_shocks,
            historical_periods=self.reference.historical_periods,
            clock=self.clock,
        )
        weights = backtest.current_weights()
        hypothetical = []
        if metrics.performance.beta is not None:
            hypothetical = tester.run_hypothetical(metrics.performance.beta)

        prices_by_window = {
            period_id: load_price_panel(self.provider, self.tickers, start, end).prices
            for period_id, (start, end) in tester.historical_windows().items()
        }
        historical = tester.run_historical_periods(self.allocation, prices_by_window, capital=self.capital)
        replayed = {result.period.id for result in historical}
        return StressReport(
            weights=weights,
            scenarios=tester.run(weights),
            hypothetical=hypothetical,
            historical=historical,
            unavailable_periods=[p.id for p in tester.historical_periods if p.id not in replayed],
        )

    def _run_correlation(self) -> CorrelationResult:
        engine = CorrelationEngine(self.settings.engine.min_correlation_points)
        return engine.compute(self._price_panel().prices)

    def _run_optimization(self) -> OptimizationResult:
        correlation: CorrelationResult = self.results["correlation"]
        optimizer = RiskParityOptimizer(
            self.reference.buckets,
            engine_settings=self.settings.engine,
            classifier=self.classifier,
            clock=self.clock,
        )
        return optimizer.optimize(
            optimizer.estimate_volatilities(self._price_panel().prices),
            regime=self.request.regime,
            correlation=correlation.matrix.round(CORRELATION_DECIMALS),
            low_confidence_pairs=correlation.low_confidence,
        )


def report_to_dict(report: AnalysisReport) -> dict:
    """JSON-serializable summary of a report (percent units for metrics)."""
    out: dict[str, Any] = {
        "generated_at": report.generated_at.isoformat(),
        "failures": {
            name: {"error_type": f.error_type, "message": f.message, "attempts": f.attempts}
            for name, f in report.failures.items()
        },
        "skipped": dict(report.skipped),
    }

    if report.backtest is not None:
        bt = report.backtest
        out["backtest"] = {
            "metrics": bt.metrics.to_dict(percent=True),
            "portfolio_values": [
                {"date": s.date.strftime("%Y-%m-%d"), "total_value": round(s.total_value, 2)}
                for s in bt.snapshots
            ],
            "final_holdings": dict(bt.final_holdings),
            "cash_remaining": round(bt.cash_remaining, 2),
            "trades": [
                {"date": t.date.strftime("%Y-%m-%d"), "ticker": t.ticker, "action": t.action,
                 "shares": t.shares, "price": t.price}
                for t in bt.trades
            ],
            "warnings": [w.message for w in bt.warnings],
        }

    if report.metrics is not None:
        out["regimes"] = {
            name: {
                "trading_days": perf.trading_days,
                "cumulative_return": 100.0 * perf.cumulative_return,
                "annualized_volatility": 100.0 * perf.annualized_volatility,
                "max_drawdown": 100.0 * perf.max_drawdown,
            }
            for name, perf in report.metrics.by_regime.items()
        }

    if report.monte_carlo is not None:
        mc = report.monte_carlo
        out["monte_carlo"] = {
            "years": mc.years,
            "simulations": mc.simulations,
            "seed": mc.seed,
            "percentiles": {str(p): v for p, v in mc.percentile_bands.items()},
            "summary": {
                "mean": mc.summary.mean_final_value,
                "median": mc.summary.median_final_value,
                "probability_of_loss": mc.summary.probability_of_loss,
                "median_cagr": mc.summary.median_cagr,
            },
        }

    if report.stress_test is not None:
        out["stress_test"] = [
            {"name": r.name, "description": r.description, "estimated_impact": r.estimated_impact_percent}
            for r in report.stress_test.scenarios + report.stress_test.hypothetical
        ]
        out["historical_stress"] = [
            {
                "id": r.period.id,
                "name": r.period.name,
                "start": r.start.strftime("%Y-%m-%d"),
                "end": r.end.strftime("%Y-%m-%d"),
                "portfolio_return": round(r.portfolio_return_percent, 2),
                "portfolio_drawdown": round(r.portfolio_drawdown_percent, 2),
                "dollar_loss": round(r.dollar_loss, 2),
                "market_drawdown": r.period.market_drawdown,
                "recovery_days": r.period.recovery_days,
            }
            for r in report.stress_test.historical
        ]

    if report.correlation is not None:
        out["correlation"] = {
            f"{a}/{b}": value for (a, b), value in report.correlation.as_pairs(decimals=3).items()
        }

    if report.optimization is not None:
        opt = report.optimization
        out["optimization"] = {
            "weights": opt.weights,
            "regime": opt.regime,
            "applied_regime": opt.applied_regime,
            "expected_volatility": None if opt.expected_volatility is None else 100.0 * opt.expected_volatility,
            "volatilities": {t: round(100.0 * v, 2) for t, v in opt.volatilities.items()},
        }

    return out
