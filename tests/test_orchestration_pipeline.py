"""
Tests for portfolio_engine/orchestration/pipeline.py

These tests run the full step graph against an in-memory provider and check
partial-failure behaviour: a failed step keeps completed outputs, dependents
are skipped, and retry() re-runs only what is needed.
"""

import json
from datetime import datetime, timezone

import pandas as pd
import pytest

from portfolio_engine.analytics.synthetic_data import generate_price_panel, panel_to_frames
from portfolio_engine.config.settings import MonteCarloSettings, Settings
from portfolio_engine.orchestration.pipeline import (
    COMPLETED,
    FAILED,
    PENDING,
    SKIPPED,
    STEP_ORDER,
    AnalysisPipeline,
    AnalysisRequest,
    report_to_dict,
)
from portfolio_engine.utils.errors import InputValidationError, PortfolioEngineError
from portfolio_engine.utils.time import get_frozen_clock
from portfolio_engine.venues.memory_provider import InMemoryPriceProvider

CLOCK = get_frozen_clock(datetime(2021, 6, 1, tzinfo=timezone.utc))


def make_provider(tickers=('SPY', 'TLT', 'QQQ'), n_days=252, seed=17):
    prices = generate_price_panel(list(tickers), start='2020-01-02', n_days=n_days, seed=seed)
    return InMemoryPriceProvider(panel_to_frames(prices))


class FlakyProvider:
    """Provider that raises on its first `failures` fetches, then delegates."""

    def __init__(self, inner, failures=1):
        self.inner = inner
        self.failures = failures
        self.calls = 0

    def fetch_daily_prices(self, ticker, start, end):
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("price service unavailable")
        return self.inner.fetch_daily_prices(ticker, start, end)


def make_request(**overrides):
    kwargs = dict(
        allocation={'SPY': 60, 'TLT': 40},
        start_date='2020-01-01',
        end_date='2020-12-31',
        projection_years=1,
        simulations=50,
        seed=3,
    )
    kwargs.update(overrides)
    return AnalysisRequest(**kwargs)


def make_pipeline(provider=None, **overrides):
    settings = Settings(monte_carlo=MonteCarloSettings(workers=2))
    return AnalysisPipeline(provider or make_provider(), make_request(**overrides), settings=settings, clock=CLOCK)


def test_full_run_completes_every_step():
    report = make_pipeline(benchmark='QQQ').run()

    assert report.complete
    assert set(report.results) == set(STEP_ORDER)
    assert report.generated_at == CLOCK.now()
    assert report.metrics.performance is report.backtest.metrics
    assert report.metrics.by_regime  # 2020 spans both regimes
    assert len(report.stress_test.scenarios) == 5
    assert report.stress_test.hypothetical  # beta available from benchmark
    assert report.correlation.tickers == ['SPY', 'TLT']
    assert sum(report.optimization.weights.values()) == pytest.approx(100.0, abs=0.01)


def test_optimizer_regime_comes_from_clock():
    """Test that 2021-06-01 falls in the fiscal_activism interval."""
    report = make_pipeline().run()

    assert report.optimization.regime == 'fiscal_activism'
    assert report.optimization.applied_regime == 'high_vol'


def test_no_benchmark_means_no_hypothetical_shocks():
    report = make_pipeline().run()

    assert report.backtest.metrics.beta is None
    assert report.stress_test.hypothetical == []


def test_invalid_request_raises_immediately():
    with pytest.raises(InputValidationError):
        make_pipeline(allocation={'SPY': 60, 'TLT': 30})
    with pytest.raises(InputValidationError):
        make_pipeline(strategy='momentum')
    with pytest.raises(InputValidationError):
        make_pipeline(start_date='2021-01-01', end_date='2020-01-01')


def test_provider_failure_keeps_other_steps_and_retry_recovers():
    """
    Test partial failure and retry.

    Scenario: the provider fails its very first fetch (the backtest's).
    Expected: backtest fails; metrics and stress_test are skipped; the
    independent steps complete. retry('backtest') then completes the
    backtest and its skipped dependents.
    """
    provider = FlakyProvider(make_provider(), failures=1)
    pipeline = make_pipeline(provider)

    report = pipeline.run()

    assert not report.complete
    assert report.failures['backtest'].error_type == 'ConnectionError'
    assert report.failures['backtest'].retryable
    assert report.skipped == {'metrics': 'backtest', 'stress_test': 'backtest'}
    assert pipeline.status('monte_carlo') == COMPLETED
    assert pipeline.status('metrics') == SKIPPED
    assert pipeline.status('backtest') == FAILED
    monte_carlo = report.monte_carlo

    pipeline.retry('backtest')
    retried = pipeline.report()

    assert retried.complete
    assert retried.monte_carlo is monte_carlo
    assert retried.failures == {}


def test_validation_failure_is_not_retryable():
    """
    Test that an input validation failure inside a step cannot be retried.

    Scenario: single-ticker allocation; correlation needs two tickers.
    """
    pipeline = make_pipeline(allocation={'SPY': 100})

    report = pipeline.run()

    assert report.failures['correlation'].retryable is False
    assert report.skipped['optimization'] == 'correlation'
    assert report.backtest is not None
    with pytest.raises(PortfolioEngineError, match="not retrying"):
        pipeline.retry('correlation')


def test_run_step_runs_dependencies_first():
    pipeline = make_pipeline()

    pipeline.run_step('stress_test')

    assert pipeline.status('backtest') == COMPLETED
    assert pipeline.status('metrics') == COMPLETED
    assert pipeline.status('correlation') == PENDING


def test_completed_steps_are_cached():
    pipeline = make_pipeline()

    first = pipeline.run_step('monte_carlo')

    assert pipeline.run_step('monte_carlo') is first


def test_unknown_step():
    with pytest.raises(KeyError):
        make_pipeline().run_step('forecast')


def test_report_to_dict_is_json_serializable():
    report = make_pipeline(benchmark='QQQ').run()

    data = json.loads(json.dumps(report_to_dict(report)))

    assert data['failures'] == {}
    assert data['backtest']['portfolio_values'][0]['date'] == '2020-01-02'
    assert set(data['monte_carlo']['percentiles']) == {'5', '25', '50', '75', '95'}
    assert data['correlation']['SPY/SPY'] == 1.0
    assert data['optimization']['regime'] == 'fiscal_activism'


def test_stress_step_replays_crisis_windows():
    """
    Test that the stress step replays the configured crisis windows.

    Scenario: prices cover 2020 only; the clock is 2021-06-01.
    Expected: the COVID window and the trailing 12 months are replayed on the
    requested allocation; the 2022 bear market has no prices and is listed
    as unavailable.
    """
    report = make_pipeline().run()

    stress = report.stress_test
    assert [r.period.id for r in stress.historical] == ['covid-2020', 'normal']
    assert stress.unavailable_periods == ['bear-2022']

    covid = stress.historical[0]
    assert covid.start >= pd.Timestamp('2020-02-19')
    assert covid.end <= pd.Timestamp('2020-03-23')
    assert set(covid.asset_breakdown) == {'SPY', 'TLT'}
    assert covid.portfolio_drawdown_percent >= 0.0
    assert stress.historical[1].start >= pd.Timestamp('2020-06-01')

    data = json.loads(json.dumps(report_to_dict(report)))
    assert [entry['id'] for entry in data['historical_stress']] == ['covid-2020', 'normal']
    assert data['historical_stress'][0]['recovery_days'] == 148
