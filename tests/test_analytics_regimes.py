"""
Tests for portfolio_engine/analytics/regimes.py

These tests verify date lookup against the shipped regime table (inside an
interval, before it, in a gap, after it) and the per-regime performance split.
"""

from datetime import date

import numpy as np
import pandas as pd
import pytest

from portfolio_engine.analytics.regimes import (
    RegimeClassifier,
    analyze_performance_by_regime,
    regime_exposure,
)
from portfolio_engine.config.reference_data import RegimePeriod, RegimeTable, get_reference_data


@pytest.fixture
def classifier():
    return RegimeClassifier(get_reference_data().regimes)


def test_classify_inside_interval(classifier):
    assert classifier.classify('2015-06-30') == 'monetary_dominance'
    assert classifier.classify(date(1975, 1, 1)) == 'fiscal_activism'


def test_classify_bounds_inclusive(classifier):
    """Test that interval start and end dates both belong to the interval."""
    assert classifier.classify(pd.Timestamp('2020-03-01')) == 'fiscal_activism'
    assert classifier.classify(pd.Timestamp('2022-12-31')) == 'fiscal_activism'
    assert classifier.classify('2019-12-31') == 'monetary_dominance'


def test_classify_before_and_in_gap_uses_baseline(classifier):
    assert classifier.classify('1960-01-01') == 'monetary_dominance'
    assert classifier.classify('2007-06-01') == 'monetary_dominance'
    assert classifier.find_period('2007-06-01') is None


def test_classify_after_table_uses_projection(classifier):
    assert classifier.classify('2025-01-01') == 'fiscal_activism'


def test_custom_table_gap_and_projection():
    """Test the lookup policy with distinct baseline and projected labels."""
    table = RegimeTable(
        periods=(
            RegimePeriod(date(2001, 1, 1), date(2001, 12, 31), 'calm', 2.0, 12.0),
            RegimePeriod(date(2000, 1, 1), date(2000, 6, 30), 'stormy', 5.0, 30.0),
        ),
        baseline_regime='baseline',
        projected_regime='future',
    )
    classifier = RegimeClassifier(table)

    assert classifier.classify('2000-03-01') == 'stormy'
    assert classifier.classify('2000-09-01') == 'baseline'
    assert classifier.classify('2002-01-01') == 'future'
    assert classifier.regimes == ['baseline', 'calm', 'future', 'stormy']


def test_classify_series(classifier):
    labels = classifier.classify_series(['2015-01-02', '2021-01-04'])

    assert labels.tolist() == ['monetary_dominance', 'fiscal_activism']
    assert labels.name == 'regime'


def test_periods_in_range(classifier):
    periods = classifier.periods_in_range('2019-06-01', '2020-06-01')

    assert [p.start_date for p in periods] == [date(2010, 1, 1), date(2020, 3, 1)]
    assert classifier.periods_in_range('2007-01-01', '2007-12-31') == []


def test_analyze_performance_by_regime(classifier):
    """
    Test that each daily return is attributed to the regime of its end date.

    Scenario: +10% on 2019-12-31 (monetary), flat on 2020-01-02 (gap ->
    baseline monetary), +10% on 2020-03-02 and 2020-03-03 (fiscal).
    Expected: monetary 2 days / +10%; fiscal 2 days / +21%.
    """
    values = pd.Series(
        [100.0, 110.0, 110.0, 121.0, 133.1],
        index=pd.to_datetime(['2019-12-30', '2019-12-31', '2020-01-02', '2020-03-02', '2020-03-03']),
    )

    results = analyze_performance_by_regime(values, classifier)

    assert set(results) == {'monetary_dominance', 'fiscal_activism'}
    assert results['monetary_dominance'].trading_days == 2
    assert np.isclose(results['monetary_dominance'].cumulative_return, 0.10)
    assert np.isclose(results['fiscal_activism'].cumulative_return, 0.21)
    assert results['fiscal_activism'].max_drawdown == 0.0


def test_analyze_performance_regime_drawdown(classifier):
    values = pd.Series(
        [100.0, 90.0, 99.0],
        index=pd.to_datetime(['2015-03-02', '2015-03-03', '2015-03-04']),
    )

    result = analyze_performance_by_regime(values, classifier)['monetary_dominance']

    assert np.isclose(result.max_drawdown, 0.10)
    assert np.isclose(result.cumulative_return, -0.01)


def test_analyze_performance_short_series(classifier):
    values = pd.Series([100.0], index=pd.to_datetime(['2015-03-02']))
    assert analyze_performance_by_regime(values, classifier) == {}


def test_regime_exposure(classifier):
    values = pd.Series(1.0, index=pd.to_datetime(
        ['2019-12-30', '2019-12-31', '2020-01-02', '2020-03-02', '2020-03-03']))

    exposure = regime_exposure(values, classifier)

    assert np.isclose(exposure['monetary_dominance'], 0.6)
    assert np.isclose(exposure['fiscal_activism'], 0.4)
