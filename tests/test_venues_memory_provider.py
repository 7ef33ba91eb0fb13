"""
Tests for portfolio_engine/venues/memory_provider.py
"""

from datetime import date

import pandas as pd
import pytest

from portfolio_engine.data.schemas import PriceBar, SchemaValidationError
from portfolio_engine.venues.memory_provider import FRAME_COLUMNS, InMemoryPriceProvider


def make_provider():
    frame = pd.DataFrame({
        'date': ['2024-01-04', '2024-01-02', '2024-01-03'],
        'close_price': [102.0, 100.0, 101.0],
    })
    return InMemoryPriceProvider({'spy': frame})


def test_fetch_returns_sorted_contract_columns():
    """Test that frames are normalised to the contract columns, sorted by date."""
    df = make_provider().fetch_daily_prices('SPY', pd.Timestamp('2024-01-01'), pd.Timestamp('2024-01-31'))

    assert list(df.columns) == FRAME_COLUMNS
    assert df['close_price'].tolist() == [100.0, 101.0, 102.0]
    assert df['adjusted_close'].isna().all()


def test_fetch_is_inclusive_and_case_insensitive():
    """Test inclusive bounds and ticker case folding."""
    df = make_provider().fetch_daily_prices(' spy ', pd.Timestamp('2024-01-03'), pd.Timestamp('2024-01-04'))

    assert len(df) == 2


def test_fetch_unknown_ticker_returns_empty_frame():
    """Test that a missing ticker is an empty frame, not an error."""
    df = make_provider().fetch_daily_prices('QQQ', pd.Timestamp('2024-01-01'), pd.Timestamp('2024-01-31'))

    assert df.empty
    assert list(df.columns) == FRAME_COLUMNS


def test_fetch_rejects_inverted_range():
    with pytest.raises(ValueError):
        make_provider().fetch_daily_prices('SPY', pd.Timestamp('2024-02-01'), pd.Timestamp('2024-01-01'))


def test_fetch_returns_independent_copies():
    """Test that mutating a fetched frame does not leak into later reads."""
    provider = make_provider()
    first = provider.fetch_daily_prices('SPY', pd.Timestamp('2024-01-01'), pd.Timestamp('2024-01-31'))
    first.loc[0, 'close_price'] = -1.0

    second = provider.fetch_daily_prices('SPY', pd.Timestamp('2024-01-01'), pd.Timestamp('2024-01-31'))

    assert second.loc[0, 'close_price'] == 100.0


def test_invalid_frame_rejected_at_construction():
    with pytest.raises(SchemaValidationError):
        InMemoryPriceProvider({'SPY': pd.DataFrame({'date': ['2024-01-02']})})


def test_from_bars_groups_by_ticker():
    """Test that bars for several tickers become one frame each."""
    provider = InMemoryPriceProvider.from_bars([
        PriceBar('SPY', date(2024, 1, 2), 100.0),
        PriceBar('TLT', date(2024, 1, 2), 90.0),
        PriceBar('SPY', date(2024, 1, 3), 101.0),
    ])

    assert provider.tickers == ['SPY', 'TLT']
    df = provider.fetch_daily_prices('SPY', pd.Timestamp('2024-01-01'), pd.Timestamp('2024-01-31'))
    assert len(df) == 2


def test_from_csv_directory(tmp_path):
    """Test loading <TICKER>.csv files from a directory."""
    pd.DataFrame({'date': ['2024-01-02'], 'close_price': [50.0]}).to_csv(tmp_path / 'GLD.csv', index=False)

    provider = InMemoryPriceProvider.from_csv_directory(tmp_path)

    assert provider.tickers == ['GLD']


def test_from_csv_directory_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        InMemoryPriceProvider.from_csv_directory(tmp_path / 'nope')
