"""Pytest configuration and shared fixtures."""
import pytest
import pandas as pd
import numpy as np

from backtests.errors import NoDataForDate
from quant_data.store import PriceStore


SYMBOLS = ["AAA", "BBB", "CCC", "DDD", "EEE", "FFF", "GGG", "HHH"]


@pytest.fixture
def price_panel():
    """Random-walk close prices: 300 business days x 8 symbols."""
    np.random.seed(42)
    dates = pd.bdate_range(start="2022-01-03", periods=300)
    drift = np.linspace(-0.0005, 0.0008, len(SYMBOLS))
    vol = np.linspace(0.01, 0.03, len(SYMBOLS))
    rets = np.random.normal(drift, vol, size=(len(dates), len(SYMBOLS)))
    prices = 100.0 * np.cumprod(1.0 + rets, axis=0)
    return pd.DataFrame(prices, index=dates, columns=SYMBOLS)


@pytest.fixture
def store(price_panel):
    """PriceStore over the random-walk panel."""
    return PriceStore(price_panel, name="synthetic")


@pytest.fixture
def small_prices():
    """Three symbols over five trading days with hand-checkable moves."""
    dates = pd.bdate_range(start="2024-01-01", periods=5)
    return pd.DataFrame(
        {
            "A": [100.0, 110.0, 121.0, 121.0, 121.0],
            "B": [100.0, 100.0, 100.0, 100.0, 100.0],
            "C": [100.0, 90.0, 90.0, 90.0, 90.0],
        },
        index=dates,
    )


@pytest.fixture
def sample_returns_series():
    """Sample returns series for testing."""
    dates = pd.date_range(start="2024-01-01", periods=100, freq="D")
    np.random.seed(42)
    returns = np.random.normal(0.001, 0.02, 100)  # Mean 0.1%, std 2%
    return pd.Series(returns, index=dates)


class FixedSignal:
    """Test signal returning the same scores every date, or preset scores per date."""

    def __init__(self, scores=None, by_date=None, name="fixed", lookback=0):
        self.scores = scores or {}
        self.by_date = {pd.Timestamp(d): s for d, s in (by_date or {}).items()}
        self.name = name
        self.lookback = lookback

    def score(self, universe, date):
        if self.by_date:
            d = pd.Timestamp(date)
            if d not in self.by_date:
                raise NoDataForDate("no preset scores", date=d)
            s = self.by_date[d]
        else:
            s = self.scores
        return pd.Series(s, dtype=float).reindex(list(universe))


@pytest.fixture
def fixed_signal():
    """Factory for FixedSignal instances."""
    return FixedSignal
