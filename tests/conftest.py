"""
Pytest configuration and fixtures.
"""
import numpy as np
import pytest

from tests.signal_fixtures import FakeDataFetcher, make_bars


@pytest.fixture
def rising_bars():
    """Steadily rising daily bars (60 sessions)."""
    return make_bars(100 + np.arange(60, dtype=float))


@pytest.fixture
def falling_bars():
    """Steadily falling daily bars (60 sessions)."""
    return make_bars(200 - np.arange(60, dtype=float))


@pytest.fixture
def random_walk_bars():
    """Reproducible random-walk bars (250 sessions)."""
    rng = np.random.default_rng(42)
    closes = 100 + np.cumsum(rng.normal(0, 1.5, 250))
    volumes = rng.integers(500_000, 2_000_000, 250)
    df = make_bars(closes, volumes=volumes)
    df['high'] = df['close'] + rng.uniform(0.1, 2.0, 250)
    df['low'] = df['close'] - rng.uniform(0.1, 2.0, 250)
    return df


@pytest.fixture
def fake_fetcher():
    """Empty FakeDataFetcher; populate ``responses`` in the test."""
    return FakeDataFetcher()
