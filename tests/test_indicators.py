"""
Unit tests for the technical indicator library.

Covers:
- True range and ATR (Wilder smoothing, warm-up padding)
- Supertrend (direction rule, trailing line)
- ADX / +DI / -DI alignment and zero-range fallbacks
- EMA, RSI, MACD, Bollinger Bands, VWAP
"""
import math

import numpy as np
import pandas as pd
import pytest

from services.signal_engine.indicators import (
    RSI_ZERO_LOSS_RS,
    adx_dmi,
    atr,
    bollinger_bands,
    ema,
    macd,
    rsi,
    safe_round,
    supertrend,
    true_range,
    vwap,
    wilder_smooth,
)
from tests.signal_fixtures import make_bars


class TestTrueRangeAndAtr:
    """Test true range and ATR."""

    def test_true_range_first_bar_is_nan(self, rising_bars):
        tr = true_range(rising_bars)
        assert len(tr) == len(rising_bars)
        assert math.isnan(tr.iloc[0])
        assert tr.iloc[1:].notna().all()

    def test_true_range_uses_gap_from_previous_close(self):
        df = make_bars([100.0, 110.0], spread=1.0)
        # high 111 against previous close 100
        assert true_range(df).iloc[1] == pytest.approx(11.0)

    def test_atr_length_and_warmup(self, random_walk_bars):
        result = atr(random_walk_bars, period=10)
        assert len(result) == len(random_walk_bars)
        assert result.iloc[:10].isna().all()
        assert result.iloc[10:].notna().all()

    def test_atr_constant_range(self):
        df = make_bars(np.full(30, 100.0), spread=1.0)
        result = atr(df, period=10)
        assert result.iloc[10:].tolist() == pytest.approx([2.0] * 20)

    def test_atr_seed_is_simple_mean(self):
        df = make_bars([10, 11, 13, 12, 15], spread=0.5)
        tr = true_range(df)
        result = atr(df, period=3)
        assert result.iloc[3] == pytest.approx(tr.iloc[1:4].mean())
        expected_next = (result.iloc[3] * 2 + tr.iloc[4]) / 3
        assert result.iloc[4] == pytest.approx(expected_next)

    def test_atr_insufficient_bars(self):
        df = make_bars([100.0, 101.0, 102.0])
        result = atr(df, period=10)
        assert len(result) == 3
        assert result.isna().all()

    def test_wilder_smooth_rejects_bad_period(self):
        with pytest.raises(ValueError):
            wilder_smooth(pd.Series([1.0, 2.0]), 0)


class TestSupertrend:
    """Test Supertrend direction and line."""

    def test_output_length_matches_input(self, random_walk_bars):
        result = supertrend(random_walk_bars, atr_period=10, factor=3.0)
        assert len(result) == len(random_walk_bars)
        assert list(result.columns) == ['supertrend', 'direction']

    def test_warmup_is_neutral(self, random_walk_bars):
        result = supertrend(random_walk_bars, atr_period=10)
        assert (result['direction'].iloc[:10] == 0).all()
        assert result['supertrend'].iloc[:10].isna().all()
        assert result['supertrend'].iloc[10] == pytest.approx(
            (random_walk_bars['high'].iloc[10] + random_walk_bars['low'].iloc[10]) / 2
        )

    def test_rising_stretch_is_up_and_non_decreasing(self, rising_bars):
        result = supertrend(rising_bars, atr_period=10, factor=3.0)
        assert (result['direction'].iloc[10:] == 1).all()
        assert (result['supertrend'].iloc[10:].diff().dropna() >= 0).all()

    def test_falling_stretch_turns_down(self, falling_bars):
        result = supertrend(falling_bars, atr_period=10, factor=3.0)
        assert result['direction'].iloc[10] == 1
        assert (result['direction'].iloc[11:] == -1).all()
        assert (result['supertrend'].iloc[11:].diff().dropna() <= 0).all()

    def test_flat_close_carries_previous_state(self):
        df = make_bars(np.full(15, 100.0), spread=1.0)
        result = supertrend(df, atr_period=10)
        # hl2 equals close, so every later close equals the line
        assert (result['direction'].iloc[10:] == 1).all()
        assert (result['supertrend'].iloc[10:] == 100.0).all()

    def test_short_series_has_no_direction(self):
        df = make_bars([100.0, 101.0, 102.0])
        result = supertrend(df, atr_period=10)
        assert len(result) == 3
        assert (result['direction'] == 0).all()


class TestAdxDmi:
    """Test ADX / DMI."""

    def test_outputs_aligned_with_bars(self, rising_bars):
        result = adx_dmi(rising_bars, 14, 14)
        assert len(result) == len(rising_bars)
        assert result['plus_di'].iloc[:14].isna().all()
        assert result['adx'].iloc[:27].isna().all()
        assert result['adx'].iloc[27:].notna().all()

    def test_pure_uptrend(self, rising_bars):
        result = adx_dmi(rising_bars, 14, 14)
        # +DM 1, -DM 0, TR 2 on every bar
        assert result['plus_di'].iloc[14] == pytest.approx(50.0)
        assert result['minus_di'].iloc[14] == pytest.approx(0.0)
        assert result['adx'].iloc[-1] == pytest.approx(100.0)

    def test_pure_downtrend(self, falling_bars):
        latest = adx_dmi(falling_bars, 14, 14).iloc[-1]
        assert latest['minus_di'] > latest['plus_di']
        assert latest['adx'] > 25

    def test_zero_range_falls_back_to_zero(self):
        df = make_bars(np.full(40, 100.0), spread=0.0)
        latest = adx_dmi(df, 14, 14).iloc[-1]
        assert latest['plus_di'] == 0.0
        assert latest['minus_di'] == 0.0
        assert latest['adx'] == 0.0

    def test_directional_movement_is_exclusive(self):
        # Outside bar: high rises 2, low falls 1, so only +DM counts
        df = pd.DataFrame(
            {
                'open': [10.0] * 16,
                'high': [11.0] + [13.0 + 2 * i for i in range(15)],
                'low': [9.0] + [8.0 - i for i in range(15)],
                'close': [10.0] * 16,
                'volume': [1.0] * 16,
            },
            index=pd.date_range('2024-01-01', periods=16, freq='D')
        )
        result = adx_dmi(df, 14, 14)
        assert result['minus_di'].iloc[-1] == pytest.approx(0.0)
        assert result['plus_di'].iloc[-1] > 0


class TestMovingAveragesAndOscillators:
    """Test EMA, RSI, MACD, Bollinger Bands and VWAP."""

    def test_ema_seeded_with_first_value(self):
        values = pd.Series([10.0, 20.0, 30.0])
        result = ema(values, 3)
        k = 2 / (3 + 1)
        assert result.iloc[0] == 10.0
        assert result.iloc[1] == pytest.approx(20.0 * k + 10.0 * (1 - k))
        assert result.notna().all()

    def test_rsi_bounded(self, random_walk_bars):
        result = rsi(random_walk_bars['close'], 14).dropna()
        assert len(result) == len(random_walk_bars) - 14
        assert ((result >= 0) & (result <= 100)).all()

    def test_rsi_zero_loss_uses_fallback(self, rising_bars):
        result = rsi(rising_bars['close'], 14)
        expected = 100 - 100 / (1 + RSI_ZERO_LOSS_RS)
        assert result.iloc[-1] == pytest.approx(expected)

    def test_rsi_simple_average(self):
        closes = pd.Series([10.0, 11.0, 10.0, 12.0])
        # gains 1, 0, 2 -> 1.0; losses 0, 1, 0 -> 1/3
        assert rsi(closes, 3).iloc[-1] == pytest.approx(100 - 100 / (1 + 3.0))

    def test_macd_columns(self, random_walk_bars):
        result = macd(random_walk_bars['close'])
        assert list(result.columns) == ['macd', 'signal', 'histogram']
        assert result['histogram'].iloc[-1] == pytest.approx(
            result['macd'].iloc[-1] - result['signal'].iloc[-1]
        )

    def test_macd_flat_series_is_zero(self):
        result = macd(pd.Series(np.full(40, 50.0)))
        assert (result['histogram'].abs() < 1e-12).all()

    def test_bollinger_population_std(self):
        values = pd.Series(np.arange(1, 21, dtype=float))
        latest = bollinger_bands(values, 20, 2.0).iloc[-1]
        std = np.arange(1, 21, dtype=float).std(ddof=0)
        assert latest['middle'] == pytest.approx(10.5)
        assert latest['upper'] == pytest.approx(10.5 + 2 * std)
        assert latest['lower'] == pytest.approx(10.5 - 2 * std)

    def test_bollinger_warmup(self):
        result = bollinger_bands(pd.Series(np.arange(25, dtype=float)), 20)
        assert result['middle'].iloc[:19].isna().all()
        assert result['middle'].iloc[19:].notna().all()

    def test_vwap_cumulative(self):
        df = make_bars([10.0, 20.0], spread=0.0, volumes=[1.0, 3.0])
        assert vwap(df).iloc[-1] == pytest.approx((10.0 * 1 + 20.0 * 3) / 4)

    def test_vwap_zero_volume_is_nan(self):
        df = make_bars([10.0, 20.0], volumes=[0.0, 0.0])
        assert vwap(df).isna().all()


class TestSafeRound:
    """Test safe_round helper."""

    @pytest.mark.parametrize("value,expected", [
        (12.3456, 12.35),
        (np.float64(1.005), 1.0),
        (None, None),
        (float('nan'), None),
        (float('inf'), None),
        ("abc", None),
    ])
    def test_safe_round(self, value, expected):
        assert safe_round(value) == expected
