"""
Technical Indicator Library.

Pure functions over an oldest-first OHLCV DataFrame:
- ATR (Average True Range) with Wilder smoothing
- Supertrend (trailing band + discrete direction)
- ADX / +DI / -DI (Average Directional Index)
- EMA, RSI, MACD
- Bollinger Bands
- VWAP (Volume Weighted Average Price)

Every series returned shares the input index, so output length always equals
input length. Positions still inside the warm-up window hold NaN.
"""
from typing import Any, Optional

import numpy as np
import pandas as pd

# RS used when the average loss is zero
RSI_ZERO_LOSS_RS = 100.0


def _ratio(numerator: pd.Series, denominator: pd.Series, fallback: float = 0.0) -> pd.Series:
    """Element-wise division that maps a zero denominator to ``fallback``."""
    result = numerator / denominator.where(denominator != 0)
    return result.mask(denominator == 0, fallback)


def safe_round(value: Any, decimals: int = 2) -> Optional[float]:
    """
    Safely round a value to specified decimals.

    Args:
        value: Value to round
        decimals: Number of decimal places

    Returns:
        Rounded float, or None for NaN/inf/non-numeric input
    """
    try:
        if value is None or pd.isna(value):
            return None
        if np.isinf(value):
            return None
        return round(float(value), decimals)
    except (TypeError, ValueError):
        return None


def true_range(df: pd.DataFrame) -> pd.Series:
    """
    True range per bar.

    ``max(high - low, |high - prev_close|, |low - prev_close|)``; the first
    bar has no previous close and is NaN.
    """
    prev_close = df['close'].shift(1)
    ranges = pd.concat(
        [
            df['high'] - df['low'],
            (df['high'] - prev_close).abs(),
            (df['low'] - prev_close).abs(),
        ],
        axis=1
    )
    return ranges.max(axis=1, skipna=False)


def wilder_smooth(values: pd.Series, period: int) -> pd.Series:
    """
    Wilder's smoothing (RMA).

    Leading NaNs are skipped. The first smoothed value is the simple mean of
    the next ``period`` values; afterwards
    ``s[i] = (s[i-1] * (period - 1) + v[i]) / period``.

    Args:
        values: Input series
        period: Smoothing period

    Returns:
        Smoothed series aligned with ``values``
    """
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")

    arr = values.to_numpy(dtype=float)
    result = np.full(len(arr), np.nan)

    valid = np.flatnonzero(~np.isnan(arr))
    if len(valid) == 0:
        return pd.Series(result, index=values.index)

    seed_end = valid[0] + period
    if seed_end > len(arr):
        return pd.Series(result, index=values.index)

    result[seed_end - 1] = arr[valid[0]:seed_end].mean()
    for i in range(seed_end, len(arr)):
        result[i] = (result[i - 1] * (period - 1) + arr[i]) / period

    return pd.Series(result, index=values.index)


def atr(df: pd.DataFrame, period: int = 10) -> pd.Series:
    """
    Average True Range.

    The first ``period`` bars are NaN: one bar is consumed by the previous
    close and ``period`` true ranges seed the average.
    """
    return wilder_smooth(true_range(df), period)


def supertrend(df: pd.DataFrame, atr_period: int = 10, factor: float = 3.0) -> pd.DataFrame:
    """
    Calculate Supertrend.

    Bands are ``hl2 +/- factor * ATR``. The line is seeded at ``hl2`` with an
    up direction on bar ``atr_period``. Afterwards a close above the previous
    line turns the direction up and ratchets the line to
    ``max(lower_band, prev)``; a close below turns it down with
    ``min(upper_band, prev)``; a close equal to the line carries both forward.

    Args:
        df: OHLCV DataFrame, oldest-first
        atr_period: ATR period and warm-up length (default: 10)
        factor: Band multiplier (default: 3.0)

    Returns:
        DataFrame with ``supertrend`` (NaN during warm-up) and ``direction``
        (+1 up, -1 down, 0 during warm-up)
    """
    n = len(df)
    atr_values = atr(df, atr_period).to_numpy()
    high = df['high'].to_numpy(dtype=float)
    low = df['low'].to_numpy(dtype=float)
    close = df['close'].to_numpy(dtype=float)

    line = np.full(n, np.nan)
    direction = np.zeros(n, dtype=int)

    for i in range(atr_period, n):
        hl2 = (high[i] + low[i]) / 2

        if i == atr_period:
            line[i] = hl2
            direction[i] = 1
            continue

        upper_band = hl2 + factor * atr_values[i]
        lower_band = hl2 - factor * atr_values[i]
        prev = line[i - 1]

        if close[i] > prev:
            direction[i] = 1
            line[i] = np.maximum(lower_band, prev)
        elif close[i] < prev:
            direction[i] = -1
            line[i] = np.minimum(upper_band, prev)
        else:
            direction[i] = direction[i - 1]
            line[i] = prev

    return pd.DataFrame({'supertrend': line, 'direction': direction}, index=df.index)


def adx_dmi(df: pd.DataFrame, di_period: int = 14, adx_period: int = 14) -> pd.DataFrame:
    """
    Calculate ADX with the +DI / -DI directional indicators.

    +DM counts only when the up move beats the down move and is positive
    (symmetrically for -DM). +DM, -DM and the true range are Wilder-smoothed
    over ``di_period``; DX is Wilder-smoothed over ``adx_period`` into ADX.

    A zero smoothed true range yields DI = 0, and DI values summing to zero
    yield DX = 0.

    Args:
        df: OHLCV DataFrame, oldest-first
        di_period: Directional indicator period (default: 14)
        adx_period: ADX smoothing period (default: 14)

    Returns:
        DataFrame with ``plus_di``, ``minus_di`` and ``adx`` aligned to bars
    """
    up_move = df['high'].diff()
    down_move = -df['low'].diff()
    has_moves = up_move.notna() & down_move.notna()

    plus_dm = pd.Series(
        np.where((up_move > down_move) & (up_move > 0), up_move, 0.0),
        index=df.index
    ).where(has_moves)
    minus_dm = pd.Series(
        np.where((down_move > up_move) & (down_move > 0), down_move, 0.0),
        index=df.index
    ).where(has_moves)

    smoothed_tr = wilder_smooth(true_range(df), di_period)
    plus_di = 100 * _ratio(wilder_smooth(plus_dm, di_period), smoothed_tr)
    minus_di = 100 * _ratio(wilder_smooth(minus_dm, di_period), smoothed_tr)

    dx = 100 * _ratio((plus_di - minus_di).abs(), plus_di + minus_di)

    return pd.DataFrame(
        {
            'plus_di': plus_di,
            'minus_di': minus_di,
            'adx': wilder_smooth(dx, adx_period),
        },
        index=df.index
    )


def ema(values: pd.Series, period: int) -> pd.Series:
    """
    Exponential Moving Average seeded with the first value.

    ``ema[i] = v[i] * k + ema[i-1] * (1 - k)`` with ``k = 2 / (period + 1)``.
    Defined from the first element; there is no SMA seed window.
    """
    return values.ewm(span=period, adjust=False).mean()


def rsi(values: pd.Series, period: int = 14) -> pd.Series:
    """
    Relative Strength Index from simple rolling averages.

    Average gain and loss are plain means of the last ``period`` changes
    (not Wilder-smoothed). RS is 100 when the average loss is zero.
    """
    delta = values.diff()
    avg_gain = delta.clip(lower=0).rolling(window=period).mean().clip(lower=0)
    avg_loss = (-delta).clip(lower=0).rolling(window=period).mean().clip(lower=0)

    rs = _ratio(avg_gain, avg_loss, fallback=RSI_ZERO_LOSS_RS)
    return 100 - (100 / (1 + rs))


def macd(
    values: pd.Series,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9
) -> pd.DataFrame:
    """
    Calculate MACD.

    Returns:
        DataFrame with ``macd``, ``signal`` and ``histogram`` columns
    """
    macd_line = ema(values, fast) - ema(values, slow)
    signal_line = ema(macd_line, signal)
    return pd.DataFrame(
        {
            'macd': macd_line,
            'signal': signal_line,
            'histogram': macd_line - signal_line,
        },
        index=values.index
    )


def bollinger_bands(values: pd.Series, period: int = 20, width: float = 2.0) -> pd.DataFrame:
    """
    Calculate Bollinger Bands with the population standard deviation.

    Returns:
        DataFrame with ``middle``, ``upper`` and ``lower`` columns
    """
    middle = values.rolling(window=period).mean()
    std = values.rolling(window=period).std(ddof=0)
    return pd.DataFrame(
        {
            'middle': middle,
            'upper': middle + width * std,
            'lower': middle - width * std,
        },
        index=values.index
    )


def vwap(df: pd.DataFrame) -> pd.Series:
    """
    Cumulative Volume Weighted Average Price over the series.

    Uses the typical price ``(high + low + close) / 3``. NaN while the
    cumulative volume is zero.
    """
    typical_price = (df['high'] + df['low'] + df['close']) / 3
    cumulative_pv = (typical_price * df['volume']).cumsum()
    cumulative_volume = df['volume'].cumsum()
    return _ratio(cumulative_pv, cumulative_volume, fallback=np.nan)
