"""
Strategy Evaluators.

Each evaluator takes a symbol and a DataFetcher and returns a signal result:
- momentum: 10-day price change
- breakout: latest close against the prior 1-month range
- volume: volume spike with price direction
- combined: momentum + breakout + volume verdict
- intraday / swing: multi-timeframe Supertrend direction
- adx: trend strength from ADX / DMI on 60-minute bars
- scoresignal: weighted VWAP/EMA/RSI/MACD/Bollinger composite score

Evaluators catch their own failures and degrade to Hold / neutral; they
never raise to the caller.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Sequence

import numpy as np
import pandas as pd

from .data_fetcher import DataFetcher
from .exceptions import DataUnavailableError, UnknownStrategyError
from .indicators import (
    adx_dmi, bollinger_bands, ema, macd, rsi, safe_round, supertrend, vwap
)
from .models import (
    BAR_COLUMNS, AdxSignal, CombinedSignal, MultiTimeframeSignal, ScoreSignal,
    SignalResult, SignalType, TrendDirection, to_bar_frame
)
from .timeframes import (
    INTRADAY_TIMEFRAMES, SWING_TIMEFRAMES, Timeframe, lookback_window
)

logger = logging.getLogger(__name__)

Evaluator = Callable[[str, DataFetcher], Awaitable[SignalResult]]

# Momentum / breakout / volume
MOMENTUM_LOOKBACK = '10d'
MOMENTUM_THRESHOLD_PCT = 3.0
BREAKOUT_LOOKBACK = '1mo'
VOLUME_LOOKBACK = '10d'
VOLUME_SPIKE_MULTIPLIER = 2.0

# Multi-timeframe Supertrend
INTRADAY_LOOKBACK = '1d'
SWING_LOOKBACK = '1mo'
SUPERTREND_ATR_PERIOD = 10
SUPERTREND_FACTOR = 3.0

# ADX
ADX_LOOKBACK = '10d'
ADX_INTERVAL = '60m'
ADX_MIN_BARS = 15
ADX_PERIOD = 14
ADX_TREND_THRESHOLD = 25.0

# Composite score
SCORE_LOOKBACK = '5d'
SCORE_INTERVAL = '15m'
SCORE_MIN_BARS = 30
SCORE_RSI_OVERSOLD = 45.0
SCORE_RSI_OVERBOUGHT = 65.0


async def _daily_bars(symbol: str, fetcher: DataFetcher, duration: str) -> pd.DataFrame:
    start, end = lookback_window(duration)
    return to_bar_frame(await fetcher.fetch_daily_history(symbol, start, end))


async def _chart_bars(
    symbol: str,
    fetcher: DataFetcher,
    duration: str,
    interval: str
) -> pd.DataFrame:
    start, end = lookback_window(duration)
    return to_bar_frame(await fetcher.fetch_intraday_chart(symbol, start, end, interval))


# ---------------------------------------------------------------------------
# Classification rules
# ---------------------------------------------------------------------------

def classify_momentum(df: pd.DataFrame, threshold_pct: float = MOMENTUM_THRESHOLD_PCT) -> SignalType:
    """
    Classify the percent change from the oldest to the latest close.

    Args:
        df: Oldest-first daily bars
        threshold_pct: Absolute change needed for Buy / Sell

    Returns:
        Buy above +threshold, Sell below -threshold, otherwise Hold
    """
    if len(df) < 2:
        return SignalType.HOLD

    oldest_close = df['close'].iloc[0]
    latest_close = df['close'].iloc[-1]
    if oldest_close == 0:
        return SignalType.HOLD

    change_pct = (latest_close - oldest_close) / oldest_close * 100
    if change_pct > threshold_pct:
        return SignalType.BUY
    if change_pct < -threshold_pct:
        return SignalType.SELL
    return SignalType.HOLD


def classify_breakout(df: pd.DataFrame) -> SignalType:
    """Compare the latest close with the high/low range of all prior bars."""
    if len(df) < 2:
        return SignalType.HOLD

    latest_close = df['close'].iloc[-1]
    prior = df.iloc[:-1]
    if latest_close > prior['high'].max():
        return SignalType.BUY
    if latest_close < prior['low'].min():
        return SignalType.SELL
    return SignalType.HOLD


def classify_volume(df: pd.DataFrame, multiplier: float = VOLUME_SPIKE_MULTIPLIER) -> SignalType:
    """
    Detect a volume spike and sign it by the close-to-close move.

    The latest volume must exceed ``multiplier`` times the mean volume of
    all earlier bars.
    """
    if len(df) < 2:
        return SignalType.HOLD

    avg_volume = df['volume'].iloc[:-1].mean()
    today = df.iloc[-1]
    yesterday = df.iloc[-2]

    if today['volume'] > avg_volume * multiplier:
        if today['close'] > yesterday['close']:
            return SignalType.BUY
        if today['close'] < yesterday['close']:
            return SignalType.SELL
    return SignalType.HOLD


def combine_signals(
    momentum_signal: SignalType,
    breakout_signal: SignalType,
    volume_signal: SignalType
) -> SignalType:
    """
    Aggregate momentum, breakout and volume into one verdict.

    Momentum and volume agreeing is strong (breakout agreeing as well is the
    same case); otherwise any single Buy wins over any single Sell.
    """
    signals = (momentum_signal, breakout_signal, volume_signal)

    if momentum_signal == SignalType.BUY and volume_signal == SignalType.BUY:
        return SignalType.STRONG_BUY
    if momentum_signal == SignalType.SELL and volume_signal == SignalType.SELL:
        return SignalType.STRONG_SELL
    if SignalType.BUY in signals:
        return SignalType.BUY
    if SignalType.SELL in signals:
        return SignalType.SELL
    return SignalType.HOLD


def supertrend_direction(
    df: pd.DataFrame,
    atr_period: int = SUPERTREND_ATR_PERIOD,
    factor: float = SUPERTREND_FACTOR
) -> TrendDirection:
    """Map the final Supertrend direction to up / down (neutral in warm-up)."""
    last_direction = supertrend(df, atr_period, factor)['direction'].iloc[-1]
    if last_direction == 1:
        return TrendDirection.UP
    if last_direction == -1:
        return TrendDirection.DOWN
    return TrendDirection.NEUTRAL


def classify_adx(df: pd.DataFrame) -> AdxSignal:
    """
    Classify trend direction and strength from ADX / DMI.

    Buy when +DI leads and ADX exceeds the trend threshold, Sell when -DI
    leads, otherwise Hold. Values are rounded to 2 decimals.
    """
    if len(df) < ADX_MIN_BARS:
        return AdxSignal(adx=None, plus_di=None, minus_di=None, signal=SignalType.HOLD)

    latest = adx_dmi(df, ADX_PERIOD, ADX_PERIOD).iloc[-1]
    adx_value = latest['adx']
    plus_di = latest['plus_di']
    minus_di = latest['minus_di']

    signal = SignalType.HOLD
    if plus_di > minus_di and adx_value > ADX_TREND_THRESHOLD:
        signal = SignalType.BUY
    elif minus_di > plus_di and adx_value > ADX_TREND_THRESHOLD:
        signal = SignalType.SELL

    return AdxSignal(
        adx=safe_round(adx_value),
        plus_di=safe_round(plus_di),
        minus_di=safe_round(minus_di),
        signal=signal
    )


def score_from_indicators(
    close: float,
    vwap_value: float,
    ema_fast: float,
    ema_slow: float,
    rsi_value: float,
    macd_histogram: float,
    bollinger_upper: float,
    bollinger_lower: float
) -> Dict[str, int]:
    """
    Weighted sub-signals of the composite score.

    Returns:
        Mapping of component name to its signed contribution
    """
    if rsi_value < SCORE_RSI_OVERSOLD:
        rsi_score = 1
    elif rsi_value > SCORE_RSI_OVERBOUGHT:
        rsi_score = -1
    else:
        rsi_score = 0

    # Above the upper band is overbought, below the lower band oversold
    if close > bollinger_upper:
        bollinger_score = -1
    elif close < bollinger_lower:
        bollinger_score = 1
    else:
        bollinger_score = 0

    return {
        'vwap': 1 if close > vwap_value else -1,
        'ema': 1 if ema_fast > ema_slow else -1,
        'rsi': rsi_score,
        'macd': 2 if macd_histogram > 0 else -2,
        'bollinger': bollinger_score,
    }


def score_components(df: pd.DataFrame) -> Dict[str, int]:
    """Compute the composite score components from the latest bar."""
    close = df['close']
    bands = bollinger_bands(close, 20, 2.0).iloc[-1]

    return score_from_indicators(
        close=close.iloc[-1],
        vwap_value=vwap(df).iloc[-1],
        ema_fast=ema(close, 9).iloc[-1],
        ema_slow=ema(close, 21).iloc[-1],
        rsi_value=rsi(close, 14).iloc[-1],
        macd_histogram=macd(close, 12, 26, 9)['histogram'].iloc[-1],
        bollinger_upper=bands['upper'],
        bollinger_lower=bands['lower']
    )


def classify_score(score: int) -> SignalType:
    """Map a composite score onto the five-level classification."""
    if score >= 4:
        return SignalType.STRONG_BUY
    if score >= 2:
        return SignalType.BUY
    if score <= -4:
        return SignalType.STRONG_SELL
    if score <= -2:
        return SignalType.SELL
    return SignalType.HOLD


# ---------------------------------------------------------------------------
# Evaluators
# ---------------------------------------------------------------------------

async def momentum(symbol: str, fetcher: DataFetcher) -> SignalType:
    """Momentum signal over the last 10 days of daily bars."""
    try:
        df = await _daily_bars(symbol, fetcher, MOMENTUM_LOOKBACK)
        return classify_momentum(df)
    except Exception as e:
        logger.error(f"[momentum] Error for {symbol}: {e}")
        return SignalType.HOLD


async def breakout(symbol: str, fetcher: DataFetcher) -> SignalType:
    """Breakout signal over the last month of daily bars."""
    try:
        df = await _daily_bars(symbol, fetcher, BREAKOUT_LOOKBACK)
        return classify_breakout(df)
    except Exception as e:
        logger.error(f"[breakout] Error for {symbol}: {e}")
        return SignalType.HOLD


async def volume(symbol: str, fetcher: DataFetcher) -> SignalType:
    """Volume spike signal over the last 10 days of daily bars."""
    try:
        df = await _daily_bars(symbol, fetcher, VOLUME_LOOKBACK)
        return classify_volume(df)
    except Exception as e:
        logger.error(f"[volume] Error for {symbol}: {e}")
        return SignalType.HOLD


async def combined(symbol: str, fetcher: DataFetcher) -> CombinedSignal:
    """Run momentum, breakout and volume concurrently and aggregate them."""
    try:
        momentum_signal, breakout_signal, volume_signal = await asyncio.gather(
            momentum(symbol, fetcher),
            breakout(symbol, fetcher),
            volume(symbol, fetcher)
        )
        result = CombinedSignal(
            momentum=momentum_signal,
            breakout=breakout_signal,
            volume=volume_signal,
            final=combine_signals(momentum_signal, breakout_signal, volume_signal)
        )
        logger.debug(f"[combined] {symbol}: {result.to_dict()}")
        return result
    except Exception as e:
        logger.error(f"[combined] Error for {symbol}: {e}")
        return CombinedSignal(
            momentum=SignalType.HOLD,
            breakout=SignalType.HOLD,
            volume=SignalType.HOLD,
            final=SignalType.HOLD
        )


async def _timeframe_direction(
    symbol: str,
    fetcher: DataFetcher,
    timeframe: Timeframe,
    duration: str,
    strategy_name: str
) -> TrendDirection:
    try:
        df = await _chart_bars(symbol, fetcher, duration, timeframe.interval)
        if len(df) < 2:
            raise DataUnavailableError(symbol, "Not enough data points")
        return supertrend_direction(df)
    except Exception as e:
        logger.error(f"[{strategy_name}] {symbol} {timeframe.label} error: {e}")
        return TrendDirection.NEUTRAL


async def _multi_timeframe_supertrend(
    symbol: str,
    fetcher: DataFetcher,
    timeframes: Sequence[Timeframe],
    duration: str,
    strategy_name: str
) -> MultiTimeframeSignal:
    try:
        directions = await asyncio.gather(*(
            _timeframe_direction(symbol, fetcher, timeframe, duration, strategy_name)
            for timeframe in timeframes
        ))
        result = MultiTimeframeSignal(**{
            timeframe.label: direction
            for timeframe, direction in zip(timeframes, directions)
        })
        logger.debug(f"[{strategy_name}] {symbol}: {result.to_dict()}")
        return result
    except Exception as e:
        logger.error(f"[{strategy_name}] Error for {symbol}: {e}")
        return MultiTimeframeSignal()


async def intraday(symbol: str, fetcher: DataFetcher) -> MultiTimeframeSignal:
    """
    Supertrend direction on 60m / 15m / 5m bars over the last day.

    A single session yields at most seven 60m bars, fewer than the ATR
    warm-up, so the trend timeframe reads neutral.
    """
    return await _multi_timeframe_supertrend(
        symbol, fetcher, INTRADAY_TIMEFRAMES, INTRADAY_LOOKBACK, 'intraday'
    )


async def swing(symbol: str, fetcher: DataFetcher) -> MultiTimeframeSignal:
    """Supertrend direction on daily / 60m / 15m bars over the last month."""
    return await _multi_timeframe_supertrend(
        symbol, fetcher, SWING_TIMEFRAMES, SWING_LOOKBACK, 'swing'
    )


async def adx(symbol: str, fetcher: DataFetcher) -> AdxSignal:
    """ADX / DMI signal on the last 10 days of 60-minute bars."""
    try:
        df = await _chart_bars(symbol, fetcher, ADX_LOOKBACK, ADX_INTERVAL)
        return classify_adx(df)
    except Exception as e:
        logger.error(f"[adx] Error for {symbol}: {e}")
        return AdxSignal(adx=None, plus_di=None, minus_di=None, signal=SignalType.HOLD)


async def scoresignal(symbol: str, fetcher: DataFetcher) -> ScoreSignal:
    """Composite score on 15-minute bars over the last 5 days."""
    try:
        df = await _chart_bars(symbol, fetcher, SCORE_LOOKBACK, SCORE_INTERVAL)
        df = df.replace([np.inf, -np.inf], np.nan).dropna(subset=BAR_COLUMNS)

        if len(df) < SCORE_MIN_BARS:
            raise DataUnavailableError(
                symbol,
                f"Insufficient data for {symbol}: {len(df)} valid bars, need {SCORE_MIN_BARS}"
            )

        components = score_components(df)
        score = sum(components.values())
        return ScoreSignal(score=score, final=classify_score(score), components=components)

    except Exception as e:
        logger.error(f"[scoresignal] Error for {symbol}: {e}")
        return ScoreSignal(score=0, final=SignalType.HOLD, error=str(e))


STRATEGIES: Dict[str, Evaluator] = {
    'momentum': momentum,
    'breakout': breakout,
    'volume': volume,
    'combined': combined,
    'intraday': intraday,
    'swing': swing,
    'adx': adx,
    'scoresignal': scoresignal,
}


def get_strategy(name: str) -> Evaluator:
    """
    Look up a strategy evaluator by name.

    Raises:
        UnknownStrategyError: If no evaluator is registered under ``name``
    """
    try:
        return STRATEGIES[name]
    except KeyError:
        raise UnknownStrategyError(name) from None
