"""
Data model for the signal engine.

A bar series is a pandas DataFrame with ``open``, ``high``, ``low``,
``close`` and ``volume`` columns, indexed by bar timestamp and ordered
oldest-first. Signal results are immutable and built fresh per evaluation.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Union

import pandas as pd

BAR_COLUMNS = ['open', 'high', 'low', 'close', 'volume']


class SignalType(str, Enum):
    """Classification produced by the single-verdict strategies."""
    STRONG_BUY = "Strong Buy"
    BUY = "Buy"
    HOLD = "Hold"
    SELL = "Sell"
    STRONG_SELL = "Strong Sell"


class TrendDirection(str, Enum):
    """Supertrend direction reported per timeframe."""
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class Bar:
    """One OHLCV price observation."""
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None
    timestamp: Optional[datetime] = None


def to_bar_frame(
    bars: Union[pd.DataFrame, Iterable[Union[Bar, Mapping[str, Any]]]]
) -> pd.DataFrame:
    """
    Normalize bars into an oldest-first OHLCV DataFrame.

    Accepts a DataFrame (any column capitalization, e.g. ``Close``) or an
    iterable of Bar objects / dicts. Rows are sorted by index when the index
    is a timestamp, so newest-first provider data is reordered.

    Args:
        bars: Raw bar data

    Returns:
        DataFrame with BAR_COLUMNS as float columns
    """
    if isinstance(bars, pd.DataFrame):
        df = bars.rename(columns=lambda c: str(c).lower())
    else:
        records = []
        for bar in bars:
            if isinstance(bar, Bar):
                records.append({
                    'timestamp': bar.timestamp,
                    'open': bar.open,
                    'high': bar.high,
                    'low': bar.low,
                    'close': bar.close,
                    'volume': bar.volume,
                })
            else:
                records.append({k.lower(): v for k, v in dict(bar).items()})
        df = pd.DataFrame.from_records(records)
        if 'timestamp' in df.columns and df['timestamp'].notna().all():
            df = df.set_index('timestamp')
        elif 'timestamp' in df.columns:
            df = df.drop(columns=['timestamp'])

    for column in BAR_COLUMNS:
        if column not in df.columns:
            df[column] = float('nan')

    df = df[BAR_COLUMNS].apply(pd.to_numeric, errors='coerce').astype(float)

    if isinstance(df.index, pd.DatetimeIndex) and not df.index.is_monotonic_increasing:
        df = df.sort_index(kind='stable')

    return df


@dataclass(frozen=True)
class CombinedSignal:
    """Momentum, breakout and volume sub-signals plus the aggregate verdict."""
    momentum: SignalType
    breakout: SignalType
    volume: SignalType
    final: SignalType

    def to_dict(self) -> Dict[str, str]:
        return {
            'momentum': self.momentum.value,
            'breakout': self.breakout.value,
            'volume': self.volume.value,
            'final': self.final.value,
        }


@dataclass(frozen=True)
class MultiTimeframeSignal:
    """Supertrend direction for the trend, setup and entry timeframes."""
    trend: TrendDirection = TrendDirection.NEUTRAL
    setup: TrendDirection = TrendDirection.NEUTRAL
    entry: TrendDirection = TrendDirection.NEUTRAL

    def to_dict(self) -> Dict[str, str]:
        return {
            'trend': self.trend.value,
            'setup': self.setup.value,
            'entry': self.entry.value,
        }


@dataclass(frozen=True)
class AdxSignal:
    """ADX trend-strength signal with the latest indicator values."""
    adx: Optional[float]
    plus_di: Optional[float]
    minus_di: Optional[float]
    signal: SignalType

    def to_dict(self) -> Dict[str, Any]:
        return {
            'adx': self.adx,
            'plus_di': self.plus_di,
            'minus_di': self.minus_di,
            'signal': self.signal.value,
        }


@dataclass(frozen=True)
class ScoreSignal:
    """Weighted multi-indicator composite score."""
    score: int
    final: SignalType
    components: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'score': self.score,
            'final': self.final.value,
            'components': dict(self.components),
        }
        if self.error is not None:
            payload['error'] = self.error
        return payload


SignalResult = Union[SignalType, CombinedSignal, MultiTimeframeSignal, AdxSignal, ScoreSignal]


def signal_to_payload(result: SignalResult) -> Any:
    """Convert a signal result into a JSON-ready value."""
    if isinstance(result, SignalType):
        return result.value
    return result.to_dict()
