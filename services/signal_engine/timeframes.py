"""
Lookback durations and bar intervals.

Durations use the ``Xd`` (days) / ``Xmo`` (months) notation; intervals are
the bar sizes understood by the market data provider.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

import pandas as pd
import pytz

from .exceptions import UnsupportedConfigurationError


_DURATION_PATTERN = re.compile(r'^(\d+)(d|mo)$')

INTRADAY_INTERVALS = ('1m', '2m', '5m', '15m', '30m', '60m', '90m', '1h')
DAILY_INTERVALS = ('1d', '5d', '1wk', '1mo', '3mo')
SUPPORTED_INTERVALS = INTRADAY_INTERVALS + DAILY_INTERVALS


@dataclass(frozen=True)
class Timeframe:
    """A labelled bar interval used by multi-timeframe strategies."""
    label: str
    interval: str


# Higher to lower timeframe: trend, setup, entry
INTRADAY_TIMEFRAMES: Tuple[Timeframe, ...] = (
    Timeframe('trend', '60m'),
    Timeframe('setup', '15m'),
    Timeframe('entry', '5m'),
)
SWING_TIMEFRAMES: Tuple[Timeframe, ...] = (
    Timeframe('trend', '1d'),
    Timeframe('setup', '60m'),
    Timeframe('entry', '15m'),
)


def get_utc_now() -> datetime:
    """
    Get current time in UTC.

    Returns:
        Timezone-aware UTC datetime
    """
    return datetime.now(pytz.utc)


def parse_duration(duration: str) -> pd.DateOffset:
    """
    Parse a lookback duration such as ``10d`` or ``1mo``.

    Args:
        duration: Number followed by ``d`` (days) or ``mo`` (months)

    Returns:
        Matching calendar offset

    Raises:
        UnsupportedConfigurationError: If the format is not recognized
    """
    match = _DURATION_PATTERN.match(duration.strip()) if duration else None
    if not match:
        raise UnsupportedConfigurationError(
            f"Unsupported duration format {duration!r}; use 'Xd' or 'Xmo'"
        )

    value, unit = int(match.group(1)), match.group(2)
    if unit == 'd':
        return pd.DateOffset(days=value)
    return pd.DateOffset(months=value)


def lookback_window(duration: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Get the ``(start, end)`` window covering ``duration`` up to ``now``.

    Args:
        duration: Lookback duration (``Xd`` or ``Xmo``)
        now: End of the window (default: current UTC time)

    Returns:
        Tuple of start and end datetimes
    """
    if now is None:
        now = get_utc_now()
    start = (pd.Timestamp(now) - parse_duration(duration)).to_pydatetime()
    return start, now


def validate_interval(interval: str) -> str:
    """
    Check that a bar interval is supported.

    Raises:
        UnsupportedConfigurationError: If the interval is unknown
    """
    if interval not in SUPPORTED_INTERVALS:
        raise UnsupportedConfigurationError(
            f"Unsupported interval {interval!r}; expected one of {', '.join(SUPPORTED_INTERVALS)}"
        )
    return interval


def format_date(dt: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DD``."""
    return dt.strftime('%Y-%m-%d')
