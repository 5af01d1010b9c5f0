"""
Market data fetchers.

Strategy evaluators consume bars through the DataFetcher interface. The
Yahoo Finance adapter runs the blocking yfinance client in a worker thread;
ThrottledDataFetcher caps concurrent outbound calls to respect provider
rate limits.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

import pandas as pd
import yfinance as yf

from .exceptions import DataUnavailableError
from .models import to_bar_frame
from .timeframes import format_date, validate_interval

logger = logging.getLogger(__name__)


class DataFetcher(ABC):
    """Source of OHLCV bar series."""

    @abstractmethod
    async def fetch_daily_history(
        self,
        symbol: str,
        start: datetime,
        end: datetime
    ) -> pd.DataFrame:
        """
        Fetch daily bars between two dates.

        Raises:
            DataUnavailableError: If no bars exist for the symbol/range
        """

    @abstractmethod
    async def fetch_intraday_chart(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        interval: str
    ) -> pd.DataFrame:
        """
        Fetch bars of the given interval between two timestamps.

        Raises:
            DataUnavailableError: If no bars exist for the symbol/range
            UnsupportedConfigurationError: If the interval is unknown
        """


class ThrottledDataFetcher(DataFetcher):
    """Wraps a fetcher and limits the number of in-flight requests."""

    def __init__(self, fetcher: DataFetcher, max_concurrent: int = 10):
        """
        Initialize the throttled fetcher.

        Args:
            fetcher: Underlying data fetcher
            max_concurrent: Maximum concurrent requests (default: 10)
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self.fetcher = fetcher
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)

    async def fetch_daily_history(self, symbol, start, end):
        async with self._semaphore:
            return await self.fetcher.fetch_daily_history(symbol, start, end)

    async def fetch_intraday_chart(self, symbol, start, end, interval):
        async with self._semaphore:
            return await self.fetcher.fetch_intraday_chart(symbol, start, end, interval)


class YahooFinanceFetcher(DataFetcher):
    """Bar data from Yahoo Finance via yfinance."""

    def __init__(self, request_timeout_seconds: int = 30):
        """
        Initialize the Yahoo Finance fetcher.

        Args:
            request_timeout_seconds: HTTP timeout per request
        """
        self.request_timeout_seconds = request_timeout_seconds

    async def fetch_daily_history(self, symbol, start, end):
        # yfinance treats ``end`` as exclusive
        return await asyncio.to_thread(
            self._download,
            symbol,
            format_date(start),
            format_date(end + timedelta(days=1)),
            '1d'
        )

    async def fetch_intraday_chart(self, symbol, start, end, interval):
        validate_interval(interval)
        return await asyncio.to_thread(self._download, symbol, start, end, interval)

    def _download(self, symbol, start, end, interval: str) -> pd.DataFrame:
        """
        Download bars synchronously.

        Returns:
            Oldest-first OHLCV DataFrame

        Raises:
            DataUnavailableError: If Yahoo returns no rows
        """
        logger.debug(f"Fetching {symbol} from Yahoo Finance ({interval}, {start} -> {end})")

        df = yf.Ticker(symbol).history(
            start=start,
            end=end,
            interval=interval,
            auto_adjust=False,
            actions=False,
            timeout=self.request_timeout_seconds
        )

        if df is None or df.empty:
            raise DataUnavailableError(symbol)

        logger.debug(f"Fetched {len(df)} {interval} bars for {symbol}")
        return to_bar_frame(df)
