"""Async daily price series client with cache-first, last-good fallback."""

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import pandas as pd
import pytz
import yfinance as yf

from reversal_mcp.data.cache import SeriesCache, series_cache
from reversal_mcp.data.retry import (
    FetchRetryError,
    ServerShuttingDownError,
    fetch_semaphore,
    retry_with_backoff,
    shutdown_event,
)
from reversal_mcp.utils.ohlcv import CANONICAL_COLUMNS, standardize_ohlcv
from reversal_mcp.utils.validators import SeriesParams

logger = logging.getLogger(__name__)

_fetch_timeout = float(os.environ.get("FETCH_TIMEOUT", "20.0"))  # seconds

SOURCE_LIVE = "live"
SOURCE_CACHE = "cache"
SOURCE_LAST_GOOD = "last_good"
SOURCE_NONE = "none"


@dataclass(frozen=True)
class SeriesResult:
    """Series plus where it came from. An empty df means no data at all."""

    df: pd.DataFrame
    stale: bool
    source: str
    fetched_at: str | None
    last_bar_status: str | None
    uri: str
    provenance: dict[str, Any] | None = None

    @property
    def empty(self) -> bool:
        return self.df.empty


def last_bar_status(df: pd.DataFrame, now: datetime | None = None) -> str | None:
    """
    Whether the last daily bar is still forming.

    Daily crypto bars open at 00:00 UTC; a bar that opened today is forming.
    """
    if df.empty:
        return None
    utc = pytz.utc
    now = now.astimezone(utc) if now is not None else datetime.now(utc)
    bar_open = pd.Timestamp(int(df["timestamp"].iloc[-1]), unit="ms", tz="UTC")
    return "forming" if bar_open.date() >= now.date() else "closed"


def _empty_frame() -> pd.DataFrame:
    return pd.DataFrame(columns=CANONICAL_COLUMNS)


async def fetch_series(params: SeriesParams) -> tuple[pd.DataFrame, dict[str, Any]]:
    """
    Fetch daily candles with bounded concurrency and retry logic.

    Standardization happens here (single place) before both preview and cache.
    May return fewer rows than requested when upstream history is short.

    Args:
        params: Series parameters

    Returns:
        Tuple of (standardized DataFrame, provenance dict)

    Raises:
        ServerShuttingDownError: If server is shutting down
        FetchRetryError: If all retries exhausted for retryable errors
        ValueError: If no data returned
    """
    if shutdown_event.is_set():
        raise ServerShuttingDownError("Server is shutting down")

    def _fetch() -> pd.DataFrame:
        df = yf.download(**params.to_yf_kwargs())
        if df is None or df.empty:
            raise ValueError(f"No data returned for {params.symbol}")
        return standardize_ohlcv(df)

    async with fetch_semaphore:
        retry_result = await retry_with_backoff(
            f"fetch_series({params.symbol})",
            _fetch,
            source="yfinance",
        )
        df = retry_result.result
        # yfinance returns up to today; keep only the requested window
        if len(df) > params.days:
            df = df.iloc[-params.days:].reset_index(drop=True)
        return df, retry_result.to_provenance()


class PriceSeriesProvider:
    """
    Cache-first series provider.

    Fresh cache hit -> live fetch with timeout -> last-good fallback -> empty.
    Never raises on upstream failure; the result carries the degradation.
    """

    def __init__(
        self,
        cache: SeriesCache | None = None,
        timeout: float | None = None,
    ):
        self.cache = cache if cache is not None else series_cache
        self.timeout = timeout if timeout is not None else _fetch_timeout

    async def get_series(self, symbol: str, days: int) -> SeriesResult:
        """
        Get a daily series for symbol.

        Args:
            symbol: Ticker symbol (e.g., BTC-USD)
            days: Number of daily candles

        Returns:
            SeriesResult (empty df with source "none" if nothing is available)

        Raises:
            ValueError: Invalid symbol or days
        """
        params = SeriesParams(symbol=symbol, days=days)
        uri = params.to_uri()

        cached = self.cache.get_df(uri)
        if cached is not None and not cached.empty:
            meta = self.cache.get_metadata(uri) or {}
            logger.debug(f"Cache hit for {uri}")
            return SeriesResult(
                df=cached,
                stale=False,
                source=SOURCE_CACHE,
                fetched_at=meta.get("stored_at"),
                last_bar_status=last_bar_status(cached),
                uri=uri,
            )

        try:
            df, provenance = await asyncio.wait_for(fetch_series(params), timeout=self.timeout)
        except ServerShuttingDownError:
            raise
        except asyncio.TimeoutError:
            logger.warning(f"Series fetch for {uri} timed out after {self.timeout:.0f}s")
            return self._fallback(uri)
        except FetchRetryError as e:
            logger.warning(f"Series fetch failed for {uri}: {e}")
            return self._fallback(uri)
        except Exception as e:
            # Non-retryable upstream errors (empty download, HTTP 4xx) degrade the same way
            logger.warning(f"Series fetch error for {uri}: {type(e).__name__}: {e}")
            return self._fallback(uri)

        self.cache.store(params, df)
        return SeriesResult(
            df=df,
            stale=False,
            source=SOURCE_LIVE,
            fetched_at=datetime.now(timezone.utc).isoformat(),
            last_bar_status=last_bar_status(df),
            uri=uri,
            provenance=provenance,
        )

    def _fallback(self, uri: str) -> SeriesResult:
        last_good = self.cache.get_last_good_df(uri)
        if last_good is not None and not last_good.empty:
            entry = self.cache.get_last_good(uri) or {}
            logger.info(f"Serving last-good series for {uri} (stale)")
            return SeriesResult(
                df=last_good,
                stale=True,
                source=SOURCE_LAST_GOOD,
                fetched_at=entry.get("stored_at"),
                last_bar_status=last_bar_status(last_good),
                uri=uri,
            )

        logger.warning(f"No cached series for {uri}; data unavailable")
        return SeriesResult(
            df=_empty_frame(),
            stale=False,
            source=SOURCE_NONE,
            fetched_at=None,
            last_bar_status=None,
            uri=uri,
        )
