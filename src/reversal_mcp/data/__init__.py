"""Data layer for fetching, caching and persisting reversal inputs."""

from reversal_mcp.data.cache import SeriesCache, series_cache
from reversal_mcp.data.derivatives_client import fetch_derivatives
from reversal_mcp.data.polymarket_client import fetch_market_by_slug, fetch_signal_markets
from reversal_mcp.data.price_client import PriceSeriesProvider, SeriesResult, fetch_series
from reversal_mcp.data.retry import (
    FetchRetryError,
    RetryResult,
    ServerShuttingDownError,
    shutdown_executor,
)
from reversal_mcp.data.snapshots import SnapshotStore

__all__ = [
    # Cache
    "SeriesCache",
    "series_cache",
    # Upstream clients
    "PriceSeriesProvider",
    "SeriesResult",
    "fetch_derivatives",
    "fetch_market_by_slug",
    "fetch_series",
    "fetch_signal_markets",
    # Retry
    "FetchRetryError",
    "RetryResult",
    "ServerShuttingDownError",
    "shutdown_executor",
    # Persistence
    "SnapshotStore",
]
