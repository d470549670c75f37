"""Binance USD-M futures readings: funding and open-interest change."""

import asyncio
import logging
import os
from typing import Any

import requests

from reversal_mcp.data.retry import (
    FetchRetryError,
    ServerShuttingDownError,
    fetch_semaphore,
    retry_with_backoff,
)
from reversal_mcp.engine.phase import DerivativesSnapshot

logger = logging.getLogger(__name__)

BINANCE_FAPI_URL = os.environ.get("BINANCE_FAPI_URL", "https://fapi.binance.com")
_request_timeout = float(os.environ.get("FETCH_TIMEOUT", "20.0"))

FUNDING_PRINTS = 3  # 8h prints, so 24h
OI_LOOKBACK_DAYS = 3


def funding_from_prints(rows: list[dict[str, Any]]) -> float | None:
    """Mean funding in percent over the given prints."""
    rates = []
    for row in rows:
        try:
            rates.append(float(row["fundingRate"]) * 100)
        except (KeyError, TypeError, ValueError):
            continue
    if not rates:
        return None
    return sum(rates) / len(rates)


def oi_change_from_history(rows: list[dict[str, Any]]) -> float | None:
    """Percent change between the oldest and newest open-interest points."""
    values = []
    for row in sorted(rows, key=lambda r: r.get("timestamp", 0)):
        try:
            values.append(float(row["sumOpenInterest"]))
        except (KeyError, TypeError, ValueError):
            continue
    if len(values) < 2 or values[0] == 0:
        return None
    return (values[-1] - values[0]) / values[0] * 100


async def _get_json(operation: str, path: str, params: dict[str, Any]) -> Any | None:
    url = f"{BINANCE_FAPI_URL}{path}"

    def _fetch() -> Any:
        resp = requests.get(url, params=params, timeout=_request_timeout)
        resp.raise_for_status()
        return resp.json()

    try:
        async with fetch_semaphore:
            retry_result = await retry_with_backoff(operation, _fetch, source="binance")
    except ServerShuttingDownError:
        raise
    except (FetchRetryError, requests.RequestException, ValueError) as e:
        logger.warning(f"{operation} failed: {e}")
        return None
    return retry_result.result


async def fetch_derivatives(symbol: str = "BTCUSDT") -> DerivativesSnapshot:
    """
    Fetch 24h weighted funding and 3-day open-interest change.

    Missing readings come back as None; callers apply neutral fallbacks.
    """
    funding_rows, oi_rows = await asyncio.gather(
        _get_json(
            f"fetch_funding({symbol})",
            "/fapi/v1/fundingRate",
            {"symbol": symbol, "limit": FUNDING_PRINTS},
        ),
        _get_json(
            f"fetch_open_interest({symbol})",
            "/futures/data/openInterestHist",
            {"symbol": symbol, "period": "1d", "limit": OI_LOOKBACK_DAYS + 1},
        ),
    )

    return DerivativesSnapshot(
        funding_24h_weighted=funding_from_prints(funding_rows) if isinstance(funding_rows, list) else None,
        oi_3d_change_pct=oi_change_from_history(oi_rows) if isinstance(oi_rows, list) else None,
    )
