"""Polymarket Gamma API client for narrative signal markets."""

import asyncio
import logging
import os
from collections.abc import Iterable
from typing import Any

import requests

from reversal_mcp.data.retry import (
    FetchRetryError,
    ServerShuttingDownError,
    fetch_semaphore,
    retry_with_backoff,
)
from reversal_mcp.engine.narrative import (
    MarketParseError,
    NarrativeSignal,
    ScoringMode,
    parse_market,
    positive_probability,
)
from reversal_mcp.utils.sanitize import sanitize_text

logger = logging.getLogger(__name__)

POLYMARKET_API_URL = os.environ.get("POLYMARKET_API_URL", "https://gamma-api.polymarket.com")
_request_timeout = float(os.environ.get("FETCH_TIMEOUT", "20.0"))

_HEADERS = {"Accept": "application/json"}


def fold_event(event: dict[str, Any]) -> dict[str, Any] | None:
    """
    Reduce a Gamma event to one {"outcomes", "outcomePrices"} record.

    A single-market event passes its arrays through untouched (they may
    still be JSON strings). A grouped event, one binary market per bucket,
    becomes a multi-outcome record of bucket titles and their Yes prices.
    """
    markets = [m for m in (event.get("markets") or []) if isinstance(m, dict)]
    if not markets:
        return None

    if len(markets) == 1:
        market = markets[0]
        return {
            "outcomes": market.get("outcomes"),
            "outcomePrices": market.get("outcomePrices"),
        }

    outcomes: list[str] = []
    prices: list[str] = []
    for market in markets:
        if market.get("closed"):
            continue
        title = sanitize_text(market.get("groupItemTitle") or market.get("question"), max_length=120)
        if not title:
            continue
        try:
            yes_price = positive_probability(ScoringMode.BINARY_GOOD, parse_market(market))
        except MarketParseError as e:
            logger.warning(f"Skipping grouped market '{title}' in {event.get('slug')}: {e}")
            continue
        outcomes.append(title)
        prices.append(str(yes_price))

    return {"outcomes": outcomes, "outcomePrices": prices}


async def fetch_market_by_slug(slug: str) -> dict[str, Any] | None:
    """
    Fetch one market record by event slug.

    Args:
        slug: Gamma event slug

    Returns:
        {"outcomes": [...], "outcomePrices": [...]} or None if not found
        or the upstream call failed
    """
    url = f"{POLYMARKET_API_URL}/events"

    def _fetch() -> Any:
        resp = requests.get(url, params={"slug": slug}, headers=_HEADERS, timeout=_request_timeout)
        resp.raise_for_status()
        return resp.json()

    try:
        async with fetch_semaphore:
            retry_result = await retry_with_backoff(
                f"fetch_market_by_slug({slug})",
                _fetch,
                source="polymarket",
            )
    except ServerShuttingDownError:
        raise
    except (FetchRetryError, requests.RequestException, ValueError) as e:
        logger.warning(f"Polymarket fetch failed for {slug}: {e}")
        return None

    events = retry_result.result
    if isinstance(events, dict):
        events = [events]
    if not isinstance(events, list) or not events:
        logger.info(f"Polymarket event not found: {slug}")
        return None

    return fold_event(events[0])


async def fetch_signal_markets(
    signals: Iterable[NarrativeSignal],
) -> dict[str, dict[str, Any] | None]:
    """Fetch every signal's market concurrently, keyed by signal id."""
    signals = list(signals)
    results = await asyncio.gather(*(fetch_market_by_slug(s.slug) for s in signals))
    return {s.id: raw for s, raw in zip(signals, results)}
