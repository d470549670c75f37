"""Reversal Index MCP Server using FastMCP."""

import asyncio
import json
import logging
import os

from fastmcp import FastMCP

from reversal_mcp import SCHEMA_VERSION, SERVER_VERSION
from reversal_mcp.data.retry import shutdown_executor
from reversal_mcp.prompts.templates import get_prompt
from reversal_mcp.resources.series_resource import ResourceNotFoundError, read_series_resource
from reversal_mcp.tools import (
    narrative_signals,
    reversal_history,
    reversal_index,
    technical_conditions,
)

# Configure logging
log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, log_level, logging.INFO))
logger = logging.getLogger(__name__)

# Create FastMCP server instance
mcp = FastMCP(
    name="reversal-index",
)


# ============================================================================
# TOOLS
# ============================================================================


@mcp.tool
async def get_reversal_index(
    symbol: str = "BTC-USD",
    ma_period: int = 200,
    hl_window: int = 6,
    vol_percentile: int = 20,
    support_distance: int = 5,
    enabled_conditions: list[str] | None = None,
    mvrv_z: float | None = None,
    puell: float | None = None,
    reason_headline: str | None = None,
    reason_bullets: list[str] | None = None,
    next_bullets: list[str] | None = None,
    tags: list[str] | None = None,
) -> str:
    """
    Evaluate the Reversal Index (0-100) for the reference asset.

    Fuses technical gates, cycle valuation and prediction-market narrative
    into a capped score and a stage (BOTTOM_BREAK, WATCH, PREPARE, CONFIRMED,
    shown as OVERHEATED when leverage is overheated).

    Args:
        symbol: Reference asset ticker (default: BTC-USD)
        ma_period: Long moving average period - 120, 200, 250
        hl_window: Higher-low window in weeks - 4, 6, 8
        vol_percentile: Volatility compression percentile - 10, 15, 20
        support_distance: Support proximity percent - 3, 5, 8
        enabled_conditions: Condition IDs to enable (default: catalog defaults)
        mvrv_z: MVRV Z-score reading if known
        puell: Puell multiple reading if known
        reason_headline: Replacement reason headline for the stage copy
        reason_bullets: Supporting reason lines (up to 3)
        next_bullets: Replacement "what next" lines (up to 2)
        tags: Replacement tags (up to 4)

    Returns:
        JSON with index, stage copy, gates, narrative summary and provenance
    """
    result = await reversal_index(
        symbol=symbol,
        ma_period=ma_period,
        hl_window=hl_window,
        vol_percentile=vol_percentile,
        support_distance=support_distance,
        enabled_conditions=enabled_conditions,
        mvrv_z=mvrv_z,
        puell=puell,
        reason_headline=reason_headline,
        reason_bullets=reason_bullets,
        next_bullets=next_bullets,
        tags=tags,
    )
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_technical_conditions(
    symbol: str = "BTC-USD",
    days: int = 800,
    ma_period: int = 200,
    hl_window: int = 6,
    vol_percentile: int = 20,
    support_distance: int = 5,
    enabled_conditions: list[str] | None = None,
    include_preview: bool = True,
) -> str:
    """
    Evaluate the gate and booster technical conditions.

    Gates: price_vs_200d, ma_slope_flat, higher_low, vol_compression.
    Boosters: momentum_divergence, volume_confirmation, range_breakout,
    vol_expansion, support_proximity.

    Args:
        symbol: Ticker symbol (default: BTC-USD)
        days: Daily candles to evaluate (1-1000, default: 800)
        ma_period: Long moving average period - 120, 200, 250
        hl_window: Higher-low window in weeks - 4, 6, 8
        vol_percentile: Volatility compression percentile - 10, 15, 20
        support_distance: Support proximity percent - 3, 5, 8
        enabled_conditions: Condition IDs to enable (default: catalog defaults)
        include_preview: Include last 5 candles in response (default: true)

    Returns:
        JSON with per-condition results, gate count, phase cap and resource URI
    """
    result = await technical_conditions(
        symbol=symbol,
        days=days,
        ma_period=ma_period,
        hl_window=hl_window,
        vol_percentile=vol_percentile,
        support_distance=support_distance,
        enabled_conditions=enabled_conditions,
        include_preview=include_preview,
    )
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_narrative_signals(categories: list[str] | None = None) -> str:
    """
    Get prediction-market narrative signals normalized to bullish probability.

    Args:
        categories: Restrict to Macro, Political, Narrative or Risk (default: all)

    Returns:
        JSON with per-signal probability, contribution, status and summary
    """
    result = await narrative_signals(categories=categories)
    return json.dumps(result, indent=2, default=str)


@mcp.tool
async def get_reversal_history(limit: int = 30) -> str:
    """
    Get persisted Reversal Index snapshots, newest first.

    Args:
        limit: Number of snapshots (1-200, default: 30)

    Returns:
        JSON with snapshots, stage changes and last notification times
    """
    result = await reversal_history(limit=limit)
    return json.dumps(result, indent=2, default=str)


# ============================================================================
# RESOURCES
# ============================================================================


@mcp.resource("series://{symbol}/{days}")
def get_cached_series(symbol: str, days: str) -> str:
    """
    Get cached daily series as CSV.

    Must call get_technical_conditions or get_reversal_index first to
    populate the cache.

    Args:
        symbol: Ticker symbol
        days: Series length in days

    Returns:
        CSV data with timestamp,open,high,low,close,volume columns
    """
    try:
        csv_text, _ = read_series_resource(symbol, int(days))
        return csv_text
    except ResourceNotFoundError as e:
        return str(e)
    except ValueError as e:
        return f"Error: {e}"


# ============================================================================
# PROMPTS
# ============================================================================


@mcp.prompt
def reversal_briefing(symbol: str = "BTC-USD") -> str:
    """Structured reversal briefing built from the Reversal Index tools."""
    result = get_prompt("reversal_briefing", {"symbol": symbol})
    if result:
        return result["messages"][0]["content"]
    return f"Summarize the reversal picture for {symbol} using get_reversal_index."


# ============================================================================
# ENTRY POINT
# ============================================================================


def main() -> None:
    """Run the MCP server."""
    logger.info(f"Starting Reversal Index MCP Server v{SERVER_VERSION} (schema v{SCHEMA_VERSION})")
    try:
        mcp.run()
    finally:
        asyncio.run(shutdown_executor())


if __name__ == "__main__":
    main()
