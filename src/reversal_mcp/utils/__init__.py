"""Utility modules."""

from reversal_mcp.utils.indicators import (
    calculate_realized_volatility,
    calculate_returns,
    calculate_rsi,
    calculate_slope,
    calculate_sma,
    check_higher_low,
    percentile_rank,
)
from reversal_mcp.utils.ohlcv import PriceCandle, df_to_candles, df_to_csv, standardize_ohlcv
from reversal_mcp.utils.provenance import build_error_response, build_meta, build_provenance
from reversal_mcp.utils.sanitize import sanitize_lines, sanitize_text
from reversal_mcp.utils.validators import SeriesParams, check_rule, clamp

__all__ = [
    "calculate_realized_volatility",
    "calculate_returns",
    "calculate_rsi",
    "calculate_slope",
    "calculate_sma",
    "check_higher_low",
    "percentile_rank",
    "PriceCandle",
    "df_to_candles",
    "df_to_csv",
    "standardize_ohlcv",
    "build_error_response",
    "build_meta",
    "build_provenance",
    "sanitize_lines",
    "sanitize_text",
    "SeriesParams",
    "check_rule",
    "clamp",
]
