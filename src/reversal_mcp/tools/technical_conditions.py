"""Technical conditions tool."""

from dataclasses import asdict
from time import perf_counter
from typing import Any

from reversal_mcp.data.price_client import PriceSeriesProvider
from reversal_mcp.data.retry import ServerShuttingDownError
from reversal_mcp.engine.conditions import ConditionGroup, count_passed, evaluate_conditions
from reversal_mcp.engine.phase import phase_cap, trend_score_from_conditions
from reversal_mcp.pipeline import DEFAULT_SERIES_DAYS, DEFAULT_SYMBOL
from reversal_mcp.tools.context import build_enabled_ids, build_personal_params, get_pipeline
from reversal_mcp.utils.indicators import annualize_volatility, calculate_realized_volatility
from reversal_mcp.utils.ohlcv import df_to_candles
from reversal_mcp.utils.provenance import build_error_response, build_meta, build_provenance

PREVIEW_BARS = 5


async def technical_conditions(
    symbol: str = DEFAULT_SYMBOL,
    days: int = DEFAULT_SERIES_DAYS,
    ma_period: int = 200,
    hl_window: int = 6,
    vol_percentile: int = 20,
    support_distance: int = 5,
    enabled_conditions: list[str] | None = None,
    include_preview: bool = True,
    provider: PriceSeriesProvider | None = None,
) -> dict[str, Any]:
    """
    Evaluate gate and booster conditions for a symbol.

    Args:
        symbol: Ticker symbol
        days: Daily candles to evaluate (1-1000)
        ma_period, hl_window, vol_percentile, support_distance: Personal parameters
        enabled_conditions: Condition IDs to enable (default: catalog defaults)
        include_preview: Include the last candles in the response
        provider: Series provider override

    Returns:
        Dict with per-condition results, gate count and phase cap preview
    """
    start_time = perf_counter()

    try:
        params = build_personal_params(ma_period, hl_window, vol_percentile, support_distance)
        enabled_ids = build_enabled_ids(enabled_conditions)
        provider = provider or get_pipeline().provider
        series = await provider.get_series(symbol, days)
    except ValueError as e:
        return build_error_response("invalid_params", str(e), symbol=symbol, tool="get_technical_conditions")
    except ServerShuttingDownError as e:
        return build_error_response("shutting_down", str(e), symbol=symbol, tool="get_technical_conditions")

    if series.empty:
        return build_error_response(
            error_type="data_unavailable",
            message=f"No price data for {symbol} and nothing cached; conditions not evaluated",
            symbol=symbol,
            tool="get_technical_conditions",
        )

    results = evaluate_conditions(series.df, params=params, enabled_ids=enabled_ids, stale=series.stale)
    gate_count = count_passed(results, ConditionGroup.GATE)
    trend = trend_score_from_conditions(results)

    vol_30d = calculate_realized_volatility(series.df["close"], 30).iloc[-1]
    annualized = annualize_volatility(vol_30d)

    response: dict[str, Any] = {
        "symbol": symbol.upper().strip(),
        "conditions": [r.to_dict() for r in results],
        "gates_passed": gate_count,
        "phase_cap": phase_cap(gate_count),
        "trend_score": round(trend, 2) if trend is not None else None,
        "boosters_passed": count_passed(results, ConditionGroup.BOOSTER),
        "volatility_30d_annualized": round(annualized, 4) if annualized is not None else None,
        "params": {
            "ma_period": params.ma_period,
            "hl_window": params.hl_window,
            "vol_percentile": params.vol_percentile,
            "support_distance": params.support_distance,
        },
        "resource_uri": series.uri,
    }

    if include_preview:
        candles = df_to_candles(series.df.tail(PREVIEW_BARS))
        response["preview"] = [asdict(c) for c in candles]

    warnings = []
    if series.stale:
        warnings.append("Price refresh failed; conditions evaluated on last good series")
    if series.last_bar_status == "forming":
        warnings.append("Last daily bar is still forming")

    duration_ms = (perf_counter() - start_time) * 1000
    response["meta"] = build_meta("get_technical_conditions", duration_ms)
    response["data_provenance"] = {
        "price": build_provenance(
            "yfinance",
            as_of=series.fetched_at,
            cache=series.source,
            stale=series.stale,
            rows=len(series.df),
            last_bar_status=series.last_bar_status,
            warnings=warnings,
            retry=series.provenance,
        ),
    }
    return response
