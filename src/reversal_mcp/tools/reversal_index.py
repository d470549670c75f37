"""Reversal Index tool."""

from time import perf_counter
from typing import Any

from reversal_mcp.data.retry import ServerShuttingDownError
from reversal_mcp.engine.conditions import ConditionGroup, count_passed
from reversal_mcp.engine.copywriting import StageAIFill
from reversal_mcp.engine.narrative import summarize_narrative
from reversal_mcp.engine.transitions import state_to_record
from reversal_mcp.pipeline import (
    DEFAULT_SERIES_DAYS,
    DEFAULT_SYMBOL,
    STATUS_NOT_EVALUATED,
    EvaluationContext,
    ReversalPipeline,
)
from reversal_mcp.tools.context import (
    build_enabled_ids,
    build_on_chain,
    build_personal_params,
    get_pipeline,
)
from reversal_mcp.utils.indicators import calculate_returns
from reversal_mcp.utils.normalize import normalize_record
from reversal_mcp.utils.provenance import build_error_response, build_meta, build_provenance
from reversal_mcp.utils.sanitize import sanitize_lines, sanitize_text


def _ai_fill(
    reason_headline: str | None,
    reason_bullets: list[str] | None,
    next_bullets: list[str] | None,
    tags: list[str] | None,
) -> StageAIFill | None:
    if not any((reason_headline, reason_bullets, next_bullets, tags)):
        return None
    return StageAIFill(
        reason_headline=sanitize_text(reason_headline, max_length=200),
        reason_bullets=sanitize_lines(reason_bullets),
        next_bullets=sanitize_lines(next_bullets, max_items=2),
        tags=sanitize_lines(tags, max_items=4, max_length=40) if tags is not None else None,
    )


async def reversal_index(
    symbol: str = DEFAULT_SYMBOL,
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
    pipeline: ReversalPipeline | None = None,
) -> dict[str, Any]:
    """
    Evaluate the Reversal Index.

    Args:
        symbol: Reference asset ticker (default: BTC-USD)
        ma_period: Long moving average period (120, 200, 250)
        hl_window: Higher-low window in weeks (4, 6, 8)
        vol_percentile: Volatility compression percentile (10, 15, 20)
        support_distance: Support proximity in percent (3, 5, 8)
        enabled_conditions: Condition IDs to enable (default: catalog defaults)
        mvrv_z: MVRV Z-score reading (optional)
        puell: Puell multiple reading (optional)
        reason_headline, reason_bullets, next_bullets, tags: Optional AI copy fill
        pipeline: Pipeline override (default: process-wide pipeline)

    Returns:
        Dict with index, stage copy, gates, narrative summary and provenance
    """
    start_time = perf_counter()

    try:
        context = EvaluationContext(
            symbol=symbol,
            days=DEFAULT_SERIES_DAYS,
            params=build_personal_params(ma_period, hl_window, vol_percentile, support_distance),
            enabled_ids=build_enabled_ids(enabled_conditions),
            on_chain=build_on_chain(mvrv_z, puell),
            ai_fill=_ai_fill(reason_headline, reason_bullets, next_bullets, tags),
        )
        result = await (pipeline or get_pipeline()).evaluate(context)
    except ValueError as e:
        return build_error_response("invalid_params", str(e), symbol=symbol, tool="get_reversal_index")
    except ServerShuttingDownError as e:
        return build_error_response("shutting_down", str(e), symbol=symbol, tool="get_reversal_index")

    series = result.series
    narrative = summarize_narrative(result.readings)
    warnings: list[str] = []
    if series is not None and series.stale:
        warnings.append("Price refresh failed; using last good series")
    if series is not None and series.last_bar_status == "forming":
        warnings.append("Last daily bar is still forming")

    response: dict[str, Any] = {
        "symbol": symbol.upper().strip(),
        "status": result.status,
        "applied": result.applied,
        "copy": result.copy.to_dict(),
        "narrative": narrative,
    }

    if result.status == STATUS_NOT_EVALUATED:
        response["reversal_index"] = None
        response["message"] = "No price data available yet; the index has not been evaluated."
    else:
        state = result.state
        response["reversal_index"] = normalize_record(state_to_record(state))
        response["gates"] = {
            "passed": count_passed(result.conditions, ConditionGroup.GATE),
            "enabled": sum(
                1 for c in result.conditions if c.group == ConditionGroup.GATE and c.enabled
            ),
            "higher_low": state.higher_low,
        }
        response["boosters_passed"] = [
            c.id for c in result.conditions
            if c.group == ConditionGroup.BOOSTER and c.enabled and c.passed
        ]

    if result.transition is not None:
        response["notifications"] = list(result.transition.payloads)

    if series is not None and not series.empty:
        close = series.df["close"]
        return_30d = calculate_returns(close, 30)
        response["price"] = {
            "last_close": round(float(close.iloc[-1]), 2),
            "return_30d": round(return_30d, 4) if return_30d is not None else None,
            "rows": len(series.df),
            "last_bar_status": series.last_bar_status,
        }

    derivatives = result.derivatives
    duration_ms = (perf_counter() - start_time) * 1000
    response["meta"] = build_meta("get_reversal_index", duration_ms)
    response["data_provenance"] = {
        "price": build_provenance(
            "yfinance",
            as_of=series.fetched_at if series else None,
            cache=series.source if series else "none",
            stale=bool(series and series.stale),
            resource_uri=series.uri if series else None,
            warnings=warnings,
        ),
        "narrative": build_provenance(
            "polymarket",
            signals_with_data=sum(1 for r in result.readings if r.probability is not None),
            signals_total=len(result.readings),
        ),
        "derivatives": build_provenance(
            "binance",
            funding_24h_weighted=derivatives.funding_24h_weighted if derivatives else None,
            oi_3d_change_pct=derivatives.oi_3d_change_pct if derivatives else None,
        ),
    }

    return response
