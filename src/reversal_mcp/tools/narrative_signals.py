"""Narrative signals tool."""

from time import perf_counter
from typing import Any

from reversal_mcp.data.polymarket_client import fetch_signal_markets
from reversal_mcp.data.retry import ServerShuttingDownError
from reversal_mcp.engine.narrative import (
    SIGNAL_CATALOG,
    MarketParseError,
    ScoringMode,
    aggregate_narrative_score,
    contribution_status,
    fed_breakdown,
    interpret_probability,
    parse_market,
    signal_contribution,
    summarize_narrative,
)
from reversal_mcp.pipeline import MarketFetcher, read_signals
from reversal_mcp.utils.provenance import build_error_response, build_meta, build_provenance


async def narrative_signals(
    categories: list[str] | None = None,
    market_fetcher: MarketFetcher = fetch_signal_markets,
) -> dict[str, Any]:
    """
    Fetch and normalize prediction-market narrative signals.

    Args:
        categories: Restrict to these categories (Macro, Political, Narrative, Risk)
        market_fetcher: Market fetch override

    Returns:
        Dict with per-signal probabilities, contributions and an overall summary
    """
    start_time = perf_counter()

    signals = SIGNAL_CATALOG
    if categories:
        wanted = {c.strip().lower() for c in categories}
        signals = tuple(s for s in SIGNAL_CATALOG if s.category.value.lower() in wanted)
        if not signals:
            return build_error_response(
                "invalid_params",
                f"No signals in categories {sorted(wanted)}",
                tool="get_narrative_signals",
            )

    try:
        markets = await market_fetcher(signals)
    except ServerShuttingDownError as e:
        return build_error_response("shutting_down", str(e), tool="get_narrative_signals")

    readings = read_signals(signals, markets)
    items = []
    for reading in readings:
        signal = reading.signal
        item: dict[str, Any] = {
            "id": signal.id,
            "title": signal.title,
            "category": signal.category.value,
            "scoring_mode": signal.scoring_mode.value,
            "slug": signal.slug,
            "available": reading.probability is not None,
            "probability": round(reading.probability, 4) if reading.probability is not None else None,
        }
        if reading.probability is not None:
            contribution = signal_contribution(reading.probability)
            item["contribution"] = round(contribution, 2)
            item["status"] = contribution_status(contribution)
            item.update(interpret_probability(reading.probability * 100))

        raw = markets.get(signal.id)
        if signal.scoring_mode == ScoringMode.FED_CUT and raw is not None:
            try:
                item["rate_breakdown"] = fed_breakdown(parse_market(raw))
            except MarketParseError:
                item["rate_breakdown"] = None
        items.append(item)

    narrative_score = aggregate_narrative_score(r.probability for r in readings)
    missing = [r.signal.id for r in readings if r.probability is None]

    duration_ms = (perf_counter() - start_time) * 1000
    return {
        "signals": items,
        "narrative_score": round(narrative_score, 2) if narrative_score is not None else None,
        "summary": summarize_narrative(readings),
        "meta": build_meta("get_narrative_signals", duration_ms),
        "data_provenance": {
            "markets": build_provenance(
                "polymarket",
                signals_with_data=len(readings) - len(missing),
                signals_total=len(readings),
                warnings=[f"No market data for {sid}" for sid in missing],
            ),
        },
    }
