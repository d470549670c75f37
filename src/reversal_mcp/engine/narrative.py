"""Prediction-market probability normalization and narrative aggregation."""

import json
import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from reversal_mcp.engine.policy import (
    NARRATIVE_MAX,
    NARRATIVE_POINTS_PER_SIGNAL,
    NEUTRAL_PROBABILITY,
)
from reversal_mcp.utils.validators import clamp

logger = logging.getLogger(__name__)

CUT_KEYWORDS = ("cut", "decrease", "lower")
HOLD_KEYWORDS = ("hold", "maintain", "unchanged", "no change")
HIKE_KEYWORDS = ("hike", "increase", "raise")

SENTIMENT_BULLISH_PCT = 55
SENTIMENT_BEARISH_PCT = 45
TOP_SIGNAL_COUNT = 3


class MarketParseError(ValueError):
    """Raised when an upstream market payload cannot be parsed."""


class ScoringMode(str, Enum):
    """How a market maps to a bullish-positive probability."""

    BINARY_GOOD = "binary_good"
    BINARY_BAD = "binary_bad"
    FED_CUT = "fed_cut"


class SignalCategory(str, Enum):
    MACRO = "Macro"
    POLITICAL = "Political"
    NARRATIVE = "Narrative"
    RISK = "Risk"


@dataclass(frozen=True)
class NarrativeSignal:
    """Static catalog entry for a prediction-market signal."""

    id: str
    title: str
    scoring_mode: ScoringMode
    slug: str
    category: SignalCategory


@dataclass(frozen=True)
class NormalizedMarket:
    """Strict market shape. Outcomes and prices have equal length."""

    outcomes: tuple[str, ...]
    prices: tuple[float, ...]


@dataclass(frozen=True)
class SignalReading:
    """Normalized probability for one signal. None when no market data."""

    signal: NarrativeSignal
    probability: float | None


SIGNAL_CATALOG: tuple[NarrativeSignal, ...] = (
    NarrativeSignal(
        id="fed_decision",
        title="Fed rate decision",
        scoring_mode=ScoringMode.FED_CUT,
        slug="fed-decision-in-december",
        category=SignalCategory.MACRO,
    ),
    NarrativeSignal(
        id="btc_reserve",
        title="US strategic bitcoin reserve",
        scoring_mode=ScoringMode.BINARY_GOOD,
        slug="will-trump-create-strategic-bitcoin-reserve",
        category=SignalCategory.POLITICAL,
    ),
    NarrativeSignal(
        id="crypto_bill",
        title="Congress passes crypto bill",
        scoring_mode=ScoringMode.BINARY_GOOD,
        slug="will-congress-pass-crypto-bill-2025",
        category=SignalCategory.POLITICAL,
    ),
    NarrativeSignal(
        id="btc_100k",
        title="Bitcoin reaches $100k",
        scoring_mode=ScoringMode.BINARY_GOOD,
        slug="will-bitcoin-reach-100k-in-2024",
        category=SignalCategory.NARRATIVE,
    ),
    NarrativeSignal(
        id="eth_etf",
        title="SEC approves spot ether ETF",
        scoring_mode=ScoringMode.BINARY_GOOD,
        slug="will-sec-approve-ethereum-spot-etf",
        category=SignalCategory.NARRATIVE,
    ),
    NarrativeSignal(
        id="us_recession",
        title="US recession",
        scoring_mode=ScoringMode.BINARY_BAD,
        slug="us-recession-in-2025",
        category=SignalCategory.RISK,
    ),
)


# ============================================================================
# BOUNDARY PARSER
# ============================================================================


def _as_list(value: Any, field_name: str) -> list:
    """Accept a list or a stringified JSON list."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise MarketParseError(f"{field_name} is not valid JSON: {e}") from e
    if not isinstance(value, (list, tuple)):
        raise MarketParseError(f"{field_name} must be a list, got {type(value).__name__}")
    return list(value)


def parse_market(raw: Mapping[str, Any] | None) -> NormalizedMarket:
    """
    Parse an upstream market payload into a NormalizedMarket.

    Args:
        raw: Mapping with "outcomes" and "outcomePrices" (lists or JSON strings)

    Returns:
        NormalizedMarket

    Raises:
        MarketParseError: Missing fields, bad JSON, non-numeric prices,
            non-finite or out-of-range prices, or mismatched lengths
    """
    if not isinstance(raw, Mapping):
        raise MarketParseError(f"Market payload must be a mapping, got {type(raw).__name__}")
    if "outcomes" not in raw or "outcomePrices" not in raw:
        raise MarketParseError("Market payload missing outcomes or outcomePrices")

    outcomes = _as_list(raw["outcomes"], "outcomes")
    raw_prices = _as_list(raw["outcomePrices"], "outcomePrices")

    if len(outcomes) != len(raw_prices):
        raise MarketParseError(
            f"Length mismatch: {len(outcomes)} outcomes vs {len(raw_prices)} prices"
        )
    if not outcomes:
        raise MarketParseError("Market has no outcomes")

    try:
        prices = tuple(float(p) for p in raw_prices)
    except (TypeError, ValueError) as e:
        raise MarketParseError(f"Non-numeric outcome price: {e}") from e
    if not all(math.isfinite(p) for p in prices):
        raise MarketParseError("Outcome price is NaN or infinite")
    if any(p < 0.0 or p > 1.0 for p in prices):
        raise MarketParseError(f"Outcome price outside [0, 1]: {prices}")

    return NormalizedMarket(outcomes=tuple(str(o) for o in outcomes), prices=prices)


# ============================================================================
# PROBABILITY
# ============================================================================


def _yes_probability(market: NormalizedMarket) -> float:
    for label, price in zip(market.outcomes, market.prices):
        if label.strip().lower() == "yes":
            return price
    # No explicit "Yes" label: assume the first outcome is the affirmative one.
    # Upstream ordering is not guaranteed, so this stays a flagged assumption.
    return market.prices[0]


def _matching_sum(market: NormalizedMarket, keywords: Iterable[str]) -> float:
    keywords = tuple(keywords)
    return sum(
        price
        for label, price in zip(market.outcomes, market.prices)
        if any(k in label.lower() for k in keywords)
    )


def positive_probability(mode: ScoringMode, market: NormalizedMarket) -> float:
    """
    Probability in [0, 1] that the market resolves in the bullish direction.

    Args:
        mode: Scoring mode of the signal
        market: Parsed market

    Returns:
        Clamped probability
    """
    if mode == ScoringMode.BINARY_GOOD:
        prob = _yes_probability(market)
    elif mode == ScoringMode.BINARY_BAD:
        prob = 1.0 - _yes_probability(market)
    elif mode == ScoringMode.FED_CUT:
        prob = _matching_sum(market, CUT_KEYWORDS)
    else:
        raise ValueError(f"Unknown scoring mode: {mode!r}")

    # Multi-outcome books can sum slightly above 1
    return clamp(prob, 0.0, 1.0)


def normalize(signal: NarrativeSignal, raw: Mapping[str, Any] | None) -> float:
    """
    Normalize a raw market payload for a signal. Never raises on bad data.

    Malformed payloads are logged and yield the neutral probability 0.5.
    """
    try:
        market = parse_market(raw)
    except MarketParseError as e:
        logger.warning(f"Malformed market data for {signal.id} ({signal.slug}): {e}")
        return NEUTRAL_PROBABILITY
    return positive_probability(signal.scoring_mode, market)


def fed_breakdown(market: NormalizedMarket) -> dict[str, int]:
    """Cut/hold/hike split in whole percent for a rate-decision market."""
    return {
        "cut": round(clamp(_matching_sum(market, CUT_KEYWORDS), 0.0, 1.0) * 100),
        "hold": round(clamp(_matching_sum(market, HOLD_KEYWORDS), 0.0, 1.0) * 100),
        "hike": round(clamp(_matching_sum(market, HIKE_KEYWORDS), 0.0, 1.0) * 100),
    }


# ============================================================================
# AGGREGATION
# ============================================================================


def signal_contribution(probability: float, max_points: float = NARRATIVE_POINTS_PER_SIGNAL) -> float:
    """Points one signal contributes to the narrative display."""
    return clamp(probability, 0.0, 1.0) * max_points


def contribution_status(contribution: float) -> str:
    """met / accumulating / not_met."""
    if contribution > 3.0:
        return "met"
    if contribution > 1.5:
        return "accumulating"
    return "not_met"


def interpret_probability(prob_pct: float) -> dict[str, str]:
    """Market-consensus wording for a probability in percent."""
    if prob_pct >= 70:
        return {"level": "consensus", "interpretation": "Strong market consensus", "impact": "Reinforces the current trend"}
    if prob_pct >= 55:
        return {"level": "leaning", "interpretation": "Market leaning positive", "impact": "Support strengthening"}
    if prob_pct <= 30:
        return {"level": "low", "interpretation": "Market expectations low", "impact": "Potential downside risk"}
    if prob_pct <= 45:
        return {"level": "weak", "interpretation": "Market confidence lacking", "impact": "Momentum softening"}
    return {"level": "neutral", "interpretation": "No consensus yet", "impact": "Neutral impact"}


def aggregate_narrative_score(probabilities: Iterable[float | None]) -> float | None:
    """
    Narrative sub-score from signal probabilities.

    Mean of available probabilities scaled to the narrative ceiling.
    Returns None when no signal has data.
    """
    values = [p for p in probabilities if p is not None]
    if not values:
        return None
    return sum(values) / len(values) * NARRATIVE_MAX


def summarize_narrative(readings: Iterable[SignalReading]) -> dict[str, Any]:
    """Average probability, overall sentiment and the strongest signals."""
    available = [r for r in readings if r.probability is not None]
    if not available:
        return {
            "avg_probability": None,
            "sentiment": "neutral",
            "top_signals": [],
            "summary": "Not enough market data for a narrative read.",
        }

    avg = sum(r.probability for r in available) / len(available)
    avg_pct = avg * 100
    if avg_pct >= SENTIMENT_BULLISH_PCT:
        sentiment = "bullish"
        summary = f"Narrative leans bullish ({avg_pct:.0f}%); markets price support for risk assets."
    elif avg_pct <= SENTIMENT_BEARISH_PCT:
        sentiment = "bearish"
        summary = f"Narrative leans bearish ({avg_pct:.0f}%); markets price headwinds for risk assets."
    else:
        sentiment = "neutral"
        summary = f"Narrative is neutral ({avg_pct:.0f}%); no consensus has formed."

    ranked = sorted(available, key=lambda r: r.probability, reverse=True)[:TOP_SIGNAL_COUNT]
    top_signals = []
    for r in ranked:
        pct = r.probability * 100
        top_signals.append({
            "id": r.signal.id,
            "title": r.signal.title,
            "probability": round(r.probability, 4),
            "probability_display": f"{pct:.0f}%",
            "is_positive": pct >= 50,
            **interpret_probability(pct),
        })

    return {
        "avg_probability": round(avg, 4),
        "sentiment": sentiment,
        "top_signals": top_signals,
        "summary": summary,
    }
