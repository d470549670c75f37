"""Phase engine: sub-score fusion, phase cap and stage classification.

Every function here is pure. The evaluation pipeline gathers inputs,
calls compute_reversal_state once per run and gets back a fresh snapshot.
"""

import logging
import math
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from reversal_mcp.engine.conditions import (
    ConditionGroup,
    ConditionResult,
    condition_passed,
    count_passed,
)
from reversal_mcp.engine.policy import (
    BOOSTER_COMPONENT_MAX,
    CONFIRMED_MIN_GATES_WITH_HIGHER_LOW,
    CONFIRMED_MIN_SCORE,
    CYCLE_MAX,
    DERIVATIVES_COMPONENT_MAX,
    MAX_GATES,
    MVRV_COMPONENT_MAX,
    MVRV_DEEP_VALUE_BELOW,
    MVRV_NEUTRAL_BELOW,
    MVRV_VALUE_BELOW,
    NARRATIVE_MAX,
    NEUTRAL_FUNDING_PCT,
    NEUTRAL_MVRV_Z,
    NEUTRAL_OI_3D_CHANGE_PCT,
    NEUTRAL_PUELL,
    PHASE_CAP_BREAKPOINTS,
    PREPARE_MIN_GATES,
    PREPARE_MIN_SCORE,
    PUELL_BANDS,
    PUELL_COMPONENT_MAX,
    TREND_MAX,
    VETO_FUNDING_PCT,
    VETO_OI_3D_CHANGE_PCT,
    WATCH_MIN_SCORE,
)
from reversal_mcp.utils.validators import clamp

logger = logging.getLogger(__name__)

BOOSTER_POINTS = 2.0


class Stage(str, Enum):
    BOTTOM_BREAK = "BOTTOM_BREAK"
    WATCH = "WATCH"
    PREPARE = "PREPARE"
    CONFIRMED = "CONFIRMED"


class CycleZone(str, Enum):
    DEEP_VALUE = "DEEP_VALUE"
    VALUE = "VALUE"
    NEUTRAL = "NEUTRAL"
    HEATED = "HEATED"
    UNKNOWN = "UNKNOWN"


class WatchReason(str, Enum):
    ZONE_GUARANTEE = "ZONE_GUARANTEE"
    SCORE_THRESHOLD = "SCORE_THRESHOLD"


@dataclass(frozen=True)
class OnChainReadings:
    """On-chain valuation readings. None means unavailable."""

    mvrv_z: float | None = None
    puell: float | None = None


@dataclass(frozen=True)
class DerivativesSnapshot:
    """Perpetual futures positioning."""

    funding_24h_weighted: float | None = None  # percent per 8h
    oi_3d_change_pct: float | None = None


@dataclass(frozen=True)
class CycleBreakdown:
    mvrv: float
    puell: float
    derivatives: float
    base: float | None
    fallbacks: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReversalInputs:
    """Everything compute_reversal_state needs. None marks a missing sub-score."""

    gate_count: int
    higher_low: bool
    trend_score: float | None
    cycle_base: float | None
    cycle_user: float | None
    narrative_score: float | None
    zone: CycleZone = CycleZone.UNKNOWN
    veto: bool = False
    stale: bool = False
    max_gates: int = MAX_GATES
    # Cycle readings replaced by neutral values
    cycle_fallbacks: tuple[str, ...] = ()


@dataclass(frozen=True)
class ReversalState:
    """
    Immutable snapshot of one evaluation.

    Sub-score fields hold the clamped values that went into the sum.
    final_score == min(phase_cap, raw_composite).
    """

    final_score: float
    raw_composite: float
    phase_cap: int
    gate_count: int
    higher_low: bool
    trend_score_raw: float
    cycle_score_raw: float
    cycle_base: float
    cycle_user: float
    narrative_score: float
    stage: Stage
    zone: CycleZone
    watch_reason: WatchReason | None
    veto: bool
    degraded: bool
    degraded_reasons: tuple[str, ...]
    evaluated_at: int  # ms epoch


# ============================================================================
# COMPONENTS
# ============================================================================


def phase_cap(gate_count: int, max_gates: int = MAX_GATES) -> int:
    """
    Maximum final score allowed for a gate count.

    Raises:
        ValueError: gate_count outside [0, max_gates]
    """
    if isinstance(gate_count, bool) or not isinstance(gate_count, int):
        raise ValueError(f"gate_count must be an integer, got {gate_count!r}")
    if not 0 <= gate_count <= max_gates:
        raise ValueError(f"gate_count {gate_count} outside [0, {max_gates}]")

    cap = PHASE_CAP_BREAKPOINTS[0][1]
    for min_gates, breakpoint_cap in PHASE_CAP_BREAKPOINTS:
        if gate_count >= min_gates:
            cap = breakpoint_cap
    return cap


def trend_score_from_conditions(results: Iterable[ConditionResult]) -> float | None:
    """
    Trend sub-score (0-25) from the mean score of enabled gates.

    Returns None when no enabled gate could be evaluated.
    """
    gates = [r for r in results if r.group == ConditionGroup.GATE and r.enabled]
    if not gates or all(r.confidence == 0 for r in gates):
        return None
    avg = sum(r.score for r in gates) / len(gates)
    return clamp(avg * TREND_MAX, 0.0, TREND_MAX)


def _mvrv_points(mvrv_z: float) -> float:
    # z <= 0 scores full marks, z >= 3 scores nothing
    return clamp(
        (MVRV_NEUTRAL_BELOW - mvrv_z) / (MVRV_NEUTRAL_BELOW - MVRV_DEEP_VALUE_BELOW) * MVRV_COMPONENT_MAX,
        0.0,
        MVRV_COMPONENT_MAX,
    )


def _puell_points(puell: float) -> float:
    for upper, points in PUELL_BANDS:
        if puell < upper:
            return clamp(points, 0.0, PUELL_COMPONENT_MAX)
    return 0.0


def _derivatives_points(funding: float, oi_change: float) -> float:
    if funding <= 0:
        points = 4.0
    elif funding < NEUTRAL_FUNDING_PCT:
        points = 3.0
    elif funding < VETO_FUNDING_PCT:
        points = 1.0
    else:
        points = 0.0
    # Open interest unwinding means leverage is being flushed
    if oi_change < 0:
        points += 1.0
    return clamp(points, 0.0, DERIVATIVES_COMPONENT_MAX)


def cycle_components(
    on_chain: OnChainReadings | None,
    derivatives: DerivativesSnapshot | None,
) -> CycleBreakdown:
    """
    On-chain and derivatives part of the cycle score.

    A single missing reading falls back to its neutral value. With no
    readings at all the base is None so the caller can degrade.
    """
    on_chain = on_chain or OnChainReadings()
    derivatives = derivatives or DerivativesSnapshot()
    readings = (
        on_chain.mvrv_z,
        on_chain.puell,
        derivatives.funding_24h_weighted,
        derivatives.oi_3d_change_pct,
    )
    fallbacks = []

    def _value(value: float | None, neutral: float, name: str) -> float:
        if value is None or math.isnan(value):
            fallbacks.append(name)
            return neutral
        return value

    mvrv = _mvrv_points(_value(on_chain.mvrv_z, NEUTRAL_MVRV_Z, "mvrv_z"))
    puell = _puell_points(_value(on_chain.puell, NEUTRAL_PUELL, "puell"))
    deriv = _derivatives_points(
        _value(derivatives.funding_24h_weighted, NEUTRAL_FUNDING_PCT, "funding"),
        _value(derivatives.oi_3d_change_pct, NEUTRAL_OI_3D_CHANGE_PCT, "open_interest"),
    )

    if len(fallbacks) == len(readings):
        return CycleBreakdown(mvrv, puell, deriv, base=None, fallbacks=tuple(fallbacks))
    return CycleBreakdown(mvrv, puell, deriv, base=mvrv + puell + deriv, fallbacks=tuple(fallbacks))


def cycle_user_from_boosters(results: Iterable[ConditionResult]) -> float:
    """
    Cycle points (0-5) from passed, enabled boosters.

    A downward volatility expansion subtracts instead of adding.
    """
    points = 0.0
    for r in results:
        if r.group != ConditionGroup.BOOSTER or not r.enabled or not r.passed:
            continue
        if r.id == "vol_expansion" and r.direction == "down":
            points -= BOOSTER_POINTS
        else:
            points += BOOSTER_POINTS * r.score
    return clamp(points, 0.0, BOOSTER_COMPONENT_MAX)


def cycle_zone(mvrv_z: float | None) -> CycleZone:
    """Valuation zone from the MVRV Z-score."""
    if mvrv_z is None or math.isnan(mvrv_z):
        return CycleZone.UNKNOWN
    if mvrv_z < MVRV_DEEP_VALUE_BELOW:
        return CycleZone.DEEP_VALUE
    if mvrv_z < MVRV_VALUE_BELOW:
        return CycleZone.VALUE
    if mvrv_z < MVRV_NEUTRAL_BELOW:
        return CycleZone.NEUTRAL
    return CycleZone.HEATED


def detect_veto(derivatives: DerivativesSnapshot | None) -> bool:
    """Overheated leverage: funding or open-interest growth above threshold."""
    if derivatives is None:
        return False
    funding = derivatives.funding_24h_weighted
    oi_change = derivatives.oi_3d_change_pct
    return bool(
        (funding is not None and funding >= VETO_FUNDING_PCT)
        or (oi_change is not None and oi_change >= VETO_OI_3D_CHANGE_PCT)
    )


def build_inputs(
    results: list[ConditionResult],
    narrative_score: float | None,
    on_chain: OnChainReadings | None = None,
    derivatives: DerivativesSnapshot | None = None,
    stale: bool = False,
) -> ReversalInputs:
    """Assemble ReversalInputs from evaluator output and collaborator readings."""
    cycle = cycle_components(on_chain, derivatives)
    if cycle.fallbacks:
        logger.info(f"Cycle score using neutral fallbacks for: {', '.join(cycle.fallbacks)}")

    return ReversalInputs(
        gate_count=count_passed(results, ConditionGroup.GATE),
        higher_low=condition_passed(results, "higher_low"),
        trend_score=trend_score_from_conditions(results),
        cycle_base=cycle.base,
        cycle_user=cycle_user_from_boosters(results),
        narrative_score=narrative_score,
        zone=cycle_zone(on_chain.mvrv_z if on_chain else None),
        veto=detect_veto(derivatives),
        stale=stale,
        cycle_fallbacks=cycle.fallbacks if cycle.base is not None else (),
    )


# ============================================================================
# STAGE CLASSIFICATION
# ============================================================================


@dataclass(frozen=True)
class _StageContext:
    final_score: float
    gate_count: int
    max_gates: int
    higher_low: bool
    zone: CycleZone


@dataclass(frozen=True)
class _StagePredicate:
    stage: Stage
    watch_reason: WatchReason | None
    blocked_by_veto: bool
    test: Callable[[_StageContext], bool]


def _is_confirmed(ctx: _StageContext) -> bool:
    structure = ctx.gate_count == ctx.max_gates or (
        ctx.gate_count >= CONFIRMED_MIN_GATES_WITH_HIGHER_LOW and ctx.higher_low
    )
    return ctx.final_score >= CONFIRMED_MIN_SCORE and structure


# First match wins. Execution is mutually exclusive: no fallthrough.
# ZONE_GUARANTEE sits before SCORE_THRESHOLD on purpose: a deep-value zone
# keeps WATCH regardless of score and is reported as the reason even when
# the score would also qualify.
STAGE_PREDICATES: tuple[_StagePredicate, ...] = (
    _StagePredicate(Stage.CONFIRMED, None, True, _is_confirmed),
    _StagePredicate(
        Stage.PREPARE,
        None,
        True,
        lambda ctx: ctx.final_score >= PREPARE_MIN_SCORE and ctx.gate_count >= PREPARE_MIN_GATES,
    ),
    _StagePredicate(
        Stage.WATCH,
        WatchReason.ZONE_GUARANTEE,
        False,
        lambda ctx: ctx.zone == CycleZone.DEEP_VALUE,
    ),
    _StagePredicate(
        Stage.WATCH,
        WatchReason.SCORE_THRESHOLD,
        False,
        lambda ctx: ctx.final_score >= WATCH_MIN_SCORE,
    ),
    _StagePredicate(Stage.BOTTOM_BREAK, None, False, lambda ctx: True),
)


def classify_stage(ctx: _StageContext, veto: bool) -> tuple[Stage, WatchReason | None]:
    """Walk the ordered predicates and return the first match."""
    for predicate in STAGE_PREDICATES:
        if veto and predicate.blocked_by_veto:
            continue
        if predicate.test(ctx):
            return predicate.stage, predicate.watch_reason
    raise RuntimeError("Stage predicates are not exhaustive")


def _is_missing(value: float | None) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def compute_reversal_state(
    inputs: ReversalInputs,
    last_good: ReversalState | None = None,
    now_ms: int | None = None,
) -> ReversalState:
    """
    Fuse sub-scores into the capped Reversal Index and classify the stage.

    A missing sub-score is replaced by last_good's value for that sub-score
    (or 0 without history) and the snapshot is flagged degraded.
    Cycle readings scored at their neutral value also flag it.

    Args:
        inputs: Sub-scores and structural readings
        last_good: Previous applied snapshot, if any
        now_ms: Evaluation timestamp override (ms epoch)

    Returns:
        New ReversalState

    Raises:
        ValueError: gate_count outside [0, max_gates]
    """
    cap = phase_cap(inputs.gate_count, inputs.max_gates)
    reasons: list[str] = []

    def _resolve(value: float | None, previous_field: str, name: str, upper: float) -> float:
        if _is_missing(value):
            reasons.append(f"{name}_missing")
            value = getattr(last_good, previous_field) if last_good is not None else 0.0
        return clamp(float(value), 0.0, upper)

    trend = _resolve(inputs.trend_score, "trend_score_raw", "trend_score", TREND_MAX)
    cycle_base = _resolve(inputs.cycle_base, "cycle_base", "cycle_base", CYCLE_MAX)
    cycle_user = _resolve(inputs.cycle_user, "cycle_user", "cycle_user", BOOSTER_COMPONENT_MAX)
    narrative = _resolve(inputs.narrative_score, "narrative_score", "narrative_score", NARRATIVE_MAX)
    cycle = clamp(cycle_base + cycle_user, 0.0, CYCLE_MAX)
    reasons.extend(f"cycle_{name}_neutral" for name in inputs.cycle_fallbacks)

    if inputs.stale:
        reasons.append("stale_price_data")

    raw_composite = trend + cycle + narrative
    final_score = min(raw_composite, float(cap))

    ctx = _StageContext(
        final_score=final_score,
        gate_count=inputs.gate_count,
        max_gates=inputs.max_gates,
        higher_low=inputs.higher_low,
        zone=inputs.zone,
    )
    stage, watch_reason = classify_stage(ctx, inputs.veto)

    if reasons:
        logger.warning(f"Degraded evaluation: {', '.join(reasons)}")

    return ReversalState(
        final_score=final_score,
        raw_composite=raw_composite,
        phase_cap=cap,
        gate_count=inputs.gate_count,
        higher_low=inputs.higher_low,
        trend_score_raw=trend,
        cycle_score_raw=cycle,
        cycle_base=cycle_base,
        cycle_user=cycle_user,
        narrative_score=narrative,
        stage=stage,
        zone=inputs.zone,
        watch_reason=watch_reason,
        veto=inputs.veto,
        degraded=bool(reasons),
        degraded_reasons=tuple(reasons),
        evaluated_at=now_ms if now_ms is not None else int(time.time() * 1000),
    )
