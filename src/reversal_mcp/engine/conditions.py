"""Technical condition evaluator.

Turns a daily candle series into one ConditionResult per configured condition.
Gates decide the phase cap; boosters only add confidence to the sub-scores.
"""

import logging
import operator
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, NamedTuple

import pandas as pd

from reversal_mcp.utils.indicators import (
    annualize_volatility,
    calculate_realized_volatility,
    calculate_rsi,
    calculate_slope,
    calculate_sma,
    check_higher_low,
    percentile_rank,
)
from reversal_mcp.utils.validators import check_rule, check_rule_expr, clamp

logger = logging.getLogger(__name__)

INSUFFICIENT_DATA = "insufficient_data"
STALE_SUFFIX = " [stale]"

SLOPE_WINDOW = 30
SLOPE_MIN_POINTS = 10
VOL_WINDOW = 30
VOL_LONG_WINDOW = 60
VOL_HISTORY_DAYS = 365
VOL_MIN_HISTORY_POINTS = 30
DIVERGENCE_WINDOW = 30
VOLUME_RECENT_DAYS = 14
VOLUME_AVG_DAYS = 90
VOLUME_MIN_STRONG_DAYS = 4
RANGE_LOOKBACK = 90
SUPPORT_LOOKBACK_DAYS = 730
SUPPORT_MIN_HISTORY = 180

ALLOWED_MA_PERIODS = (120, 200, 250)
ALLOWED_HL_WINDOWS = (4, 6, 8)
ALLOWED_VOL_PERCENTILES = (10, 15, 20)
ALLOWED_SUPPORT_DISTANCES = (3, 5, 8)


class ConditionGroup(str, Enum):
    """Condition group."""

    GATE = "Gate"
    BOOSTER = "Booster"


@dataclass(frozen=True)
class PersonalParams:
    """User-adjustable evaluation parameters."""

    ma_period: int = 200
    hl_window: int = 6  # weeks
    vol_percentile: int = 20
    support_distance: int = 5  # percent

    def __post_init__(self) -> None:
        checks = (
            ("ma_period", self.ma_period, ALLOWED_MA_PERIODS),
            ("hl_window", self.hl_window, ALLOWED_HL_WINDOWS),
            ("vol_percentile", self.vol_percentile, ALLOWED_VOL_PERCENTILES),
            ("support_distance", self.support_distance, ALLOWED_SUPPORT_DISTANCES),
        )
        for name, value, allowed in checks:
            if value not in allowed:
                raise ValueError(f"Invalid {name} '{value}'. Must be one of: {allowed}")


DEFAULT_PERSONAL_PARAMS = PersonalParams()


@dataclass(frozen=True)
class ConditionResult:
    """Outcome of one condition for one evaluation run."""

    id: str
    group: ConditionGroup
    name: str
    enabled: bool
    passed: bool
    score: float  # 0-1 closeness to threshold
    confidence: float  # 0-1 data quality
    detail: str
    description: str
    direction: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["group"] = self.group.value
        data["score"] = round(self.score, 4)
        return data


class _Outcome(NamedTuple):
    passed: bool
    score: float
    detail: str
    direction: str | None = None


@dataclass(frozen=True)
class ConditionDef:
    """Static definition of a condition."""

    id: str
    group: ConditionGroup
    name: str
    description: str
    default_enabled: bool
    min_history: Callable[[PersonalParams], int]
    evaluate: Callable[[pd.DataFrame, PersonalParams], _Outcome | None] = field(repr=False)


def _last(series: pd.Series) -> float | None:
    """Last value as float, None if NaN."""
    if len(series) == 0 or pd.isna(series.iloc[-1]):
        return None
    return float(series.iloc[-1])


# ============================================================================
# GATES
# ============================================================================


def _price_vs_ma(df: pd.DataFrame, params: PersonalParams) -> _Outcome | None:
    """Price within 5% below the long MA, or above it."""
    close = df["close"]
    last_ma = _last(calculate_sma(close, params.ma_period))
    last_close = _last(close)
    if not last_ma or last_close is None:
        return None

    distance = (last_close - last_ma) / last_ma
    passed = check_rule(distance, -0.05, operator.gt)
    # -10% -> 0, +5% -> 1
    score = clamp((distance + 0.10) / 0.15, 0.0, 1.0)
    return _Outcome(passed, score, f"Distance: {distance * 100:.1f}% vs SMA{params.ma_period}")


def _ma_slope(df: pd.DataFrame, params: PersonalParams) -> _Outcome | None:
    """Long MA slope no longer meaningfully negative."""
    sma = calculate_sma(df["close"], params.ma_period)
    recent = sma.iloc[-SLOPE_WINDOW:].dropna()
    if len(recent) < SLOPE_MIN_POINTS or recent.iloc[0] == 0:
        return None

    slope = calculate_slope(recent)
    if slope is None:
        return None
    normalized = slope / float(recent.iloc[0])

    passed = check_rule(normalized, -0.0005, operator.gt)
    score = clamp((normalized + 0.002) / 0.003, 0.0, 1.0)
    return _Outcome(passed, score, f"Slope: {normalized * 10000:.2f}bps/day")


def _higher_low(df: pd.DataFrame, params: PersonalParams) -> _Outcome | None:
    """Latest window's low above the previous window's low."""
    higher, recent_low, prior_low = check_higher_low(df["low"], params.hl_window * 7)
    if higher is None or not prior_low:
        return None

    change = (recent_low - prior_low) / prior_low
    # Passing scores live in [0.5, 1], near misses in [0, 0.5)
    if higher:
        score = 0.5 + 0.5 * clamp(change / 0.10, 0.0, 1.0)
        label = "Structure improving"
    else:
        score = 0.5 * clamp(1 + change / 0.10, 0.0, 1.0)
        label = "No higher low detected"
    return _Outcome(
        higher,
        score,
        f"{label} (recent low {recent_low:,.0f} vs prior {prior_low:,.0f})",
    )


def _vol_compression(df: pd.DataFrame, params: PersonalParams) -> _Outcome | None:
    """Current 30d volatility in the bottom percentile of the trailing year."""
    vol = calculate_realized_volatility(df["close"], VOL_WINDOW)
    current = _last(vol)
    history = vol.iloc[-VOL_HISTORY_DAYS:].dropna()
    if current is None or len(history) < VOL_MIN_HISTORY_POINTS:
        return None

    pct = percentile_rank(current, history)
    threshold = params.vol_percentile
    passed = check_rule(pct, threshold, operator.lt)
    score = clamp((threshold - pct) / threshold, 0.0, 1.0)
    annualized = annualize_volatility(current)
    return _Outcome(
        passed,
        score,
        f"Percentile: {pct:.0f}% (annualized vol {annualized * 100:.0f}%)",
    )


# ============================================================================
# BOOSTERS
# ============================================================================


def _momentum_divergence(df: pd.DataFrame, params: PersonalParams) -> _Outcome | None:
    """Price lower low while RSI makes a higher low."""
    rsi = calculate_rsi(df["close"], 14)
    low = df["low"]
    w = DIVERGENCE_WINDOW

    rsi_recent = rsi.iloc[-w:].dropna()
    rsi_prev = rsi.iloc[-2 * w:-w].dropna()
    if len(rsi_recent) == 0 or len(rsi_prev) == 0:
        return None

    price_lower_low = float(low.iloc[-w:].min()) < float(low.iloc[-2 * w:-w].min())
    rsi_higher_low = float(rsi_recent.min()) > float(rsi_prev.min())
    passed = price_lower_low and rsi_higher_low

    if passed:
        return _Outcome(True, 1.0, "Bullish divergence detected")
    if rsi_higher_low:
        return _Outcome(False, 0.5, "RSI higher low without a new price low")
    return _Outcome(False, 0.0, "No divergence")


def _volume_confirmation(df: pd.DataFrame, params: PersonalParams) -> _Outcome | None:
    """Up candles backed by above-average volume."""
    avg_volume = float(df["volume"].iloc[-VOLUME_AVG_DAYS:].mean())
    if pd.isna(avg_volume):
        return None

    recent = df.iloc[-VOLUME_RECENT_DAYS:]
    strong_days = int(((recent["close"] > recent["open"]) & (recent["volume"] > avg_volume)).sum())
    passed = strong_days >= VOLUME_MIN_STRONG_DAYS
    score = clamp(strong_days / 7, 0.0, 1.0)
    return _Outcome(passed, score, f"{strong_days} strong up days ({VOLUME_RECENT_DAYS}d)")


def _range_breakout(df: pd.DataFrame, params: PersonalParams) -> _Outcome | None:
    """Close above the prior 90-day range high."""
    range_high = float(df["high"].iloc[-RANGE_LOOKBACK:-1].max())
    current_close = _last(df["close"])
    if current_close is None or pd.isna(range_high) or range_high == 0:
        return None

    distance = (current_close - range_high) / range_high
    passed = check_rule_expr(current_close, range_high, operator.gt)
    if passed:
        score = 0.5 + 0.5 * clamp(distance * 10, 0.0, 1.0)
        detail = f"Broke {range_high:,.0f} by {distance * 100:.1f}%"
    else:
        score = 0.5 * clamp(1 + distance * 10, 0.0, 1.0)
        detail = f"{-distance * 100:.1f}% below range high"
    return _Outcome(passed, score, detail)


def _vol_expansion(df: pd.DataFrame, params: PersonalParams) -> _Outcome | None:
    """Short-term volatility jumping above the longer baseline."""
    close = df["close"]
    current_30 = _last(calculate_realized_volatility(close, VOL_WINDOW))
    # Baseline ends where the recent window starts
    baseline = _last(calculate_realized_volatility(close, VOL_LONG_WINDOW).shift(VOL_WINDOW))
    last_ma50 = _last(calculate_sma(close, 50))
    last_close = _last(close)
    if not baseline or current_30 is None or last_ma50 is None or last_close is None:
        return None

    ratio = current_30 / baseline
    passed = check_rule(ratio, 1.5, operator.gt)
    direction = "up" if last_close >= last_ma50 else "down"
    score = clamp(ratio - 1, 0.0, 1.0)
    return _Outcome(passed, score, f"Vol ratio: {ratio:.2f}x ({direction})", direction)


def _support_proximity(df: pd.DataFrame, params: PersonalParams) -> _Outcome | None:
    """Close near the lowest low of the last two years."""
    support = float(df["low"].iloc[-SUPPORT_LOOKBACK_DAYS:].min())
    last_close = _last(df["close"])
    if last_close is None or pd.isna(support) or support <= 0:
        return None

    distance_pct = (last_close - support) / support * 100
    threshold = params.support_distance
    passed = check_rule(distance_pct, threshold, operator.le)
    # At threshold -> 0.5, at support -> 1, at twice the threshold -> 0
    score = clamp(1 - distance_pct / (2 * threshold), 0.0, 1.0)
    return _Outcome(passed, score, f"{distance_pct:.1f}% above 2Y support {support:,.0f}")


# ============================================================================
# CATALOG
# ============================================================================


CONDITION_DEFS: tuple[ConditionDef, ...] = (
    ConditionDef(
        id="price_vs_200d",
        group=ConditionGroup.GATE,
        name="Price vs Long-Term MA",
        description=(
            "Distance between price and the long-term moving average. The long MA is the "
            "market's cost consensus; reclaiming it signals the long-term trend may be turning."
        ),
        default_enabled=True,
        min_history=lambda p: p.ma_period,
        evaluate=_price_vs_ma,
    ),
    ConditionDef(
        id="ma_slope_flat",
        group=ConditionGroup.GATE,
        name="MA Slope Flatten",
        description=(
            "Slope of the long-term moving average. A falling MA that flattens means "
            "selling pressure is being absorbed, a precondition for a base."
        ),
        default_enabled=True,
        min_history=lambda p: p.ma_period + SLOPE_WINDOW - 1,
        evaluate=_ma_slope,
    ),
    ConditionDef(
        id="higher_low",
        group=ConditionGroup.GATE,
        name="Higher Low",
        description=(
            "Compares the two most recent swing windows. A higher low shows buyers "
            "stepping in above the previous low (Dow theory)."
        ),
        default_enabled=True,
        min_history=lambda p: p.hl_window * 7 * 2,
        evaluate=_higher_low,
    ),
    ConditionDef(
        id="vol_compression",
        group=ConditionGroup.GATE,
        name="Volatility Compression",
        description=(
            "Realized volatility ranked against the trailing year. Low volatility stores "
            "energy like a compressed spring and often precedes a large move."
        ),
        default_enabled=True,
        min_history=lambda p: VOL_WINDOW + VOL_MIN_HISTORY_POINTS,
        evaluate=_vol_compression,
    ),
    ConditionDef(
        id="momentum_divergence",
        group=ConditionGroup.BOOSTER,
        name="Momentum Divergence",
        description=(
            "Price prints a lower low while RSI holds a higher low. Selling momentum is "
            "fading, an early reversal signal."
        ),
        default_enabled=True,
        min_history=lambda p: 3 * DIVERGENCE_WINDOW,
        evaluate=_momentum_divergence,
    ),
    ConditionDef(
        id="volume_confirmation",
        group=ConditionGroup.BOOSTER,
        name="Volume Confirmation",
        description=(
            "Up days accompanied by above-average volume. Moves without volume "
            "rarely last."
        ),
        default_enabled=False,
        min_history=lambda p: VOLUME_AVG_DAYS,
        evaluate=_volume_confirmation,
    ),
    ConditionDef(
        id="range_breakout",
        group=ConditionGroup.BOOSTER,
        name="Range Breakout",
        description=(
            "Close above the 90-day range high. Breaking out of a long range usually "
            "starts a new trend leg."
        ),
        default_enabled=False,
        min_history=lambda p: RANGE_LOOKBACK,
        evaluate=_range_breakout,
    ),
    ConditionDef(
        id="vol_expansion",
        group=ConditionGroup.BOOSTER,
        name="Volatility Expansion",
        description=(
            "30-day volatility above 1.5x the preceding 60-day baseline. Regime change is under "
            "way; a downward expansion warns of a false start."
        ),
        default_enabled=True,
        min_history=lambda p: VOL_LONG_WINDOW + VOL_WINDOW + 1,
        evaluate=_vol_expansion,
    ),
    ConditionDef(
        id="support_proximity",
        group=ConditionGroup.BOOSTER,
        name="Historical Support",
        description=(
            "Price close to the two-year low. Heavy-turnover zones are remembered by "
            "the market and tend to attract value buyers."
        ),
        default_enabled=True,
        min_history=lambda p: SUPPORT_MIN_HISTORY,
        evaluate=_support_proximity,
    ),
)

CONDITION_IDS = tuple(d.id for d in CONDITION_DEFS)


def default_enabled_ids(catalog: Iterable[ConditionDef] = CONDITION_DEFS) -> frozenset[str]:
    """IDs enabled out of the box."""
    return frozenset(d.id for d in catalog if d.default_enabled)


def _insufficient(
    definition: ConditionDef, enabled: bool, reason: str
) -> ConditionResult:
    return ConditionResult(
        id=definition.id,
        group=definition.group,
        name=definition.name,
        enabled=enabled,
        passed=False,
        score=0.0,
        confidence=0.0,
        detail=f"{INSUFFICIENT_DATA}: {reason}",
        description=definition.description,
    )


def evaluate_conditions(
    df: pd.DataFrame | None,
    params: PersonalParams = DEFAULT_PERSONAL_PARAMS,
    enabled_ids: Iterable[str] | None = None,
    stale: bool = False,
    catalog: tuple[ConditionDef, ...] = CONDITION_DEFS,
) -> list[ConditionResult]:
    """
    Evaluate every configured condition against a candle series.

    An empty series yields an empty list, which means "not yet evaluated"
    rather than "all conditions failed".

    Args:
        df: Standardized OHLCV frame, ascending by timestamp
        params: Personal parameters
        enabled_ids: Enabled condition IDs (default: catalog defaults)
        stale: Series came from the last-good cache after a failed refresh
        catalog: Condition definitions to evaluate

    Returns:
        One ConditionResult per definition, in catalog order
    """
    if df is None or df.empty:
        return []

    enabled = frozenset(enabled_ids) if enabled_ids is not None else default_enabled_ids(catalog)
    results: list[ConditionResult] = []

    for definition in catalog:
        is_enabled = definition.id in enabled
        required = definition.min_history(params)

        if len(df) < required:
            results.append(
                _insufficient(definition, is_enabled, f"need {required} candles, have {len(df)}")
            )
            continue

        outcome = definition.evaluate(df, params)
        if outcome is None:
            results.append(_insufficient(definition, is_enabled, "indicator unavailable"))
            continue

        detail = outcome.detail + STALE_SUFFIX if stale else outcome.detail
        results.append(
            ConditionResult(
                id=definition.id,
                group=definition.group,
                name=definition.name,
                enabled=is_enabled,
                passed=bool(outcome.passed),
                score=float(outcome.score),
                confidence=0.5 if stale else 1.0,
                detail=detail,
                description=definition.description,
                direction=outcome.direction,
            )
        )

    logger.debug(
        f"Evaluated {len(results)} conditions on {len(df)} candles "
        f"(gates passed={count_passed(results, ConditionGroup.GATE)})"
    )
    return results


def count_passed(results: Iterable[ConditionResult], group: ConditionGroup) -> int:
    """Number of enabled, passed results in a group."""
    return sum(1 for r in results if r.group == group and r.enabled and r.passed)


def condition_passed(results: Iterable[ConditionResult], condition_id: str) -> bool:
    """Whether a specific enabled condition passed."""
    return any(r.id == condition_id and r.enabled and r.passed for r in results)
