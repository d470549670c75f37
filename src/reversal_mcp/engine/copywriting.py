"""Deterministic user-facing copy for a ReversalState.

No text is generated here. AI-written blurbs arrive as opaque strings
through StageAIFill and only replace the static lists.
"""

from dataclasses import dataclass, field
from enum import Enum

from reversal_mcp.engine.phase import CycleZone, ReversalState, Stage, WatchReason

DATA_DELAYED_TAG = "Data delayed"


class DisplayStage(str, Enum):
    """Presentation stage. OVERHEATED overrides the computed stage on veto."""

    BOTTOM_BREAK = "BOTTOM_BREAK"
    WATCH = "WATCH"
    PREPARE = "PREPARE"
    CONFIRMED = "CONFIRMED"
    OVERHEATED = "OVERHEATED"


@dataclass(frozen=True)
class StageTemplate:
    title: str
    one_liner: str
    reason_lines: tuple[str, ...]
    next: tuple[str, ...]
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class StageAIFill:
    """Optional narrative fill from the external AI collaborator."""

    reason_headline: str | None = None
    reason_bullets: tuple[str, ...] = ()
    next_bullets: tuple[str, ...] = ()
    tags: tuple[str, ...] | None = None


@dataclass(frozen=True)
class StageCopy:
    title: str
    display_stage: DisplayStage
    one_liner: str
    reason_lines: tuple[str, ...]
    next: tuple[str, ...]
    tags: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "display_stage": self.display_stage.value,
            "one_liner": self.one_liner,
            "reason_lines": list(self.reason_lines),
            "next": list(self.next),
            "tags": list(self.tags),
        }


# Keyed by (display stage, watch reason); only WATCH uses a reason.
TEMPLATES: dict[tuple[DisplayStage, WatchReason | None], StageTemplate] = {
    (DisplayStage.BOTTOM_BREAK, None): StageTemplate(
        title="Bottom Break",
        one_liner="Still weak. Not yet time to build a position.",
        reason_lines=(
            "Price structure has not turned stronger",
            "Early signals are not strong enough for the watch list",
        ),
        next=(
            "Watch whether risk comes down first",
            "Start planning once the index reaches Watch",
        ),
    ),
    (DisplayStage.WATCH, WatchReason.ZONE_GUARANTEE): StageTemplate(
        title="Watch",
        one_liner="Not a reversal yet, but early signs of a bottom are showing.",
        reason_lines=("On-chain valuation is in a clearly cheap zone, so the asset goes on the watch list",),
        next=(
            "Plan a small staged accumulation",
            "Wait for Prepare before acting",
        ),
        tags=("Cheap valuation", "Early warning"),
    ),
    (DisplayStage.WATCH, WatchReason.SCORE_THRESHOLD): StageTemplate(
        title="Watch",
        one_liner="Not a reversal yet, but early signs of a bottom are showing.",
        reason_lines=("Early signals reached the watch threshold, but the technical picture is still weak",),
        next=(
            "Plan a small staged accumulation",
            "Focus on whether price starts to strengthen",
        ),
        tags=("Early signals improving", "Trend not formed"),
    ),
    (DisplayStage.PREPARE, None): StageTemplate(
        title="Prepare",
        one_liner="Small staged entries are reasonable, but this is still early.",
        reason_lines=("Early signals are strong enough and no overheating veto is active",),
        next=(
            "Enter in small, staged amounts",
            "Pause adding if the market turns Overheated",
        ),
    ),
    (DisplayStage.CONFIRMED, None): StageTemplate(
        title="Confirmed",
        one_liner="Trend confirmed. Reversal odds are clearly higher.",
        reason_lines=(
            "Price structure has strengthened, including a higher low",
            "No overheating veto, so the index entered the confirmed zone",
        ),
        next=(
            "Move from small entries to a planned allocation",
            "Stay alert for overheating or a structure break",
        ),
    ),
    (DisplayStage.OVERHEATED, None): StageTemplate(
        title="Overheated",
        one_liner="Signals are decent, but leverage is overheated. Do not chase.",
        reason_lines=("Futures leverage tripped the brake; all entry signals are paused",),
        next=(
            "Wait for leverage to cool down",
            "Check whether the index returns to Prepare afterwards",
        ),
        tags=("Leverage hot", "Entries paused"),
    ),
}

INITIALIZING_COPY = StageCopy(
    title="Initializing...",
    display_stage=DisplayStage.BOTTOM_BREAK,
    one_liner="Loading market data...",
    reason_lines=(),
    next=(),
)


def _check_templates() -> None:
    for stage in DisplayStage:
        if stage == DisplayStage.WATCH:
            missing = [r for r in WatchReason if (stage, r) not in TEMPLATES]
        else:
            missing = [] if (stage, None) in TEMPLATES else [None]
        if missing:
            raise RuntimeError(f"No copy template for {stage.value} (reasons: {missing})")


_check_templates()


def display_stage_for(state: ReversalState) -> DisplayStage:
    if state.veto:
        return DisplayStage.OVERHEATED
    return DisplayStage(Stage(state.stage).value)


def _watch_reason(state: ReversalState) -> WatchReason:
    if state.watch_reason is not None:
        return state.watch_reason
    if state.zone == CycleZone.DEEP_VALUE:
        return WatchReason.ZONE_GUARANTEE
    # Below the watch threshold too: the score template is the softer fallback
    return WatchReason.SCORE_THRESHOLD


def resolve_copy(state: ReversalState | None, ai_fill: StageAIFill | None = None) -> StageCopy:
    """
    Map a state to its display copy.

    Args:
        state: Latest snapshot, or None before the first evaluation
        ai_fill: Optional AI-written reason/next/tags

    Returns:
        StageCopy
    """
    if state is None:
        return INITIALIZING_COPY

    display_stage = display_stage_for(state)
    reason = _watch_reason(state) if display_stage == DisplayStage.WATCH else None
    template = TEMPLATES[(display_stage, reason)]

    reason_lines = template.reason_lines
    next_lines = template.next
    tags = template.tags
    if ai_fill is not None:
        if ai_fill.reason_headline:
            reason_lines = (ai_fill.reason_headline, *ai_fill.reason_bullets)
        if ai_fill.next_bullets:
            next_lines = tuple(ai_fill.next_bullets)
        if ai_fill.tags is not None:
            tags = tuple(ai_fill.tags)

    if state.degraded and DATA_DELAYED_TAG not in tags:
        tags = (*tags, DATA_DELAYED_TAG)

    return StageCopy(
        title=template.title,
        display_stage=display_stage,
        one_liner=template.one_liner,
        reason_lines=reason_lines,
        next=next_lines,
        tags=tags,
    )
