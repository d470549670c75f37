"""Stage transition detection, notification cooldowns and snapshot records."""

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from reversal_mcp.engine.phase import CycleZone, ReversalState, Stage, WatchReason

logger = logging.getLogger(__name__)

_DAY_MS = 24 * 60 * 60 * 1000


class NotificationEvent(str, Enum):
    ENTER_WATCH = "ENTER_WATCH"
    ENTER_PREPARE = "ENTER_PREPARE"
    ENTER_CONFIRMED = "ENTER_CONFIRMED"
    VETO_ON = "VETO_ON"


COOLDOWNS_MS: dict[NotificationEvent, int] = {
    NotificationEvent.ENTER_WATCH: 7 * _DAY_MS,
    NotificationEvent.ENTER_PREPARE: 3 * _DAY_MS,
    NotificationEvent.ENTER_CONFIRMED: 1 * _DAY_MS,
    NotificationEvent.VETO_ON: 3 * _DAY_MS,
}

_STAGE_EVENTS = {
    Stage.WATCH: NotificationEvent.ENTER_WATCH,
    Stage.PREPARE: NotificationEvent.ENTER_PREPARE,
    Stage.CONFIRMED: NotificationEvent.ENTER_CONFIRMED,
}


@dataclass(frozen=True)
class TrackingRecord:
    """Last notified state plus per-event notification times."""

    last_stage: Stage = Stage.BOTTOM_BREAK
    last_veto: bool = False
    last_score: float = 0.0
    last_notified_at: dict[str, int] = field(default_factory=dict)
    last_state_hash: str = ""
    updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_stage": self.last_stage.value,
            "last_veto": self.last_veto,
            "last_score": self.last_score,
            "last_notified_at": dict(self.last_notified_at),
            "last_state_hash": self.last_state_hash,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackingRecord":
        return cls(
            last_stage=Stage(data.get("last_stage", Stage.BOTTOM_BREAK.value)),
            last_veto=bool(data.get("last_veto", False)),
            last_score=float(data.get("last_score", 0.0)),
            last_notified_at={k: int(v) for k, v in (data.get("last_notified_at") or {}).items()},
            last_state_hash=data.get("last_state_hash", ""),
            updated_at=int(data.get("updated_at", 0)),
        )


@dataclass(frozen=True)
class TransitionResult:
    has_changed: bool
    events: tuple[NotificationEvent, ...]
    suppressed: tuple[NotificationEvent, ...]
    payloads: tuple[dict[str, Any], ...]
    tracking: TrackingRecord


def state_hash(stage: Stage, veto: bool) -> str:
    """Change-detection key. Score moves alone do not count as a change."""
    return f"{stage.value}-{'VETO' if veto else 'CLEAN'}"


def state_to_record(state: ReversalState) -> dict[str, Any]:
    """Flat JSON-serializable record for persistence."""
    return {
        "evaluated_at": state.evaluated_at,
        "final_score": state.final_score,
        "raw_composite": state.raw_composite,
        "phase_cap": state.phase_cap,
        "gate_count": state.gate_count,
        "higher_low": state.higher_low,
        "trend_score_raw": state.trend_score_raw,
        "cycle_score_raw": state.cycle_score_raw,
        "cycle_base": state.cycle_base,
        "cycle_user": state.cycle_user,
        "narrative_score": state.narrative_score,
        "stage": state.stage.value,
        "zone": state.zone.value,
        "watch_reason": state.watch_reason.value if state.watch_reason else None,
        "veto": state.veto,
        "degraded": state.degraded,
        "degraded_reasons": list(state.degraded_reasons),
    }


def record_from_dict(data: dict[str, Any]) -> ReversalState:
    """Rebuild a ReversalState from a persisted record."""
    watch_reason = data.get("watch_reason")
    return ReversalState(
        final_score=float(data["final_score"]),
        raw_composite=float(data["raw_composite"]),
        phase_cap=int(data["phase_cap"]),
        gate_count=int(data["gate_count"]),
        higher_low=bool(data.get("higher_low", False)),
        trend_score_raw=float(data["trend_score_raw"]),
        cycle_score_raw=float(data["cycle_score_raw"]),
        cycle_base=float(data["cycle_base"]),
        cycle_user=float(data["cycle_user"]),
        narrative_score=float(data["narrative_score"]),
        stage=Stage(data["stage"]),
        zone=CycleZone(data.get("zone", CycleZone.UNKNOWN.value)),
        watch_reason=WatchReason(watch_reason) if watch_reason else None,
        veto=bool(data["veto"]),
        degraded=bool(data.get("degraded", False)),
        degraded_reasons=tuple(data.get("degraded_reasons") or ()),
        evaluated_at=int(data["evaluated_at"]),
    )


def detect_events(previous: TrackingRecord | None, state: ReversalState) -> list[NotificationEvent]:
    """Edge-triggered events between the last tracked state and a new one."""
    previous = previous or TrackingRecord()
    events = []

    stage_event = _STAGE_EVENTS.get(state.stage)
    if stage_event is not None and previous.last_stage != state.stage:
        events.append(stage_event)

    # Veto only forces a notification when it parks the index at WATCH
    if state.veto and not previous.last_veto and state.stage == Stage.WATCH:
        events.append(NotificationEvent.VETO_ON)

    return events


def event_message(event: NotificationEvent, state: ReversalState) -> str:
    if event == NotificationEvent.ENTER_WATCH:
        reason = state.watch_reason.value if state.watch_reason else WatchReason.SCORE_THRESHOLD.value
        return f"Entered Watch stage. Reason: {reason}"
    if event == NotificationEvent.ENTER_PREPARE:
        return "Signal strength increased: PREPARE"
    if event == NotificationEvent.ENTER_CONFIRMED:
        return "Signal strength max: CONFIRMED"
    if event == NotificationEvent.VETO_ON:
        return "Warning: derivatives overheated (veto active). Upside capped."
    raise ValueError(f"Unknown notification event: {event!r}")


def build_trigger_payload(event: NotificationEvent, state: ReversalState) -> dict[str, Any]:
    """Payload handed to the notification collaborator."""
    return {
        "event": event.value,
        "stage": state.stage.value,
        "score": round(state.final_score, 1),
        "gatesPassed": state.gate_count,
        "cycleZone": state.zone.value,
        "message": event_message(event, state),
    }


def track_transition(
    tracking: TrackingRecord | None,
    state: ReversalState,
    now_ms: int | None = None,
) -> TransitionResult:
    """
    Detect events, apply cooldowns and produce the next tracking record.

    Args:
        tracking: Stored tracking record (None on first run)
        state: Newly applied state
        now_ms: Clock override (ms epoch)

    Returns:
        TransitionResult with allowed events, their payloads and the updated record
    """
    now = now_ms if now_ms is not None else int(time.time() * 1000)
    tracking = tracking or TrackingRecord()
    notified_at = dict(tracking.last_notified_at)

    allowed: list[NotificationEvent] = []
    suppressed: list[NotificationEvent] = []
    for event in detect_events(tracking, state):
        last_time = notified_at.get(event.value, 0)
        if now - last_time > COOLDOWNS_MS[event]:
            allowed.append(event)
            notified_at[event.value] = now
        else:
            logger.info(f"Suppressed {event.value} (cooldown active)")
            suppressed.append(event)

    current_hash = state_hash(state.stage, state.veto)
    has_changed = current_hash != tracking.last_state_hash

    if has_changed or allowed:
        tracking = replace(
            tracking,
            last_stage=state.stage,
            last_veto=state.veto,
            last_score=state.final_score,
            last_notified_at=notified_at,
            last_state_hash=current_hash,
            updated_at=now,
        )

    return TransitionResult(
        has_changed=has_changed,
        events=tuple(allowed),
        suppressed=tuple(suppressed),
        payloads=tuple(build_trigger_payload(e, state) for e in allowed),
        tracking=tracking,
    )
