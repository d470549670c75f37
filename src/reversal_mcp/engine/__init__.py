"""Pure scoring core: conditions, narrative, phase, copy and transitions."""

from reversal_mcp.engine.conditions import (
    CONDITION_DEFS,
    ConditionGroup,
    ConditionResult,
    PersonalParams,
    evaluate_conditions,
)
from reversal_mcp.engine.copywriting import DisplayStage, StageAIFill, StageCopy, resolve_copy
from reversal_mcp.engine.narrative import (
    SIGNAL_CATALOG,
    MarketParseError,
    NarrativeSignal,
    NormalizedMarket,
    ScoringMode,
    normalize,
    parse_market,
)
from reversal_mcp.engine.phase import (
    CycleZone,
    DerivativesSnapshot,
    OnChainReadings,
    ReversalInputs,
    ReversalState,
    Stage,
    WatchReason,
    compute_reversal_state,
    phase_cap,
)
from reversal_mcp.engine.transitions import NotificationEvent, build_trigger_payload, track_transition

__all__ = [
    "CONDITION_DEFS",
    "ConditionGroup",
    "ConditionResult",
    "PersonalParams",
    "evaluate_conditions",
    "DisplayStage",
    "StageAIFill",
    "StageCopy",
    "resolve_copy",
    "SIGNAL_CATALOG",
    "MarketParseError",
    "NarrativeSignal",
    "NormalizedMarket",
    "ScoringMode",
    "normalize",
    "parse_market",
    "CycleZone",
    "DerivativesSnapshot",
    "OnChainReadings",
    "ReversalInputs",
    "ReversalState",
    "Stage",
    "WatchReason",
    "compute_reversal_state",
    "phase_cap",
    "NotificationEvent",
    "build_trigger_payload",
    "track_transition",
]
