"""Scoring policy constants.

These values are product decisions. Change them here, not at the call sites.
"""

# Sub-score ceilings. Each component is clamped to [0, max] before summation.
TREND_MAX = 25.0
CYCLE_MAX = 25.0
NARRATIVE_MAX = 50.0

# Phase cap by number of passed gates: (minimum gate count, cap), ascending.
PHASE_CAP_BREAKPOINTS: tuple[tuple[int, int], ...] = (
    (0, 60),
    (2, 75),
    (4, 100),
)
MAX_GATES = 4

# Stage thresholds on the capped final score
CONFIRMED_MIN_SCORE = 70.0
CONFIRMED_MIN_GATES_WITH_HIGHER_LOW = 3
PREPARE_MIN_SCORE = 55.0
PREPARE_MIN_GATES = 2
WATCH_MIN_SCORE = 45.0

# Cycle components: (ceiling) per component, clamped independently
MVRV_COMPONENT_MAX = 12.0
PUELL_COMPONENT_MAX = 8.0
DERIVATIVES_COMPONENT_MAX = 5.0
BOOSTER_COMPONENT_MAX = 5.0

# MVRV Z-score zone boundaries (upper bound exclusive)
MVRV_DEEP_VALUE_BELOW = 0.0
MVRV_VALUE_BELOW = 1.0
MVRV_NEUTRAL_BELOW = 3.0

# Puell multiple bands: (upper bound exclusive, points)
PUELL_BANDS: tuple[tuple[float, float], ...] = (
    (0.5, 8.0),
    (0.8, 5.0),
    (1.2, 2.0),
)

# Neutral fallbacks when a single on-chain reading is missing
NEUTRAL_MVRV_Z = 1.5
NEUTRAL_PUELL = 0.8
NEUTRAL_FUNDING_PCT = 0.01
NEUTRAL_OI_3D_CHANGE_PCT = 0.0

# Derivatives overheating veto
VETO_FUNDING_PCT = 0.03
VETO_OI_3D_CHANGE_PCT = 15.0

# Narrative
NARRATIVE_POINTS_PER_SIGNAL = 5.0
NEUTRAL_PROBABILITY = 0.5
