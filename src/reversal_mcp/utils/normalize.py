"""Normalization utilities for diff-stable state snapshots.

Persisted snapshots are compared over time, so they must serialize the
same way every time:
1. Key ordering: sorted at every level
2. Float noise: rounded to a fixed precision
3. NaN/inf sanitization: replaced with null for JSON safety
4. -0.0 collapsed to 0.0
"""

from __future__ import annotations

import hashlib
import json
import math
from typing import Any

# Snapshot format version - bump when normalization logic changes
SNAPSHOT_VERSION = "1.0.0"

FLOAT_PRECISION = 4

# Fields left out of the content hash (they change every run)
HASH_EXCLUDED_FIELDS = frozenset({"evaluated_at"})


def canonical_dumps(obj: Any) -> str:
    """Produce canonical JSON string with sorted keys and minimal separators.

    Uses allow_nan=False to fail fast if NaN/inf values slip through
    sanitization. This ensures JSON validity across all parsers.
    """
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def _is_nan_or_inf(x: Any) -> bool:
    """Check if value is NaN or inf, handling numpy types safely."""
    try:
        return math.isnan(x) or math.isinf(x)
    except (TypeError, ValueError):
        return False


def _is_negative_zero(x: Any) -> bool:
    """Check if value is -0.0 (which creates diff noise)."""
    try:
        return x == 0.0 and math.copysign(1.0, x) < 0
    except (TypeError, ValueError):
        return False


def sanitize_nan_inf(obj: Any) -> Any:
    """Recursively replace NaN, inf, -inf with None and -0.0 with 0.0."""
    if isinstance(obj, dict):
        return {k: sanitize_nan_inf(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_nan_inf(item) for item in obj]
    if isinstance(obj, bool):
        return obj
    if _is_nan_or_inf(obj):
        return None
    if _is_negative_zero(obj):
        return 0.0
    return obj


def _round_floats(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _round_floats(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_round_floats(item) for item in obj]
    if isinstance(obj, float):
        return round(obj, FLOAT_PRECISION)
    return obj


def normalize_record(record: dict[str, Any]) -> dict[str, Any]:
    """Sanitize and round a flat state record."""
    # Round first so values like -0.00001 cannot come back as -0.0
    return sanitize_nan_inf(_round_floats(record))


def record_hash(record: dict[str, Any]) -> str:
    """SHA-256 prefix of the canonical record, ignoring per-run fields."""
    content = {k: v for k, v in normalize_record(record).items() if k not in HASH_EXCLUDED_FIELDS}
    content["snapshot_version"] = SNAPSHOT_VERSION
    return hashlib.sha256(canonical_dumps(content).encode("utf-8")).hexdigest()[:16]


def build_state_snapshot(record: dict[str, Any]) -> dict[str, Any]:
    """
    Build a persisted snapshot from a state record.

    Adds snapshot_version and snapshot_hash. Two evaluations with the same
    scores and stage hash identically even at different times.
    """
    normalized = normalize_record(record)
    normalized["snapshot_version"] = SNAPSHOT_VERSION
    normalized["snapshot_hash"] = record_hash(record)
    return normalized
