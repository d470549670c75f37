"""Tests for normalize module."""

import json
import math

import pytest

from reversal_mcp.utils.normalize import (
    SNAPSHOT_VERSION,
    build_state_snapshot,
    canonical_dumps,
    normalize_record,
    record_hash,
    sanitize_nan_inf,
)


def _record(**overrides):
    record = {
        "evaluated_at": 1_700_000_000_000,
        "final_score": 47.31234,
        "phase_cap": 60,
        "stage": "WATCH",
        "veto": False,
        "degraded_reasons": ["stale_price_data"],
    }
    record.update(overrides)
    return record


class TestCanonicalDumps:
    """Tests for canonical_dumps function."""

    def test_sorted_keys(self):
        """Keys should be sorted at every level."""
        obj = {"z": 1, "a": 2, "m": {"z": 3, "a": 4}}
        assert canonical_dumps(obj) == '{"a":2,"m":{"a":4,"z":3},"z":1}'

    def test_minimal_separators(self):
        """Output should use minimal separators (no spaces)."""
        result = canonical_dumps({"a": [1, 2, 3]})
        assert result == '{"a":[1,2,3]}'
        assert " " not in result

    def test_unicode_preserved(self):
        """Unicode should be preserved (not escaped)."""
        assert "🚀" in canonical_dumps({"tag": "🚀"})

    def test_rejects_nan(self):
        """Should raise ValueError for NaN (allow_nan=False)."""
        with pytest.raises(ValueError, match="Out of range float values"):
            canonical_dumps({"value": float("nan")})

    def test_rejects_inf(self):
        """Should raise ValueError for inf (allow_nan=False)."""
        with pytest.raises(ValueError, match="Out of range float values"):
            canonical_dumps({"value": float("inf")})


class TestSanitizeNanInf:
    """Tests for sanitize_nan_inf."""

    def test_nan_and_inf_to_none(self):
        """NaN and inf values should become None."""
        raw = {"a": float("nan"), "b": float("inf"), "c": float("-inf"), "d": 1.5}
        assert sanitize_nan_inf(raw) == {"a": None, "b": None, "c": None, "d": 1.5}

    def test_nested(self):
        """NaN in nested structures should be sanitized."""
        raw = {"outer": {"inner": {"deep": float("nan")}, "list": (1.0, float("nan"), 3.0)}}
        result = sanitize_nan_inf(raw)
        assert result["outer"]["inner"]["deep"] is None
        assert result["outer"]["list"] == [1.0, None, 3.0]

    def test_negative_zero(self):
        """Negative zero should be normalized to positive zero."""
        result = sanitize_nan_inf({"neg_zero": -0.0, "values": [-0.0, 1.0]})
        assert math.copysign(1.0, result["neg_zero"]) > 0
        assert all(math.copysign(1.0, v) > 0 for v in result["values"])

    def test_bools_and_strings_untouched(self):
        """Non-numeric values pass through."""
        assert sanitize_nan_inf({"flag": False, "name": "WATCH", "none": None}) == {
            "flag": False,
            "name": "WATCH",
            "none": None,
        }


class TestNormalizeRecord:
    """Tests for normalize_record."""

    def test_rounds_floats(self):
        """Floats are rounded to four decimals; ints are kept."""
        result = normalize_record(_record())
        assert result["final_score"] == 47.3123
        assert result["phase_cap"] == 60
        assert isinstance(result["phase_cap"], int)

    def test_tiny_negative_becomes_zero(self):
        """A value that rounds to zero must not serialize as -0.0."""
        result = normalize_record({"x": -0.00001})
        assert result["x"] == 0.0
        assert math.copysign(1.0, result["x"]) > 0

    def test_json_safe(self):
        """Normalized output with NaN input should serialize without error."""
        result = normalize_record({"nan_value": float("nan"), "inf_value": float("inf")})
        json_str = canonical_dumps(result)
        assert json.loads(json_str) == {"inf_value": None, "nan_value": None}


class TestRecordHash:
    """Tests for record_hash."""

    def test_ignores_evaluated_at(self):
        """Evaluation time does not change the hash."""
        assert record_hash(_record(evaluated_at=1)) == record_hash(_record(evaluated_at=2))

    def test_content_changes_hash(self):
        """A stage change produces a new hash."""
        assert record_hash(_record()) != record_hash(_record(stage="PREPARE"))

    def test_rounding_noise_ignored(self):
        """Differences below the rounding precision hash identically."""
        assert record_hash(_record(final_score=47.31231)) == record_hash(_record(final_score=47.31234))

    def test_key_order_insensitive(self):
        """Dict insertion order does not change the hash."""
        record = _record()
        reordered = dict(reversed(list(record.items())))
        assert record_hash(record) == record_hash(reordered)

    def test_hash_length(self):
        """Hash is a 16-character hex prefix."""
        digest = record_hash(_record())
        assert len(digest) == 16
        int(digest, 16)


class TestBuildStateSnapshot:
    """Tests for build_state_snapshot."""

    def test_adds_version_and_hash(self):
        """Snapshot carries version and content hash."""
        snapshot = build_state_snapshot(_record())
        assert snapshot["snapshot_version"] == SNAPSHOT_VERSION
        assert snapshot["snapshot_hash"] == record_hash(_record())
        assert snapshot["evaluated_at"] == 1_700_000_000_000

    def test_idempotent_serialization(self):
        """Building twice serializes identically."""
        assert canonical_dumps(build_state_snapshot(_record())) == canonical_dumps(
            build_state_snapshot(_record())
        )

    def test_does_not_mutate_input(self):
        """The input record is left untouched."""
        record = _record()
        build_state_snapshot(record)
        assert "snapshot_hash" not in record
        assert record["final_score"] == 47.31234
