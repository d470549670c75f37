"""Persisted evaluation snapshots and notification tracking."""

import logging
import os
from typing import Any

import diskcache

from reversal_mcp.engine.phase import ReversalState
from reversal_mcp.engine.transitions import TrackingRecord, record_from_dict, state_to_record
from reversal_mcp.utils.normalize import build_state_snapshot

logger = logging.getLogger(__name__)

MAX_HISTORY = 500

_INDEX_KEY = "state_index"
_TRACKING_KEY = "tracking"


def _state_key(evaluated_at: int) -> str:
    return f"state:{evaluated_at}"


class SnapshotStore:
    """
    Flat JSON records keyed by evaluation timestamp.

    Enough to answer "last evaluated at T, state was X" without replaying
    the computation. Oldest records are evicted past MAX_HISTORY.
    """

    def __init__(self, snapshot_dir: str | None = None, max_history: int = MAX_HISTORY):
        if isinstance(max_history, bool) or not isinstance(max_history, int) or max_history < 1:
            raise ValueError(f"max_history must be a positive integer, got {max_history!r}")
        if snapshot_dir is None:
            snapshot_dir = os.environ.get("SNAPSHOT_DIR", ".cache/snapshots")
        self.cache: diskcache.Cache = diskcache.Cache(snapshot_dir)
        self.max_history = max_history

    def save(self, state: ReversalState) -> dict[str, Any]:
        """Persist a state, return the stored snapshot."""
        snapshot = build_state_snapshot(state_to_record(state))

        with self.cache.transact():
            index: list[int] = list(self.cache.get(_INDEX_KEY, []))
            if state.evaluated_at not in index:
                index.append(state.evaluated_at)
                index.sort()
            evicted, index = index[: -self.max_history], index[-self.max_history:]
            for ts in evicted:
                self.cache.delete(_state_key(ts))
            self.cache.set(_state_key(state.evaluated_at), snapshot)
            self.cache.set(_INDEX_KEY, index)

        logger.debug(f"Saved snapshot {state.evaluated_at} ({snapshot['snapshot_hash']})")
        return snapshot

    def get_record(self, evaluated_at: int) -> dict[str, Any] | None:
        return self.cache.get(_state_key(evaluated_at))

    def get(self, evaluated_at: int) -> ReversalState | None:
        """State evaluated at an exact timestamp."""
        record = self.get_record(evaluated_at)
        return record_from_dict(record) if record else None

    def latest_record(self) -> dict[str, Any] | None:
        index = self.cache.get(_INDEX_KEY, [])
        if not index:
            return None
        return self.get_record(index[-1])

    def latest(self) -> ReversalState | None:
        """Most recently evaluated state."""
        record = self.latest_record()
        return record_from_dict(record) if record else None

    def history(self, limit: int = 30) -> list[dict[str, Any]]:
        """Newest-first snapshots."""
        index = self.cache.get(_INDEX_KEY, [])
        records = []
        for ts in reversed(index[-limit:] if limit > 0 else []):
            record = self.get_record(ts)
            if record is not None:
                records.append(record)
        return records

    def get_tracking(self) -> TrackingRecord | None:
        data = self.cache.get(_TRACKING_KEY)
        return TrackingRecord.from_dict(data) if data else None

    def set_tracking(self, tracking: TrackingRecord) -> None:
        self.cache.set(_TRACKING_KEY, tracking.to_dict())

    def clear(self) -> None:
        self.cache.clear()
