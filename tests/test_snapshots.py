"""Tests for the snapshot store."""

import pytest

from reversal_mcp.data.snapshots import SnapshotStore
from reversal_mcp.engine.phase import Stage
from reversal_mcp.engine.transitions import TrackingRecord
from reversal_mcp.utils.normalize import SNAPSHOT_VERSION


@pytest.fixture
def store(tmp_path) -> SnapshotStore:
    return SnapshotStore(snapshot_dir=str(tmp_path / "snapshots"), max_history=3)


class TestSnapshotStore:
    """Tests for SnapshotStore."""

    def test_empty_store(self, store: SnapshotStore) -> None:
        """Test a fresh store has no state."""
        assert store.latest() is None
        assert store.history() == []
        assert store.get_tracking() is None

    def test_save_and_latest(self, store: SnapshotStore, make_state) -> None:
        """Test the latest saved state is returned."""
        store.save(make_state(evaluated_at=1000, final_score=40.0))
        snapshot = store.save(make_state(evaluated_at=2000, final_score=55.5))
        assert snapshot["snapshot_version"] == SNAPSHOT_VERSION
        latest = store.latest()
        assert latest.evaluated_at == 2000
        assert latest.final_score == 55.5
        assert store.get(1000).final_score == 40.0

    def test_history_newest_first(self, store: SnapshotStore, make_state) -> None:
        """Test history order and limit."""
        for ts in (1000, 3000, 2000):
            store.save(make_state(evaluated_at=ts))
        assert [r["evaluated_at"] for r in store.history()] == [3000, 2000, 1000]
        assert [r["evaluated_at"] for r in store.history(limit=2)] == [3000, 2000]

    def test_eviction(self, store: SnapshotStore, make_state) -> None:
        """Test the oldest snapshots are evicted past max_history."""
        for ts in (1000, 2000, 3000, 4000):
            store.save(make_state(evaluated_at=ts))
        assert [r["evaluated_at"] for r in store.history(limit=10)] == [4000, 3000, 2000]
        assert store.get(1000) is None

    @pytest.mark.parametrize("max_history", [0, -1, True, 2.5])
    def test_invalid_max_history(self, tmp_path, max_history) -> None:
        """Test a history limit below one is rejected."""
        with pytest.raises(ValueError, match="max_history"):
            SnapshotStore(snapshot_dir=str(tmp_path / "snapshots"), max_history=max_history)

    def test_max_history_one_keeps_latest(self, tmp_path, make_state) -> None:
        """Test a limit of one keeps only the newest snapshot."""
        store = SnapshotStore(snapshot_dir=str(tmp_path / "snapshots"), max_history=1)
        store.save(make_state(evaluated_at=1000))
        store.save(make_state(evaluated_at=2000))
        assert [r["evaluated_at"] for r in store.history(limit=10)] == [2000]
        assert store.get(1000) is None

    def test_same_content_same_hash(self, store: SnapshotStore, make_state) -> None:
        """Test hashes ignore the evaluation time."""
        a = store.save(make_state(evaluated_at=1000))
        b = store.save(make_state(evaluated_at=2000))
        c = store.save(make_state(evaluated_at=3000, stage=Stage.PREPARE))
        assert a["snapshot_hash"] == b["snapshot_hash"]
        assert a["snapshot_hash"] != c["snapshot_hash"]

    def test_tracking_round_trip(self, store: SnapshotStore) -> None:
        """Test tracking records persist."""
        tracking = TrackingRecord(last_stage=Stage.WATCH, last_notified_at={"ENTER_WATCH": 5}, last_state_hash="WATCH-CLEAN")
        store.set_tracking(tracking)
        assert store.get_tracking() == tracking

    def test_persists_across_instances(self, tmp_path, make_state) -> None:
        """Test a new store on the same directory sees saved state."""
        directory = str(tmp_path / "shared")
        SnapshotStore(snapshot_dir=directory).save(make_state(evaluated_at=1234))
        assert SnapshotStore(snapshot_dir=directory).latest().evaluated_at == 1234
