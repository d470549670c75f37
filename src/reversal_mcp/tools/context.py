"""Shared pipeline and parameter plumbing for the tools."""

from collections.abc import Iterable

from reversal_mcp.data.snapshots import SnapshotStore
from reversal_mcp.engine.conditions import CONDITION_IDS, PersonalParams
from reversal_mcp.engine.phase import OnChainReadings
from reversal_mcp.pipeline import ReversalPipeline

_pipeline: ReversalPipeline | None = None
_store: SnapshotStore | None = None


def get_snapshot_store() -> SnapshotStore:
    global _store
    if _store is None:
        _store = SnapshotStore()
    return _store


def get_pipeline() -> ReversalPipeline:
    """Process-wide pipeline; keeps the applied token and latest state."""
    global _pipeline
    if _pipeline is None:
        _pipeline = ReversalPipeline(store=get_snapshot_store())
    return _pipeline


def build_personal_params(
    ma_period: int = 200,
    hl_window: int = 6,
    vol_percentile: int = 20,
    support_distance: int = 5,
) -> PersonalParams:
    """Raises ValueError on values outside the allowed sets."""
    return PersonalParams(
        ma_period=ma_period,
        hl_window=hl_window,
        vol_percentile=vol_percentile,
        support_distance=support_distance,
    )


def build_enabled_ids(enabled_conditions: Iterable[str] | None) -> frozenset[str] | None:
    """Validate condition IDs. None keeps the catalog defaults."""
    if enabled_conditions is None:
        return None
    enabled = frozenset(c.strip() for c in enabled_conditions)
    unknown = sorted(enabled - set(CONDITION_IDS))
    if unknown:
        raise ValueError(f"Unknown condition IDs: {unknown}. Must be among: {list(CONDITION_IDS)}")
    return enabled


def build_on_chain(mvrv_z: float | None = None, puell: float | None = None) -> OnChainReadings:
    return OnChainReadings(mvrv_z=mvrv_z, puell=puell)
