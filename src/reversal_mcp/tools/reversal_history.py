"""Reversal history tool."""

from time import perf_counter
from typing import Any

from reversal_mcp.data.snapshots import SnapshotStore
from reversal_mcp.engine.copywriting import resolve_copy
from reversal_mcp.engine.transitions import record_from_dict
from reversal_mcp.tools.context import get_snapshot_store
from reversal_mcp.utils.provenance import build_error_response, build_meta, build_provenance, ms_to_iso

MAX_HISTORY_LIMIT = 200


async def reversal_history(limit: int = 30, store: SnapshotStore | None = None) -> dict[str, Any]:
    """
    Return persisted snapshots, newest first.

    Args:
        limit: Number of snapshots (1-200)
        store: Snapshot store override

    Returns:
        Dict with latest state copy, snapshot list and stage changes
    """
    start_time = perf_counter()

    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_HISTORY_LIMIT:
        return build_error_response(
            "invalid_params",
            f"Invalid limit '{limit}'. Must be between 1 and {MAX_HISTORY_LIMIT}",
            tool="get_reversal_history",
        )

    store = store or get_snapshot_store()
    snapshots = store.history(limit)
    latest = record_from_dict(snapshots[0]) if snapshots else None

    # Oldest to newest, so each change reads "from -> to"
    stage_changes = []
    for older, newer in zip(reversed(snapshots[1:]), reversed(snapshots[:-1])):
        if (older["stage"], older["veto"]) != (newer["stage"], newer["veto"]):
            stage_changes.append({
                "at": ms_to_iso(newer["evaluated_at"]),
                "from": older["stage"] + (" (veto)" if older["veto"] else ""),
                "to": newer["stage"] + (" (veto)" if newer["veto"] else ""),
            })

    tracking = store.get_tracking()
    duration_ms = (perf_counter() - start_time) * 1000
    return {
        "count": len(snapshots),
        "latest_copy": resolve_copy(latest).to_dict(),
        "snapshots": [
            {**s, "evaluated_at_iso": ms_to_iso(s["evaluated_at"])} for s in snapshots
        ],
        "stage_changes": stage_changes,
        "last_notified_at": {
            event: ms_to_iso(ts) for event, ts in tracking.last_notified_at.items()
        } if tracking else {},
        "meta": build_meta("get_reversal_history", duration_ms),
        "data_provenance": {
            "snapshots": build_provenance(
                "snapshot_store",
                as_of=latest.evaluated_at if latest else None,
            ),
        },
    }
