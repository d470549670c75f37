"""Data provenance and metadata utilities."""

from datetime import datetime, timezone
from typing import Any

from reversal_mcp import SCHEMA_VERSION, SERVER_VERSION


def build_meta(tool: str, duration_ms: float | None = None) -> dict[str, Any]:
    """
    Build standard metadata block for responses.

    Args:
        tool: Name of the tool producing this response
        duration_ms: Execution time in milliseconds (optional)

    Returns:
        Metadata dict with version info
    """
    meta: dict[str, Any] = {
        "server_version": SERVER_VERSION,
        "schema_version": SCHEMA_VERSION,
        "tool": tool,
    }
    if duration_ms is not None:
        meta["duration_ms"] = round(duration_ms, 1)
    return meta


def ms_to_iso(ms: int | None) -> str | None:
    """Epoch milliseconds to ISO-8601 UTC."""
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def build_provenance(
    source: str,
    as_of: datetime | int | str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Build data provenance block for a single data source.

    Args:
        source: Data source name (e.g., "yfinance", "polymarket", "binance")
        as_of: Data freshness as datetime, ISO string or epoch ms
        **kwargs: Additional provenance fields

    Returns:
        Provenance dict for this data source
    """
    prov: dict[str, Any] = {"source": source}

    if isinstance(as_of, datetime):
        prov["as_of"] = as_of.isoformat()
    elif isinstance(as_of, int) and not isinstance(as_of, bool):
        prov["as_of"] = ms_to_iso(as_of)
    elif as_of is not None:
        prov["as_of"] = as_of

    prov.update(kwargs)
    prov.setdefault("warnings", [])
    return prov


def build_error_response(
    error_type: str,
    message: str,
    symbol: str | None = None,
    tool: str = "error",
) -> dict[str, Any]:
    """
    Build standardized error response.

    Args:
        error_type: Type of error (invalid_params, data_unavailable, shutting_down)
        message: Human-readable error message
        symbol: Symbol that caused the error (if applicable)
        tool: Tool that failed

    Returns:
        Error response dict
    """
    response: dict[str, Any] = {
        "error": True,
        "error_type": error_type,
        "message": message,
        "meta": build_meta(tool),
    }

    if symbol is not None:
        response["symbol"] = symbol

    return response
