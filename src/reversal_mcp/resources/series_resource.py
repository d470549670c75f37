"""Series data resource handler."""

from reversal_mcp.data.cache import SeriesCache, series_cache
from reversal_mcp.utils.validators import SeriesParams


class ResourceNotFoundError(Exception):
    """Resource not found in cache."""

    pass


def read_series_resource(symbol: str, days: int, cache: SeriesCache | None = None) -> tuple[str, str]:
    """
    Serve cached series data only. O(1), no transformation, never fetches.

    Args:
        symbol: Ticker symbol
        days: Series length in days
        cache: Cache override

    Returns:
        Tuple of (csv_text, mime_type)

    Raises:
        ValueError: Invalid symbol or days
        ResourceNotFoundError: If resource not in cache
    """
    uri = SeriesParams(symbol=symbol, days=days).to_uri()
    csv_text = (cache or series_cache).get_csv(uri)

    if csv_text is None:
        raise ResourceNotFoundError(
            f"Resource not cached. Call get_technical_conditions('{symbol}', days={days}) first: {uri}"
        )

    return csv_text, "text/csv"
