"""Disk cache for daily price series."""

import gzip
import hashlib
import os
from datetime import datetime, timezone
from typing import Any

import diskcache
import pandas as pd

from reversal_mcp.utils.ohlcv import csv_to_df, df_to_csv
from reversal_mcp.utils.validators import SeriesParams

LAST_GOOD_PREFIX = "last_good:"


class SeriesCache:
    """
    Cache stores exact CSV text for O(1) deterministic serving.

    Each store writes two entries under the same URI: a fresh entry that
    expires after the TTL and a last-good entry that never expires. The
    last-good entry is what a failed refresh falls back to.
    """

    def __init__(self, cache_dir: str | None = None, default_ttl: int | None = None):
        if cache_dir is None:
            cache_dir = os.environ.get("CACHE_DIR", ".cache/series")
        self.cache: diskcache.Cache = diskcache.Cache(cache_dir)
        if default_ttl is None:
            default_ttl = int(os.environ.get("CACHE_TTL", "300"))  # 5 minutes
        self._default_ttl = default_ttl

    @property
    def default_ttl(self) -> int:
        return self._default_ttl

    def store(
        self,
        params: SeriesParams,
        df: pd.DataFrame,
        ttl: int | None = None,
    ) -> str:
        """
        Store gzipped CSV + metadata, return canonical URI.

        Args:
            params: Series parameters (used to generate URI)
            df: Standardized DataFrame to cache
            ttl: Fresh-entry TTL in seconds (default: CACHE_TTL)

        Returns:
            Canonical URI for the cached data
        """
        uri = params.to_uri()

        csv_bytes = df_to_csv(df).encode("utf-8")
        csv_gz = gzip.compress(csv_bytes)

        entry: dict[str, Any] = {
            "csv_gz": csv_gz,
            "encoding": "gzip",
            "size_bytes": len(csv_bytes),
            "compressed_bytes": len(csv_gz),
            "rows": len(df),
            "columns": list(df.columns),
            "hash": hashlib.sha256(csv_bytes).hexdigest()[:16],
            "stored_at": datetime.now(timezone.utc).isoformat(),
        }

        expire = ttl if ttl is not None else self._default_ttl
        self.cache.set(uri, entry, expire=expire)
        self.cache.set(LAST_GOOD_PREFIX + uri, entry)

        return uri

    def get(self, uri: str) -> dict[str, Any] | None:
        """Fresh cache entry by URI, None if missing or expired."""
        return self.cache.get(uri)

    def get_last_good(self, uri: str) -> dict[str, Any] | None:
        """Last successfully fetched entry by URI. Never expires."""
        return self.cache.get(LAST_GOOD_PREFIX + uri)

    @staticmethod
    def _decompress(entry: dict[str, Any] | None) -> str | None:
        if not entry:
            return None
        return gzip.decompress(entry["csv_gz"]).decode("utf-8")

    def get_csv(self, uri: str) -> str | None:
        """
        Get decompressed CSV text by URI.

        Falls back to the last-good entry so resources keep serving
        after the fresh entry expires.
        """
        return self._decompress(self.get(uri) or self.get_last_good(uri))

    def get_df(self, uri: str) -> pd.DataFrame | None:
        """Fresh series as a canonical frame."""
        csv_text = self._decompress(self.get(uri))
        return csv_to_df(csv_text) if csv_text is not None else None

    def get_last_good_df(self, uri: str) -> pd.DataFrame | None:
        """Last-good series as a canonical frame."""
        csv_text = self._decompress(self.get_last_good(uri))
        return csv_to_df(csv_text) if csv_text is not None else None

    def get_metadata(self, uri: str) -> dict[str, Any] | None:
        """
        Get cache metadata without decompressing data.

        Args:
            uri: Canonical URI

        Returns:
            Metadata dict or None if not found
        """
        entry = self.get(uri)
        fresh = entry is not None
        if entry is None:
            entry = self.get_last_good(uri)
        if not entry:
            return None
        return {
            "rows": entry["rows"],
            "columns": entry["columns"],
            "size_bytes": entry["size_bytes"],
            "hash": entry["hash"],
            "stored_at": entry["stored_at"],
            "fresh": fresh,
        }

    def exists(self, uri: str) -> bool:
        """Check if URI has a fresh or last-good entry."""
        return uri in self.cache or (LAST_GOOD_PREFIX + uri) in self.cache

    def clear(self) -> None:
        """Clear all cached data."""
        self.cache.clear()


# Global instance
series_cache = SeriesCache()
