"""Validation utilities and parameter classes."""

import operator
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

# Upstream daily history limit per request
MAX_SERIES_DAYS = 1000


@dataclass(frozen=True)
class SeriesParams:
    """Immutable series fetch parameters. Used for cache key + fetch."""

    symbol: str
    days: int

    def __post_init__(self) -> None:
        # Normalize symbol: uppercase, strip whitespace
        object.__setattr__(self, "symbol", self.symbol.upper().strip())

        if not self.symbol:
            raise ValueError("Symbol must not be empty")
        if not isinstance(self.days, int) or isinstance(self.days, bool):
            raise ValueError(f"Invalid days '{self.days}'. Must be an integer")
        if not 1 <= self.days <= MAX_SERIES_DAYS:
            raise ValueError(f"Invalid days '{self.days}'. Must be between 1 and {MAX_SERIES_DAYS}")

    def to_uri(self) -> str:
        """Canonical URI for caching."""
        return f"series://{self.symbol}/{self.days}"

    def to_yf_kwargs(self, now: datetime | None = None) -> dict[str, Any]:
        """Kwargs for yf.download()."""
        now = now or datetime.now(timezone.utc)
        start = (now - timedelta(days=self.days)).date()
        return {
            "tickers": self.symbol,
            "start": start.isoformat(),
            "interval": "1d",
            "auto_adjust": True,
            "progress": False,
        }


def check_rule(
    value: float | None,
    threshold: float,
    comparator: Callable[[float, float], bool] = operator.gt,
) -> bool | None:
    """
    Check a rule with nullable boolean semantics.

    If value is None, returns None (not False).

    Args:
        value: The value to check (may be None)
        threshold: The threshold to compare against
        comparator: Comparison function (default: operator.gt)

    Returns:
        True/False if value is not None, None otherwise
    """
    if value is None:
        return None
    return bool(comparator(value, threshold))


def check_rule_expr(
    value1: float | None,
    value2: float | None,
    comparator: Callable[[float, float], bool] = operator.gt,
) -> bool | None:
    """
    Check a rule comparing two values with nullable boolean semantics.

    If either value is None, returns None (not False).

    Args:
        value1: First value (may be None)
        value2: Second value (may be None)
        comparator: Comparison function (default: operator.gt)

    Returns:
        True/False if both values are not None, None otherwise
    """
    if value1 is None or value2 is None:
        return None
    return bool(comparator(value1, value2))


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp value into [lower, upper]."""
    return max(lower, min(upper, value))
