"""Shared bounded-concurrency executor with retry and backoff for upstream calls."""

import asyncio
import logging
import os
import random
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, TypeVar

from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import HTTPError, Timeout

logger = logging.getLogger(__name__)

# Bounded concurrency for blocking upstream calls
_max_workers = int(os.environ.get("FETCH_MAX_WORKERS", "4"))
_executor = ThreadPoolExecutor(max_workers=_max_workers)
fetch_semaphore = asyncio.Semaphore(_max_workers)

# Retry configuration
_max_retries = int(os.environ.get("FETCH_MAX_RETRIES", "3"))
_base_delay = float(os.environ.get("FETCH_BASE_DELAY", "1.0"))  # seconds
_max_delay = float(os.environ.get("FETCH_MAX_DELAY", "30.0"))  # seconds

# Shutdown coordination
shutdown_event = asyncio.Event()

T = TypeVar("T")


class ServerShuttingDownError(Exception):
    """Raised when server is shutting down."""

    pass


class FetchRetryError(Exception):
    """Raised when an upstream call fails after all retries."""

    def __init__(self, message: str, last_error: Exception | None = None):
        super().__init__(message)
        self.last_error = last_error


def _is_retryable_error(error: Exception) -> bool:
    """Transient errors worth another attempt."""
    if isinstance(error, HTTPError) and error.response is not None:
        status_code = error.response.status_code
        return status_code == 429 or 500 <= status_code < 600

    if isinstance(error, (RequestsConnectionError, Timeout)):
        return True

    # yfinance wraps most transport failures in generic exceptions
    error_str = str(error).lower()
    retryable_patterns = [
        "rate limit",
        "too many requests",
        "connection",
        "timeout",
        "temporary",
    ]
    return any(pattern in error_str for pattern in retryable_patterns)


def _calculate_backoff(attempt: int) -> float:
    """Calculate delay with exponential backoff and jitter."""
    delay = _base_delay * (2**attempt)
    # Jitter of +/-25%
    jitter = delay * 0.25 * (2 * random.random() - 1)
    return min(delay + jitter, _max_delay)


@dataclass
class RetryAttempt:
    """Record of a single attempt for provenance tracking."""

    attempt: int
    ok: bool
    error: str | None = None
    backoff_s: float | None = None


@dataclass
class RetryResult:
    """Result of a retry operation with provenance tracking."""

    result: Any
    attempts: int
    total_backoff_seconds: float
    source: str
    retry_trace: list[RetryAttempt] | None = None

    def to_provenance(self) -> dict[str, Any]:
        """Convert to provenance fields for data_provenance."""
        prov: dict[str, Any] = {
            "source": self.source,
            "attempts": self.attempts,
            "total_backoff_seconds": self.total_backoff_seconds,
        }
        if self.retry_trace:
            prov["retry_trace"] = [
                {
                    "attempt": t.attempt,
                    "ok": t.ok,
                    **({"error": t.error} if t.error else {}),
                    **({"backoff_s": t.backoff_s} if t.backoff_s else {}),
                }
                for t in self.retry_trace[-3:]
            ]
        return prov


async def retry_with_backoff(
    operation_name: str,
    sync_func: Callable[[], T],
    source: str,
    max_retries: int = _max_retries,
) -> RetryResult:
    """
    Run a blocking function in the shared executor with retry logic.

    Args:
        operation_name: Name for logging (e.g., "fetch_series(BTC-USD)")
        sync_func: Synchronous function to execute
        source: Upstream name recorded in provenance
        max_retries: Maximum number of retry attempts

    Returns:
        RetryResult with result and provenance info

    Raises:
        FetchRetryError: If all retries exhausted
        ServerShuttingDownError: If server is shutting down
    """
    last_error: Exception | None = None
    total_backoff = 0.0
    retry_trace: list[RetryAttempt] = []

    for attempt in range(max_retries + 1):
        if shutdown_event.is_set():
            raise ServerShuttingDownError("Server is shutting down")

        try:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(_executor, sync_func)
            retry_trace.append(RetryAttempt(attempt=attempt + 1, ok=True))
            return RetryResult(
                result=result,
                attempts=attempt + 1,
                total_backoff_seconds=round(total_backoff, 2),
                source=source,
                retry_trace=retry_trace if len(retry_trace) > 1 else None,
            )
        except Exception as e:
            last_error = e
            retry_trace.append(RetryAttempt(attempt=attempt + 1, ok=False, error=type(e).__name__))

            if not _is_retryable_error(e):
                raise

            if attempt >= max_retries:
                logger.warning(
                    f"{operation_name}: Failed after {attempt + 1} attempts. Last error: {e}"
                )
                raise FetchRetryError(
                    f"Failed after {attempt + 1} attempts: {e}",
                    last_error=last_error,
                ) from e

            delay = _calculate_backoff(attempt)
            total_backoff += delay
            retry_trace[-1].backoff_s = round(delay, 2)
            logger.info(
                f"{operation_name}: Attempt {attempt + 1} failed ({e}). "
                f"Retrying in {delay:.1f}s..."
            )
            await asyncio.sleep(delay)

    raise FetchRetryError(
        f"Failed after {max_retries + 1} attempts",
        last_error=last_error,
    )


async def shutdown_executor() -> None:
    """Cleanup on server shutdown."""
    shutdown_event.set()
    _executor.shutdown(wait=False, cancel_futures=True)
