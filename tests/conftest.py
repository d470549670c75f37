"""Pytest configuration and fixtures."""

from collections.abc import Callable, Sequence

import numpy as np
import pandas as pd
import pytest

from reversal_mcp.engine.phase import CycleZone, ReversalState, Stage, WatchReason

_DAY_MS = 24 * 60 * 60 * 1000
_START_MS = int(pd.Timestamp("2023-01-01", tz="UTC").timestamp() * 1000)


def _candles(closes: Sequence[float], volume: float = 1000.0) -> pd.DataFrame:
    closes = np.asarray(closes, dtype=float)
    opens = np.concatenate(([closes[0]], closes[:-1]))
    return pd.DataFrame(
        {
            "timestamp": [_START_MS + i * _DAY_MS for i in range(len(closes))],
            "open": opens,
            "high": np.maximum(opens, closes) * 1.01,
            "low": np.minimum(opens, closes) * 0.99,
            "close": closes,
            "volume": [volume] * len(closes),
        }
    )


def _alternating(start: float, days: int, up: float, down: float) -> list[float]:
    closes = [start]
    for i in range(days - 1):
        closes.append(closes[-1] * (down if i % 2 == 0 else up))
    return closes


@pytest.fixture
def make_candles() -> Callable[..., pd.DataFrame]:
    """Factory for canonical daily candles from a close series."""
    return _candles


@pytest.fixture
def uptrend_df() -> pd.DataFrame:
    """400 daily candles rising steadily from 100 to 200."""
    return _candles(np.linspace(100.0, 200.0, 400))


@pytest.fixture
def downtrend_df() -> pd.DataFrame:
    """400 daily candles falling steadily from 200 to 100."""
    return _candles(np.linspace(200.0, 100.0, 400))


@pytest.fixture
def short_df() -> pd.DataFrame:
    """30 daily candles, too short for every condition."""
    return _candles(np.linspace(100.0, 110.0, 30))


@pytest.fixture
def expansion_down_df() -> pd.DataFrame:
    """Quiet chop for 300 days, then 30 days of wide swings trending down."""
    quiet = _alternating(100.0, 300, up=1.005, down=0.995)
    wild = _alternating(quiet[-1], 31, up=1.01, down=0.97)[1:]
    return _candles(quiet + wild)


@pytest.fixture
def expansion_up_df() -> pd.DataFrame:
    """Quiet chop for 300 days, then 30 days of wide swings trending up."""
    quiet = _alternating(100.0, 300, up=1.005, down=0.995)
    wild = _alternating(quiet[-1], 31, up=1.03, down=0.99)[1:]
    return _candles(quiet + wild)


@pytest.fixture
def sample_ohlcv_df() -> pd.DataFrame:
    """Sample OHLCV DataFrame shaped like a yfinance download."""
    return pd.DataFrame(
        {
            "Date": pd.date_range("2024-01-01", periods=10, freq="D"),
            "Open": [100.0, 101.0, 102.0, 101.5, 103.0, 104.0, 103.5, 105.0, 106.0, 105.5],
            "High": [101.0, 102.5, 103.0, 102.5, 104.5, 105.5, 105.0, 106.5, 107.0, 106.5],
            "Low": [99.5, 100.5, 101.0, 100.5, 102.0, 103.0, 102.5, 104.0, 105.0, 104.5],
            "Close": [100.5, 102.0, 101.5, 102.0, 104.0, 103.5, 104.5, 106.0, 105.5, 106.0],
            "Volume": [1000000] * 10,
        }
    ).set_index("Date")


@pytest.fixture
def sample_price_series() -> pd.Series:
    """Sample price series for indicator testing."""
    return pd.Series(
        [100.0, 101.0, 102.0, 101.5, 103.0, 104.0, 103.5, 105.0, 106.0, 105.5,
         107.0, 108.0, 107.5, 109.0, 110.0, 109.5, 111.0, 112.0, 111.5, 113.0,
         114.0, 113.5, 115.0, 116.0, 115.5, 117.0, 118.0, 117.5, 119.0, 120.0]
    )


@pytest.fixture
def make_state() -> Callable[..., ReversalState]:
    """Factory for ReversalState with overridable fields."""

    def _make(**overrides) -> ReversalState:
        fields = {
            "final_score": 50.0,
            "raw_composite": 50.0,
            "phase_cap": 60,
            "gate_count": 1,
            "higher_low": False,
            "trend_score_raw": 10.0,
            "cycle_score_raw": 10.0,
            "cycle_base": 8.0,
            "cycle_user": 2.0,
            "narrative_score": 30.0,
            "stage": Stage.WATCH,
            "zone": CycleZone.NEUTRAL,
            "watch_reason": WatchReason.SCORE_THRESHOLD,
            "veto": False,
            "degraded": False,
            "degraded_reasons": (),
            "evaluated_at": 1_700_000_000_000,
        }
        fields.update(overrides)
        return ReversalState(**fields)

    return _make
