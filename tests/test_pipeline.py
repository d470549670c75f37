"""Tests for the evaluation pipeline."""

import asyncio

import pandas as pd
import pytest

from reversal_mcp.data.price_client import SeriesResult
from reversal_mcp.data.snapshots import SnapshotStore
from reversal_mcp.engine.copywriting import INITIALIZING_COPY
from reversal_mcp.engine.phase import DerivativesSnapshot, OnChainReadings
from reversal_mcp.pipeline import (
    STATUS_EVALUATED,
    STATUS_NOT_EVALUATED,
    EvaluationContext,
    ReversalPipeline,
    read_signals,
    run_core,
)
from reversal_mcp.utils.ohlcv import CANONICAL_COLUMNS

YES_60 = {"outcomes": '["Yes", "No"]', "outcomePrices": '["0.6", "0.4"]'}


def _series(df: pd.DataFrame, stale: bool = False) -> SeriesResult:
    return SeriesResult(
        df=df,
        stale=stale,
        source="last_good" if stale else "live",
        fetched_at="2024-01-01T00:00:00+00:00",
        last_bar_status="closed",
        uri="series://BTC-USD/800",
    )


class FakeProvider:
    """Serves one series, optionally delaying each call."""

    def __init__(self, series: SeriesResult, delays: tuple[float, ...] = ()):
        self.series = series
        self.delays = list(delays)
        self.calls = 0

    async def get_series(self, symbol: str, days: int) -> SeriesResult:
        delay = self.delays[self.calls] if self.calls < len(self.delays) else 0
        self.calls += 1
        await asyncio.sleep(delay)
        return self.series


async def fake_markets(signals):
    return {s.id: YES_60 for s in signals}


async def no_markets(signals):
    return {s.id: None for s in signals}


async def fake_derivatives():
    return DerivativesSnapshot(funding_24h_weighted=0.005, oi_3d_change_pct=-2.0)


@pytest.fixture
def store(tmp_path) -> SnapshotStore:
    return SnapshotStore(snapshot_dir=str(tmp_path / "snapshots"))


def _pipeline(provider, store, market_fetcher=fake_markets) -> ReversalPipeline:
    return ReversalPipeline(
        provider=provider,
        store=store,
        market_fetcher=market_fetcher,
        derivatives_fetcher=fake_derivatives,
    )


class TestReversalPipeline:
    """Tests for ReversalPipeline.evaluate."""

    def test_evaluate_applies_and_persists(self, store: SnapshotStore, uptrend_df: pd.DataFrame) -> None:
        """Test a normal evaluation is applied, saved and tracked."""
        pipeline = _pipeline(FakeProvider(_series(uptrend_df)), store)
        result = asyncio.run(pipeline.evaluate(EvaluationContext(on_chain=OnChainReadings(mvrv_z=0.5))))

        assert result.status == STATUS_EVALUATED
        assert result.applied is True
        assert result.token == 1
        assert result.state is not None
        assert 0 <= result.state.final_score <= result.state.phase_cap
        assert pipeline.applied_token == 1
        assert pipeline.latest == result.state
        assert store.latest().evaluated_at == result.state.evaluated_at
        assert store.latest().stage == result.state.stage
        assert store.get_tracking() is not None
        assert result.transition is not None
        assert result.copy.title != INITIALIZING_COPY.title

    def test_empty_series_not_evaluated(self, store: SnapshotStore) -> None:
        """Test no price data yields not_evaluated and no snapshot."""
        empty = _series(pd.DataFrame(columns=CANONICAL_COLUMNS))
        pipeline = _pipeline(FakeProvider(empty), store)
        result = asyncio.run(pipeline.evaluate())

        assert result.status == STATUS_NOT_EVALUATED
        assert result.applied is False
        assert result.state is None
        assert result.conditions == ()
        assert result.copy == INITIALIZING_COPY
        assert store.latest() is None
        assert pipeline.applied_token == 0

    def test_not_evaluated_keeps_previous_copy(self, store: SnapshotStore, uptrend_df: pd.DataFrame) -> None:
        """Test a data outage after a good run shows the previous stage copy."""
        asyncio.run(_pipeline(FakeProvider(_series(uptrend_df)), store).evaluate())
        empty = _series(pd.DataFrame(columns=CANONICAL_COLUMNS))
        pipeline = _pipeline(FakeProvider(empty), store)

        result = asyncio.run(pipeline.evaluate())

        assert result.status == STATUS_NOT_EVALUATED
        assert result.copy.title != INITIALIZING_COPY.title
        assert pipeline.latest == store.latest()

    def test_superseded_result_discarded(self, store: SnapshotStore, uptrend_df: pd.DataFrame) -> None:
        """Test a slower older evaluation cannot overwrite a newer one."""
        provider = FakeProvider(_series(uptrend_df), delays=(0.2, 0.0))
        pipeline = _pipeline(provider, store)

        async def run_both():
            return await asyncio.gather(pipeline.evaluate(), pipeline.evaluate())

        older, newer = asyncio.run(run_both())

        assert (older.token, newer.token) == (1, 2)
        assert newer.applied is True
        assert older.applied is False
        assert older.status == STATUS_EVALUATED
        assert pipeline.applied_token == 2
        assert len(store.history()) == 1

    def test_stale_series_degrades(self, store: SnapshotStore, uptrend_df: pd.DataFrame) -> None:
        """Test a stale series flags the state degraded."""
        pipeline = _pipeline(FakeProvider(_series(uptrend_df, stale=True)), store)
        result = asyncio.run(pipeline.evaluate())
        assert result.state.degraded is True
        assert "stale_price_data" in result.state.degraded_reasons
        assert "Data delayed" in result.copy.tags

    def test_markets_down_still_evaluates(self, store: SnapshotStore, uptrend_df: pd.DataFrame) -> None:
        """Test a Polymarket outage degrades the narrative instead of failing."""
        pipeline = _pipeline(FakeProvider(_series(uptrend_df)), store, market_fetcher=no_markets)
        result = asyncio.run(pipeline.evaluate())
        assert result.applied is True
        assert result.state.narrative_score == 0
        assert "narrative_score_missing" in result.state.degraded_reasons

    def test_missing_on_chain_readings_degrade(self, store: SnapshotStore, uptrend_df: pd.DataFrame) -> None:
        """Test on-chain readings the caller did not supply are flagged, not silently scored."""
        pipeline = _pipeline(FakeProvider(_series(uptrend_df)), store)
        result = asyncio.run(pipeline.evaluate(EvaluationContext(on_chain=OnChainReadings(mvrv_z=0.5))))
        assert result.state.degraded is True
        assert "cycle_puell_neutral" in result.state.degraded_reasons
        assert "cycle_mvrv_z_neutral" not in result.state.degraded_reasons
        assert "Data delayed" in result.copy.tags

    def test_latest_falls_back_to_store(self, store: SnapshotStore, uptrend_df: pd.DataFrame) -> None:
        """Test a new pipeline picks up the persisted state."""
        first = asyncio.run(_pipeline(FakeProvider(_series(uptrend_df)), store).evaluate())
        latest = _pipeline(FakeProvider(_series(uptrend_df)), store).latest
        assert latest.evaluated_at == first.state.evaluated_at
        assert latest.final_score == pytest.approx(first.state.final_score, abs=1e-4)


class TestRunCore:
    """Tests for the synchronous core."""

    def test_missing_markets_degrade_narrative(self, uptrend_df: pd.DataFrame) -> None:
        """Test no market data marks the narrative missing."""
        markets = {}
        core = run_core(EvaluationContext(), _series(uptrend_df), markets, None, now_ms=1)
        assert core.state is not None
        assert "narrative_score_missing" in core.state.degraded_reasons
        assert all(r.probability is None for r in core.readings)

    def test_narrative_score_from_markets(self, uptrend_df: pd.DataFrame) -> None:
        """Test narrative score follows the normalized probabilities."""
        context = EvaluationContext()
        markets = {s.id: YES_60 for s in context.signals}
        core = run_core(context, _series(uptrend_df), markets, DerivativesSnapshot(funding_24h_weighted=0.005), now_ms=1)
        probabilities = [r.probability for r in core.readings]
        assert core.state.narrative_score == pytest.approx(sum(probabilities) / len(probabilities) * 50)

    def test_read_signals_none_market(self) -> None:
        """Test a missing market has no probability, not 0.5."""
        context = EvaluationContext()
        readings = read_signals(context.signals, {})
        assert all(r.probability is None for r in readings)
