"""Evaluation pipeline: gather inputs, run the pure core, apply the newest result."""

import asyncio
import itertools
import logging
import os
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from reversal_mcp.data.derivatives_client import fetch_derivatives
from reversal_mcp.data.polymarket_client import fetch_signal_markets
from reversal_mcp.data.price_client import PriceSeriesProvider, SeriesResult
from reversal_mcp.data.snapshots import SnapshotStore
from reversal_mcp.engine.conditions import (
    DEFAULT_PERSONAL_PARAMS,
    ConditionResult,
    PersonalParams,
    evaluate_conditions,
)
from reversal_mcp.engine.copywriting import StageAIFill, StageCopy, resolve_copy
from reversal_mcp.engine.narrative import (
    SIGNAL_CATALOG,
    NarrativeSignal,
    SignalReading,
    aggregate_narrative_score,
    normalize,
)
from reversal_mcp.engine.phase import (
    DerivativesSnapshot,
    OnChainReadings,
    ReversalState,
    build_inputs,
    compute_reversal_state,
)
from reversal_mcp.engine.transitions import TransitionResult, track_transition

logger = logging.getLogger(__name__)

DEFAULT_SYMBOL = os.environ.get("REVERSAL_SYMBOL", "BTC-USD")
# Two years of support history plus a year of volatility ranking
DEFAULT_SERIES_DAYS = 800

STATUS_EVALUATED = "evaluated"
STATUS_NOT_EVALUATED = "not_evaluated"

MarketFetcher = Callable[[Iterable[NarrativeSignal]], Awaitable[dict[str, dict[str, Any] | None]]]
DerivativesFetcher = Callable[[], Awaitable[DerivativesSnapshot]]


@dataclass(frozen=True)
class EvaluationContext:
    """Explicit inputs for one evaluation. Nothing is read from ambient state."""

    symbol: str = DEFAULT_SYMBOL
    days: int = DEFAULT_SERIES_DAYS
    params: PersonalParams = DEFAULT_PERSONAL_PARAMS
    enabled_ids: frozenset[str] | None = None
    on_chain: OnChainReadings = field(default_factory=OnChainReadings)
    signals: tuple[NarrativeSignal, ...] = SIGNAL_CATALOG
    ai_fill: StageAIFill | None = None


@dataclass(frozen=True)
class CoreOutput:
    state: ReversalState | None
    conditions: tuple[ConditionResult, ...]
    readings: tuple[SignalReading, ...]


@dataclass(frozen=True)
class EvaluationResult:
    status: str
    token: int
    applied: bool
    state: ReversalState | None
    conditions: tuple[ConditionResult, ...]
    readings: tuple[SignalReading, ...]
    copy: StageCopy
    series: SeriesResult | None = None
    derivatives: DerivativesSnapshot | None = None
    transition: TransitionResult | None = None


def read_signals(
    signals: Iterable[NarrativeSignal],
    markets: dict[str, dict[str, Any] | None],
) -> tuple[SignalReading, ...]:
    """Normalize each signal's market; a missing market has no probability."""
    readings = []
    for signal in signals:
        raw = markets.get(signal.id)
        probability = normalize(signal, raw) if raw is not None else None
        readings.append(SignalReading(signal=signal, probability=probability))
    return tuple(readings)


def run_core(
    context: EvaluationContext,
    series: SeriesResult,
    markets: dict[str, dict[str, Any] | None],
    derivatives: DerivativesSnapshot | None,
    last_good: ReversalState | None = None,
    now_ms: int | None = None,
) -> CoreOutput:
    """
    Synchronous scoring over already-fetched inputs. No side effects.

    An empty series yields no state: the index is "not yet evaluated",
    never "all conditions failed".
    """
    readings = read_signals(context.signals, markets)
    conditions = evaluate_conditions(
        series.df,
        params=context.params,
        enabled_ids=context.enabled_ids,
        stale=series.stale,
    )
    if not conditions:
        return CoreOutput(state=None, conditions=(), readings=readings)

    inputs = build_inputs(
        conditions,
        narrative_score=aggregate_narrative_score(r.probability for r in readings),
        on_chain=context.on_chain,
        derivatives=derivatives,
        stale=series.stale,
    )
    state = compute_reversal_state(inputs, last_good=last_good, now_ms=now_ms)
    return CoreOutput(state=state, conditions=tuple(conditions), readings=readings)


class ReversalPipeline:
    """
    Runs evaluations and applies only the newest one.

    Each evaluate() call takes a token from a monotonically increasing
    counter. A result whose token is not newer than the last applied token
    was superseded while its fetches were in flight and is discarded.
    """

    def __init__(
        self,
        provider: PriceSeriesProvider | None = None,
        store: SnapshotStore | None = None,
        market_fetcher: MarketFetcher = fetch_signal_markets,
        derivatives_fetcher: DerivativesFetcher = fetch_derivatives,
    ):
        self.provider = provider if provider is not None else PriceSeriesProvider()
        self.store = store
        self._market_fetcher = market_fetcher
        self._derivatives_fetcher = derivatives_fetcher
        self._tokens = itertools.count(1)
        self._applied_token = 0
        self._latest: ReversalState | None = None

    @property
    def latest(self) -> ReversalState | None:
        """Last applied state, falling back to the persisted one."""
        if self._latest is None and self.store is not None:
            self._latest = self.store.latest()
        return self._latest

    @property
    def applied_token(self) -> int:
        return self._applied_token

    def next_token(self) -> int:
        return next(self._tokens)

    async def evaluate(self, context: EvaluationContext | None = None) -> EvaluationResult:
        """
        Fetch inputs concurrently, score them, apply if still the newest.

        Args:
            context: Evaluation inputs (defaults apply when None)

        Returns:
            EvaluationResult; applied=False when superseded or not evaluated
        """
        context = context or EvaluationContext()
        token = self.next_token()

        series, markets, derivatives = await asyncio.gather(
            self.provider.get_series(context.symbol, context.days),
            self._market_fetcher(context.signals),
            self._derivatives_fetcher(),
        )

        core = run_core(context, series, markets, derivatives, last_good=self.latest)
        return self._apply(token, context, core, series, derivatives)

    def _apply(
        self,
        token: int,
        context: EvaluationContext,
        core: CoreOutput,
        series: SeriesResult,
        derivatives: DerivativesSnapshot | None,
    ) -> EvaluationResult:
        if core.state is None:
            logger.warning(f"No price data for {context.symbol}; index not evaluated")
            return EvaluationResult(
                status=STATUS_NOT_EVALUATED,
                token=token,
                applied=False,
                state=None,
                conditions=core.conditions,
                readings=core.readings,
                copy=resolve_copy(self.latest, context.ai_fill),
                series=series,
                derivatives=derivatives,
            )

        if token <= self._applied_token:
            logger.info(
                f"Discarding superseded evaluation (token {token} <= applied {self._applied_token})"
            )
            return EvaluationResult(
                status=STATUS_EVALUATED,
                token=token,
                applied=False,
                state=core.state,
                conditions=core.conditions,
                readings=core.readings,
                copy=resolve_copy(core.state, context.ai_fill),
                series=series,
                derivatives=derivatives,
            )

        self._applied_token = token
        self._latest = core.state

        transition = None
        if self.store is not None:
            self.store.save(core.state)
            transition = track_transition(self.store.get_tracking(), core.state)
            if transition.has_changed or transition.events:
                self.store.set_tracking(transition.tracking)
            for payload in transition.payloads:
                logger.info(f"Stage transition: {payload['event']} ({payload['message']})")

        return EvaluationResult(
            status=STATUS_EVALUATED,
            token=token,
            applied=True,
            state=core.state,
            conditions=core.conditions,
            readings=core.readings,
            copy=resolve_copy(core.state, context.ai_fill),
            series=series,
            derivatives=derivatives,
            transition=transition,
        )
