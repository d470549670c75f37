"""Tests for prediction-market normalization and narrative aggregation."""

import copy

import pytest

from reversal_mcp.engine.narrative import (
    SIGNAL_CATALOG,
    MarketParseError,
    NarrativeSignal,
    NormalizedMarket,
    ScoringMode,
    SignalCategory,
    SignalReading,
    aggregate_narrative_score,
    contribution_status,
    fed_breakdown,
    interpret_probability,
    normalize,
    parse_market,
    positive_probability,
    signal_contribution,
    summarize_narrative,
)


def _signal(mode: ScoringMode, sid: str = "test") -> NarrativeSignal:
    return NarrativeSignal(id=sid, title=sid, scoring_mode=mode, slug=sid, category=SignalCategory.MACRO)


class TestParseMarket:
    """Tests for the boundary parser."""

    def test_stringified_arrays(self) -> None:
        """Test JSON-string arrays are decoded."""
        market = parse_market({"outcomes": '["Yes", "No"]', "outcomePrices": '["0.65", "0.35"]'})
        assert market.outcomes == ("Yes", "No")
        assert market.prices == (0.65, 0.35)

    def test_native_arrays(self) -> None:
        """Test native lists are accepted."""
        market = parse_market({"outcomes": ["Yes", "No"], "outcomePrices": [0.2, 0.8]})
        assert market.prices == (0.2, 0.8)

    @pytest.mark.parametrize(
        "raw,match",
        [
            (None, "mapping"),
            ({"outcomes": '["Yes"]'}, "missing"),
            ({"outcomes": "not json", "outcomePrices": "[]"}, "not valid JSON"),
            ({"outcomes": '{"a": 1}', "outcomePrices": "[]"}, "must be a list"),
            ({"outcomes": '["Yes", "No"]', "outcomePrices": '["0.5"]'}, "Length mismatch"),
            ({"outcomes": "[]", "outcomePrices": "[]"}, "no outcomes"),
            ({"outcomes": '["Yes"]', "outcomePrices": '["abc"]'}, "Non-numeric"),
            ({"outcomes": '["Yes"]', "outcomePrices": '["NaN"]'}, "NaN"),
            ({"outcomes": '["Yes", "No"]', "outcomePrices": '["inf", "0.1"]'}, "infinite"),
            ({"outcomes": '["Yes", "No"]', "outcomePrices": '["1.2", "-0.2"]'}, "outside"),
            ({"outcomes": '["Yes", "No"]', "outcomePrices": '["0.4", '}, "not valid JSON"),
        ],
    )
    def test_malformed_raises(self, raw, match: str) -> None:
        """Test malformed payloads raise MarketParseError."""
        with pytest.raises(MarketParseError, match=match):
            parse_market(raw)


class TestNormalize:
    """Tests for scoring-mode normalization."""

    def test_binary_good_uses_yes(self) -> None:
        """Test binary_good returns the Yes price."""
        raw = {"outcomes": '["No", "Yes"]', "outcomePrices": '["0.3", "0.7"]'}
        assert normalize(_signal(ScoringMode.BINARY_GOOD), raw) == pytest.approx(0.7)

    def test_binary_bad_inverts_yes(self) -> None:
        """Test binary_bad returns one minus the Yes price."""
        raw = {"outcomes": '["Yes", "No"]', "outcomePrices": '["0.25", "0.75"]'}
        assert normalize(_signal(ScoringMode.BINARY_BAD), raw) == pytest.approx(0.75)

    def test_yes_label_case_insensitive(self) -> None:
        """Test the Yes label is matched regardless of case."""
        raw = {"outcomes": '["NO", " yes "]', "outcomePrices": '["0.4", "0.6"]'}
        assert normalize(_signal(ScoringMode.BINARY_GOOD), raw) == pytest.approx(0.6)

    def test_missing_yes_label_falls_back_to_first(self) -> None:
        """Test markets without a Yes label use the first outcome."""
        raw = {"outcomes": '["Up", "Down"]', "outcomePrices": '["0.8", "0.2"]'}
        assert normalize(_signal(ScoringMode.BINARY_GOOD), raw) == pytest.approx(0.8)

    def test_fed_cut_sums_cut_outcomes(self) -> None:
        """Test fed_cut sums every cut-like bucket."""
        raw = {
            "outcomes": '["50+ bps decrease", "25 bps decrease", "No change", "25+ bps increase"]',
            "outcomePrices": '["0.1", "0.5", "0.35", "0.05"]',
        }
        assert normalize(_signal(ScoringMode.FED_CUT), raw) == pytest.approx(0.6)

    def test_fed_cut_without_cut_outcomes(self) -> None:
        """Test fed_cut is 0 when no outcome is a cut."""
        raw = {"outcomes": '["Hold", "Hike"]', "outcomePrices": '["0.9", "0.1"]'}
        assert normalize(_signal(ScoringMode.FED_CUT), raw) == 0.0

    def test_malformed_returns_neutral(self) -> None:
        """Test invalid JSON yields exactly 0.5 without raising."""
        raw = {"outcomes": "[not json", "outcomePrices": '["0.9"]'}
        assert normalize(_signal(ScoringMode.BINARY_GOOD), raw) == 0.5

    @pytest.mark.parametrize(
        "prices",
        ['["0.4", ', '["inf", "0.1"]', '["1.5", "-0.5"]'],
    )
    def test_bad_prices_return_neutral(self, prices: str) -> None:
        """Test broken or out-of-range outcome prices yield exactly 0.5."""
        raw = {"outcomes": '["Yes", "No"]', "outcomePrices": prices}
        assert normalize(_signal(ScoringMode.BINARY_GOOD), raw) == 0.5

    def test_fed_cut_order_independent(self) -> None:
        """Test reordering the rate buckets does not change the cut probability."""
        outcomes = ["50+ bps decrease", "25 bps decrease", "No change", "25+ bps increase"]
        prices = ["0.1", "0.5", "0.35", "0.05"]
        signal = _signal(ScoringMode.FED_CUT)
        baseline = normalize(signal, {"outcomes": outcomes, "outcomePrices": prices})

        for order in ([3, 2, 1, 0], [2, 0, 3, 1], [1, 3, 0, 2]):
            raw = {
                "outcomes": [outcomes[i] for i in order],
                "outcomePrices": [prices[i] for i in order],
            }
            assert normalize(signal, raw) == pytest.approx(baseline)

    @pytest.mark.parametrize("mode", list(ScoringMode))
    def test_repeatable_and_pure(self, mode: ScoringMode) -> None:
        """Test the same payload gives the same value and is left unmodified."""
        raw = {"outcomes": ["Yes", "No"], "outcomePrices": ["0.62", "0.38"]}
        snapshot = copy.deepcopy(raw)
        signal = _signal(mode)

        assert normalize(signal, raw) == normalize(signal, raw)
        assert raw == snapshot

    def test_none_payload_returns_neutral(self) -> None:
        """Test a None payload yields 0.5."""
        assert normalize(_signal(ScoringMode.BINARY_BAD), None) == 0.5

    def test_overround_clamped(self) -> None:
        """Test books summing above 1 are clamped."""
        raw = {"outcomes": '["Cut", "Cut more"]', "outcomePrices": '["0.7", "0.6"]'}
        assert normalize(_signal(ScoringMode.FED_CUT), raw) == 1.0

    def test_always_in_unit_interval(self) -> None:
        """Test every mode stays in [0, 1]."""
        market = NormalizedMarket(outcomes=("Yes", "No"), prices=(1.4, -0.4))
        for mode in ScoringMode:
            assert 0.0 <= positive_probability(mode, market) <= 1.0


class TestFedBreakdown:
    """Tests for fed_breakdown."""

    def test_breakdown_percentages(self) -> None:
        """Test cut/hold/hike percentages."""
        market = parse_market(
            {
                "outcomes": '["25 bps decrease", "No change", "25 bps increase"]',
                "outcomePrices": '["0.62", "0.35", "0.03"]',
            }
        )
        assert fed_breakdown(market) == {"cut": 62, "hold": 35, "hike": 3}

    def test_hold_keywords(self) -> None:
        """Test hold and maintain buckets count as hold."""
        market = parse_market({"outcomes": '["Cut", "Hold"]', "outcomePrices": '["0.3", "0.7"]'})
        assert fed_breakdown(market) == {"cut": 30, "hold": 70, "hike": 0}


class TestAggregation:
    """Tests for contributions, interpretation and summaries."""

    def test_signal_contribution(self) -> None:
        """Test contribution scales probability to 5 points."""
        assert signal_contribution(0.8) == pytest.approx(4.0)
        assert signal_contribution(1.5) == 5.0

    @pytest.mark.parametrize("points,status", [(4.0, "met"), (3.0, "accumulating"), (1.5, "not_met")])
    def test_contribution_status(self, points: float, status: str) -> None:
        """Test status thresholds."""
        assert contribution_status(points) == status

    @pytest.mark.parametrize(
        "pct,level",
        [(70, "consensus"), (60, "leaning"), (50, "neutral"), (40, "weak"), (30, "low")],
    )
    def test_interpret_probability(self, pct: float, level: str) -> None:
        """Test interpretation bands."""
        assert interpret_probability(pct)["level"] == level

    def test_aggregate_mean(self) -> None:
        """Test aggregate is mean probability times 50, skipping missing."""
        assert aggregate_narrative_score([0.2, 0.6, None]) == pytest.approx(20.0)

    def test_aggregate_none_without_data(self) -> None:
        """Test aggregate is None when nothing is available."""
        assert aggregate_narrative_score([None, None]) is None
        assert aggregate_narrative_score([]) is None

    def test_summary_bullish(self) -> None:
        """Test summary sentiment and top-3 ranking."""
        readings = [
            SignalReading(signal=SIGNAL_CATALOG[i], probability=p)
            for i, p in enumerate([0.9, 0.7, 0.6, 0.5, None, 0.8])
        ]
        summary = summarize_narrative(readings)
        assert summary["sentiment"] == "bullish"
        assert summary["avg_probability"] == pytest.approx(0.7)
        assert [s["id"] for s in summary["top_signals"]] == ["fed_decision", "us_recession", "btc_reserve"]
        assert summary["top_signals"][0]["probability_display"] == "90%"

    def test_summary_bearish(self) -> None:
        """Test low probabilities read bearish."""
        readings = [SignalReading(signal=s, probability=0.2) for s in SIGNAL_CATALOG[:2]]
        assert summarize_narrative(readings)["sentiment"] == "bearish"

    def test_summary_without_data(self) -> None:
        """Test summary with no data is neutral."""
        readings = [SignalReading(signal=s, probability=None) for s in SIGNAL_CATALOG]
        summary = summarize_narrative(readings)
        assert summary["sentiment"] == "neutral"
        assert summary["avg_probability"] is None
        assert summary["top_signals"] == []


class TestCatalog:
    """Tests for the signal catalog."""

    def test_unique_ids_and_slugs(self) -> None:
        """Test catalog IDs and slugs are unique."""
        assert len({s.id for s in SIGNAL_CATALOG}) == len(SIGNAL_CATALOG)
        assert len({s.slug for s in SIGNAL_CATALOG}) == len(SIGNAL_CATALOG)

    def test_recession_is_inverted(self) -> None:
        """Test the recession signal scores against Yes."""
        recession = next(s for s in SIGNAL_CATALOG if s.id == "us_recession")
        assert recession.scoring_mode == ScoringMode.BINARY_BAD
