"""
Tests for the multi-model consensus aggregator.
"""
import pytest

from conftest import dx
from lab_reasoning.consensus import (
    ConsensusAggregator,
    ConsensusConfig,
    aggregate_diagnoses,
    calculate_score,
    calibrate_confidence,
    determine_consensus_level,
    fallback_to_single_model,
    merge_evidence,
    to_diagnosis_input,
)
from lab_reasoning.models.schemas import ConsensusLevel, DifferentialDiagnosis


# ──────────────────────────────────────────────
# Building blocks
# ──────────────────────────────────────────────

class TestCalculateScore:
    @pytest.mark.parametrize(
        "rank, expected",
        [(1, 1.0), (2, 0.5), (3, 1 / 3), (4, 0.25), (5, 0.2), (10, 0.1)],
    )
    def test_reciprocal_rank(self, rank, expected):
        assert calculate_score(rank) == pytest.approx(expected)

    @pytest.mark.parametrize("rank", [0, -1, 11, 50])
    def test_out_of_range_scores_zero(self, rank):
        assert calculate_score(rank) == 0.0

    def test_custom_max_rank(self):
        assert calculate_score(4, max_rank=3) == 0.0
        assert calculate_score(3, max_rank=3) == pytest.approx(1 / 3)


class TestConsensusLevel:
    @pytest.mark.parametrize(
        "a, b, level",
        [
            (1, 1, ConsensusLevel.STRONG),
            (2, 1, ConsensusLevel.MODERATE),
            (1, 3, ConsensusLevel.WEAK),
            (1, 4, ConsensusLevel.DIVERGENT),
            (5, 1, ConsensusLevel.DIVERGENT),
            (1, None, ConsensusLevel.SINGLE),
            (None, 2, ConsensusLevel.SINGLE),
        ],
    )
    def test_rank_gap_classification(self, a, b, level):
        assert determine_consensus_level(a, b) == level

    def test_thresholds_are_configurable(self):
        config = ConsensusConfig(strong_max_gap=1, moderate_max_gap=2, weak_max_gap=4)
        assert determine_consensus_level(1, 2, config) == ConsensusLevel.STRONG
        assert determine_consensus_level(1, 3, config) == ConsensusLevel.MODERATE
        assert determine_consensus_level(1, 5, config) == ConsensusLevel.WEAK
        assert determine_consensus_level(1, 6, config) == ConsensusLevel.DIVERGENT

    def test_unordered_thresholds_rejected(self):
        with pytest.raises(ValueError):
            ConsensusConfig(strong_max_gap=2, moderate_max_gap=1, weak_max_gap=3)

    def test_missing_multiplier_rejected(self):
        with pytest.raises(ValueError, match="divergent"):
            ConsensusConfig(
                confidence_multipliers={
                    ConsensusLevel.STRONG: 1.1,
                    ConsensusLevel.MODERATE: 1.0,
                    ConsensusLevel.WEAK: 0.9,
                    ConsensusLevel.SINGLE: 0.8,
                }
            )


class TestCalibrateConfidence:
    @pytest.mark.parametrize(
        "avg, level, expected",
        [
            (80, ConsensusLevel.STRONG, 88),
            (80, ConsensusLevel.MODERATE, 80),
            (75, ConsensusLevel.WEAK, 68),  # 67.5 rounds up
            (80, ConsensusLevel.SINGLE, 64),
            (80, ConsensusLevel.DIVERGENT, 56),
        ],
    )
    def test_level_multipliers(self, avg, level, expected):
        assert calibrate_confidence(avg, level) == expected

    def test_rounds_half_up(self):
        assert calibrate_confidence(62.5, ConsensusLevel.MODERATE) == 63
        assert calibrate_confidence(61.5, ConsensusLevel.MODERATE) == 62

    def test_capped_below_certainty(self):
        assert calibrate_confidence(95, ConsensusLevel.STRONG) == 99
        assert calibrate_confidence(100, ConsensusLevel.MODERATE) == 99

    def test_floor_is_zero(self):
        assert calibrate_confidence(0, ConsensusLevel.DIVERGENT) == 0


class TestMergeEvidence:
    def test_case_insensitive_union_keeps_first_casing(self):
        merged = merge_evidence(["TSH 8.2", "Low free T4"], ["tsh 8.2", "Fatigue"])
        assert merged == ["TSH 8.2", "Low free T4", "Fatigue"]

    def test_blank_items_dropped(self):
        assert merge_evidence(["  ", "Weight gain "], [""]) == ["Weight gain"]


# ──────────────────────────────────────────────
# Aggregation
# ──────────────────────────────────────────────

class TestAggregateDiagnoses:
    def test_identical_lists_are_strong_with_doubled_score(self):
        a = [dx("Hipotireoidismo", 1), dx("Diabetes tipo 2", 2), dx("Anemia ferropriva", 3)]
        result = aggregate_diagnoses(a, a)

        assert [d.name for d in result.diagnoses] == [d.name for d in a]
        for out, rank in zip(result.diagnoses, (1, 2, 3)):
            assert out.consensus_level == ConsensusLevel.STRONG
            assert out.aggregate_score == pytest.approx(2 * (1 / rank))
        assert result.metrics.strong_consensus_rate == 100

    def test_empty_challenger_equals_single_model_mode(self):
        a = [dx("Hipotireoidismo", 1, 90), dx("Diabetes tipo 2", 2, 70)]
        result = aggregate_diagnoses(a, [])
        fallback = fallback_to_single_model(
            [DifferentialDiagnosis(name=d.name, confidence=d.confidence) for d in a]
        )

        assert [d.name for d in result.diagnoses] == [d.name for d in fallback.diagnoses]
        assert [d.aggregate_score for d in result.diagnoses] == [
            d.aggregate_score for d in fallback.diagnoses
        ]
        assert all(d.consensus_level == ConsensusLevel.SINGLE for d in result.diagnoses)
        assert [d.confidence for d in result.diagnoses] == [72, 56]

    def test_spelling_variants_merge(self):
        result = aggregate_diagnoses(
            [dx("Hipotiroidismo", 1, 80)],
            [dx("Hipotireoidismo", 2, 70)],
        )

        assert len(result.diagnoses) == 1
        merged = result.diagnoses[0]
        assert merged.name == "Hipotiroidismo"
        assert merged.aggregate_score == pytest.approx(1.5)
        assert merged.consensus_level == ConsensusLevel.MODERATE
        assert merged.confidence == 75
        assert merged.model_details.primary.rank == 1
        assert merged.model_details.challenger.rank == 2

    def test_two_model_scenario_ordering(self):
        primary = [dx("DiabetesT2", 1), dx("Hypothyroid", 2)]
        challenger = [dx("DiabetesT2", 1), dx("Anemia", 1)]
        result = aggregate_diagnoses(primary, challenger)

        assert [d.name for d in result.diagnoses] == ["DiabetesT2", "Anemia", "Hypothyroid"]
        diabetes, anemia, hypothyroid = result.diagnoses
        assert diabetes.aggregate_score == pytest.approx(2.0)
        assert diabetes.consensus_level == ConsensusLevel.STRONG
        assert anemia.aggregate_score == pytest.approx(1.0)
        assert anemia.consensus_level == ConsensusLevel.SINGLE
        assert hypothyroid.aggregate_score == pytest.approx(0.5)
        assert hypothyroid.consensus_level == ConsensusLevel.SINGLE

    def test_truncates_to_top_five_sorted(self):
        primary = [dx(f"P{i}", i) for i in range(1, 5)]
        challenger = [dx(f"C{i}", i) for i in range(1, 5)]
        result = aggregate_diagnoses(primary, challenger)

        assert len(result.diagnoses) == 5
        scores = [d.aggregate_score for d in result.diagnoses]
        assert scores == sorted(scores, reverse=True)
        # ties keep encounter order: primary list first
        assert [d.name for d in result.diagnoses] == ["P1", "C1", "P2", "C2", "P3"]

    def test_confidence_always_within_bounds(self):
        primary = [dx(f"Dx{i}", i, conf) for i, conf in enumerate([100, 99, 0, 50, 100, 1], 1)]
        challenger = [dx(f"Dx{7 - i}", i, conf) for i, conf in enumerate([100, 0, 100, 75, 33, 100], 1)]
        for a, b in [(primary, challenger), (primary, []), ([], challenger), (primary, primary)]:
            for d in aggregate_diagnoses(a, b).diagnoses:
                assert 0 <= d.confidence <= 99

    def test_evidence_and_tests_deduplicated_across_models(self):
        result = aggregate_diagnoses(
            [dx("Hypothyroidism", 1, supporting_evidence=["TSH 8.2", "Fatigue"], suggested_tests=["Anti-TPO"])],
            [dx("Hipotireoidismo", 1, supporting_evidence=["tsh 8.2", "Low free T4"], suggested_tests=["anti-tpo"])],
        )
        merged = result.diagnoses[0]
        assert merged.supporting_evidence == ["TSH 8.2", "Fatigue", "Low free T4"]
        assert merged.suggested_tests == ["Anti-TPO"]

    def test_first_non_empty_icd10_wins(self):
        result = aggregate_diagnoses(
            [dx("Hypothyroidism", 1), dx("T2DM", 2, icd10="E11")],
            [dx("Hipotireoidismo", 1, icd10="E03.9"), dx("DM2", 2, icd10="E11.9")],
        )
        by_name = {d.name: d for d in result.diagnoses}
        assert by_name["Hypothyroidism"].icd10 == "E03.9"
        assert by_name["T2DM"].icd10 == "E11"

    def test_duplicate_from_same_model_scores_every_entry(self):
        result = aggregate_diagnoses(
            [dx("Hypothyroidism", 2, 60), dx("Hipotiroidismo", 1, 90, supporting_evidence=["High TSH"])],
            [],
        )
        assert len(result.diagnoses) == 1
        only = result.diagnoses[0]
        assert only.aggregate_score == pytest.approx(1.5)
        assert only.model_details.primary.rank == 1
        assert only.model_details.primary.confidence == 90
        assert only.supporting_evidence == ["High TSH"]

    def test_duplicate_keeps_best_rank_for_consensus_level(self):
        result = aggregate_diagnoses(
            [dx("Hipotiroidismo", 1), dx("Hypothyroidism", 4)],
            [dx("Hipotireoidismo", 1)],
        )
        only = result.diagnoses[0]
        assert only.aggregate_score == pytest.approx(2.25)
        assert only.consensus_level == ConsensusLevel.STRONG

    def test_ranks_beyond_max_rank_add_nothing(self):
        result = aggregate_diagnoses([dx("Gout", 11)], [dx("Gout", 1)])
        assert result.diagnoses[0].aggregate_score == pytest.approx(1.0)
        assert result.diagnoses[0].consensus_level == ConsensusLevel.DIVERGENT

    def test_both_empty(self):
        result = aggregate_diagnoses([], [])
        assert result.diagnoses == []
        assert result.metrics.strong_consensus_rate == 0
        assert result.metrics.models_used == []


class TestConsensusMetrics:
    def test_counts_and_rate(self):
        primary = [dx("A", 1), dx("B", 2), dx("C", 3)]
        challenger = [dx("A", 1), dx("B", 3), dx("C", 7)]
        metrics = aggregate_diagnoses(primary, challenger).metrics

        assert metrics.strong_consensus_rate == 33
        assert metrics.moderate_consensus_count == 1
        assert metrics.divergent_count == 1
        assert metrics.divergent_diagnoses == ["C"]
        assert metrics.models_used == ["primary", "challenger"]
        assert metrics.total_processing_time_ms >= 0

    def test_no_divergence_reports_none(self):
        metrics = aggregate_diagnoses([dx("A", 1)], [dx("A", 1)]).metrics
        assert metrics.divergent_count == 0
        assert metrics.divergent_diagnoses is None

    def test_models_used_reports_model_ids(self):
        aggregator = ConsensusAggregator(primary_model_id="model-a", challenger_model_id="model-b")
        assert aggregator.aggregate([dx("A", 1)], [dx("A", 1)]).metrics.models_used == ["model-a", "model-b"]
        assert aggregator.aggregate([], [dx("A", 1)]).metrics.models_used == ["model-b"]

    def test_rate_rounds_half_up(self):
        # 1 strong of 8 kept = 12.5%
        config = ConsensusConfig(top_n=8)
        primary = [dx("A", 1)] + [dx(f"P{i}", i) for i in range(2, 9)]
        metrics = aggregate_diagnoses(primary, [dx("A", 1)], config).metrics
        assert metrics.strong_consensus_rate == 13


class TestToDiagnosisInput:
    def test_rank_follows_list_position(self):
        inputs = to_diagnosis_input(
            [
                DifferentialDiagnosis(name="Hipotireoidismo", icd10="E03.9", confidence=80),
                DifferentialDiagnosis(name="Anemia", confidence=40, supporting_evidence=["Hb 10.9"]),
            ]
        )
        assert [(i.name, i.rank) for i in inputs] == [("Hipotireoidismo", 1), ("Anemia", 2)]
        assert inputs[0].icd10 == "E03.9"
        assert inputs[1].supporting_evidence == ["Hb 10.9"]
