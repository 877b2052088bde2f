# [Core: Consensus]
"""
Multi-model consensus aggregator — reciprocal-rank (1/r) weighted fusion.

Good answers tend to be shared by independent models; bad answers tend to
be local to one of them. Each diagnosis at rank r contributes 1/r to its
merged record, records are ranked by the summed score, and each kept
diagnosis gets a consensus level and a confidence calibrated to it.

Algorithm:
  1. Normalize each name into a merge key (see normalization.py)
  2. Score each entry 1/r (0 outside 1..max_rank)
  3. Accumulate scores, per-model rank/confidence and evidence per key
  4. Rank by total score (stable: ties keep encounter order) and keep top N
  5. Classify agreement from the rank gap between the two models
  6. Calibrate confidence by consensus level, capped below certainty

Everything here is synchronous and side-effect free. Model calls happen in
layers/fusion.py; this module only sees their parsed, ranked lists.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from lab_reasoning.consensus.config import (
    CHALLENGER_KEY,
    DEFAULT_CONFIG,
    PRIMARY_KEY,
    ConsensusConfig,
)
from lab_reasoning.consensus.normalization import normalize_diagnosis_name
from lab_reasoning.models.schemas import (
    ConsensusDiagnosis,
    ConsensusLevel,
    ConsensusMetrics,
    DifferentialDiagnosis,
    ModelContribution,
    ModelDetails,
    ModelDiagnosisInput,
)

logger = logging.getLogger(__name__)


@dataclass
class DiagnosisScore:
    """Accumulator for one normalized diagnosis identity."""
    normalized_name: str
    display_name: str
    icd10: Optional[str] = None
    score: float = 0.0
    sources: Dict[str, ModelContribution] = field(default_factory=dict)
    supporting_evidence: List[str] = field(default_factory=list)
    contradicting_evidence: List[str] = field(default_factory=list)
    suggested_tests: List[str] = field(default_factory=list)


@dataclass
class ConsensusResult:
    diagnoses: List[ConsensusDiagnosis]
    metrics: ConsensusMetrics


# ──────────────────────────────────────────────
# Building blocks
# ──────────────────────────────────────────────

def calculate_score(rank: int, max_rank: int = DEFAULT_CONFIG.max_rank) -> float:
    """
    Reciprocal-rank score.

    rank 1 = 1.00, rank 2 = 0.50, rank 3 = 0.33, rank 4 = 0.25, rank 5 = 0.20;
    0 for rank <= 0 or rank > max_rank.
    """
    if rank <= 0 or rank > max_rank:
        return 0.0
    return 1.0 / rank


def determine_consensus_level(
    primary_rank: Optional[int],
    challenger_rank: Optional[int],
    config: ConsensusConfig = DEFAULT_CONFIG,
) -> ConsensusLevel:
    """Classify agreement from which models proposed a diagnosis and where."""
    if primary_rank is None or challenger_rank is None:
        return ConsensusLevel.SINGLE

    gap = abs(primary_rank - challenger_rank)
    if gap <= config.strong_max_gap:
        return ConsensusLevel.STRONG
    if gap <= config.moderate_max_gap:
        return ConsensusLevel.MODERATE
    if gap <= config.weak_max_gap:
        return ConsensusLevel.WEAK
    return ConsensusLevel.DIVERGENT


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calibrate_confidence(
    avg_confidence: float,
    level: ConsensusLevel,
    config: ConsensusConfig = DEFAULT_CONFIG,
) -> int:
    """Scale confidence by the consensus multiplier, then clamp to [0, ceiling]."""
    calibrated = round_half_up(avg_confidence * config.confidence_multipliers[level])
    return min(config.confidence_ceiling, max(0, calibrated))


def merge_evidence(*groups: Iterable[str]) -> List[str]:
    """Case-insensitive union preserving order and first-seen casing."""
    seen: Dict[str, str] = {}
    for group in groups:
        for item in group:
            key = item.strip().lower()
            if key and key not in seen:
                seen[key] = item.strip()
    return list(seen.values())


def to_diagnosis_input(diagnoses: Sequence[DifferentialDiagnosis]) -> List[ModelDiagnosisInput]:
    """Convert a ranked DifferentialDiagnosis list; rank = list position."""
    return [
        ModelDiagnosisInput(
            name=dx.name,
            rank=idx + 1,
            confidence=dx.confidence,
            icd10=dx.icd10,
            supporting_evidence=list(dx.supporting_evidence),
            contradicting_evidence=list(dx.contradicting_evidence),
            suggested_tests=list(dx.suggested_tests),
        )
        for idx, dx in enumerate(diagnoses)
    ]


# ──────────────────────────────────────────────
# Aggregation
# ──────────────────────────────────────────────

def _accumulate(
    score_map: Dict[str, DiagnosisScore],
    model_key: str,
    diagnoses: Sequence[ModelDiagnosisInput],
    config: ConsensusConfig,
) -> None:
    for dx in diagnoses:
        key = normalize_diagnosis_name(dx.name)
        if not key:
            continue

        entry = score_map.get(key)
        if entry is None:
            entry = DiagnosisScore(normalized_name=key, display_name=dx.name.strip())
            score_map[key] = entry

        entry.score += calculate_score(dx.rank, config.max_rank)

        previous = entry.sources.get(model_key)
        if previous is not None:
            # Every entry scores; the rank gap uses the model's best placement.
            logger.debug(f"Duplicate diagnosis '{dx.name}' from {model_key} merged into '{key}'")
        if previous is None or dx.rank < previous.rank:
            entry.sources[model_key] = ModelContribution(
                rank=dx.rank,
                confidence=dx.confidence,
                reasoning=dx.reasoning,
            )

        entry.icd10 = entry.icd10 or (dx.icd10 or None)
        entry.supporting_evidence.extend(dx.supporting_evidence)
        entry.contradicting_evidence.extend(dx.contradicting_evidence)
        entry.suggested_tests.extend(dx.suggested_tests)


def _build_diagnosis(entry: DiagnosisScore, config: ConsensusConfig) -> ConsensusDiagnosis:
    primary = entry.sources.get(PRIMARY_KEY)
    challenger = entry.sources.get(CHALLENGER_KEY)
    level = determine_consensus_level(
        primary.rank if primary else None,
        challenger.rank if challenger else None,
        config,
    )

    contributions = [c for c in (primary, challenger) if c is not None]
    avg_confidence = sum(c.confidence for c in contributions) / len(contributions)

    return ConsensusDiagnosis(
        name=entry.display_name,
        icd10=entry.icd10,
        confidence=calibrate_confidence(avg_confidence, level, config),
        supporting_evidence=merge_evidence(entry.supporting_evidence),
        contradicting_evidence=merge_evidence(entry.contradicting_evidence),
        suggested_tests=merge_evidence(entry.suggested_tests),
        aggregate_score=entry.score,
        consensus_level=level,
        model_details=ModelDetails(primary=primary, challenger=challenger),
    )


def aggregate_diagnoses(
    primary_diagnoses: Sequence[ModelDiagnosisInput],
    challenger_diagnoses: Sequence[ModelDiagnosisInput],
    config: Optional[ConsensusConfig] = None,
    model_ids: Optional[Mapping[str, str]] = None,
) -> ConsensusResult:
    """
    Merge two independently ranked diagnosis lists into one consensus ranking.

    Either list may be empty; with one empty list every diagnosis comes out
    as ``single`` (single-model mode) in the same output shape.

    Args:
        primary_diagnoses: Ranked diagnoses from the primary model
        challenger_diagnoses: Ranked diagnoses from the challenger model
        config: Consensus constants (defaults to DEFAULT_CONFIG)
        model_ids: {"primary": ..., "challenger": ...} names for the metrics

    Returns:
        ConsensusResult with at most config.top_n diagnoses and metrics
    """
    config = config or DEFAULT_CONFIG
    model_ids = model_ids or {}
    start = time.monotonic()

    score_map: Dict[str, DiagnosisScore] = {}
    _accumulate(score_map, PRIMARY_KEY, primary_diagnoses, config)
    _accumulate(score_map, CHALLENGER_KEY, challenger_diagnoses, config)

    # sorted() is stable: equal scores keep encounter order
    ranked = sorted(score_map.values(), key=lambda e: e.score, reverse=True)[: config.top_n]
    diagnoses = [_build_diagnosis(entry, config) for entry in ranked]

    strong = sum(1 for d in diagnoses if d.consensus_level == ConsensusLevel.STRONG)
    moderate = sum(1 for d in diagnoses if d.consensus_level == ConsensusLevel.MODERATE)
    divergent_names = [d.name for d in diagnoses if d.consensus_level == ConsensusLevel.DIVERGENT]

    models_used = []
    if primary_diagnoses:
        models_used.append(model_ids.get(PRIMARY_KEY, PRIMARY_KEY))
    if challenger_diagnoses:
        models_used.append(model_ids.get(CHALLENGER_KEY, CHALLENGER_KEY))

    metrics = ConsensusMetrics(
        models_used=models_used,
        strong_consensus_rate=round_half_up(100 * strong / len(diagnoses)) if diagnoses else 0,
        moderate_consensus_count=moderate,
        divergent_count=len(divergent_names),
        divergent_diagnoses=divergent_names or None,
        total_processing_time_ms=int((time.monotonic() - start) * 1000),
    )

    logger.debug(
        f"Aggregated {len(primary_diagnoses)}+{len(challenger_diagnoses)} diagnoses into "
        f"{len(score_map)} identities, kept {len(diagnoses)}"
    )
    return ConsensusResult(diagnoses=diagnoses, metrics=metrics)


def fallback_to_single_model(
    diagnoses: Sequence[DifferentialDiagnosis],
    config: Optional[ConsensusConfig] = None,
    model_id: Optional[str] = None,
) -> ConsensusResult:
    """
    Single-model mode for a plain ranked differential.

    Identical to aggregating the list against an empty challenger list.
    """
    model_ids = {PRIMARY_KEY: model_id} if model_id else None
    return aggregate_diagnoses(to_diagnosis_input(diagnoses), [], config, model_ids)


class ConsensusAggregator:
    """aggregate_diagnoses() bound to a configuration and model names."""

    def __init__(
        self,
        config: Optional[ConsensusConfig] = None,
        primary_model_id: str = PRIMARY_KEY,
        challenger_model_id: str = CHALLENGER_KEY,
    ):
        self.config = config or DEFAULT_CONFIG
        self.model_ids = {PRIMARY_KEY: primary_model_id, CHALLENGER_KEY: challenger_model_id}

    def aggregate(
        self,
        primary_diagnoses: Sequence[ModelDiagnosisInput],
        challenger_diagnoses: Sequence[ModelDiagnosisInput],
    ) -> ConsensusResult:
        return aggregate_diagnoses(primary_diagnoses, challenger_diagnoses, self.config, self.model_ids)
