# [Core: Consensus]
"""
Multi-model consensus — merges the primary and challenger differentials
into one calibrated, explainable ranking.

Nothing in this package performs I/O.
"""
from lab_reasoning.consensus.aggregator import (
    ConsensusAggregator,
    ConsensusResult,
    DiagnosisScore,
    aggregate_diagnoses,
    calculate_score,
    calibrate_confidence,
    determine_consensus_level,
    fallback_to_single_model,
    merge_evidence,
    to_diagnosis_input,
)
from lab_reasoning.consensus.config import (
    CHALLENGER_KEY,
    DEFAULT_CONFIG,
    PRIMARY_KEY,
    ConsensusConfig,
)
from lab_reasoning.consensus.normalization import normalize_diagnosis_name

__all__ = [
    "CHALLENGER_KEY",
    "DEFAULT_CONFIG",
    "PRIMARY_KEY",
    "ConsensusAggregator",
    "ConsensusConfig",
    "ConsensusResult",
    "DiagnosisScore",
    "aggregate_diagnoses",
    "calculate_score",
    "calibrate_confidence",
    "determine_consensus_level",
    "fallback_to_single_model",
    "merge_evidence",
    "normalize_diagnosis_name",
    "to_diagnosis_input",
]
