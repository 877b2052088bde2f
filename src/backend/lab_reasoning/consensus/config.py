# [Core: Consensus]
"""
Tunable constants for multi-model consensus.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from lab_reasoning.config import Settings, settings as default_settings
from lab_reasoning.models.schemas import ConsensusLevel

PRIMARY_KEY = "primary"
CHALLENGER_KEY = "challenger"


def _default_multipliers() -> Dict[ConsensusLevel, float]:
    return {
        ConsensusLevel.STRONG: 1.10,
        ConsensusLevel.MODERATE: 1.00,
        ConsensusLevel.WEAK: 0.90,
        ConsensusLevel.SINGLE: 0.80,
        ConsensusLevel.DIVERGENT: 0.70,
    }


@dataclass(frozen=True)
class ConsensusConfig:
    """Configuration for one aggregation."""
    top_n: int = 5
    max_rank: int = 10
    """Ranks beyond this contribute nothing to the aggregate score."""
    confidence_ceiling: int = 99
    """Diagnostic confidence is never reported as certain."""
    strong_max_gap: int = 0
    moderate_max_gap: int = 1
    weak_max_gap: int = 2
    """
    Rank-gap thresholds when both models propose a diagnosis:
      gap <= strong_max_gap   -> strong
      gap <= moderate_max_gap -> moderate
      gap <= weak_max_gap     -> weak
      otherwise               -> divergent
    """
    confidence_multipliers: Dict[ConsensusLevel, float] = field(default_factory=_default_multipliers)

    def __post_init__(self):
        if not (0 <= self.strong_max_gap <= self.moderate_max_gap <= self.weak_max_gap):
            raise ValueError(
                "Rank-gap thresholds must satisfy 0 <= strong <= moderate <= weak, got "
                f"{self.strong_max_gap}/{self.moderate_max_gap}/{self.weak_max_gap}"
            )
        missing = set(ConsensusLevel) - set(self.confidence_multipliers)
        if missing:
            raise ValueError(f"Missing confidence multipliers for: {sorted(m.value for m in missing)}")

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "ConsensusConfig":
        config = config or default_settings
        return cls(
            top_n=config.consensus_top_n,
            max_rank=config.consensus_max_rank,
            confidence_ceiling=config.consensus_confidence_ceiling,
            strong_max_gap=config.consensus_strong_max_gap,
            moderate_max_gap=config.consensus_moderate_max_gap,
            weak_max_gap=config.consensus_weak_max_gap,
        )


DEFAULT_CONFIG = ConsensusConfig()
