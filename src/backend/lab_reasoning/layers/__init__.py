"""The four reasoning layers run by the analysis pipeline."""
from lab_reasoning.layers.base import LayerOutput
from lab_reasoning.layers.explainability import ExplainabilityLayer
from lab_reasoning.layers.fusion import FusionLayer, FusionResult, ModelOutcome
from lab_reasoning.layers.specialty import SpecialtyLayer, detect_relevant_specialty
from lab_reasoning.layers.triage import TriageLayer, heuristic_triage

__all__ = [
    "ExplainabilityLayer",
    "FusionLayer",
    "FusionResult",
    "LayerOutput",
    "ModelOutcome",
    "SpecialtyLayer",
    "TriageLayer",
    "detect_relevant_specialty",
    "heuristic_triage",
]
