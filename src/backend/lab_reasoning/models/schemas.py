# [Shared: Domain Models]
"""
Domain models for the Lab Reasoning Engine.

These Pydantic models define the structured data flowing through the
four-layer pipeline. Inputs are frozen once they enter the pipeline; model
replies are validated into the *Response payloads at the bottom of this file
before anything downstream sees them.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Enums
# ──────────────────────────────────────────────

class BiomarkerStatus(str, Enum):
    NORMAL = "normal"
    ATTENTION = "attention"
    CRITICAL = "critical"


class Sex(str, Enum):
    MALE = "male"
    FEMALE = "female"


class UrgencyLevel(str, Enum):
    ROUTINE = "routine"
    HIGH = "high"
    CRITICAL = "critical"


class RecommendedWorkflow(str, Enum):
    EMERGENCY = "emergency"
    SPECIALIST = "specialist"
    PRIMARY = "primary"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ConsensusLevel(str, Enum):
    STRONG = "strong"        # Both models, same rank
    MODERATE = "moderate"    # Both models, ranks one apart
    WEAK = "weak"            # Both models, ranks two apart
    SINGLE = "single"        # Only one model proposed it
    DIVERGENT = "divergent"  # Both models, ranks far apart


class ExamUrgency(str, Enum):
    URGENT = "urgent"
    ROUTINE = "routine"
    FOLLOW_UP = "follow-up"


class ClinicalSpecialty(str, Enum):
    GENERAL_PRACTICE = "general_practice"
    CARDIOLOGY = "cardiology"
    ENDOCRINOLOGY = "endocrinology"
    NEUROLOGY = "neurology"
    FUNCTIONAL_MEDICINE = "functional_medicine"
    NEPHROLOGY = "nephrology"
    HEMATOLOGY = "hematology"
    HEPATOLOGY = "hepatology"


class LayerStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    DEGRADED = "degraded"
    FAILED = "failed"


# ──────────────────────────────────────────────
# Coercion helpers for model-produced values
# ──────────────────────────────────────────────

_TEXT_KEYS = ("finding", "name", "test", "description", "analysis", "text")


def _coerce_text(item: Any) -> str:
    if isinstance(item, dict):
        for key in _TEXT_KEYS:
            value = item.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return ""
    if item is None:
        return ""
    return str(item)


def _coerce_text_list(value: Any) -> List[str]:
    """Models return evidence as strings or as {"finding": ...} objects."""
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        value = [value]
    texts = (_coerce_text(item) for item in value)
    return [t for t in texts if t.strip()]


def _coerce_percentage(value: Any) -> Any:
    """Accept "85", "85%" or 0.85-style values and clamp into [0, 100]."""
    if isinstance(value, str):
        value = value.strip().rstrip("%").strip()
        try:
            value = float(value)
        except ValueError:
            return value  # let pydantic report it
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if 0 < value < 1:
            value = value * 100
        return max(0.0, min(100.0, float(value)))
    return value


def _drop_invalid(items: Any, payload_cls: type, label: str) -> Any:
    """Validate list entries one at a time, dropping the ones that fail."""
    if items is None:
        return []
    if not isinstance(items, list):
        return items
    kept = []
    for idx, item in enumerate(items):
        try:
            kept.append(payload_cls.model_validate(item))
        except ValidationError as e:
            logger.debug(f"Dropped {label} entry {idx}: {e.error_count()} validation error(s)")
    return kept


# ──────────────────────────────────────────────
# Input Models
# ──────────────────────────────────────────────

class NumericRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: float
    max: float


class Biomarker(BaseModel):
    """A single lab value, already extracted and classified upstream."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Biomarker identifier, e.g. 'tsh'")
    name: str = Field(..., description="Display name")
    value: float
    unit: str = ""
    lab_range: NumericRange
    functional_range: NumericRange
    status: BiomarkerStatus = BiomarkerStatus.NORMAL
    interpretation: str = ""
    deviation_score: Optional[float] = None


class SoapNotes(BaseModel):
    model_config = ConfigDict(frozen=True)

    subjective: Optional[str] = None
    objective: Optional[str] = None
    assessment: Optional[str] = None
    plan: Optional[str] = None


class PatientContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    age: int = Field(..., ge=0, le=130)
    sex: Sex
    chief_complaint: Optional[str] = None
    relevant_history: List[str] = Field(default_factory=list)
    current_medications: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    soap_notes: Optional[SoapNotes] = None


class ClinicalCorrelation(BaseModel):
    """Deterministic multi-marker pattern detected upstream."""
    type: str = "custom"
    markers: List[str] = Field(default_factory=list)
    pattern: str
    clinical_implication: str = ""
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM
    criteria_met: Optional[str] = None


class AnalysisRequest(BaseModel):
    """Pipeline input."""
    biomarkers: List[Biomarker] = Field(default_factory=list)
    patient_context: PatientContext
    detected_specialty: Optional[ClinicalSpecialty] = None
    correlations: List[ClinicalCorrelation] = Field(default_factory=list)


# ──────────────────────────────────────────────
# Layer Outputs
# ──────────────────────────────────────────────

class RedFlag(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    related_markers: List[str] = Field(default_factory=list)
    action: str = ""


class TriageResult(BaseModel):
    """Layer 1 output."""
    model_config = ConfigDict(frozen=True)

    urgency: UrgencyLevel = UrgencyLevel.ROUTINE
    red_flags: List[RedFlag] = Field(default_factory=list)
    recommended_workflow: RecommendedWorkflow = RecommendedWorkflow.PRIMARY
    confidence: float = Field(50, ge=0, le=100)


class SpecialtyFinding(BaseModel):
    """Layer 2 output. specialty_findings is passed through untouched."""
    chain_of_thought: List[str] = Field(default_factory=list)
    specialty_findings: Dict[str, Any] = Field(default_factory=dict)


class InvestigativeQuestion(BaseModel):
    question: str
    rationale: str = ""
    related_to: List[str] = Field(default_factory=list)


class SuggestedTest(BaseModel):
    name: str
    rationale: str = ""
    urgency: ExamUrgency = ExamUrgency.ROUTINE
    investigates: str = ""


class ExplainabilityResult(BaseModel):
    """Layer 4 output."""
    validated: bool = True
    explanation: str = ""


# ──────────────────────────────────────────────
# Diagnosis Models
# ──────────────────────────────────────────────

class ModelDiagnosisInput(BaseModel):
    """One ranked diagnosis from one contributing model."""
    name: str
    rank: int = Field(..., ge=1)
    confidence: float = Field(..., ge=0, le=100)
    icd10: Optional[str] = None
    supporting_evidence: List[str] = Field(default_factory=list)
    contradicting_evidence: List[str] = Field(default_factory=list)
    suggested_tests: List[str] = Field(default_factory=list)
    reasoning: Optional[str] = None


class DifferentialDiagnosis(BaseModel):
    name: str
    icd10: Optional[str] = None
    confidence: float = Field(..., ge=0, le=100)
    supporting_evidence: List[str] = Field(default_factory=list)
    contradicting_evidence: List[str] = Field(default_factory=list)
    suggested_tests: List[str] = Field(default_factory=list)


class ModelContribution(BaseModel):
    rank: int
    confidence: float
    reasoning: Optional[str] = None


class ModelDetails(BaseModel):
    primary: Optional[ModelContribution] = None
    challenger: Optional[ModelContribution] = None


class ConsensusDiagnosis(DifferentialDiagnosis):
    """A differential diagnosis annotated with cross-model agreement."""
    model_config = ConfigDict(protected_namespaces=())

    confidence: int = Field(..., ge=0, le=99)
    aggregate_score: float
    consensus_level: ConsensusLevel
    model_details: ModelDetails = Field(default_factory=ModelDetails)


class ModelTimings(BaseModel):
    primary: Optional[int] = None
    challenger: Optional[int] = None


class ConsensusMetrics(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    models_used: List[str] = Field(default_factory=list)
    strong_consensus_rate: int = 0
    moderate_consensus_count: int = 0
    divergent_count: int = 0
    divergent_diagnoses: Optional[List[str]] = None
    total_processing_time_ms: int = 0
    model_timings: Optional[ModelTimings] = None


# ──────────────────────────────────────────────
# Result Envelope
# ──────────────────────────────────────────────

class AnalysisSummary(BaseModel):
    critical: int = 0
    attention: int = 0
    normal: int = 0
    overall_risk_score: Optional[float] = None


class AnalysisMetadata(BaseModel):
    processing_time_ms: int = 0
    model: str = ""
    prompt_version: str = ""
    input_tokens: int = 0
    output_tokens: int = 0


class LayerStep(BaseModel):
    """Execution record for one pipeline layer."""
    step_id: str
    step_name: str
    status: LayerStatus = LayerStatus.PENDING
    duration_ms: Optional[int] = None
    output_summary: Optional[str] = None
    error: Optional[str] = None


class LabAnalysisResult(BaseModel):
    """Top-level envelope returned by the pipeline."""
    summary: AnalysisSummary
    triage: TriageResult
    markers: List[Biomarker] = Field(default_factory=list)
    correlations: List[ClinicalCorrelation] = Field(default_factory=list)
    differential_diagnosis: List[ConsensusDiagnosis] = Field(default_factory=list, max_length=5)
    investigative_questions: List[InvestigativeQuestion] = Field(default_factory=list)
    suggested_tests: List[SuggestedTest] = Field(default_factory=list)
    chain_of_thought: List[str] = Field(default_factory=list)
    disclaimer: str
    metadata: AnalysisMetadata = Field(default_factory=AnalysisMetadata)
    consensus_metrics: ConsensusMetrics = Field(default_factory=ConsensusMetrics)
    validation: ExplainabilityResult = Field(default_factory=ExplainabilityResult)
    steps: List[LayerStep] = Field(default_factory=list)


# ──────────────────────────────────────────────
# Model Response Payloads
#
# Accept both snake_case and camelCase keys; providers are inconsistent.
# ──────────────────────────────────────────────

class _ResponsePayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RedFlagPayload(_ResponsePayload):
    description: str
    related_markers: List[str] = Field(default_factory=list)
    action: str = ""

    @field_validator("related_markers", mode="before")
    @classmethod
    def _text_list(cls, v: Any) -> List[str]:
        return _coerce_text_list(v)


class TriageResponse(_ResponsePayload):
    urgency: UrgencyLevel = UrgencyLevel.ROUTINE
    red_flags: List[RedFlagPayload] = Field(default_factory=list)
    recommended_workflow: RecommendedWorkflow = RecommendedWorkflow.PRIMARY
    confidence: float = Field(50, ge=0, le=100)

    @field_validator("urgency", "recommended_workflow", mode="before")
    @classmethod
    def _lower(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("red_flags", mode="before")
    @classmethod
    def _red_flags(cls, v: Any) -> Any:
        if v is None:
            return []
        # Bare strings are accepted as descriptions
        return [{"description": item} if isinstance(item, str) else item for item in v]

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> Any:
        return 50 if v is None else _coerce_percentage(v)

    def to_result(self) -> TriageResult:
        return TriageResult(
            urgency=self.urgency,
            red_flags=[RedFlag(**flag.model_dump()) for flag in self.red_flags],
            recommended_workflow=self.recommended_workflow,
            confidence=self.confidence,
        )


class SpecialtyResponse(_ResponsePayload):
    chain_of_thought: List[str] = Field(default_factory=list)
    specialty_findings: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("chain_of_thought", mode="before")
    @classmethod
    def _steps(cls, v: Any) -> List[str]:
        return _coerce_text_list(v)

    @field_validator("specialty_findings", mode="before")
    @classmethod
    def _findings(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, list):
            return {"findings": v}
        return v


class DiagnosisPayload(_ResponsePayload):
    name: str = Field(..., min_length=1)
    icd10: Optional[str] = None
    confidence: float = Field(50, ge=0, le=100)
    supporting_evidence: List[str] = Field(default_factory=list)
    contradicting_evidence: List[str] = Field(default_factory=list)
    suggested_tests: List[str] = Field(default_factory=list)
    reasoning: Optional[str] = None

    @field_validator("supporting_evidence", "contradicting_evidence", "suggested_tests", mode="before")
    @classmethod
    def _text_list(cls, v: Any) -> List[str]:
        return _coerce_text_list(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v: Any) -> Any:
        return 50 if v is None else _coerce_percentage(v)

    @field_validator("icd10", mode="before")
    @classmethod
    def _icd10(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip() or None
        return v


class AdditionalTestPayload(_ResponsePayload):
    test: str
    rationale: str = ""
    urgency: ExamUrgency = ExamUrgency.ROUTINE
    investigates: str = ""

    @field_validator("urgency", mode="before")
    @classmethod
    def _urgency(cls, v: Any) -> Any:
        if not isinstance(v, str):
            return ExamUrgency.ROUTINE
        v = v.strip().lower().replace("_", "-").replace(" ", "-")
        return v if v in {u.value for u in ExamUrgency} else ExamUrgency.ROUTINE


class FusionResponse(_ResponsePayload):
    """Primary model output for Layer 3."""
    differential_diagnosis: List[DiagnosisPayload] = Field(default_factory=list)
    investigative_questions: List[InvestigativeQuestion] = Field(default_factory=list)
    additional_tests: List[AdditionalTestPayload] = Field(default_factory=list)

    @field_validator("differential_diagnosis", mode="before")
    @classmethod
    def _diagnoses(cls, v: Any) -> Any:
        return _drop_invalid(v, DiagnosisPayload, "diagnosis")

    @field_validator("additional_tests", mode="before")
    @classmethod
    def _tests(cls, v: Any) -> Any:
        return _drop_invalid(v, AdditionalTestPayload, "additional test")

    @field_validator("investigative_questions", mode="before")
    @classmethod
    def _questions(cls, v: Any) -> Any:
        if v is None:
            return []
        return [
            {
                "question": item.get("question", ""),
                "rationale": item.get("rationale", ""),
                "related_to": _coerce_text_list(item.get("related_to", item.get("relatedTo"))),
            }
            if isinstance(item, dict) else {"question": str(item)}
            for item in v
        ]


class ChallengerResponse(_ResponsePayload):
    """Challenger model output for Layer 3."""
    differential_diagnosis: List[DiagnosisPayload] = Field(default_factory=list)

    @field_validator("differential_diagnosis", mode="before")
    @classmethod
    def _diagnoses(cls, v: Any) -> Any:
        return _drop_invalid(v, DiagnosisPayload, "diagnosis")


class _ValidationBlock(_ResponsePayload):
    is_grounded: bool = True


class _ExplanationBlock(_ResponsePayload):
    summary: str = ""


class ExplainabilityResponse(_ResponsePayload):
    validation: _ValidationBlock = Field(default_factory=_ValidationBlock)
    explanation: _ExplanationBlock = Field(default_factory=_ExplanationBlock)

    @field_validator("explanation", mode="before")
    @classmethod
    def _explanation(cls, v: Any) -> Any:
        if isinstance(v, str):
            return {"summary": v}
        return v

    def to_result(self) -> ExplainabilityResult:
        return ExplainabilityResult(
            validated=self.validation.is_grounded,
            explanation=self.explanation.summary,
        )
