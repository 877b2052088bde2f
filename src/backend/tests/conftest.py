import json
import os
from typing import Dict, List, Optional, Union

import pytest

# Keep tests hermetic regardless of local shell/.env values.
os.environ["PRIMARY_BASE_URL"] = "http://primary.test/v1"
os.environ["CHALLENGER_BASE_URL"] = "http://challenger.test/v1"
os.environ["CHALLENGER_ENABLED"] = "true"
os.environ["MODEL_RETRY_BASE_DELAY"] = "0"

from lab_reasoning.config import Settings  # noqa: E402
from lab_reasoning.models.schemas import (  # noqa: E402
    AnalysisRequest,
    Biomarker,
    BiomarkerStatus,
    ClinicalCorrelation,
    ModelDiagnosisInput,
    NumericRange,
    PatientContext,
    Sex,
)
from lab_reasoning.prompts import (  # noqa: E402
    CHALLENGER_SYSTEM_PROMPT,
    EXPLAINABILITY_SYSTEM_PROMPT,
    FUSION_SYSTEM_PROMPT,
    TRIAGE_SYSTEM_PROMPT,
)
from lab_reasoning.services.llm_client import ModelClient, ModelEndpoint  # noqa: E402

PRIMARY_ID = "primary-test-model"
CHALLENGER_ID = "challenger-test-model"

Reply = Union[str, Exception]


def _layer_of(system_prompt: str) -> str:
    if system_prompt == TRIAGE_SYSTEM_PROMPT:
        return "triage"
    if system_prompt == FUSION_SYSTEM_PROMPT:
        return "fusion"
    if system_prompt == CHALLENGER_SYSTEM_PROMPT:
        return "challenger"
    if system_prompt == EXPLAINABILITY_SYSTEM_PROMPT:
        return "explainability"
    return "specialty"


class FakeModelClient(ModelClient):
    """ModelClient whose replies are scripted per layer instead of fetched."""

    def __init__(self, replies: Dict[str, Reply], with_challenger: bool = True):
        super().__init__(
            primary=ModelEndpoint(PRIMARY_ID, "http://primary.test/v1"),
            challenger=ModelEndpoint(CHALLENGER_ID, "http://challenger.test/v1") if with_challenger else None,
            retry_base_delay=0,
        )
        self.replies = dict(replies)
        self.calls: List[dict] = []

    async def invoke(
        self,
        model_id: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        json_mode: bool = False,
        max_tokens: int = 0,
    ) -> str:
        layer = _layer_of(system_prompt)
        self.calls.append(
            {
                "layer": layer,
                "model_id": model_id,
                "temperature": temperature,
                "json_mode": json_mode,
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
            }
        )
        reply = self.replies.get(layer, "")
        if isinstance(reply, Exception):
            raise reply
        return reply

    def calls_for(self, layer: str) -> List[dict]:
        return [c for c in self.calls if c["layer"] == layer]


def _marker(
    marker_id: str,
    name: str,
    value: float,
    unit: str,
    lab: tuple,
    status: BiomarkerStatus,
    functional: Optional[tuple] = None,
) -> Biomarker:
    functional = functional or lab
    return Biomarker(
        id=marker_id,
        name=name,
        value=value,
        unit=unit,
        lab_range=NumericRange(min=lab[0], max=lab[1]),
        functional_range=NumericRange(min=functional[0], max=functional[1]),
        status=status,
    )


def dx(name: str, rank: int, confidence: float = 80, **kwargs) -> ModelDiagnosisInput:
    return ModelDiagnosisInput(name=name, rank=rank, confidence=confidence, **kwargs)


# ──────────────────────────────────────────────
# Canned model replies
# ──────────────────────────────────────────────

TRIAGE_REPLY = json.dumps(
    {
        "urgency": "high",
        "redFlags": [
            {"description": "TSH markedly elevated", "relatedMarkers": ["tsh"], "action": "Repeat TSH"}
        ],
        "recommendedWorkflow": "specialist",
        "confidence": 82,
    }
)

SPECIALTY_REPLY = json.dumps(
    {
        "chainOfThought": [
            {"step": 1, "analysis": "TSH high with low free T4"},
            {"step": 2, "analysis": "HbA1c in diabetic range"},
        ],
        "specialtyFindings": {"patterns": ["primary hypothyroidism"], "concerns": ["glycaemic control"]},
    }
)

FUSION_REPLY = "```json\n" + json.dumps(
    {
        "differentialDiagnosis": [
            {
                "name": "Hipotireoidismo",
                "icd10": "E03.9",
                "confidence": 85,
                "supportingEvidence": [{"finding": "TSH 8.2"}, "Low free T4"],
                "suggestedTests": ["Anti-TPO"],
            },
            {"name": "Diabetes Mellitus Tipo 2", "icd10": "E11", "confidence": 75},
            {"name": "Anemia ferropriva", "confidence": 60},
        ],
        "investigativeQuestions": [
            {"question": "Any cold intolerance?", "rationale": "Hypothyroid symptom", "relatedTo": ["tsh"]}
        ],
        "additionalTests": [
            {"test": "Anti-TPO", "rationale": "Hashimoto", "urgency": "routine", "investigates": "Hipotireoidismo"}
        ],
    }
) + "\n```"

CHALLENGER_REPLY = json.dumps(
    {
        "differentialDiagnosis": [
            {"name": "Hypothyroidism", "icd10": "E03.9", "confidence": 80, "supportingEvidence": ["tsh 8.2"]},
            {"name": "T2DM", "confidence": 70},
            {"name": "Vitamin B12 deficiency", "confidence": 40},
        ]
    }
)

EXPLAINABILITY_REPLY = json.dumps(
    {
        "validation": {"isGrounded": True, "issues": []},
        "explanation": {"summary": "Thyroid and glucose markers support the top diagnoses."},
    }
)


# ──────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        primary_model_id=PRIMARY_ID,
        challenger_model_id=CHALLENGER_ID,
        challenger_enabled=True,
        challenger_base_url="http://challenger.test/v1",
        model_retry_base_delay=0,
    )


@pytest.fixture
def sample_markers() -> List[Biomarker]:
    return [
        _marker("tsh", "TSH", 8.2, "mUI/L", (0.4, 4.0), BiomarkerStatus.ATTENTION, (1.0, 2.5)),
        _marker("t4_free", "Free T4", 0.6, "ng/dL", (0.8, 1.8), BiomarkerStatus.ATTENTION),
        _marker("hba1c", "HbA1c", 7.1, "%", (4.0, 5.6), BiomarkerStatus.ATTENTION),
        _marker("potassium", "Potassium", 4.3, "mEq/L", (3.5, 5.1), BiomarkerStatus.NORMAL),
    ]


@pytest.fixture
def critical_markers() -> List[Biomarker]:
    return [
        _marker("potassium", "Potassium", 6.9, "mEq/L", (3.5, 5.1), BiomarkerStatus.CRITICAL),
        _marker("creatinine", "Creatinine", 2.8, "mg/dL", (0.7, 1.3), BiomarkerStatus.ATTENTION),
    ]


@pytest.fixture
def patient() -> PatientContext:
    return PatientContext(
        age=52,
        sex=Sex.FEMALE,
        chief_complaint="Fatigue and weight gain",
        relevant_history=["Family history of thyroid disease"],
        current_medications=["Metformin 500mg"],
    )


@pytest.fixture
def correlations() -> List[ClinicalCorrelation]:
    return [
        ClinicalCorrelation(
            type="thyroid",
            markers=["tsh", "t4_free"],
            pattern="High TSH with low free T4",
            clinical_implication="Primary hypothyroidism",
        )
    ]


@pytest.fixture
def analysis_request(sample_markers, patient, correlations) -> AnalysisRequest:
    return AnalysisRequest(
        biomarkers=sample_markers,
        patient_context=patient,
        correlations=correlations,
    )


@pytest.fixture
def good_replies() -> Dict[str, Reply]:
    return {
        "triage": TRIAGE_REPLY,
        "specialty": SPECIALTY_REPLY,
        "fusion": FUSION_REPLY,
        "challenger": CHALLENGER_REPLY,
        "explainability": EXPLAINABILITY_REPLY,
    }
