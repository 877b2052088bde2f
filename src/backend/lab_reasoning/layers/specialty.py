# [Pipeline: Layer 2]
"""
Layer 2: Specialty Investigation

Runs a focused chain-of-thought analysis through the lens of one specialty.
The output is advisory context for Layer 3; failures leave it empty.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Optional, Sequence

from lab_reasoning.config import Settings, settings as default_settings
from lab_reasoning.exceptions import ModelCallError, ResponseParseError
from lab_reasoning.formatting import format_markers, format_patient_context
from lab_reasoning.layers.base import LayerOutput, invoke_recorded
from lab_reasoning.models.schemas import (
    Biomarker,
    BiomarkerStatus,
    ClinicalSpecialty,
    PatientContext,
    SpecialtyFinding,
    SpecialtyResponse,
)
from lab_reasoning.prompts import (
    SPECIALTY_SYSTEM_PROMPT,
    SPECIALTY_USER_PROMPT,
    get_specialty,
)
from lab_reasoning.services.llm_client import ModelClient
from lab_reasoning.services.response_parser import parse_response
from lab_reasoning.services.usage_tracker import UsageLedger

logger = logging.getLogger(__name__)

# biomarker id → category
BIOMARKER_CATEGORIES: Dict[str, str] = {
    "glucose": "metabolic", "hba1c": "metabolic", "insulin": "metabolic", "homa_ir": "metabolic",
    "cholesterol_total": "lipid", "ldl": "lipid", "hdl": "lipid", "triglycerides": "lipid",
    "tsh": "thyroid", "t4_free": "thyroid", "t3_free": "thyroid", "anti_tpo": "thyroid",
    "hemoglobin": "hematologic", "hematocrit": "hematologic", "mcv": "hematologic",
    "rdw": "hematologic", "leukocytes": "hematologic", "platelets": "hematologic",
    "ferritin": "iron", "iron": "iron", "transferrin_saturation": "iron",
    "b12": "hematologic", "folate": "hematologic",
    "alt": "liver", "ast": "liver", "ggt": "liver", "alp": "liver", "bilirubin": "liver",
    "albumin": "liver",
    "creatinine": "kidney", "egfr": "kidney", "urea": "kidney", "uric_acid": "kidney",
    "potassium": "kidney", "sodium": "kidney",
    "troponin": "cardiac", "bnp": "cardiac", "hscrp": "cardiac", "homocysteine": "cardiac",
    "cortisol": "hormonal", "testosterone": "hormonal", "estradiol": "hormonal",
    "vitamin_d": "hormonal",
}

CATEGORY_SPECIALTY: Dict[str, ClinicalSpecialty] = {
    "metabolic": ClinicalSpecialty.ENDOCRINOLOGY,
    "lipid": ClinicalSpecialty.CARDIOLOGY,
    "thyroid": ClinicalSpecialty.ENDOCRINOLOGY,
    "hematologic": ClinicalSpecialty.HEMATOLOGY,
    "iron": ClinicalSpecialty.HEMATOLOGY,
    "liver": ClinicalSpecialty.HEPATOLOGY,
    "kidney": ClinicalSpecialty.NEPHROLOGY,
    "cardiac": ClinicalSpecialty.CARDIOLOGY,
    "hormonal": ClinicalSpecialty.ENDOCRINOLOGY,
}


def detect_relevant_specialty(markers: Sequence[Biomarker]) -> ClinicalSpecialty:
    """Pick the specialty whose category holds the most abnormal markers."""
    counts = Counter(
        BIOMARKER_CATEGORIES[m.id]
        for m in markers
        if m.status != BiomarkerStatus.NORMAL and m.id in BIOMARKER_CATEGORIES
    )
    if not counts:
        return ClinicalSpecialty.GENERAL_PRACTICE
    # most_common keeps first-seen order among equal counts
    top_category = counts.most_common(1)[0][0]
    return CATEGORY_SPECIALTY.get(top_category, ClinicalSpecialty.GENERAL_PRACTICE)


class SpecialtyLayer:
    """Specialty-lens chain-of-thought analysis with the primary model."""

    step_id = "specialty"
    step_name = "Specialty Investigation"

    def __init__(self, client: ModelClient, config: Optional[Settings] = None):
        self.client = client
        self.config = config or default_settings

    async def run(
        self,
        specialty: ClinicalSpecialty,
        markers: Sequence[Biomarker],
        patient_context: PatientContext,
        ledger: UsageLedger,
    ) -> LayerOutput[SpecialtyFinding]:
        lens = get_specialty(specialty)
        system_prompt = SPECIALTY_SYSTEM_PROMPT.format(specialty_name=lens.name, focus=lens.focus)
        prompt = SPECIALTY_USER_PROMPT.format(
            patient_context=format_patient_context(patient_context),
            lab_results=format_markers(markers),
            reasoning_steps="\n".join(
                f"{i}. {step}" for i, step in enumerate(lens.reasoning_steps, 1)
            ) or "Use your clinical judgment",
            key_biomarkers=", ".join(lens.key_biomarkers) or "all",
        )

        try:
            text = await invoke_recorded(
                self.client,
                ledger,
                self.step_id,
                self.client.primary_model_id,
                system_prompt,
                prompt,
                temperature=self.config.specialty_temperature,
            )
            response = parse_response(text, SpecialtyResponse)
        except (ModelCallError, ResponseParseError) as e:
            logger.warning(f"Specialty investigation ({specialty.value}) unavailable: {e.code}")
            return LayerOutput(SpecialtyFinding(), degraded_reason=f"{e.code}: {e.message}")

        finding = SpecialtyFinding(
            chain_of_thought=response.chain_of_thought,
            specialty_findings=response.specialty_findings,
        )
        logger.info(
            f"Specialty investigation ({specialty.value}) complete: "
            f"{len(finding.chain_of_thought)} reasoning steps"
        )
        return LayerOutput(finding)
