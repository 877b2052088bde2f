# [Pipeline: Layer 1]
"""
Layer 1: Triage

Classifies urgency from the lab values and clinical context. When the model
cannot be reached or answers with something unusable, a local heuristic
takes over: any critical biomarker means an emergency workflow.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence

from lab_reasoning.config import Settings, settings as default_settings
from lab_reasoning.exceptions import ModelCallError, ResponseParseError
from lab_reasoning.formatting import format_list, format_markers, format_soap_notes
from lab_reasoning.layers.base import LayerOutput, invoke_recorded
from lab_reasoning.models.schemas import (
    Biomarker,
    BiomarkerStatus,
    PatientContext,
    RecommendedWorkflow,
    TriageResponse,
    TriageResult,
    UrgencyLevel,
)
from lab_reasoning.prompts import TRIAGE_SYSTEM_PROMPT, TRIAGE_USER_PROMPT
from lab_reasoning.services.llm_client import ModelClient
from lab_reasoning.services.response_parser import parse_response
from lab_reasoning.services.usage_tracker import UsageLedger

logger = logging.getLogger(__name__)

# Low on purpose: signals that triage came from the heuristic
FALLBACK_CONFIDENCE = 30


def heuristic_triage(markers: Sequence[Biomarker]) -> TriageResult:
    """Deterministic triage used when the model result is unavailable."""
    has_critical = any(m.status == BiomarkerStatus.CRITICAL for m in markers)
    return TriageResult(
        urgency=UrgencyLevel.CRITICAL if has_critical else UrgencyLevel.ROUTINE,
        red_flags=[],
        recommended_workflow=(
            RecommendedWorkflow.EMERGENCY if has_critical else RecommendedWorkflow.PRIMARY
        ),
        confidence=FALLBACK_CONFIDENCE,
    )


class TriageLayer:
    """Uses the primary model for urgency classification."""

    step_id = "triage"
    step_name = "Triage"

    def __init__(self, client: ModelClient, config: Optional[Settings] = None):
        self.client = client
        self.config = config or default_settings

    async def run(
        self,
        markers: Sequence[Biomarker],
        patient_context: PatientContext,
        ledger: UsageLedger,
    ) -> LayerOutput[TriageResult]:
        prompt = TRIAGE_USER_PROMPT.format(
            age=patient_context.age,
            sex=patient_context.sex.value.capitalize(),
            chief_complaint=patient_context.chief_complaint or "Not provided",
            relevant_history=format_list(patient_context.relevant_history, empty="Not provided"),
            lab_results=format_markers(markers),
            soap_notes=format_soap_notes(patient_context.soap_notes),
        )

        try:
            text = await invoke_recorded(
                self.client,
                ledger,
                self.step_id,
                self.client.primary_model_id,
                TRIAGE_SYSTEM_PROMPT,
                prompt,
                temperature=self.config.triage_temperature,
            )
            result = parse_response(text, TriageResponse).to_result()
        except (ModelCallError, ResponseParseError) as e:
            fallback = heuristic_triage(markers)
            logger.warning(
                f"Triage fell back to heuristic ({e.code}): urgency={fallback.urgency.value}"
            )
            return LayerOutput(fallback, degraded_reason=f"{e.code}: {e.message}")

        logger.info(
            f"Triage complete: urgency={result.urgency.value}, "
            f"{len(result.red_flags)} red flags, workflow={result.recommended_workflow.value}"
        )
        return LayerOutput(result)
