# [Pipeline: Layer 4]
"""
Layer 4: Explainability

Asks the primary model whether the consensus differential is grounded in the
input data and for a short plain-language explanation. The layer is
advisory: on any failure the result stays validated with no explanation.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence

from lab_reasoning.config import Settings, settings as default_settings
from lab_reasoning.exceptions import ModelCallError, ResponseParseError
from lab_reasoning.formatting import format_markers, to_json
from lab_reasoning.layers.base import LayerOutput, invoke_recorded
from lab_reasoning.models.schemas import (
    Biomarker,
    ClinicalCorrelation,
    ConsensusDiagnosis,
    ExplainabilityResponse,
    ExplainabilityResult,
)
from lab_reasoning.prompts import EXPLAINABILITY_SYSTEM_PROMPT, EXPLAINABILITY_USER_PROMPT
from lab_reasoning.services.llm_client import ModelClient
from lab_reasoning.services.response_parser import parse_response
from lab_reasoning.services.usage_tracker import UsageLedger

logger = logging.getLogger(__name__)


class ExplainabilityLayer:
    step_id = "explainability"
    step_name = "Explainability"

    def __init__(self, client: ModelClient, config: Optional[Settings] = None):
        self.client = client
        self.config = config or default_settings

    async def run(
        self,
        markers: Sequence[Biomarker],
        differential: Sequence[ConsensusDiagnosis],
        correlations: Sequence[ClinicalCorrelation],
        ledger: UsageLedger,
    ) -> LayerOutput[ExplainabilityResult]:
        prompt = EXPLAINABILITY_USER_PROMPT.format(
            input_data=format_markers(markers),
            analysis_result=to_json(
                {
                    "differential_diagnosis": list(differential),
                    "correlations": list(correlations),
                }
            ),
        )

        try:
            text = await invoke_recorded(
                self.client,
                ledger,
                self.step_id,
                self.client.primary_model_id,
                EXPLAINABILITY_SYSTEM_PROMPT,
                prompt,
                temperature=self.config.explainability_temperature,
            )
            result = parse_response(text, ExplainabilityResponse).to_result()
        except (ModelCallError, ResponseParseError) as e:
            logger.warning(f"Explainability check skipped ({e.code})")
            return LayerOutput(ExplainabilityResult(), degraded_reason=f"{e.code}: {e.message}")

        if not result.validated:
            logger.warning("Explainability check flagged the differential as not grounded")
        return LayerOutput(result)
