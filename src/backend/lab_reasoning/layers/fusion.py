# [Pipeline: Layer 3]
"""
Layer 3: Multimodal Fusion + Multi-Model Consensus

Queries the primary model (full fusion prompt) and, when configured, the
challenger model (independent differential) concurrently. Each call settles
into its own ModelOutcome; one provider failing never cancels or fails the
other. Once both have settled, the two ranked lists go through the
consensus aggregator.

If neither model produced a usable differential there is nothing to
deliver, and PipelineError is raised.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from lab_reasoning.config import Settings, settings as default_settings
from lab_reasoning.consensus import (
    CHALLENGER_KEY,
    PRIMARY_KEY,
    ConsensusAggregator,
    ConsensusConfig,
)
from lab_reasoning.exceptions import PipelineError, ResponseParseError
from lab_reasoning.formatting import (
    format_correlations,
    format_markers,
    format_patient_context,
    format_red_flags,
    format_soap_notes,
    to_json,
)
from lab_reasoning.layers.base import LayerOutput
from lab_reasoning.models.schemas import (
    Biomarker,
    ChallengerResponse,
    ClinicalCorrelation,
    ConsensusDiagnosis,
    ConsensusMetrics,
    DiagnosisPayload,
    FusionResponse,
    InvestigativeQuestion,
    ModelDiagnosisInput,
    ModelTimings,
    PatientContext,
    SpecialtyFinding,
    SuggestedTest,
    TriageResult,
)
from lab_reasoning.prompts import (
    CHALLENGER_SYSTEM_PROMPT,
    CHALLENGER_USER_PROMPT,
    FUSION_SYSTEM_PROMPT,
    FUSION_USER_PROMPT,
)
from lab_reasoning.services.llm_client import ModelClient
from lab_reasoning.services.response_parser import parse_response
from lab_reasoning.services.usage_tracker import UsageLedger, record_call

logger = logging.getLogger(__name__)


@dataclass
class ModelOutcome:
    """How one Layer 3 model call settled."""
    model_key: str
    model_id: str
    system_prompt: str
    user_prompt: str
    temperature: float
    raw_text: Optional[str] = None
    error: Optional[BaseException] = None
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and self.raw_text is not None


@dataclass
class FusionResult:
    differential_diagnosis: List[ConsensusDiagnosis] = field(default_factory=list)
    investigative_questions: List[InvestigativeQuestion] = field(default_factory=list)
    suggested_tests: List[SuggestedTest] = field(default_factory=list)
    consensus_metrics: ConsensusMetrics = field(default_factory=ConsensusMetrics)


def _to_inputs(payloads: Sequence[DiagnosisPayload]) -> List[ModelDiagnosisInput]:
    """Rank = position in the model's list."""
    return [
        ModelDiagnosisInput(
            name=p.name,
            rank=idx + 1,
            confidence=p.confidence,
            icd10=p.icd10,
            supporting_evidence=p.supporting_evidence,
            contradicting_evidence=p.contradicting_evidence,
            suggested_tests=p.suggested_tests,
            reasoning=p.reasoning,
        )
        for idx, p in enumerate(payloads)
    ]


class FusionLayer:
    """Dual-model differential diagnosis reconciled into one consensus ranking."""

    step_id = "fusion"
    step_name = "Fusion + Consensus"

    def __init__(
        self,
        client: ModelClient,
        config: Optional[Settings] = None,
        consensus_config: Optional[ConsensusConfig] = None,
    ):
        self.client = client
        self.config = config or default_settings
        self.consensus_config = consensus_config or ConsensusConfig.from_settings(self.config)

    @property
    def challenger_available(self) -> bool:
        return self.config.challenger_enabled and self.client.has_model(self.client.challenger_model_id)

    async def run(
        self,
        markers: Sequence[Biomarker],
        patient_context: PatientContext,
        triage: TriageResult,
        correlations: Sequence[ClinicalCorrelation],
        specialty: SpecialtyFinding,
        ledger: UsageLedger,
    ) -> LayerOutput[FusionResult]:
        patient_summary = format_patient_context(patient_context)
        lab_results = format_markers(markers)
        temperature = self.config.fusion_temperature

        calls = [
            self._settle(
                PRIMARY_KEY,
                self.client.primary_model_id,
                FUSION_SYSTEM_PROMPT,
                FUSION_USER_PROMPT.format(
                    patient_summary=patient_summary,
                    lab_results=lab_results,
                    soap_notes=format_soap_notes(patient_context.soap_notes),
                    triage_result=to_json(triage),
                    specialty_analysis=to_json(specialty.specialty_findings),
                    correlations=format_correlations(correlations),
                ),
                temperature,
            )
        ]
        if self.challenger_available:
            calls.append(
                self._settle(
                    CHALLENGER_KEY,
                    self.client.challenger_model_id,
                    CHALLENGER_SYSTEM_PROMPT,
                    CHALLENGER_USER_PROMPT.format(
                        patient_summary=patient_summary,
                        lab_results=lab_results,
                        urgency=triage.urgency.value,
                        red_flags=format_red_flags(triage),
                        correlations=format_correlations(correlations),
                    ),
                    temperature,
                )
            )

        # Join point: _settle() never raises, return_exceptions guards the rest
        settled = await asyncio.gather(*calls, return_exceptions=True)
        outcomes = [self._as_outcome(item, call_idx) for call_idx, item in enumerate(settled)]
        for outcome in outcomes:
            record_call(
                ledger,
                self.step_id,
                outcome.model_id,
                outcome.system_prompt + outcome.user_prompt,
                outcome.raw_text or "",
                latency_ms=outcome.elapsed_ms,
                temperature=outcome.temperature,
                succeeded=outcome.ok,
            )

        primary = outcomes[0]
        challenger = outcomes[1] if len(outcomes) > 1 else None

        primary_inputs: List[ModelDiagnosisInput] = []
        questions: List[InvestigativeQuestion] = []
        tests: List[SuggestedTest] = []
        failures = {}

        if primary.ok:
            try:
                response = parse_response(primary.raw_text, FusionResponse)
                primary_inputs = _to_inputs(response.differential_diagnosis)
                questions = response.investigative_questions
                tests = [
                    SuggestedTest(
                        name=t.test,
                        rationale=t.rationale,
                        urgency=t.urgency,
                        investigates=t.investigates,
                    )
                    for t in response.additional_tests
                ]
            except ResponseParseError as e:
                logger.error(f"[FusionLayer] Failed to parse primary response: {e.message}")
                failures[PRIMARY_KEY] = e.code
        else:
            logger.error(f"[FusionLayer] Primary model call failed: {primary.error}")
            failures[PRIMARY_KEY] = type(primary.error).__name__

        challenger_inputs: List[ModelDiagnosisInput] = []
        if challenger is None:
            failures[CHALLENGER_KEY] = "disabled"
        elif challenger.ok:
            try:
                response = parse_response(challenger.raw_text, ChallengerResponse)
                challenger_inputs = _to_inputs(response.differential_diagnosis)
            except ResponseParseError as e:
                logger.warning(f"[FusionLayer] Failed to parse challenger response: {e.message}")
                failures[CHALLENGER_KEY] = e.code
        else:
            logger.warning(f"[FusionLayer] Challenger model call failed: {challenger.error}")
            failures[CHALLENGER_KEY] = type(challenger.error).__name__

        if not primary_inputs:
            failures.setdefault(PRIMARY_KEY, "empty differential")
        if not challenger_inputs:
            failures.setdefault(CHALLENGER_KEY, "empty differential")

        if not primary_inputs and not challenger_inputs:
            raise PipelineError(
                "No model produced a usable differential diagnosis",
                details={"failures": failures},
            )

        aggregator = ConsensusAggregator(
            self.consensus_config,
            primary_model_id=primary.model_id,
            challenger_model_id=challenger.model_id if challenger else CHALLENGER_KEY,
        )
        consensus = aggregator.aggregate(primary_inputs, challenger_inputs)
        metrics = consensus.metrics.model_copy(
            update={
                "model_timings": ModelTimings(
                    primary=primary.elapsed_ms,
                    challenger=challenger.elapsed_ms if challenger else None,
                )
            }
        )

        result = FusionResult(
            differential_diagnosis=consensus.diagnoses,
            investigative_questions=questions,
            suggested_tests=tests,
            consensus_metrics=metrics,
        )

        if primary_inputs and challenger_inputs:
            logger.info(
                f"[FusionLayer] Multi-model consensus: {metrics.strong_consensus_rate}% strong, "
                f"{metrics.divergent_count} divergent"
            )
            return LayerOutput(result)

        sole = PRIMARY_KEY if primary_inputs else CHALLENGER_KEY
        missing = CHALLENGER_KEY if primary_inputs else PRIMARY_KEY
        logger.warning(f"[FusionLayer] Single-model fallback ({sole} only, {missing}: {failures.get(missing)})")
        return LayerOutput(result, degraded_reason=f"single-model mode: {missing} {failures.get(missing)}")

    async def _settle(
        self,
        model_key: str,
        model_id: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
    ) -> ModelOutcome:
        """Run one model call and capture its result or failure, timed on its own."""
        outcome = ModelOutcome(
            model_key=model_key,
            model_id=model_id,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            temperature=temperature,
        )
        t0 = time.monotonic()
        try:
            outcome.raw_text = await self.client.invoke(
                model_id,
                system_prompt,
                user_prompt,
                temperature=temperature,
                json_mode=True,
            )
        except Exception as e:
            outcome.error = e
        finally:
            outcome.elapsed_ms = int((time.monotonic() - t0) * 1000)
        return outcome

    def _as_outcome(self, item, call_idx: int) -> ModelOutcome:
        if isinstance(item, ModelOutcome):
            return item
        # Only reachable if _settle() itself was interrupted
        model_key = PRIMARY_KEY if call_idx == 0 else CHALLENGER_KEY
        model_id = self.client.primary_model_id if call_idx == 0 else self.client.challenger_model_id
        return ModelOutcome(
            model_key=model_key,
            model_id=model_id or model_key,
            system_prompt="",
            user_prompt="",
            temperature=self.config.fusion_temperature,
            error=item,
        )
