# [Pipeline: Orchestrator]
"""
Analysis Pipeline — drives the four reasoning layers.

  1. Triage (primary model, heuristic fallback)
  2. Specialty investigation (primary model)
  3. Fusion + multi-model consensus (primary + challenger, concurrent)
  4. Explainability (primary model)

Layers run strictly in order, each tracked as a LayerStep. Layers 1, 2 and 4
degrade instead of failing; only Layer 3 can abort the run, when neither
model produced a usable differential.

All run state (usage ledger, step list) is local to one run() call, so a
single pipeline instance can serve concurrent requests.
"""
from __future__ import annotations

import logging
import time
import uuid
from typing import Awaitable, Callable, List, Optional

from lab_reasoning.config import Settings, settings as default_settings
from lab_reasoning.consensus import ConsensusConfig
from lab_reasoning.exceptions import PipelineError
from lab_reasoning.layers import (
    ExplainabilityLayer,
    FusionLayer,
    LayerOutput,
    SpecialtyLayer,
    TriageLayer,
    detect_relevant_specialty,
)
from lab_reasoning.models.schemas import (
    AnalysisMetadata,
    AnalysisRequest,
    AnalysisSummary,
    BiomarkerStatus,
    LabAnalysisResult,
    LayerStatus,
    LayerStep,
)
from lab_reasoning.prompts import DISCLAIMER, PROMPT_VERSION
from lab_reasoning.services.llm_client import ModelClient
from lab_reasoning.services.usage_tracker import UsageLedger

logger = logging.getLogger(__name__)

# Type for the callback that observes step updates
StepCallback = Callable[[LayerStep], None]


class AnalysisPipeline:
    """
    Orchestrates the lab reasoning pipeline.

    Usage:
        pipeline = AnalysisPipeline()
        result = await pipeline.run(request)
    """

    def __init__(
        self,
        client: Optional[ModelClient] = None,
        config: Optional[Settings] = None,
        consensus_config: Optional[ConsensusConfig] = None,
        on_step: Optional[StepCallback] = None,
    ):
        self.config = config or default_settings
        self.client = client or ModelClient.from_settings(self.config)
        self.on_step = on_step

        self.triage = TriageLayer(self.client, self.config)
        self.specialty = SpecialtyLayer(self.client, self.config)
        self.fusion = FusionLayer(self.client, self.config, consensus_config)
        self.explainability = ExplainabilityLayer(self.client, self.config)

    def _create_steps(self) -> List[LayerStep]:
        return [
            LayerStep(step_id=layer.step_id, step_name=layer.step_name)
            for layer in (self.triage, self.specialty, self.fusion, self.explainability)
        ]

    async def run(self, request: AnalysisRequest) -> LabAnalysisResult:
        """
        Run all four layers for one request.

        Raises:
            PipelineError: Layer 3 got no usable differential from any model.
                details["steps"] holds the step list at the time of failure.
                details["usage"] holds the usage ledger summary.
        """
        run_id = str(uuid.uuid4())[:8]
        started = time.monotonic()
        ledger = UsageLedger(run_id=run_id)
        steps = self._create_steps()
        markers = request.biomarkers
        patient = request.patient_context

        logger.info(f"[{run_id}] Analysis started: {len(markers)} biomarkers")

        # ── Layer 1: Triage ──
        triage = await self._run_layer(
            steps, self.triage.step_id,
            lambda: self.triage.run(markers, patient, ledger),
            lambda t: f"urgency={t.urgency.value}, {len(t.red_flags)} red flags",
        )

        # ── Layer 2: Specialty investigation ──
        specialty = request.detected_specialty or detect_relevant_specialty(markers)
        finding = await self._run_layer(
            steps, self.specialty.step_id,
            lambda: self.specialty.run(specialty, markers, patient, ledger),
            lambda f: f"{specialty.value}: {len(f.chain_of_thought)} reasoning steps",
        )

        # ── Layer 3: Fusion + consensus ──
        try:
            fusion = await self._run_layer(
                steps, self.fusion.step_id,
                lambda: self.fusion.run(
                    markers, patient, triage, request.correlations, finding, ledger,
                ),
                lambda r: (
                    f"{len(r.differential_diagnosis)} diagnoses, "
                    f"{r.consensus_metrics.strong_consensus_rate}% strong consensus"
                ),
            )
        except PipelineError as e:
            for step in steps:
                if step.status == LayerStatus.PENDING:
                    step.status = LayerStatus.FAILED
                    step.error = f"Pipeline aborted: {e.message}"
                    self._notify(step)
            e.details["steps"] = [s.model_dump(mode="json") for s in steps]
            e.details["usage"] = ledger.to_dict()
            logger.error(f"[{run_id}] Analysis aborted: {e.message}")
            raise

        # ── Layer 4: Explainability ──
        validation = await self._run_layer(
            steps, self.explainability.step_id,
            lambda: self.explainability.run(
                markers, fusion.differential_diagnosis, request.correlations, ledger,
            ),
            lambda v: "grounded" if v.validated else "not grounded",
        )

        processing_ms = int((time.monotonic() - started) * 1000)
        result = LabAnalysisResult(
            summary=AnalysisSummary(
                critical=sum(1 for m in markers if m.status == BiomarkerStatus.CRITICAL),
                attention=sum(1 for m in markers if m.status == BiomarkerStatus.ATTENTION),
                normal=sum(1 for m in markers if m.status == BiomarkerStatus.NORMAL),
                overall_risk_score=triage.confidence,
            ),
            triage=triage,
            markers=markers,
            correlations=request.correlations,
            differential_diagnosis=fusion.differential_diagnosis,
            investigative_questions=fusion.investigative_questions,
            suggested_tests=fusion.suggested_tests,
            chain_of_thought=finding.chain_of_thought,
            disclaimer=DISCLAIMER,
            metadata=AnalysisMetadata(
                processing_time_ms=processing_ms,
                model=self.client.primary_model_id,
                prompt_version=PROMPT_VERSION,
                input_tokens=ledger.total_input_tokens,
                output_tokens=ledger.total_output_tokens,
            ),
            consensus_metrics=fusion.consensus_metrics,
            validation=validation,
            steps=steps,
        )

        degraded = [s.step_id for s in steps if s.status == LayerStatus.DEGRADED]
        logger.info(
            f"[{run_id}] Analysis complete in {processing_ms}ms: "
            f"{len(result.differential_diagnosis)} diagnoses, {ledger.call_count} model calls"
            + (f", degraded: {', '.join(degraded)}" if degraded else "")
        )
        logger.debug(f"[{run_id}] Model usage: {ledger.to_dict()}")
        return result

    async def _run_layer(
        self,
        steps: List[LayerStep],
        step_id: str,
        fn: Callable[[], Awaitable[LayerOutput]],
        summarize: Callable[[object], str],
    ):
        """Execute one layer, tracking status and timing. Returns the layer's value."""
        step = self._get_step(steps, step_id)
        step.status = LayerStatus.RUNNING
        self._notify(step)
        start = time.monotonic()

        try:
            output = await fn()
        except Exception as e:
            step.status = LayerStatus.FAILED
            step.error = str(e)
            raise
        else:
            if output.degraded:
                step.status = LayerStatus.DEGRADED
                step.error = output.degraded_reason
            else:
                step.status = LayerStatus.COMPLETED
            step.output_summary = summarize(output.value)
            return output.value
        finally:
            step.duration_ms = int((time.monotonic() - start) * 1000)
            self._notify(step)

    def _notify(self, step: LayerStep) -> None:
        if self.on_step is not None:
            self.on_step(step.model_copy())

    @staticmethod
    def _get_step(steps: List[LayerStep], step_id: str) -> LayerStep:
        for step in steps:
            if step.step_id == step_id:
                return step
        raise ValueError(f"Unknown step: {step_id}")
