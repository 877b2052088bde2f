"""
Prompt formatting helpers shared by the pipeline layers.
"""
from __future__ import annotations

import json
from typing import Any, Iterable, Optional, Sequence

from lab_reasoning.models.schemas import (
    Biomarker,
    BiomarkerStatus,
    ClinicalCorrelation,
    PatientContext,
    SoapNotes,
    TriageResult,
)

_STATUS_TAGS = {
    BiomarkerStatus.CRITICAL: "[CRITICAL]",
    BiomarkerStatus.ATTENTION: "[ATTENTION]",
    BiomarkerStatus.NORMAL: "[NORMAL]",
}


def _num(value: float) -> str:
    return f"{value:g}"


def format_markers(markers: Sequence[Biomarker]) -> str:
    if not markers:
        return "No lab results available"
    return "\n".join(
        f"{_STATUS_TAGS[m.status]} {m.name}: {_num(m.value)} {m.unit}".rstrip()
        + f" (Ref: {_num(m.lab_range.min)}-{_num(m.lab_range.max)};"
        f" functional: {_num(m.functional_range.min)}-{_num(m.functional_range.max)})"
        for m in markers
    )


def format_patient_context(ctx: PatientContext) -> str:
    lines = [
        f"Age: {ctx.age} years",
        f"Sex: {ctx.sex.value.capitalize()}",
    ]
    if ctx.chief_complaint:
        lines.append(f"Chief complaint: {ctx.chief_complaint}")
    if ctx.relevant_history:
        lines.append(f"History: {', '.join(ctx.relevant_history)}")
    if ctx.current_medications:
        lines.append(f"Medications: {', '.join(ctx.current_medications)}")
    if ctx.allergies:
        lines.append(f"Allergies: {', '.join(ctx.allergies)}")
    return "\n".join(lines)


def format_soap_notes(notes: Optional[SoapNotes]) -> str:
    if not notes:
        return "Not available"
    parts = [f"{key}: {value}" for key, value in notes.model_dump().items() if value]
    return "\n".join(parts) if parts else "Not available"


def format_list(items: Iterable[str], empty: str = "None reported") -> str:
    items = [i for i in items if i]
    return ", ".join(items) if items else empty


def format_correlations(correlations: Sequence[ClinicalCorrelation]) -> str:
    if not correlations:
        return "None identified"
    return "\n".join(c.pattern for c in correlations)


def format_red_flags(triage: TriageResult) -> str:
    return format_list((f.description for f in triage.red_flags), empty="None")


def to_json(data: Any) -> str:
    """Serialize models (or lists/dicts of them) for embedding in prompts."""
    return json.dumps(_plain(data), ensure_ascii=False, default=str)


def _plain(data: Any) -> Any:
    if hasattr(data, "model_dump"):
        return data.model_dump(mode="json")
    if isinstance(data, dict):
        return {k: _plain(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [_plain(v) for v in data]
    return data
