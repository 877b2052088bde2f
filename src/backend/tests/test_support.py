"""
Tests for the usage ledger, prompt formatting and error types.
"""
from lab_reasoning.exceptions import ModelCallError, PipelineError, ResponseParseError
from lab_reasoning.formatting import (
    format_correlations,
    format_list,
    format_markers,
    format_patient_context,
    format_soap_notes,
    to_json,
)
from lab_reasoning.models.schemas import SoapNotes, TriageResult
from lab_reasoning.services.usage_tracker import UsageLedger, estimate_tokens, record_call


class TestUsageLedger:
    def test_estimate_tokens(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abc") == 1
        assert estimate_tokens("a" * 400) == 100

    def test_totals(self):
        ledger = UsageLedger(run_id="r1")
        record_call(ledger, "triage", "m1", "p" * 40, "r" * 8, latency_ms=100)
        record_call(ledger, "fusion", "m2", "p" * 80, "", latency_ms=250, succeeded=False)
        record_call(ledger, "fusion", "m1", "p" * 4, "r" * 4, latency_ms=50)

        assert ledger.total_input_tokens == 10 + 20 + 1
        assert ledger.total_output_tokens == 2 + 0 + 1
        assert ledger.latency_by_model() == {"m1": 150, "m2": 250}
        assert [c.call_id for c in ledger.calls_for_layer("fusion")] == ["r1_fusion_1", "r1_fusion_2"]
        summary = ledger.to_dict()
        assert summary["failed_call_count"] == 1
        assert summary["calls_by_layer"] == {"triage": 1, "fusion": 2}
        assert summary["latency_by_model"] == {"m1": 150, "m2": 250}
        assert ledger.calls[0].total_tokens == 12


class TestFormatting:
    def test_markers(self, sample_markers):
        text = format_markers(sample_markers)
        assert text.splitlines()[0] == "[ATTENTION] TSH: 8.2 mUI/L (Ref: 0.4-4; functional: 1-2.5)"
        assert "[NORMAL] Potassium" in text

    def test_no_markers(self):
        assert format_markers([]) == "No lab results available"

    def test_patient_context(self, patient):
        text = format_patient_context(patient)
        assert "Age: 52 years" in text
        assert "Sex: Female" in text
        assert "Medications: Metformin 500mg" in text
        assert "Allergies" not in text

    def test_soap_notes(self):
        assert format_soap_notes(None) == "Not available"
        assert format_soap_notes(SoapNotes()) == "Not available"
        assert format_soap_notes(SoapNotes(subjective="Tired")) == "subjective: Tired"

    def test_lists_and_correlations(self, correlations):
        assert format_list(["", "a", "b"]) == "a, b"
        assert format_list([], empty="Not provided") == "Not provided"
        assert format_correlations([]) == "None identified"
        assert format_correlations(correlations) == "High TSH with low free T4"

    def test_to_json_serializes_models(self):
        assert to_json({"triage": TriageResult()}) == (
            '{"triage": {"urgency": "routine", "red_flags": [], '
            '"recommended_workflow": "primary", "confidence": 50.0}}'
        )


class TestErrors:
    def test_model_call_error(self):
        err = ModelCallError("boom", model_id="m1", details={"elapsed_ms": 5})
        assert err.to_dict() == {
            "error": "MODEL_CALL_ERROR",
            "message": "boom",
            "details": {"model_id": "m1", "elapsed_ms": 5},
        }

    def test_parse_error_keeps_preview(self):
        err = ResponseParseError("bad", raw_text="x" * 500)
        assert err.raw_text == "x" * 500
        assert len(err.details["raw_preview"]) == 300

    def test_pipeline_error(self):
        err = PipelineError("nothing usable", details={"failures": {"primary": "PARSE_ERROR"}})
        assert err.code == "PIPELINE_ERROR"
        assert str(err) == "nothing usable"
