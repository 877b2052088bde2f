"""
Exception hierarchy for the lab reasoning engine.

Only PipelineError is expected to reach callers of the pipeline; the other
types are raised at the model/parse boundary and absorbed by the layers.
"""
from typing import Any, Dict, Optional


class LabReasoningError(Exception):
    """Base exception for all lab reasoning errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a plain dictionary."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ModelCallError(LabReasoningError):
    """Transport, auth, quota or timeout failure from a model provider."""

    def __init__(
        self,
        message: str,
        model_id: str = "unknown",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="MODEL_CALL_ERROR",
            details={"model_id": model_id, **(details or {})},
        )
        self.model_id = model_id


class ResponseParseError(LabReasoningError):
    """A model answered, but the content is not usable JSON for the layer."""

    def __init__(
        self,
        message: str,
        raw_text: str = "",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="PARSE_ERROR",
            details={"raw_preview": raw_text[:300], **(details or {})},
        )
        self.raw_text = raw_text


class PipelineError(LabReasoningError):
    """No diagnosis could be produced: every Layer 3 contributor failed."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, code="PIPELINE_ERROR", details=details)
