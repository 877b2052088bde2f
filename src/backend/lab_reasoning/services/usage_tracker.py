# [Shared: Services]
"""
Usage Tracker — records token usage and latency for each model call.

One UsageLedger is created per pipeline run; its totals end up in the
result metadata. Token counts are estimates (the providers differ in
whether and how they report usage).
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class LLMCallRecord:
    """Record of a single model call."""
    call_id: str
    layer: str
    model_id: str
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0
    temperature: float = 0.0
    succeeded: bool = True
    timestamp: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class UsageLedger:
    """Running ledger of all model calls for one pipeline run."""
    run_id: str
    calls: List[LLMCallRecord] = field(default_factory=list)

    @property
    def total_input_tokens(self) -> int:
        return sum(c.input_tokens for c in self.calls)

    @property
    def total_output_tokens(self) -> int:
        return sum(c.output_tokens for c in self.calls)

    @property
    def total_latency_ms(self) -> int:
        return sum(c.latency_ms for c in self.calls)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def failed_calls(self) -> List[LLMCallRecord]:
        return [c for c in self.calls if not c.succeeded]

    def calls_for_layer(self, layer: str) -> List[LLMCallRecord]:
        return [c for c in self.calls if c.layer == layer]

    def latency_by_model(self) -> Dict[str, int]:
        """Map of model_id → summed latency."""
        totals: Dict[str, int] = {}
        for c in self.calls:
            totals[c.model_id] = totals.get(c.model_id, 0) + c.latency_ms
        return totals

    def to_dict(self) -> dict:
        layers = dict.fromkeys(c.layer for c in self.calls)
        return {
            "run_id": self.run_id,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_latency_ms": self.total_latency_ms,
            "call_count": self.call_count,
            "failed_call_count": len(self.failed_calls),
            "calls_by_layer": {layer: len(self.calls_for_layer(layer)) for layer in layers},
            "latency_by_model": self.latency_by_model(),
        }


def estimate_tokens(text: str) -> int:
    """
    Rough token count estimation (4 chars ≈ 1 token).

    Good enough for per-run usage reporting; use the provider's
    tokenizer when exact counts matter.
    """
    return max(1, len(text) // 4) if text else 0


def record_call(
    ledger: UsageLedger,
    layer: str,
    model_id: str,
    prompt: str,
    response: str,
    latency_ms: int,
    temperature: float = 0.0,
    succeeded: bool = True,
) -> LLMCallRecord:
    """Record a model call in the ledger. Call this after every invoke()."""
    record = LLMCallRecord(
        call_id=f"{ledger.run_id}_{layer}_{len(ledger.calls)}",
        layer=layer,
        model_id=model_id,
        input_tokens=estimate_tokens(prompt),
        output_tokens=estimate_tokens(response),
        latency_ms=latency_ms,
        temperature=temperature,
        succeeded=succeeded,
        timestamp=time.time(),
    )
    ledger.calls.append(record)
    return record
