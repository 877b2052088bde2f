"""
Shared plumbing for the pipeline layers.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from lab_reasoning.exceptions import ModelCallError
from lab_reasoning.services.llm_client import ModelClient
from lab_reasoning.services.usage_tracker import UsageLedger, record_call

T = TypeVar("T")


@dataclass
class LayerOutput(Generic[T]):
    """A layer's value, plus why it fell back if it did."""
    value: T
    degraded_reason: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.degraded_reason is not None


async def invoke_recorded(
    client: ModelClient,
    ledger: UsageLedger,
    layer: str,
    model_id: str,
    system_prompt: str,
    user_prompt: str,
    temperature: float,
    json_mode: bool = True,
) -> str:
    """client.invoke() with the call written to the usage ledger, success or not."""
    t0 = time.monotonic()
    try:
        text = await client.invoke(
            model_id,
            system_prompt,
            user_prompt,
            temperature=temperature,
            json_mode=json_mode,
        )
    except ModelCallError:
        record_call(
            ledger, layer, model_id, system_prompt + user_prompt, "",
            latency_ms=int((time.monotonic() - t0) * 1000),
            temperature=temperature,
            succeeded=False,
        )
        raise
    record_call(
        ledger, layer, model_id, system_prompt + user_prompt, text,
        latency_ms=int((time.monotonic() - t0) * 1000),
        temperature=temperature,
    )
    return text
