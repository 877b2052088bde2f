# [Shared: Services]
"""
Model Client — handles all communication with the reasoning models.

Every model is reached through an OpenAI-compatible chat completions
endpoint (Vertex/AI Studio, Azure OpenAI, vLLM and TGI all expose one), so
the primary and challenger models differ only in their ModelEndpoint.

invoke() returns the raw reply text or raises ModelCallError. It owns the
per-call timeout and a bounded retry for transient transport errors; it
does not parse anything.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from lab_reasoning.config import Settings, settings as default_settings
from lab_reasoning.exceptions import ModelCallError

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
)
_TRANSIENT_KEYWORDS = (
    "503", "502", "429", "service unavailable", "overloaded",
    "connection", "timeout", "timed out", "temporarily",
)


@dataclass(frozen=True)
class ModelEndpoint:
    """Where and how to reach one model."""
    model_id: str
    base_url: str
    api_key: str = ""


class ModelClient:
    """
    Uniform interface for invoking the configured models.

    Usage:
        client = ModelClient.from_settings()
        text = await client.invoke(
            client.primary_model_id, SYSTEM_PROMPT, user_prompt,
            temperature=0.1, json_mode=True,
        )
    """

    def __init__(
        self,
        primary: ModelEndpoint,
        challenger: Optional[ModelEndpoint] = None,
        timeout_seconds: float = 60.0,
        max_retries: int = 2,
        retry_base_delay: float = 2.0,
        max_tokens: int = 4096,
    ):
        self.primary = primary
        self.challenger = challenger
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(1, max_retries)
        self.retry_base_delay = retry_base_delay
        self.max_tokens = max_tokens
        self._endpoints: Dict[str, ModelEndpoint] = {primary.model_id: primary}
        if challenger is not None:
            self._endpoints[challenger.model_id] = challenger
        self._clients: Dict[str, Any] = {}

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "ModelClient":
        config = config or default_settings
        challenger = None
        if config.challenger_configured:
            challenger = ModelEndpoint(
                model_id=config.challenger_model_id,
                base_url=config.challenger_base_url,
                api_key=config.challenger_api_key,
            )
        elif config.challenger_enabled:
            logger.warning("Challenger model enabled but CHALLENGER_BASE_URL is empty -- single-model mode")
        return cls(
            primary=ModelEndpoint(
                model_id=config.primary_model_id,
                base_url=config.primary_base_url,
                api_key=config.primary_api_key,
            ),
            challenger=challenger,
            timeout_seconds=config.model_timeout_seconds,
            max_retries=config.model_max_retries,
            retry_base_delay=config.model_retry_base_delay,
            max_tokens=config.model_max_tokens,
        )

    @property
    def primary_model_id(self) -> str:
        return self.primary.model_id

    @property
    def challenger_model_id(self) -> Optional[str]:
        return self.challenger.model_id if self.challenger else None

    def has_model(self, model_id: Optional[str]) -> bool:
        return model_id is not None and model_id in self._endpoints

    def _get_client(self, endpoint: ModelEndpoint):
        """Lazy-initialize one API client per endpoint."""
        client = self._clients.get(endpoint.model_id)
        if client is None:
            client = AsyncOpenAI(
                api_key=endpoint.api_key or "not-needed",
                base_url=endpoint.base_url or None,
                timeout=self.timeout_seconds,
                max_retries=0,  # retries are handled in invoke()
            )
            self._clients[endpoint.model_id] = client
        return client

    async def invoke(
        self,
        model_id: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        json_mode: bool = False,
        max_tokens: int = 0,
    ) -> str:
        """
        Invoke a model with a system and user prompt.

        Args:
            model_id: One of the configured model ids
            system_prompt: System prompt (folded into the user turn if the
                backend rejects the system role)
            user_prompt: The user prompt
            temperature: Sampling temperature
            json_mode: Request a JSON object response where supported
            max_tokens: Max tokens to generate (0 = client default)

        Returns:
            Raw reply text

        Raises:
            ModelCallError: unknown model, the provider call failed, or the
                reply had no content
        """
        endpoint = self._endpoints.get(model_id)
        if endpoint is None:
            raise ModelCallError(f"Model '{model_id}' is not configured", model_id=model_id)

        client = self._get_client(endpoint)
        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        request: Dict[str, Any] = {
            "model": endpoint.model_id,
            "messages": messages,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": temperature,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        last_error: Optional[Exception] = None
        t0 = time.monotonic()
        attempt = 0

        while attempt < self.max_retries:
            try:
                response = await client.chat.completions.create(**request)
            except Exception as e:
                last_error = e
                error_str = str(e).lower()

                # Backend rejected the system role or response_format: adjust
                # the request once and retry straight away (not counted as an attempt).
                if system_prompt and "system" in error_str and len(request["messages"]) > 1:
                    logger.warning(f"[{model_id}] Backend rejected system role -- folding into user message.")
                    request["messages"] = [
                        {"role": "user", "content": f"{system_prompt}\n\n{user_prompt}"}
                    ]
                    continue
                if "response_format" in request and "response_format" in error_str:
                    logger.warning(f"[{model_id}] Backend rejected JSON mode -- retrying without it.")
                    request.pop("response_format")
                    continue

                if _is_transient(e) and attempt < self.max_retries - 1:
                    delay = self.retry_base_delay * (2 ** attempt)
                    logger.warning(
                        f"[{model_id}] transient error (attempt {attempt + 1}/{self.max_retries}): "
                        f"{e}. Retrying in {delay:.1f}s..."
                    )
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                break

            text = _first_choice_text(response)
            if not text.strip():
                raise ModelCallError(
                    f"Model '{model_id}' returned an empty response",
                    model_id=model_id,
                    details={"elapsed_ms": int((time.monotonic() - t0) * 1000)},
                )
            return text

        elapsed_ms = int((time.monotonic() - t0) * 1000)
        logger.error(f"[{model_id}] model call failed after {elapsed_ms}ms: {last_error}")
        raise ModelCallError(
            f"Model '{model_id}' call failed: {last_error}",
            model_id=model_id,
            details={"error_type": type(last_error).__name__, "elapsed_ms": elapsed_ms},
        ) from last_error


def _is_transient(error: Exception) -> bool:
    if isinstance(error, _TRANSIENT_ERRORS):
        return True
    error_str = str(error).lower()
    return any(keyword in error_str for keyword in _TRANSIENT_KEYWORDS)


def _first_choice_text(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    return choices[0].message.content or ""
