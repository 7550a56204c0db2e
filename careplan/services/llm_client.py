"""
Contract for the generative model, plus the OpenAI-compatible HTTP client.

Works with vLLM, LM Studio, Ollama and any server exposing /chat/completions.
PHI-safe: NEVER log prompts or model output.
"""
import json
import time
from typing import Any, Optional, Protocol

import httpx

from careplan.core.config import Settings, get_settings
from careplan.core.logging import get_safe_logger
from careplan.core.metrics import get_metrics_collector
from careplan.services.exceptions import (
    BackendTimeoutError,
    BackendUnavailableError,
    ModelError,
    RateLimitedError,
)

logger = get_safe_logger(__name__)

BACKEND_NAME = "openai_compat"


class ChatModel(Protocol):
    """What a generation provider must satisfy: one JSON object per prompt pair."""

    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> dict[str, Any]:
        ...


def _strip_code_fence(text: str) -> str:
    """Some local models wrap JSON in ```json fences despite response_format."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def _extract_content(result: Any) -> str:
    """Pull the message text out of a chat completion payload."""
    if isinstance(result, dict) and "error" in result:
        raise ModelError("Backend returned an error response")

    try:
        choices = result.get("choices", []) if isinstance(result, dict) else []
        if not choices:
            raise KeyError("choices")

        first = choices[0] if isinstance(choices[0], dict) else {}
        msg = first.get("message")

        if isinstance(msg, dict) and isinstance(msg.get("content"), str):
            content = msg["content"]
        elif isinstance(first.get("text"), str):
            content = first["text"]
        else:
            raise KeyError("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        raise ModelError("Invalid response format from backend")

    content = _strip_code_fence(content)
    if not content:
        raise ModelError("Empty response returned by model")
    return content


class OpenAICompatChatModel:
    """ChatModel over an OpenAI-compatible HTTP API."""

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout_s: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._url = f"{base_url.rstrip('/')}/chat/completions"
        self._model = model
        self._timeout_s = timeout_s
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    async def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: int = 1024,
        temperature: float = 0.2,
    ) -> dict[str, Any]:
        """
        Returns the parsed JSON object produced by the model.
        Raises UpstreamGenerationError subclasses on failure.
        """
        start = time.perf_counter()
        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
            "stream": False,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                response = await client.post(
                    self._url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )

                if response.status_code == 429:
                    raise RateLimitedError()
                if response.status_code >= 500:
                    raise BackendUnavailableError(BACKEND_NAME)
                response.raise_for_status()

        except httpx.ConnectError:
            raise BackendUnavailableError(BACKEND_NAME)
        except httpx.TimeoutException:
            elapsed = int((time.perf_counter() - start) * 1000)
            raise BackendTimeoutError(elapsed)
        except httpx.HTTPStatusError:
            raise BackendUnavailableError(BACKEND_NAME)
        except httpx.TransportError:
            raise BackendUnavailableError(BACKEND_NAME)

        try:
            result = response.json()
        except json.JSONDecodeError:
            raise ModelError("Invalid JSON response from backend")

        content = _extract_content(result)
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            raise ModelError("Model output is not valid JSON")
        if not isinstance(parsed, dict):
            raise ModelError("Model output is not a JSON object")

        inference_ms = int((time.perf_counter() - start) * 1000)
        get_metrics_collector().record_inference(inference_ms)
        logger.debug("Model call completed", backend=BACKEND_NAME, inference_ms=inference_ms)
        return parsed


def build_chat_model(model_name: str, settings: Optional[Settings] = None) -> Optional[ChatModel]:
    """
    Model configured for this deployment, or None for the mock backend.
    Callers fall back to their deterministic mock behaviour on None.
    """
    settings = settings or get_settings()
    if settings.llm_backend == "mock":
        return None
    return OpenAICompatChatModel(
        base_url=settings.llm_base_url,
        model=model_name,
        timeout_s=settings.llm_timeout_ms / 1000.0,
    )
