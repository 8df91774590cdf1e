"""Inference client for the AI model collaborator.

Wraps the OpenAI Responses API (``POST /responses``) with optional built-in
tools such as web search. The core only needs ``generate`` to return text;
parsing that text is the caller's job.

Usage:
    client = get_inference_client()
    response = await client.generate(prompt, tools=["web_search"], max_tokens=900)
    print(response.content)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

WEB_SEARCH = "web_search"


# =============================================================================
# EXCEPTIONS
# =============================================================================


class InferenceError(Exception):
    """Base exception for inference errors."""

    pass


class MissingCredentialError(InferenceError):
    """No API key configured; no request is attempted."""

    pass


class ConnectionInferenceError(InferenceError):
    """Connection error during inference."""

    pass


class TimeoutInferenceError(InferenceError):
    """Timeout during inference."""

    pass


class ResponseInferenceError(InferenceError):
    """Invalid or malformed response from the model API."""

    pass


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class InferenceConfig:
    """Configuration for the inference client.

    Attributes:
        base_url: API base URL (e.g., https://api.openai.com/v1)
        model_name: Name of the model to use
        api_key: API key; None means the collaborator is unavailable
        timeout: Request timeout in seconds
        max_tokens: Default maximum output tokens
        temperature: Default sampling temperature
    """

    base_url: str
    model_name: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    timeout: float = 120.0
    max_tokens: int = 2048
    temperature: float = 0.1


@dataclass
class ModelInfo:
    """Information about the model and inference run."""

    model_name: str
    provider: str
    temperature: float
    max_tokens: int
    input_tokens: int
    output_tokens: int
    latency_ms: int
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON storage."""
        return {
            "model_name": self.model_name,
            "provider": self.provider,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "latency_ms": self.latency_ms,
            **self.extra,
        }


@dataclass
class GenerateResponse:
    """Text returned by the model plus run metadata."""

    content: str
    model_info: ModelInfo


# =============================================================================
# INFERENCE CLIENT
# =============================================================================


def extract_output_text(response_data: dict) -> str:
    """Collect the text output of a Responses API payload.

    Uses the ``output_text`` convenience field when present, otherwise joins
    every ``output_text`` content part of every message item.
    """
    text = response_data.get("output_text")
    if isinstance(text, str):
        return text

    parts = []
    for item in response_data.get("output") or []:
        if not isinstance(item, dict) or item.get("type") != "message":
            continue
        for content in item.get("content") or []:
            if isinstance(content, dict) and content.get("type") == "output_text":
                parts.append(content.get("text", ""))
    return "".join(parts)


class InferenceClient:
    """Client for the AI model collaborator."""

    def __init__(self, config: InferenceConfig):
        """Initialize the inference client.

        Args:
            config: Inference configuration.
        """
        self.config = config
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.config.api_key)

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                headers={"Authorization": f"Bearer {self.config.api_key}"},
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _make_request(self, payload: dict) -> dict:
        client = await self._get_http_client()
        try:
            response = await client.post("/responses", json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.ConnectError as e:
            raise ConnectionInferenceError(f"Connection error: {e}") from e
        except httpx.TimeoutException as e:
            raise TimeoutInferenceError(f"Timeout error: {e}") from e
        except httpx.HTTPStatusError as e:
            raise InferenceError(f"HTTP error: {e}") from e
        except httpx.HTTPError as e:
            raise ConnectionInferenceError(f"Transport error: {e}") from e
        except ValueError as e:
            raise ResponseInferenceError(f"Invalid JSON body: {e}") from e

    async def generate(
        self,
        prompt: str,
        tools: Optional[list[str]] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> GenerateResponse:
        """Generate text for a structured prompt.

        Args:
            prompt: The full prompt.
            tools: Built-in tool types to enable (e.g. ``["web_search"]``).
            max_tokens: Override default max output tokens.
            temperature: Override default temperature.

        Returns:
            GenerateResponse with the output text.

        Raises:
            MissingCredentialError: If no API key is configured.
            InferenceError: On transport or response errors.
        """
        if not self.has_credentials:
            raise MissingCredentialError("AI model API key is not configured")

        temp = temperature if temperature is not None else self.config.temperature
        tokens = max_tokens if max_tokens is not None else self.config.max_tokens

        payload = {
            "model": self.config.model_name,
            "input": prompt,
            "temperature": temp,
            "max_output_tokens": tokens,
        }
        if tools:
            payload["tools"] = [{"type": t} for t in tools]

        logger.info(
            f"LLM request: model={self.config.model_name} temp={temp} "
            f"max_tokens={tokens} tools={tools or []} prompt_chars={len(prompt)}"
        )

        start_time = time.monotonic()
        try:
            response_data = await self._make_request(payload)
        except asyncio.TimeoutError as e:
            raise TimeoutInferenceError(f"Timeout error: {e}") from e
        elapsed_ms = int((time.monotonic() - start_time) * 1000)

        if response_data.get("error"):
            error_info = response_data["error"]
            if isinstance(error_info, dict):
                error_msg = error_info.get("message", str(error_info))
            else:
                error_msg = str(error_info)
            logger.error(f"Model API returned error: {error_msg}")
            raise ResponseInferenceError(f"Model API error: {error_msg}")

        usage = response_data.get("usage") or {}
        model_info = ModelInfo(
            model_name=response_data.get("model", self.config.model_name),
            provider="openai",
            temperature=temp,
            max_tokens=tokens,
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            latency_ms=elapsed_ms,
        )

        return GenerateResponse(
            content=extract_output_text(response_data),
            model_info=model_info,
        )


# =============================================================================
# FACTORY FUNCTION
# =============================================================================


def get_inference_client() -> InferenceClient:
    """Create an InferenceClient from settings.

    A client is returned even without an API key; ``generate`` then raises
    MissingCredentialError so each stage can apply its own policy.
    """
    from propscout_core.config import get_settings

    settings = get_settings()

    config = InferenceConfig(
        base_url=settings.openai_base_url,
        model_name=settings.openai_model,
        api_key=settings.openai_api_key,
        timeout=settings.inference_timeout,
        temperature=settings.ai_temperature,
    )

    return InferenceClient(config=config)


__all__ = [
    "InferenceClient",
    "InferenceConfig",
    "GenerateResponse",
    "ModelInfo",
    "InferenceError",
    "MissingCredentialError",
    "ConnectionInferenceError",
    "TimeoutInferenceError",
    "ResponseInferenceError",
    "WEB_SEARCH",
    "extract_output_text",
    "get_inference_client",
]
