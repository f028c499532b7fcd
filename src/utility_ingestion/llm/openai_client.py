"""OpenAI LLM client: direct OpenAI API, or Azure OpenAI when an endpoint is configured."""
from __future__ import annotations

import time

import openai
import structlog

from .base import LLMClient, LLMResponse, call_with_retry

logger = structlog.get_logger(__name__)

# Exceptions that are retryable
RETRYABLE_EXCEPTIONS = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.InternalServerError,
)


class OpenAIClient(LLMClient):
    """LLM client for GPT vision models.

    With ``azure_endpoint`` set, ``model`` is the Azure deployment name.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4.1",
        azure_endpoint: str = "",
        timeout: int = 120,
    ):
        self._model = model
        if azure_endpoint:
            self._client = openai.AsyncAzureOpenAI(
                api_key=api_key,
                azure_endpoint=azure_endpoint,
                api_version="2024-06-01",
                timeout=float(timeout),
            )
            self._provider = "azure_openai"
        else:
            self._client = openai.AsyncOpenAI(api_key=api_key, timeout=float(timeout))
            self._provider = "openai"

    async def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        return await self._chat(messages, temperature, max_tokens, json_mode)

    async def complete_vision(
        self,
        system_prompt: str,
        user_prompt: str,
        images: list[str],
        *,
        media_type: str = "image/png",
        temperature: float = 0.0,
        max_tokens: int = 8192,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Vision completion with base64-encoded images placed before the text."""
        user_content: list[dict] = [
            {
                "type": "image_url",
                "image_url": {"url": f"data:{media_type};base64,{b64}", "detail": "high"},
            }
            for b64 in images
        ]
        user_content.append({"type": "text", "text": user_prompt})
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]
        return await self._chat(messages, temperature, max_tokens, json_mode)

    def get_model_name(self) -> str:
        return f"{self._model} ({self._provider})"

    async def _chat(self, messages: list[dict], temperature: float, max_tokens: int, json_mode: bool) -> LLMResponse:
        kwargs: dict = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        async def _once() -> LLMResponse:
            start = time.monotonic()
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
            elapsed_ms = int((time.monotonic() - start) * 1000)
            choice = response.choices[0]
            usage = response.usage
            return LLMResponse(
                content=choice.message.content or "",
                model=response.model or self._model,
                input_tokens=usage.prompt_tokens if usage else 0,
                output_tokens=usage.completion_tokens if usage else 0,
                finish_reason=choice.finish_reason or "",
                latency_ms=elapsed_ms,
            )

        return await call_with_retry(
            _once, retryable=RETRYABLE_EXCEPTIONS, provider=self._provider, model=self._model,
        )
