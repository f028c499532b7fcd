"""Anthropic Claude LLM client, used as the failover target for extraction."""
from __future__ import annotations

import time

import anthropic
import structlog

from .base import LLMClient, LLMResponse, call_with_retry

logger = structlog.get_logger(__name__)

JSON_ONLY_SUFFIX = "Respond with valid JSON only."

# Exceptions that are retryable
RETRYABLE_EXCEPTIONS = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
)


def _json_only(system_prompt: str) -> str:
    if system_prompt.rstrip().endswith(JSON_ONLY_SUFFIX):
        return system_prompt
    return system_prompt.rstrip() + "\n\n" + JSON_ONLY_SUFFIX


class AnthropicClient(LLMClient):
    """LLM client for Claude models via the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-5-20250929",
        timeout: int = 120,
    ):
        self._model = model
        self._client = anthropic.AsyncAnthropic(api_key=api_key, timeout=float(timeout))

    async def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        if json_mode:
            system_prompt = _json_only(system_prompt)
        return await self._messages(
            system_prompt, [{"role": "user", "content": user_prompt}], temperature, max_tokens,
        )

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
        """Vision completion; Claude has no JSON mode, so the system prompt asks for it."""
        content: list[dict] = [
            {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": b64}}
            for b64 in images
        ]
        content.append({"type": "text", "text": user_prompt})
        if json_mode:
            system_prompt = _json_only(system_prompt)
        return await self._messages(
            system_prompt, [{"role": "user", "content": content}], temperature, max_tokens,
        )

    def get_model_name(self) -> str:
        return f"{self._model} (anthropic)"

    async def _messages(
        self,
        system_prompt: str,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
    ) -> LLMResponse:
        async def _once() -> LLMResponse:
            start = time.monotonic()
            response = await self._client.messages.create(
                model=self._model,
                system=system_prompt,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            elapsed_ms = int((time.monotonic() - start) * 1000)
            text = "".join(block.text for block in response.content if block.type == "text")
            return LLMResponse(
                content=text,
                model=response.model,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                finish_reason=response.stop_reason or "",
                latency_ms=elapsed_ms,
            )

        return await call_with_retry(
            _once, retryable=RETRYABLE_EXCEPTIONS, provider="anthropic", model=self._model,
        )
