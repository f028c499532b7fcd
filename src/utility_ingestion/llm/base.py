"""LLM client abstract base class and shared retry loop."""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

# Default retry configuration
MAX_RETRIES = 3
RETRY_DELAYS = [1.0, 2.0, 4.0]


class LLMResponse(BaseModel):
    """Response from an LLM call."""
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str = ""
    latency_ms: int = 0


class LLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    async def complete_text(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Text-only completion."""
        ...

    @abstractmethod
    async def complete_vision(
        self,
        system_prompt: str,
        user_prompt: str,
        images: list[str],  # base64-encoded images
        *,
        media_type: str = "image/png",
        temperature: float = 0.0,
        max_tokens: int = 8192,
        json_mode: bool = False,
    ) -> LLMResponse:
        """Vision completion with images."""
        ...

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model name being used."""
        ...


async def call_with_retry(
    call: Callable[[], Awaitable[LLMResponse]],
    *,
    retryable: tuple[type[Exception], ...],
    provider: str,
    model: str,
) -> LLMResponse:
    """Await *call*, retrying retryable provider errors with exponential backoff."""
    last_exception: Exception | None = None
    for attempt in range(MAX_RETRIES + 1):
        try:
            return await call()
        except retryable as exc:
            last_exception = exc
            if attempt < MAX_RETRIES:
                delay = RETRY_DELAYS[attempt]
                logger.warning(
                    "llm_api_retry",
                    provider=provider,
                    attempt=attempt + 1,
                    delay=delay,
                    error=str(exc),
                    model=model,
                )
                await asyncio.sleep(delay)
            else:
                logger.error(
                    "llm_api_exhausted_retries",
                    provider=provider,
                    attempts=MAX_RETRIES + 1,
                    error=str(exc),
                    model=model,
                )

    raise last_exception  # type: ignore[misc]
