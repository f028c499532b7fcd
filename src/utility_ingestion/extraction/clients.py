"""Build the extraction LLM client from settings."""
from __future__ import annotations

import structlog

from ..config import Settings
from ..errors import ExtractionError
from ..llm.anthropic_client import AnthropicClient
from ..llm.base import LLMClient
from ..llm.failover import FailoverLLMClient
from ..llm.openai_client import OpenAIClient

logger = structlog.get_logger(__name__)


def build_llm_client(settings: Settings, model: str) -> LLMClient:
    """GPT vision model as primary, Claude as failover when both keys are set."""
    openai_key = settings.openai_api_key.get_secret_value()
    anthropic_key = settings.anthropic_api_key.get_secret_value()

    fallback: LLMClient | None = None
    if anthropic_key:
        fallback = AnthropicClient(
            api_key=anthropic_key, model=settings.fallback_model, timeout=settings.llm_timeout,
        )

    if openai_key:
        primary: LLMClient = OpenAIClient(
            api_key=openai_key,
            model=model,
            azure_endpoint=settings.azure_openai_endpoint,
            timeout=settings.llm_timeout,
        )
        if fallback is not None and settings.enable_failover:
            client: LLMClient = FailoverLLMClient(primary, fallback)
        else:
            client = primary
    elif fallback is not None:
        client = fallback
    else:
        raise ExtractionError(
            "No extraction provider is configured. Set UTILITY_OPENAI_API_KEY or UTILITY_ANTHROPIC_API_KEY."
        )

    logger.info("llm_client_configured", model=client.get_model_name())
    return client
