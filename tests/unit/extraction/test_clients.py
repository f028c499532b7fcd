"""Test extraction client selection from settings."""
import pytest

from utility_ingestion.config import Settings
from utility_ingestion.errors import ExtractionError
from utility_ingestion.extraction.clients import build_llm_client
from utility_ingestion.llm.anthropic_client import AnthropicClient
from utility_ingestion.llm.failover import FailoverLLMClient
from utility_ingestion.llm.openai_client import OpenAIClient


class TestBuildLLMClient:
    def test_primary_with_failover(self, mock_settings):
        client = build_llm_client(mock_settings, "gpt-4.1")
        assert isinstance(client, FailoverLLMClient)
        assert client.get_model_name().startswith("gpt-4.1")

    def test_failover_disabled(self, mock_settings):
        settings = mock_settings.model_copy(update={"enable_failover": False})
        assert isinstance(build_llm_client(settings, "gpt-4.1"), OpenAIClient)

    def test_anthropic_only(self):
        settings = Settings(openai_api_key="", anthropic_api_key="test-anthropic-key")
        assert isinstance(build_llm_client(settings, "gpt-4.1"), AnthropicClient)

    def test_no_keys(self):
        with pytest.raises(ExtractionError):
            build_llm_client(Settings(openai_api_key="", anthropic_api_key=""), "gpt-4.1")
