"""Factory for creating LLM providers."""

import logging

from agent_flow_orchestrator.core.config import (
    LlamaProviderConfig,
    MockProviderConfig,
    OpenAIProviderConfig,
)
from agent_flow_orchestrator.llm.llama_provider import LLaMAProvider
from agent_flow_orchestrator.llm.mock_provider import MockLLMProvider
from agent_flow_orchestrator.llm.openai_provider import OpenAIProvider
from agent_flow_orchestrator.llm.provider import LLMProvider

logger = logging.getLogger(__name__)


class LLMFactory:
    """Factory for creating LLM provider instances."""

    @staticmethod
    def create(
        config: OpenAIProviderConfig | LlamaProviderConfig | MockProviderConfig,
    ) -> LLMProvider:
        """Create an LLM provider from a resolved provider config.

        Raises:
            ValueError: If the provider type is not supported or misconfigured.
        """
        logger.info("Creating LLM provider", extra={"provider": config.provider})

        if isinstance(config, OpenAIProviderConfig):
            return OpenAIProvider(config)
        if isinstance(config, LlamaProviderConfig):
            return LLaMAProvider(config)
        if isinstance(config, MockProviderConfig):
            return MockLLMProvider(config)
        raise ValueError(f"Unsupported LLM provider: {getattr(config, 'provider', config)!r}")
