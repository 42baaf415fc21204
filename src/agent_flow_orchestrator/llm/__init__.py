"""LLM package initialization."""

from agent_flow_orchestrator.llm.factory import LLMFactory
from agent_flow_orchestrator.llm.mock_provider import MockLLMProvider
from agent_flow_orchestrator.llm.provider import LLMProvider

__all__ = [
    "LLMFactory",
    "LLMProvider",
    "MockLLMProvider",
]
