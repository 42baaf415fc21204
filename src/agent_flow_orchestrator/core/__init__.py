"""Core package initialization."""

from agent_flow_orchestrator.core.config import (
    AgentProfile,
    LLMSettings,
    ProviderConfig,
    resolve_provider_config,
)

__all__ = [
    "AgentProfile",
    "LLMSettings",
    "ProviderConfig",
    "resolve_provider_config",
]
