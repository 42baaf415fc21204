"""Wire settings into a ready-to-use `FlowRunner`."""

from __future__ import annotations

import logging

from agent_flow_orchestrator.core.config import (
    LLMSettings,
    load_agent_profiles,
    resolve_provider_config,
)
from agent_flow_orchestrator.flows.events import FlowEventLogger, LoggingEventLogger
from agent_flow_orchestrator.flows.executor import LLMAgentExecutor
from agent_flow_orchestrator.flows.gate_evaluator import GateEvaluator
from agent_flow_orchestrator.flows.judge_evaluator import JudgeEvaluator
from agent_flow_orchestrator.flows.runner import FlowRunner
from agent_flow_orchestrator.llm.factory import LLMFactory
from agent_flow_orchestrator.llm.provider import LLMProvider
from agent_flow_orchestrator.orchestrator.config import OrchestratorSettings

logger = logging.getLogger(__name__)


def build_provider(settings: OrchestratorSettings, llm_settings: LLMSettings | None = None) -> LLMProvider:
    config = resolve_provider_config(llm_settings, settings.provider_config_path)
    return LLMFactory.create(config)


def build_runner(
    settings: OrchestratorSettings,
    *,
    provider: LLMProvider | None = None,
    llm_settings: LLMSettings | None = None,
    event_logger: FlowEventLogger | None = None,
) -> FlowRunner:
    """LLM executor + judge-backed gates + logging event sink."""

    provider = provider or build_provider(settings, llm_settings)
    profiles = (
        load_agent_profiles(settings.agents_config_path) if settings.agents_config_path else {}
    )
    executor = LLMAgentExecutor(provider, profiles)
    gate_evaluator = GateEvaluator(
        JudgeEvaluator(executor), required_floor=settings.gate_required_floor
    )
    logger.debug(
        "Flow runner ready",
        extra={"provider": provider.name, "agent_profiles": len(profiles)},
    )
    return FlowRunner(executor, event_logger or LoggingEventLogger(), gate_evaluator)
