#!/usr/bin/env python3
"""Programmatic flow run example.

This demonstrates using the engine directly, without the CLI:

* build a flow in code (a custom callable transform included)
* run it against the deterministic mock provider
* print the aggregated output and the markdown report

Set ``ORCHESTRATOR_LLM_PROVIDER=openai`` and ``ORCHESTRATOR_LLM_OPENAI_API_KEY``
to run the same flow against a real model.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Sequence

from agent_flow_orchestrator.core.config import LLMSettings
from agent_flow_orchestrator.flows.models import (
    AgentStep,
    FlowDefinition,
    FlowOutput,
    FlowRequest,
    StepInput,
)
from agent_flow_orchestrator.flows.reporter import build_flow_report
from agent_flow_orchestrator.orchestrator.config import OrchestratorSettings
from agent_flow_orchestrator.orchestrator.logging import configure_logging
from agent_flow_orchestrator.orchestrator.runtime import build_runner


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a two-step flow (programmatic example).")
    parser.add_argument("--prompt", required=True, help="User prompt for the flow")
    return parser.parse_args(argv)


def _build_flow() -> FlowDefinition:
    return FlowDefinition(
        id="outline-then-write",
        name="Outline then write",
        steps=[
            AgentStep(id="outline", agent="planner"),
            AgentStep(
                id="write",
                agent="writer",
                depends_on=["outline"],
                input=StepInput(
                    source="step",
                    step_id="outline",
                    transform=lambda outline: f"Write the piece following this outline:\n\n{outline}",
                ),
            ),
        ],
        output=FlowOutput(from_="write"),
    )


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = OrchestratorSettings()
    configure_logging(settings.log_level)

    llm_settings = LLMSettings()
    if "provider" not in llm_settings.model_fields_set:
        llm_settings = LLMSettings(provider="mock")

    runner = build_runner(settings, llm_settings=llm_settings)
    flow = _build_flow()
    result = asyncio.run(runner.execute(flow, FlowRequest(user_prompt=args.prompt)))

    print(result.output)
    print()
    print(build_flow_report(flow, result))
    return 0 if result.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
