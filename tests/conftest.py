"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import pytest

from agent_flow_orchestrator.flows.criteria import (
    CriterionResult,
    EvaluationCriterion,
    EvaluationResult,
)
from agent_flow_orchestrator.flows.gate_evaluator import GateEvaluator
from agent_flow_orchestrator.flows.models import AgentResponse, FlowDefinition, StepRequest
from agent_flow_orchestrator.flows.runner import FlowRunner


class ScriptedExecutor:
    """Agent executor that replays scripted responses per agent.

    A scripted item may be a string, an `AgentResponse`, an exception instance
    (raised), or a callable taking the `StepRequest`. Agents without a script
    echo ``"{agent}: {prompt}"``.
    """

    def __init__(self) -> None:
        self.scripts: dict[str, list[Any]] = {}
        self.calls: list[tuple[str, StepRequest]] = []
        self.delay = 0.0
        self.active = 0
        self.max_active = 0

    def script(self, agent_id: str, *responses: Any) -> ScriptedExecutor:
        self.scripts.setdefault(agent_id, []).extend(responses)
        return self

    def prompts_for(self, agent_id: str) -> list[str]:
        return [req.user_prompt for agent, req in self.calls if agent == agent_id]

    async def run(self, agent_id: str, request: StepRequest) -> AgentResponse:
        self.calls.append((agent_id, request))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            queue = self.scripts.get(agent_id)
            item: Any = queue.pop(0) if queue else f"{agent_id}: {request.user_prompt}"
            if callable(item):
                item = item(request)
            if isinstance(item, Exception):
                raise item
            if isinstance(item, AgentResponse):
                return item
            return AgentResponse(content=str(item))
        finally:
            self.active -= 1


class RecordingEventLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def log(self, event: str, payload: Mapping[str, Any]) -> None:
        self.events.append((event, dict(payload)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def payloads(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]


class StaticJudge:
    """Judge invoker returning scripted per-criterion scores.

    Each round is a mapping of criterion name to score (``"*"`` covers every
    criterion not listed) or an exception to raise. Once the rounds run out
    the last one repeats.
    """

    def __init__(self, *rounds: Mapping[str, float] | Exception) -> None:
        self.rounds: list[Mapping[str, float] | Exception] = list(rounds) or [{"*": 1.0}]
        self.calls: list[tuple[str, str, str | None]] = []

    async def evaluate(
        self,
        agent_id: str,
        content: str,
        criteria: Sequence[EvaluationCriterion],
        context: str | None = None,
    ) -> EvaluationResult:
        self.calls.append((agent_id, content, context))
        item = self.rounds.pop(0) if len(self.rounds) > 1 else self.rounds[0]
        if isinstance(item, Exception):
            raise item

        scores = {
            c.name: CriterionResult(
                name=c.name,
                score=item.get(c.name, item.get("*", 0.0)),
                reasoning=f"{c.name} reviewed",
                passed=item.get(c.name, item.get("*", 0.0)) >= 0.7,
            )
            for c in criteria
        }
        overall = (
            sum(r.score for r in scores.values()) / len(scores) if scores else item.get("*", 0.0)
        )
        return EvaluationResult(
            overall_score=overall,
            criteria_scores=scores,
            passed=overall >= 0.7,
            feedback="Judge feedback",
            suggestions=["Tighten the wording"],
        )


@pytest.fixture
def executor() -> ScriptedExecutor:
    return ScriptedExecutor()


@pytest.fixture
def events() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def judge() -> StaticJudge:
    return StaticJudge()


@pytest.fixture
def runner(executor: ScriptedExecutor, events: RecordingEventLogger, judge: StaticJudge) -> FlowRunner:
    return FlowRunner(executor, events, GateEvaluator(judge))


@pytest.fixture
def build_flow() -> Callable[..., FlowDefinition]:
    """Build a `FlowDefinition` from raw (camelCase) step mappings."""

    def _build(
        steps: list[dict[str, Any]],
        output: str | list[str] | None = None,
        fmt: str = "markdown",
        **settings: Any,
    ) -> FlowDefinition:
        return FlowDefinition.model_validate(
            {
                "id": "test-flow",
                "name": "Test Flow",
                "steps": steps,
                "output": {"from": output or steps[-1]["id"], "format": fmt},
                "settings": settings,
            }
        )

    return _build
