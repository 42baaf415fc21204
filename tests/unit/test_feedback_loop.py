"""Unit tests for iterative refinement."""

from __future__ import annotations

import pytest

from agent_flow_orchestrator.flows.feedback_loop import (
    ExecutorImprovementAgent,
    FeedbackLoop,
    build_loop_feedback,
)
from agent_flow_orchestrator.flows.gate_evaluator import GateEvaluator
from agent_flow_orchestrator.flows.models import FeedbackLoopConfig, GateConfig


class RecordingImprover:
    def __init__(self, *outputs: str | Exception) -> None:
        self.outputs = list(outputs)
        self.calls: list[tuple[str, int]] = []

    async def improve(self, original_request: str, current_content: str, feedback: str, iteration: int) -> str:
        self.calls.append((current_content, iteration))
        item = self.outputs.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _config(**overrides) -> FeedbackLoopConfig:
    values = {"maxIterations": 4, "targetScore": 0.9, "criteria": ["clarity"], "minImprovement": 0.05}
    values.update(overrides)
    return FeedbackLoopConfig.model_validate(values)


async def test_stops_when_target_is_reached(judge) -> None:
    judge.rounds = [{"clarity": 0.5}, {"clarity": 0.7}, {"clarity": 0.92}]
    improver = RecordingImprover("v2", "v3")

    result = await FeedbackLoop(GateEvaluator(judge), improver).run(
        _config(), "v1", "request", evaluator="critic"
    )

    assert result.success is True
    assert result.stop_reason == "target-reached"
    assert result.final_content == "v3"
    assert result.final_score == pytest.approx(0.92)
    assert result.total_iterations == 3
    assert improver.calls == [("v1", 1), ("v2", 2)]
    assert {agent for agent, _, _ in judge.calls} == {"critic"}


async def test_stops_when_improvement_stalls(judge) -> None:
    judge.rounds = [{"clarity": 0.5}, {"clarity": 0.52}]

    result = await FeedbackLoop(GateEvaluator(judge), RecordingImprover("v2")).run(
        _config(), "v1", "request", evaluator="critic"
    )

    assert result.stop_reason == "no-improvement"
    assert result.final_content == "v2"
    assert result.success is False


async def test_degraded_score_keeps_previous_content(judge) -> None:
    judge.rounds = [{"clarity": 0.6}, {"clarity": 0.4}]

    result = await FeedbackLoop(GateEvaluator(judge), RecordingImprover("worse")).run(
        _config(), "good", "request", evaluator="critic"
    )

    assert result.stop_reason == "score-degraded"
    assert result.final_content == "good"
    assert result.final_score == pytest.approx(0.6)


async def test_max_iterations_makes_no_extra_improvement_call(judge) -> None:
    judge.rounds = [{"clarity": 0.2}, {"clarity": 0.4}, {"clarity": 0.6}]
    improver = RecordingImprover("v2", "v3")

    result = await FeedbackLoop(GateEvaluator(judge), improver).run(
        _config(maxIterations=3), "v1", "request", evaluator="critic"
    )

    assert result.stop_reason == "max-iterations"
    assert result.final_content == "v3"
    assert len(improver.calls) == 2
    assert [it.iteration for it in result.iterations] == [1, 2, 3]


async def test_improver_failure_stops_with_error(judge) -> None:
    judge.rounds = [{"clarity": 0.3}]

    result = await FeedbackLoop(GateEvaluator(judge), RecordingImprover(RuntimeError("quota"))).run(
        _config(), "v1", "request", evaluator="critic"
    )

    assert result.stop_reason == "error"
    assert result.error == "quota"
    assert result.final_content == "v1"
    assert result.to_json()["error"] == "quota"


async def test_executor_improvement_agent_builds_prompt(executor) -> None:
    executor.script("writer", "rewritten")
    agent = ExecutorImprovementAgent(executor, "writer")

    out = await agent.improve("Write a haiku", "old text", "Current score: 50.0%", 2)

    assert out == "rewritten"
    [(_, request)] = executor.calls
    assert "Original Request:\nWrite a haiku" in request.user_prompt
    assert "Current Response (Iteration 2):\nold text" in request.user_prompt
    assert request.context["improvement_mode"] is True
    assert request.context["previous_content"] == "old text"


async def test_loop_feedback_marks_passing_and_failing_criteria(judge) -> None:
    judge.rounds = [{"clarity": 0.9, "accuracy": 0.3}]
    gate_config = GateConfig(agent="critic", criteria=["clarity", "accuracy"], threshold=0.9)
    gate_result = await GateEvaluator(judge).evaluate(gate_config, "text")

    feedback = build_loop_feedback(gate_result, 0.9)

    assert feedback.startswith(f"Current score: {gate_result.score * 100:.1f}%\nTarget score: 90.0%")
    assert "Feedback:\nJudge feedback" in feedback
    assert "  + clarity: 90.0%" in feedback
    assert "  - accuracy: 30.0%" in feedback
    assert "      accuracy reviewed" in feedback
    assert feedback.endswith("Suggestions for improvement:\n  - Tighten the wording")
