"""Iterative refinement: judge, feed back, regenerate, repeat."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Literal, Protocol

from agent_flow_orchestrator.flows.executor import AgentExecutor
from agent_flow_orchestrator.flows.gate_evaluator import GateEvaluator, GateResult
from agent_flow_orchestrator.flows.models import FeedbackLoopConfig, GateConfig, StepRequest

logger = logging.getLogger(__name__)

StopReason = Literal[
    "target-reached",
    "max-iterations",
    "no-improvement",
    "score-degraded",
    "error",
]


class ImprovementAgent(Protocol):
    async def improve(
        self,
        original_request: str,
        current_content: str,
        feedback: str,
        iteration: int,
    ) -> str: ...


@dataclass(frozen=True, slots=True)
class IterationResult:
    iteration: int
    content: str
    gate_result: GateResult
    improvement: float
    duration_ms: float


@dataclass(frozen=True, slots=True)
class FeedbackLoopResult:
    success: bool
    final_content: str
    final_score: float
    total_iterations: int
    stop_reason: StopReason
    total_duration_ms: float
    iterations: list[IterationResult] = field(default_factory=list)
    error: str | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "success": self.success,
            "finalScore": self.final_score,
            "totalIterations": self.total_iterations,
            "stopReason": self.stop_reason,
            "totalDurationMs": self.total_duration_ms,
            "scores": [it.gate_result.score for it in self.iterations],
        }
        if self.error is not None:
            out["error"] = self.error
        return out


_IMPROVE_PROMPT = """You are improving a response based on evaluation feedback.

Original Request:
{original_request}

Current Response (Iteration {iteration}):
{current_content}

Evaluation Feedback:
{feedback}

Please provide an improved response that addresses the feedback and improves on the weak areas.
Focus on the criteria that scored lowest.
Maintain the strengths while addressing the weaknesses.

Improved Response:"""


class ExecutorImprovementAgent:
    """Ask an ordinary agent to rewrite its answer given judge feedback."""

    def __init__(self, executor: AgentExecutor, agent_id: str) -> None:
        self.executor = executor
        self.agent_id = agent_id

    async def improve(
        self,
        original_request: str,
        current_content: str,
        feedback: str,
        iteration: int,
    ) -> str:
        prompt = _IMPROVE_PROMPT.format(
            original_request=original_request,
            current_content=current_content,
            feedback=feedback,
            iteration=iteration,
        )
        response = await self.executor.run(
            self.agent_id,
            StepRequest(
                user_prompt=prompt,
                context={
                    "improvement_mode": True,
                    "iteration": iteration,
                    "previous_content": current_content,
                },
            ),
        )
        return response.content


def build_loop_feedback(gate_result: GateResult, target_score: float) -> str:
    evaluation = gate_result.evaluation
    parts = [
        f"Current score: {gate_result.score * 100:.1f}%",
        f"Target score: {target_score * 100:.1f}%",
        "",
    ]
    if evaluation.feedback:
        parts.extend(["Feedback:", evaluation.feedback, ""])

    parts.append("Criterion Scores:")
    for name, result in evaluation.criteria_scores.items():
        mark = "+" if result.passed else "-"
        parts.append(f"  {mark} {name}: {result.score * 100:.1f}%")
        if result.reasoning:
            parts.append(f"      {result.reasoning}")
        if result.issues:
            parts.append(f"      Issues: {', '.join(result.issues)}")
    parts.append("")

    if evaluation.suggestions:
        parts.append("Suggestions for improvement:")
        parts.extend(f"  - {s}" for s in evaluation.suggestions)
    return "\n".join(parts)


class FeedbackLoop:
    """Evaluate, then improve, until the target score or a stop condition.

    Stop conditions, checked after each evaluation:

    - target reached (gate passed at ``target_score``)
    - from the second iteration on, an improvement below ``min_improvement``;
      a negative improvement keeps the previous (better) content
    - the improvement agent raised
    - ``max_iterations`` evaluations done
    """

    def __init__(self, gate_evaluator: GateEvaluator, improver: ImprovementAgent) -> None:
        self.gate_evaluator = gate_evaluator
        self.improver = improver

    async def run(
        self,
        config: FeedbackLoopConfig,
        initial_content: str,
        original_request: str,
        *,
        evaluator: str,
    ) -> FeedbackLoopResult:
        start = time.perf_counter()
        gate_config = GateConfig(
            agent=evaluator,
            criteria=config.criteria,
            threshold=config.target_score,
            on_fail="continue-with-warning",
            max_retries=1,
        )
        iterations: list[IterationResult] = []
        current = initial_content
        previous_score = 0.0

        def finish(
            reason: StopReason,
            content: str,
            score: float,
            *,
            success: bool = False,
            error: str | None = None,
        ) -> FeedbackLoopResult:
            logger.info(
                "Feedback loop finished",
                extra={
                    "stop_reason": reason,
                    "iterations": len(iterations),
                    "final_score": round(score, 4),
                },
            )
            return FeedbackLoopResult(
                success=success,
                final_content=content,
                final_score=score,
                total_iterations=len(iterations),
                stop_reason=reason,
                total_duration_ms=(time.perf_counter() - start) * 1000,
                iterations=iterations,
                error=error,
            )

        for iteration in range(1, config.max_iterations + 1):
            iteration_start = time.perf_counter()
            gate_result = await self.gate_evaluator.evaluate(gate_config, current, original_request)
            improvement = gate_result.score - previous_score
            iterations.append(
                IterationResult(
                    iteration=iteration,
                    content=current,
                    gate_result=gate_result,
                    improvement=improvement,
                    duration_ms=(time.perf_counter() - iteration_start) * 1000,
                )
            )

            if gate_result.passed:
                return finish("target-reached", current, gate_result.score, success=True)

            if iteration > 1 and improvement < config.min_improvement:
                if improvement < 0:
                    return finish("score-degraded", iterations[-2].content, previous_score)
                return finish("no-improvement", current, gate_result.score)

            previous_score = gate_result.score
            if iteration == config.max_iterations:
                break

            feedback = build_loop_feedback(gate_result, config.target_score)
            try:
                current = await self.improver.improve(original_request, current, feedback, iteration)
            except Exception as e:
                logger.warning(
                    "Improvement agent failed",
                    extra={"iteration": iteration, "error": str(e)},
                )
                return finish("error", current, gate_result.score, error=str(e))

        return finish("max-iterations", current, iterations[-1].gate_result.score)
