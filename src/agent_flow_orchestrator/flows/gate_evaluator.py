"""Quality gate decisions over judge evaluations."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal, Protocol

from agent_flow_orchestrator.flows.criteria import (
    EvaluationCriterion,
    EvaluationResult,
    calculate_weighted_score,
    check_required_criteria,
    get_criteria_by_names,
    meets_threshold,
)
from agent_flow_orchestrator.flows.models import GateConfig

logger = logging.getLogger(__name__)

GateAction = Literal["passed", "retry", "halted", "continued-with-warning"]

DEFAULT_REQUIRED_FLOOR = 0.7


class JudgeInvoker(Protocol):
    async def evaluate(
        self,
        agent_id: str,
        content: str,
        criteria: Sequence[EvaluationCriterion],
        context: str | None = None,
    ) -> EvaluationResult: ...


@dataclass(frozen=True, slots=True)
class GateResult:
    passed: bool
    score: float
    evaluation: EvaluationResult
    attempts: int
    action: GateAction
    evaluation_duration_ms: float
    error: str | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "passed": self.passed,
            "score": self.score,
            "attempts": self.attempts,
            "action": self.action,
            "evaluationDurationMs": self.evaluation_duration_ms,
            "evaluation": self.evaluation.model_dump(mode="json"),
        }
        if self.error is not None:
            out["error"] = self.error
        return out


class GateEvaluator:
    """Score content with a judge and decide what the flow does next.

    `evaluate` never raises. A judge failure becomes a zero-score result with
    the error recorded, and the usual action table still applies.
    """

    def __init__(self, judge: JudgeInvoker, *, required_floor: float = DEFAULT_REQUIRED_FLOOR):
        self.judge = judge
        self.required_floor = required_floor

    async def evaluate(
        self,
        config: GateConfig,
        content: str,
        context: str | None = None,
        attempt_index: int = 0,
    ) -> GateResult:
        start = time.perf_counter()
        criteria = get_criteria_by_names(config.criteria)

        try:
            evaluation = await self.judge.evaluate(config.agent, content, criteria, context)
        except Exception as e:
            logger.warning(
                "Judge evaluation failed",
                extra={"judge_agent": config.agent, "attempt": attempt_index + 1, "error": str(e)},
            )
            action: GateAction = (
                "continued-with-warning" if config.on_fail == "continue-with-warning" else "halted"
            )
            return GateResult(
                passed=False,
                score=0.0,
                evaluation=_error_evaluation(e),
                attempts=attempt_index + 1,
                action=action,
                evaluation_duration_ms=(time.perf_counter() - start) * 1000,
                error=str(e),
            )

        if criteria:
            score = calculate_weighted_score(evaluation.criteria_scores, criteria)
        else:
            # Nothing resolvable to weigh; trust the judge's own overall score.
            score = evaluation.overall_score
        passed = meets_threshold(score, config.threshold) and check_required_criteria(
            evaluation.criteria_scores, criteria, self.required_floor
        )
        action = decide_action(config, passed=passed, attempt_index=attempt_index)

        logger.info(
            "Gate evaluated",
            extra={
                "judge_agent": config.agent,
                "score": round(score, 4),
                "threshold": config.threshold,
                "action": action,
                "attempt": attempt_index + 1,
            },
        )
        return GateResult(
            passed=passed,
            score=score,
            evaluation=evaluation,
            attempts=attempt_index + 1,
            action=action,
            evaluation_duration_ms=(time.perf_counter() - start) * 1000,
        )


def decide_action(config: GateConfig, *, passed: bool, attempt_index: int) -> GateAction:
    if passed:
        return "passed"
    if config.on_fail == "continue-with-warning":
        return "continued-with-warning"
    if config.on_fail == "retry" and attempt_index + 1 < config.max_retries:
        return "retry"
    return "halted"


def _error_evaluation(error: Exception) -> EvaluationResult:
    return EvaluationResult(
        overall_score=0.0,
        passed=False,
        feedback=f"Evaluation failed: {error}",
        suggestions=["Fix the error and retry evaluation"],
        metadata={"evaluated_at": datetime.now(tz=UTC).isoformat()},
    )


def format_feedback_for_retry(gate_result: GateResult) -> str:
    """Render gate feedback as markdown to append to a regeneration prompt."""

    evaluation = gate_result.evaluation
    lines = [
        "## Quality Gate Feedback",
        "",
        f"**Overall Score:** {gate_result.score * 100:.1f}%",
        f"**Status:** {'PASSED' if gate_result.passed else 'FAILED'}",
        "",
        "### Areas Needing Improvement",
        "",
    ]

    for name, result in evaluation.criteria_scores.items():
        if result.passed:
            continue
        lines.append(f"#### {name} ({result.score * 100:.1f}%)")
        if result.reasoning:
            lines.append(f"*{result.reasoning}*")
        if result.issues:
            lines.append("Issues:")
            lines.extend(f"- {issue}" for issue in result.issues)
        lines.append("")

    if evaluation.suggestions:
        lines.append("### Suggestions")
        lines.extend(f"- {s}" for s in evaluation.suggestions)

    return "\n".join(lines)
