"""LLM-as-a-judge: prompt a judge agent and parse its verdict."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from agent_flow_orchestrator.flows.criteria import (
    CriterionResult,
    EvaluationCriterion,
    EvaluationResult,
    build_evaluation_prompt,
)
from agent_flow_orchestrator.flows.executor import AgentExecutor
from agent_flow_orchestrator.flows.models import StepRequest

logger = logging.getLogger(__name__)

PASS_SCORE = 0.7

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")
_BARE_OBJECT = re.compile(r"\{[\s\S]*\}")
_TRAILING_COMMA = re.compile(r",\s*([\]}])")
_UNQUOTED_KEY = re.compile(r"([{,]\s*)(\w+)(\s*:)")


def normalize_score(value: Any) -> float:
    """Clamp a score into [0, 1]; values above 1 are read as percentages."""

    if isinstance(value, bool):
        return 0.0
    if isinstance(value, str):
        match = re.match(r"\s*-?\d+(\.\d+)?", value)
        if match is None:
            return 0.0
        value = float(match.group(0))
    if not isinstance(value, (int, float)):
        return 0.0
    if value > 1:
        return min(1.0, value / 100)
    return max(0.0, float(value))


def _repair_json(text: str) -> dict[str, Any] | None:
    repaired = _TRAILING_COMMA.sub(r"\1", text)
    repaired = _UNQUOTED_KEY.sub(r'\1"\2"\3', repaired)
    repaired = repaired.replace("'", '"')
    try:
        parsed = json.loads(repaired)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _criterion_result(name: str, score: Any, reasoning: str = "", issues: Any = None) -> CriterionResult:
    normalized = normalize_score(score)
    return CriterionResult(
        name=name,
        score=normalized,
        reasoning=reasoning,
        issues=[str(i) for i in issues] if isinstance(issues, list) else [],
        passed=normalized >= PASS_SCORE,
    )


def _summarize(
    criteria_scores: dict[str, CriterionResult],
    *,
    feedback: str,
    suggestions: list[str],
    judge_agent: str | None,
) -> EvaluationResult:
    scores = [r.score for r in criteria_scores.values()]
    overall = sum(scores) / len(scores) if scores else 0.0
    metadata: dict[str, Any] = {"evaluated_at": datetime.now(tz=UTC).isoformat()}
    if judge_agent:
        metadata["evaluator_agent"] = judge_agent
    return EvaluationResult(
        overall_score=overall,
        criteria_scores=criteria_scores,
        passed=overall >= PASS_SCORE,
        feedback=feedback,
        suggestions=suggestions,
        metadata=metadata,
    )


def normalize_evaluation(
    parsed: dict[str, Any],
    criteria: Sequence[EvaluationCriterion],
    judge_agent: str | None = None,
) -> EvaluationResult:
    """Accept the handful of shapes judges actually produce.

    Per criterion, in order: ``criteriaScores[name]`` object, ``scores[name]``
    number, or a top-level ``name`` key (object or number). Criteria the judge
    did not score get 0.
    """

    criteria_scores: dict[str, CriterionResult] = {}
    detailed = parsed.get("criteriaScores") or parsed.get("criteria_scores")
    flat = parsed.get("scores")

    for criterion in criteria:
        name = criterion.name
        if isinstance(detailed, dict) and isinstance(detailed.get(name), dict):
            obj = detailed[name]
            criteria_scores[name] = _criterion_result(
                name,
                obj.get("score"),
                str(obj.get("reasoning") or obj.get("reason") or ""),
                obj.get("issues"),
            )
        elif isinstance(flat, dict) and name in flat:
            criteria_scores[name] = _criterion_result(name, flat[name])
        elif name in parsed:
            value = parsed[name]
            if isinstance(value, dict):
                criteria_scores[name] = _criterion_result(
                    name,
                    value.get("score", value.get("value", 0)),
                    str(value.get("reasoning") or value.get("reason") or value.get("feedback") or ""),
                    value.get("issues"),
                )
            else:
                criteria_scores[name] = _criterion_result(name, value)
        else:
            criteria_scores[name] = CriterionResult(
                name=name,
                score=0.0,
                reasoning="Criterion not evaluated",
                issues=["Criterion score not found in response"],
                passed=False,
            )

    suggestions = parsed.get("suggestions")
    return _summarize(
        criteria_scores,
        feedback=str(parsed.get("feedback") or parsed.get("summary") or ""),
        suggestions=[str(s) for s in suggestions] if isinstance(suggestions, list) else [],
        judge_agent=judge_agent,
    )


def parse_heuristic(
    response: str,
    criteria: Sequence[EvaluationCriterion],
    judge_agent: str | None = None,
) -> EvaluationResult:
    """Scrape ``name: 0.8`` / ``name - 80%`` style scores from free text."""

    criteria_scores: dict[str, CriterionResult] = {}
    for criterion in criteria:
        name = criterion.name
        loose = name.replace("_", r"[\s_]*")
        patterns = (
            re.compile(re.escape(name) + r"[:\s-]+([\d.]+)", re.IGNORECASE),
            re.compile(loose + r"[:\s-]+([\d.]+)", re.IGNORECASE),
        )
        score: Any = 0
        found = False
        for pattern in patterns:
            match = pattern.search(response)
            if match:
                score = match.group(1)
                found = True
                break

        reasoning_match = re.search(rf"{re.escape(name)}[^.]*\.\s*([^.]+\.)", response, re.IGNORECASE)
        result = _criterion_result(
            name, score, reasoning_match.group(1).strip() if reasoning_match else ""
        )
        if not found:
            result = result.model_copy(update={"issues": ["Score not found in response"]})
        criteria_scores[name] = result

    return _summarize(
        criteria_scores,
        feedback="Evaluation extracted heuristically from response",
        suggestions=[],
        judge_agent=judge_agent,
    )


def parse_evaluation_response(
    response: str,
    criteria: Sequence[EvaluationCriterion],
    judge_agent: str | None = None,
) -> EvaluationResult:
    match = _FENCED_JSON.search(response)
    candidate = match.group(1) if match else None
    if candidate is None:
        bare = _BARE_OBJECT.search(response)
        candidate = bare.group(0) if bare else None

    if candidate is None:
        return parse_heuristic(response, criteria, judge_agent)

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        parsed = _repair_json(candidate)
        if parsed is None:
            logger.debug("Judge response is not JSON; falling back to heuristics")
            return parse_heuristic(response, criteria, judge_agent)

    if not isinstance(parsed, dict):
        return parse_heuristic(response, criteria, judge_agent)
    return normalize_evaluation(parsed, criteria, judge_agent)


class JudgeEvaluator:
    """`JudgeInvoker` backed by an ordinary agent executor."""

    def __init__(self, executor: AgentExecutor) -> None:
        self.executor = executor

    async def evaluate(
        self,
        agent_id: str,
        content: str,
        criteria: Sequence[EvaluationCriterion],
        context: str | None = None,
    ) -> EvaluationResult:
        prompt = build_evaluation_prompt(content, criteria, context)
        response = await self.executor.run(
            agent_id,
            StepRequest(
                user_prompt=prompt,
                context={
                    "evaluation_mode": True,
                    "expected_response_format": "json",
                    "criteria": [c.name for c in criteria],
                },
            ),
        )
        return parse_evaluation_response(response.content, criteria, agent_id)
