"""Unit tests for judge response parsing."""

from __future__ import annotations

import pytest

from agent_flow_orchestrator.flows.criteria import ACCURACY, CLARITY, HAS_TESTS
from agent_flow_orchestrator.flows.judge_evaluator import (
    JudgeEvaluator,
    normalize_evaluation,
    normalize_score,
    parse_evaluation_response,
)

_CRITERIA = [CLARITY, ACCURACY]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (0.8, 0.8),
        (85, 0.85),
        (150, 1.0),
        (-0.2, 0.0),
        ("0.75", 0.75),
        ("90%", 0.9),
        ("n/a", 0.0),
        (True, 0.0),
        (None, 0.0),
    ],
)
def test_normalize_score(raw: object, expected: float) -> None:
    assert normalize_score(raw) == pytest.approx(expected)


def test_fenced_json_with_detailed_scores() -> None:
    response = """Here is my evaluation:
```json
{
  "overallScore": 0.99,
  "criteriaScores": {
    "clarity": {"score": 0.8, "reasoning": "Readable", "issues": []},
    "accuracy": {"score": 0.6, "reasoning": "One wrong date", "issues": ["1999 is wrong"]}
  },
  "feedback": "Mostly good",
  "suggestions": ["Fix the date"]
}
```"""

    result = parse_evaluation_response(response, _CRITERIA, "judge")

    assert result.criteria_scores["clarity"].score == 0.8
    assert result.criteria_scores["clarity"].passed is True
    assert result.criteria_scores["accuracy"].issues == ["1999 is wrong"]
    assert result.criteria_scores["accuracy"].passed is False
    # The overall score is recomputed from the criteria, not trusted.
    assert result.overall_score == pytest.approx(0.7)
    assert result.passed is True
    assert result.feedback == "Mostly good"
    assert result.suggestions == ["Fix the date"]
    assert result.metadata["evaluator_agent"] == "judge"


def test_flat_scores_and_top_level_keys() -> None:
    flat = normalize_evaluation({"scores": {"clarity": 90, "accuracy": 0.5}}, _CRITERIA)
    top = normalize_evaluation({"clarity": {"value": 0.4}, "accuracy": 1}, _CRITERIA)

    assert flat.criteria_scores["clarity"].score == pytest.approx(0.9)
    assert flat.criteria_scores["accuracy"].score == 0.5
    assert top.criteria_scores["clarity"].score == 0.4
    assert top.criteria_scores["accuracy"].score == 1.0


def test_missing_criterion_scores_zero() -> None:
    result = normalize_evaluation({"scores": {"clarity": 1.0}}, _CRITERIA)

    missing = result.criteria_scores["accuracy"]
    assert missing.score == 0.0
    assert missing.reasoning == "Criterion not evaluated"
    assert result.overall_score == 0.5


def test_loose_json_is_repaired() -> None:
    response = "{scores: {'clarity': 0.9, 'accuracy': 0.8,},}"

    result = parse_evaluation_response(response, _CRITERIA)

    assert result.criteria_scores["clarity"].score == 0.9
    assert result.criteria_scores["accuracy"].score == 0.8


def test_free_text_falls_back_to_heuristics() -> None:
    response = "Clarity: 0.9. Reads well overall.\nAccuracy - 40. Several errors."

    result = parse_evaluation_response(response, _CRITERIA)

    assert result.criteria_scores["clarity"].score == 0.9
    assert result.criteria_scores["accuracy"].score == 0.4
    assert result.feedback == "Evaluation extracted heuristically from response"


def test_heuristic_matches_underscored_names_written_with_spaces() -> None:
    response = "Has tests: 0.8. Covers the parser.\nClarity 0.6"

    result = parse_evaluation_response(response, [HAS_TESTS, CLARITY])

    assert result.criteria_scores["has_tests"].score == 0.8
    assert result.criteria_scores["clarity"].score == 0.6


async def test_judge_evaluator_sends_prompt_through_executor(executor) -> None:
    executor.script("critic", '{"scores": {"clarity": 0.9, "accuracy": 0.9}}')

    result = await JudgeEvaluator(executor).evaluate("critic", "draft text", _CRITERIA, "the ask")

    [(agent, request)] = executor.calls
    assert agent == "critic"
    assert "draft text" in request.user_prompt
    assert "### Context\nthe ask" in request.user_prompt
    assert request.context["evaluation_mode"] is True
    assert request.context["criteria"] == ["clarity", "accuracy"]
    assert result.overall_score == pytest.approx(0.9)
