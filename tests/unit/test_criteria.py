"""Unit tests for evaluation criteria."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from agent_flow_orchestrator.flows.criteria import (
    ACCURACY,
    CLARITY,
    CODE_CORRECTNESS,
    CRITERIA,
    CRITERION_SETS,
    CriterionResult,
    build_evaluation_prompt,
    calculate_weighted_score,
    check_required_criteria,
    create_criterion,
    get_criteria_by_names,
    meets_threshold,
)


def _score(name: str, score: float) -> CriterionResult:
    return CriterionResult(name=name, score=score, passed=score >= 0.7)


def test_builtin_catalogue() -> None:
    assert len(CRITERIA) == 14
    assert CODE_CORRECTNESS.required is True
    assert CODE_CORRECTNESS.weight == 2.0
    assert CLARITY.required is False
    assert set(CRITERION_SETS) == {
        "CODE_REVIEW",
        "CODE_REVIEW_FULL",
        "SECURITY_REVIEW",
        "CONTENT_QUALITY",
        "MINIMAL_GATE",
        "API_REVIEW",
    }


def test_lookup_is_case_and_dash_insensitive_and_drops_unknown() -> None:
    found = get_criteria_by_names(["Clarity", "code-correctness", "vibes"])

    assert [c.name for c in found] == ["clarity", "code_correctness"]


def test_weighted_score_ignores_unscored_criteria() -> None:
    scores = {"clarity": _score("clarity", 0.5), "accuracy": _score("accuracy", 1.0)}

    # (0.5 * 1.0 + 1.0 * 2.0) / 3.0
    assert calculate_weighted_score(scores, [CLARITY, ACCURACY]) == pytest.approx(2.5 / 3)
    assert calculate_weighted_score({}, [CLARITY]) == 0.0


def test_required_criteria_must_clear_the_floor() -> None:
    criteria = [CLARITY, ACCURACY]

    assert check_required_criteria({"accuracy": _score("accuracy", 0.8)}, criteria) is True
    assert check_required_criteria({"accuracy": _score("accuracy", 0.6)}, criteria) is False
    assert check_required_criteria({"clarity": _score("clarity", 1.0)}, criteria) is False
    assert check_required_criteria({"accuracy": _score("accuracy", 0.6)}, criteria, 0.5) is True


def test_threshold_comparison_absorbs_float_rounding() -> None:
    weighted = (0.7 * 1.0 + 0.7 * 2.0) / 3.0

    assert meets_threshold(weighted, 0.7) is True
    assert meets_threshold(0.7, 0.7) is True
    assert meets_threshold(0.69, 0.7) is False


def test_create_criterion_validates_options() -> None:
    custom = create_criterion("tone", "Friendly tone", weight=0.5, required=True)

    assert custom.name == "tone"
    assert custom.weight == 0.5
    assert custom.required is True
    with pytest.raises(ValidationError):
        create_criterion("tone", "Friendly tone", weight=50)


def test_evaluation_prompt_lists_criteria_and_format() -> None:
    prompt = build_evaluation_prompt("print('hi')", [CODE_CORRECTNESS, CLARITY], context="A script")

    assert prompt.startswith("## Evaluation Request")
    assert "### Context\nA script" in prompt
    assert "```\nprint('hi')\n```" in prompt
    assert "1. **code_correctness** (weight: 2, REQUIRED)" in prompt
    assert "2. **clarity** (weight: 1)" in prompt
    assert '"criteriaScores"' in prompt
