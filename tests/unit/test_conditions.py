"""Unit tests for the step condition language."""

from __future__ import annotations

import pytest

from agent_flow_orchestrator.flows.conditions import (
    UNDEFINED,
    ConditionContext,
    ConditionEvaluator,
    StepResultContext,
    is_truthy,
    tokenize,
)


@pytest.fixture
def context() -> ConditionContext:
    return ConditionContext(
        results={
            "review": StepResultContext(
                success=True,
                duration=12.0,
                content='{"score": 85, "tags": ["api", "docs"]}',
                data={"score": 85, "tags": ["api", "docs"]},
            ),
            "lint": StepResultContext(success=True, duration=1.0, skipped=True),
            "tests": StepResultContext(success=False, duration=3.0, error="2 failed"),
        },
        request={"userPrompt": "Review the API docs", "traceId": "t-1"},
        flow={"id": "review-flow", "name": "Review", "version": "1.0.0"},
    )


@pytest.mark.parametrize(
    ("condition", "expected"),
    [
        ("results.review.success", True),
        ("results['review'].data.score >= 80", True),
        ("results.review.data?.score > 90", False),
        ("!results.lint.skipped", False),
        ("results.tests.success || results.review.success", True),
        ("results.tests.success and results.review.success", False),
        ("not results.tests.success", True),
        ("results.review.data.tags.includes('docs')", True),
        ("results.review.data.tags.length === 2", True),
        ("request.userPrompt.includes('API')", True),
        ("flow.id === 'review-flow'", True),
        ("['review', 'lint'].every(id => results[id].success)", True),
        ("['review', 'tests'].every((id) => results[id].success)", False),
        ("['review', 'tests'].some(id => !results[id].success)", True),
        ("results.missing?.success", False),
        ("results.missing === undefined", True),
        ("results.tests.content == null", True),
        ("results.tests.content === null", False),
        ("results.review.data.score > 50 ? true : false", True),
        ("results.tests.error === '2 failed'", True),
        ("1 === true", False),
        ("'b' > 'a'", True),
        ("'10' > 9", False),
        ("-results.review.data.score < 0", True),
        ("!0 === 1", False),
        ("!results.review.data.score === false", True),
        ("not results.review.data.score === 85", False),
        ("false == 0", True),
        ("true == 1", True),
        ("true == '1'", True),
        ("'' == 0", True),
        ("false === 0", False),
    ],
)
def test_evaluate_expressions(context: ConditionContext, condition: str, expected: bool) -> None:
    result = ConditionEvaluator().evaluate(condition, context)

    assert result.error is None
    assert result.should_execute is expected
    assert result.condition == condition


def test_empty_condition_always_executes(context: ConditionContext) -> None:
    for condition in (None, "", "   "):
        assert ConditionEvaluator().evaluate(condition, context).should_execute is True


@pytest.mark.parametrize(
    ("condition", "message"),
    [
        ("results.missing.success", "Cannot read property 'success' of undefined"),
        ("unknownName === 1", "unknownName is not defined"),
        ("results.review.data.score.includes(1)", "includes() requires an array or string"),
    ],
)
def test_runtime_errors_are_reported_not_raised(
    context: ConditionContext, condition: str, message: str
) -> None:
    result = ConditionEvaluator().evaluate(condition, context)

    assert result.should_execute is False
    assert result.error is not None
    assert message in result.error


@pytest.mark.parametrize(
    "condition",
    [
        "results.review.success ===",
        "results.review.run(x => x)",
        "(results.review.success",
        "results.review.success ; import os",
    ],
)
def test_syntax_errors_are_reported_not_raised(context: ConditionContext, condition: str) -> None:
    result = ConditionEvaluator().evaluate(condition, context)

    assert result.should_execute is False
    assert result.error


def test_python_internals_are_unreachable(context: ConditionContext) -> None:
    result = ConditionEvaluator().evaluate("results.__class__", context)

    # Attribute access only reads mapping keys; nothing else resolves.
    assert result.error is None
    assert result.should_execute is False


def test_validate_condition_accepts_runtime_only_failures() -> None:
    evaluator = ConditionEvaluator()

    assert evaluator.validate_condition("results.draft.success").valid is True
    assert evaluator.validate_condition(None).valid is True

    invalid = evaluator.validate_condition("results.draft.success &&")
    assert invalid.valid is False
    assert invalid.error


def test_tokenize_word_operators_and_literals() -> None:
    tokens = tokenize("a and not b or None")

    assert [(t.type, t.value) for t in tokens[:-1]] == [
        ("IDENT", "a"),
        ("OP", "&&"),
        ("OP", "not"),
        ("IDENT", "b"),
        ("OP", "||"),
        ("LITERAL", None),
    ]
    assert tokens[-1].type == "EOF"


def test_is_truthy_follows_javascript_rules() -> None:
    assert is_truthy(UNDEFINED) is False
    assert is_truthy(None) is False
    assert is_truthy(0) is False
    assert is_truthy("") is False
    assert is_truthy(float("nan")) is False
    assert is_truthy([]) is True
    assert is_truthy({}) is True
    assert is_truthy("0") is True
