"""Evaluation criteria used by quality gates and judge agents."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CriterionCategory = Literal[
    "quality",
    "correctness",
    "completeness",
    "security",
    "style",
    "performance",
]


class EvaluationCriterion(BaseModel):
    name: str
    description: str
    weight: float = Field(default=1.0, ge=0.0, le=10.0)
    required: bool = False
    category: CriterionCategory | None = None


class CriterionResult(BaseModel):
    name: str
    score: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    issues: list[str] = Field(default_factory=list)
    passed: bool


class EvaluationResult(BaseModel):
    overall_score: float = Field(ge=0.0, le=1.0)
    criteria_scores: dict[str, CriterionResult] = Field(default_factory=dict)
    passed: bool
    feedback: str = ""
    suggestions: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


def _criterion(
    name: str,
    description: str,
    weight: float,
    required: bool,
    category: CriterionCategory,
) -> EvaluationCriterion:
    return EvaluationCriterion(
        name=name,
        description=description,
        weight=weight,
        required=required,
        category=category,
    )


CODE_CORRECTNESS = _criterion(
    "code_correctness",
    "Code is syntactically correct and would compile/run without errors. "
    "Check for syntax errors, type mismatches, and logical correctness.",
    2.0,
    True,
    "correctness",
)
CODE_COMPLETENESS = _criterion(
    "code_completeness",
    "All requirements from the prompt are addressed. "
    "Implementation covers all requested functionality without missing features.",
    1.5,
    True,
    "completeness",
)
HAS_TESTS = _criterion(
    "has_tests",
    "Implementation includes appropriate test coverage. "
    "Tests cover main functionality, edge cases, and error scenarios.",
    1.0,
    False,
    "quality",
)
FOLLOWS_CONVENTIONS = _criterion(
    "follows_conventions",
    "Code follows project style and naming conventions. "
    "Consistent formatting, meaningful variable names, and idiomatic patterns.",
    0.8,
    False,
    "style",
)
NO_SECURITY_ISSUES = _criterion(
    "no_security_issues",
    "No obvious security vulnerabilities. "
    "Checks for injection risks, exposed secrets, insecure patterns, and unsafe operations.",
    2.0,
    True,
    "security",
)
ERROR_HANDLING = _criterion(
    "error_handling",
    "Proper error handling is implemented. "
    "Errors are caught, logged appropriately, and meaningful messages are provided.",
    1.0,
    False,
    "quality",
)
CLARITY = _criterion(
    "clarity",
    "Output is clear, well-organized, and understandable. "
    "Logical structure, good formatting, and easy to follow.",
    1.0,
    False,
    "quality",
)
ACCURACY = _criterion(
    "accuracy",
    "Information provided is factually correct and accurate. "
    "No hallucinations or incorrect statements.",
    2.0,
    True,
    "correctness",
)
RELEVANCE = _criterion(
    "relevance",
    "Response is relevant to the original request. "
    "Directly addresses the question without unnecessary tangents.",
    1.2,
    False,
    "completeness",
)
CONCISENESS = _criterion(
    "conciseness",
    "Response is appropriately concise without unnecessary verbosity. "
    "Information is presented efficiently.",
    0.5,
    False,
    "style",
)
DOCUMENTATION_QUALITY = _criterion(
    "documentation_quality",
    "Documentation is clear, comprehensive, and follows best practices. "
    "Includes examples where appropriate.",
    1.0,
    False,
    "quality",
)
API_CONSISTENCY = _criterion(
    "api_consistency",
    "API design is consistent with existing patterns. "
    "Follows established conventions and naming schemes.",
    0.8,
    False,
    "style",
)
PERFORMANCE_CONSIDERATIONS = _criterion(
    "performance_considerations",
    "Implementation considers performance implications. "
    "Avoids obvious inefficiencies and uses appropriate algorithms.",
    0.7,
    False,
    "performance",
)
SCALABILITY = _criterion(
    "scalability",
    "Solution can scale appropriately. Handles edge cases like empty inputs and large datasets.",
    0.5,
    False,
    "performance",
)

CRITERIA: dict[str, EvaluationCriterion] = {
    c.name: c
    for c in (
        CODE_CORRECTNESS,
        CODE_COMPLETENESS,
        HAS_TESTS,
        FOLLOWS_CONVENTIONS,
        NO_SECURITY_ISSUES,
        ERROR_HANDLING,
        CLARITY,
        ACCURACY,
        RELEVANCE,
        CONCISENESS,
        DOCUMENTATION_QUALITY,
        API_CONSISTENCY,
        PERFORMANCE_CONSIDERATIONS,
        SCALABILITY,
    )
}

CRITERION_SETS: dict[str, list[EvaluationCriterion]] = {
    "CODE_REVIEW": [
        CODE_CORRECTNESS,
        CODE_COMPLETENESS,
        FOLLOWS_CONVENTIONS,
        ERROR_HANDLING,
        NO_SECURITY_ISSUES,
    ],
    "CODE_REVIEW_FULL": [
        CODE_CORRECTNESS,
        CODE_COMPLETENESS,
        HAS_TESTS,
        FOLLOWS_CONVENTIONS,
        ERROR_HANDLING,
        NO_SECURITY_ISSUES,
        DOCUMENTATION_QUALITY,
        PERFORMANCE_CONSIDERATIONS,
    ],
    "SECURITY_REVIEW": [NO_SECURITY_ISSUES, ERROR_HANDLING, CODE_CORRECTNESS],
    "CONTENT_QUALITY": [CLARITY, ACCURACY, RELEVANCE, CONCISENESS, DOCUMENTATION_QUALITY],
    "MINIMAL_GATE": [CODE_CORRECTNESS, ACCURACY, RELEVANCE],
    "API_REVIEW": [CODE_CORRECTNESS, API_CONSISTENCY, DOCUMENTATION_QUALITY, ERROR_HANDLING],
}


def get_criteria_by_names(names: Iterable[str]) -> list[EvaluationCriterion]:
    """Look up built-in criteria; matching ignores case and dashes.

    Unknown names are dropped with a warning.
    """

    out: list[EvaluationCriterion] = []
    for name in names:
        criterion = CRITERIA.get(name.lower().replace("-", "_"))
        if criterion is None:
            logger.warning("Unknown criterion", extra={"criterion": name})
            continue
        out.append(criterion)
    return out


SCORE_TOLERANCE = 1e-9


def meets_threshold(score: float, threshold: float) -> bool:
    """`score >= threshold`, counting float rounding noise as equal."""

    return score >= threshold or math.isclose(score, threshold, abs_tol=SCORE_TOLERANCE)


def calculate_weighted_score(
    criteria_scores: Mapping[str, CriterionResult],
    criteria: Sequence[EvaluationCriterion],
) -> float:
    total_weight = 0.0
    weighted_sum = 0.0
    for criterion in criteria:
        result = criteria_scores.get(criterion.name)
        if result is None:
            continue
        weighted_sum += result.score * criterion.weight
        total_weight += criterion.weight
    return weighted_sum / total_weight if total_weight > 0 else 0.0


def check_required_criteria(
    criteria_scores: Mapping[str, CriterionResult],
    criteria: Sequence[EvaluationCriterion],
    threshold: float = 0.7,
) -> bool:
    """True when every required criterion has a score of at least `threshold`."""

    for criterion in criteria:
        if not criterion.required:
            continue
        result = criteria_scores.get(criterion.name)
        if result is None or not meets_threshold(result.score, threshold):
            return False
    return True


def create_criterion(name: str, description: str, **options: Any) -> EvaluationCriterion:
    return EvaluationCriterion.model_validate({**options, "name": name, "description": description})


_OUTPUT_FORMAT = """```json
{
  "overallScore": 0.85,
  "criteriaScores": {
    "criterion_name": {
      "name": "criterion_name",
      "score": 0.9,
      "reasoning": "Brief explanation",
      "issues": ["issue 1", "issue 2"],
      "passed": true
    }
  },
  "pass": true,
  "feedback": "Overall assessment summary",
  "suggestions": ["suggestion 1", "suggestion 2"]
}
```"""


def build_evaluation_prompt(
    content: str,
    criteria: Sequence[EvaluationCriterion],
    context: str | None = None,
) -> str:
    """Render the prompt sent to a judge agent."""

    criteria_list = "\n\n".join(
        f"{i}. **{c.name}** (weight: {c.weight:g}{', REQUIRED' if c.required else ''})\n"
        f"   {c.description}"
        for i, c in enumerate(criteria, start=1)
    )
    context_block = f"### Context\n{context}\n\n" if context else ""

    return (
        "## Evaluation Request\n\n"
        f"{context_block}"
        "### Content to Evaluate\n\n"
        f"```\n{content}\n```\n\n"
        "### Evaluation Criteria\n\n"
        f"{criteria_list}\n\n"
        "### Instructions\n\n"
        "Evaluate the content against each criterion above. For each criterion:\n"
        "1. Assign a score from 0.0 to 1.0\n"
        "2. Provide brief reasoning (1-2 sentences)\n"
        "3. List specific issues found (if any)\n\n"
        "Then provide an overall assessment.\n\n"
        "### Required Output Format\n\n"
        "Respond with valid JSON only:\n\n"
        f"{_OUTPUT_FORMAT}"
    )
