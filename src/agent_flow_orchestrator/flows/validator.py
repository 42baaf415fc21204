"""Static checks for a flow definition, run before execution.

Schema-level problems are already rejected by `FlowDefinition` itself. This
module adds the checks that need the engine: graph ordering, condition syntax,
transform names and input wiring.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from agent_flow_orchestrator.flows.conditions import ConditionEvaluator
from agent_flow_orchestrator.flows.criteria import CRITERIA
from agent_flow_orchestrator.flows.dependency_resolver import DependencyResolver
from agent_flow_orchestrator.flows.errors import FlowValidationError, TransformError
from agent_flow_orchestrator.flows.models import BranchStep, FlowDefinition, GateStep
from agent_flow_orchestrator.flows.transforms import canonical_transform_name


@dataclass(slots=True)
class FlowValidationReport:
    flow_id: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    waves: list[list[str]] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_json(self) -> dict[str, object]:
        return {
            "flowId": self.flow_id,
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "waves": [list(w) for w in self.waves],
        }


def validate_flow(
    flow: FlowDefinition, conditions: ConditionEvaluator | None = None
) -> FlowValidationReport:
    conditions = conditions or ConditionEvaluator()
    report = FlowValidationReport(flow_id=flow.id)

    try:
        report.waves = DependencyResolver(flow.steps).group_into_waves()
    except FlowValidationError as e:
        report.errors.append(str(e))

    ids = set(flow.step_ids)
    for step in flow.steps:
        checked = [("condition", step.condition)] if step.condition else []
        if isinstance(step, BranchStep):
            checked += [(f"branch to '{b.goto}'", b.condition) for b in step.branches]
        for label, expr in checked:
            verdict = conditions.validate_condition(expr)
            if not verdict.valid:
                report.errors.append(f"Step '{step.id}' {label}: {verdict.error}")

        transform = step.input.transform
        if isinstance(transform, str):
            try:
                canonical_transform_name(transform)
            except TransformError as e:
                report.errors.append(f"Step '{step.id}': {e}")

        source = step.input
        referenced: list[str] = []
        if source.source in ("step", "feedback"):
            # Only feedback inputs fall back from feedbackStepId to stepId.
            upstream = source.step_id
            if source.source == "feedback":
                upstream = source.feedback_step_id or source.step_id
            if not upstream:
                report.errors.append(
                    f"Step '{step.id}' reads from source '{source.source}' without a step id"
                )
            else:
                referenced.append(upstream)
        elif source.source == "aggregate":
            if not source.from_:
                report.errors.append(f"Step '{step.id}' aggregates but lists no 'from' steps")
            referenced.extend(source.from_ or [])

        for upstream in referenced:
            if upstream not in ids:
                report.errors.append(f"Step '{step.id}' reads input from unknown step '{upstream}'")
            elif upstream not in step.depends_on:
                report.warnings.append(
                    f"Step '{step.id}' reads input from '{upstream}' but does not depend on it"
                )

        if isinstance(step, GateStep):
            for name in step.evaluate.criteria:
                if name.lower().replace("-", "_") not in CRITERIA:
                    report.warnings.append(f"Gate '{step.id}' uses unknown criterion '{name}'")

        if isinstance(step, BranchStep):
            for target in step.targets:
                if target in ids and step.id not in flow.step(target).depends_on:
                    report.warnings.append(
                        f"Branch target '{target}' does not depend on branch step '{step.id}'"
                    )

    return report
