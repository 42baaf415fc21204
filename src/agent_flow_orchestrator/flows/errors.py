"""Error kinds raised by the flow engine.

Structural problems (`FlowValidationError`) are raised before any step runs.
`FlowExecutionError` aborts a run that is already in progress. Step-level
errors are raised inside a step and captured into its `StepResult`.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agent_flow_orchestrator.flows.models import StepResult


class FlowError(Exception):
    """Base class for all flow engine errors."""


class FlowValidationError(FlowError):
    """The flow's dependency graph is malformed."""


class UnknownDependencyError(FlowValidationError):
    def __init__(self, step_id: str, dependency: str) -> None:
        super().__init__(
            f"Step '{step_id}' depends on '{dependency}' which is not defined in the flow"
        )
        self.step_id = step_id
        self.dependency = dependency


class CycleDetectedError(FlowValidationError):
    """A dependency cycle was found.

    `cycle` lists the nodes in cycle order with the first node repeated at the
    end, e.g. ``["a", "b", "a"]``. It is empty when the cycle was only proven by
    Kahn's algorithm running short.
    """

    def __init__(self, cycle: Sequence[str] = ()) -> None:
        self.cycle = list(cycle)
        if self.cycle:
            message = f"Cycle detected in dependency graph: {' -> '.join(self.cycle)}"
        else:
            message = "Cycle detected in dependency graph"
        super().__init__(message)


class FlowExecutionError(FlowError):
    """A run was aborted.

    Carries whatever step results were gathered before the abort so callers can
    still report on them.
    """

    def __init__(
        self,
        message: str,
        *,
        flow_run_id: str | None = None,
        step_id: str | None = None,
        step_error: str | None = None,
        step_results: Mapping[str, StepResult] | None = None,
    ) -> None:
        super().__init__(message)
        self.flow_run_id = flow_run_id
        self.step_id = step_id
        self.step_error = step_error
        self.step_results: dict[str, StepResult] = dict(step_results or {})


class StepInputError(FlowError):
    """A step's input could not be resolved or transformed."""


class MissingUpstreamResultError(StepInputError):
    def __init__(self, step_id: str, upstream_id: str) -> None:
        super().__init__(
            f"Step '{step_id}' depends on '{upstream_id}' which has no result "
            "(missing upstream result)"
        )
        self.step_id = step_id
        self.upstream_id = upstream_id


class TransformError(StepInputError):
    """An input transform is unknown, misconfigured, or failed."""


class ConditionError(FlowError):
    """Base class for condition expression errors."""


class ConditionSyntaxError(ConditionError):
    def __init__(self, message: str, position: int | None = None) -> None:
        if position is not None:
            message = f"{message} (at position {position})"
        super().__init__(message)
        self.position = position


class ConditionRuntimeError(ConditionError):
    """The expression parsed but could not be evaluated against the context."""


class FlowLoadError(FlowError):
    """A flow definition file could not be read or did not validate."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to load flow from {path}: {reason}")
        self.path = path
        self.reason = reason
