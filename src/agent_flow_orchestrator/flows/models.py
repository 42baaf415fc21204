"""Flow definition schema and per-run result types.

Definitions are pydantic models so flow files (camelCase keys) and Python code
(snake_case attributes) both validate into the same objects. Run results are
small frozen dataclasses owned by the runner.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    model_validator,
)
from pydantic.alias_generators import to_camel

InputSource = Literal["request", "step", "aggregate", "feedback"]
OutputFormat = Literal["markdown", "json", "concat"]
OnFail = Literal["retry", "halt", "continue-with-warning"]
ConsensusMethod = Literal["majority", "weighted", "unanimous", "judge"]
StepStatus = Literal["succeeded", "failed", "skipped"]


class _FlowModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class RetryPolicy(_FlowModel):
    """Retry policy handed to the agent-invocation layer."""

    max_attempts: int = Field(default=1, ge=1)
    backoff_ms: int = Field(default=1000, ge=0)


class StepInput(_FlowModel):
    source: InputSource = "request"
    step_id: str | None = None
    from_: list[str] | None = Field(default=None, alias="from")
    feedback_step_id: str | None = None
    transform: str | Callable[[str], str] = "passthrough"
    transform_args: Any = None


class GateConfig(_FlowModel):
    """Quality gate configuration (for ``type: "gate"`` steps)."""

    agent: str = Field(min_length=1, description="Judge agent id")
    criteria: list[str]
    threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    on_fail: OnFail = "halt"
    max_retries: int = Field(default=3, ge=1)


class FeedbackLoopConfig(_FlowModel):
    """Iterative refinement of a step's output against judge feedback."""

    max_iterations: int = Field(default=3, ge=1, le=10)
    target_score: float = Field(default=0.9, ge=0.0, le=1.0)
    back_to: str | None = None
    evaluator: str | None = None
    criteria: list[str] = Field(default_factory=list)
    min_improvement: float = Field(default=0.05, ge=0.0, le=1.0)


class BranchCondition(_FlowModel):
    condition: str
    goto: str


class ConsensusConfig(_FlowModel):
    method: ConsensusMethod = "judge"
    judge: str | None = None
    weights: dict[str, float] | None = None


class _StepBase(_FlowModel):
    id: str = Field(min_length=1)
    name: str = ""
    agent: str = ""
    depends_on: list[str] = Field(default_factory=list)
    input: StepInput = Field(default_factory=StepInput)
    condition: str | None = None
    timeout: float | None = Field(default=None, gt=0)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    loop: FeedbackLoopConfig | None = None

    @model_validator(mode="after")
    def _default_name(self) -> _StepBase:
        if not self.name.strip():
            self.name = self.id
        return self


class AgentStep(_StepBase):
    type: Literal["agent"] = "agent"
    agent: str = Field(min_length=1)


class GateStep(_StepBase):
    type: Literal["gate"] = "gate"
    evaluate: GateConfig


class BranchStep(_StepBase):
    type: Literal["branch"] = "branch"
    branches: list[BranchCondition] = Field(min_length=1)
    default: str | None = None

    @property
    def targets(self) -> list[str]:
        out = [b.goto for b in self.branches]
        if self.default is not None:
            out.append(self.default)
        return out


class ConsensusStep(_StepBase):
    type: Literal["consensus"] = "consensus"
    consensus: ConsensusConfig = Field(default_factory=ConsensusConfig)


def _step_discriminator(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("type") or "agent"
    return getattr(value, "type", "agent")


StepDefinition = Annotated[
    Annotated[AgentStep, Tag("agent")]
    | Annotated[GateStep, Tag("gate")]
    | Annotated[BranchStep, Tag("branch")]
    | Annotated[ConsensusStep, Tag("consensus")],
    Discriminator(_step_discriminator),
]

_STEP_ADAPTER: TypeAdapter[StepDefinition] = TypeAdapter(StepDefinition)


def parse_step(data: dict[str, Any]) -> StepDefinition:
    """Validate a raw step mapping into the matching step variant."""

    return _STEP_ADAPTER.validate_python(data)


class FlowOutput(_FlowModel):
    from_: str | list[str] = Field(alias="from")
    format: OutputFormat = "markdown"

    @property
    def step_ids(self) -> list[str]:
        return [self.from_] if isinstance(self.from_, str) else list(self.from_)


class FlowSettings(_FlowModel):
    max_parallelism: int = Field(default=3, ge=1)
    fail_fast: bool = True
    timeout: float | None = Field(default=None, gt=0)


class FlowDefinition(_FlowModel):
    """A declarative DAG of steps plus output and execution settings."""

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    version: str = "1.0.0"
    steps: list[StepDefinition] = Field(min_length=1)
    output: FlowOutput
    settings: FlowSettings = Field(default_factory=FlowSettings)

    @model_validator(mode="after")
    def _check_references(self) -> FlowDefinition:
        ids: set[str] = set()
        for step in self.steps:
            if step.id in ids:
                raise ValueError(f"Duplicate step id: '{step.id}'")
            ids.add(step.id)

        for step in self.steps:
            for dep in step.depends_on:
                if dep not in ids:
                    raise ValueError(f"Step '{step.id}' depends on unknown step '{dep}'")
            if isinstance(step, BranchStep):
                for target in step.targets:
                    if target not in ids:
                        raise ValueError(
                            f"Branch step '{step.id}' targets unknown step '{target}'"
                        )

        for out_id in self.output.step_ids:
            if out_id not in ids:
                raise ValueError(f"output.from references unknown step '{out_id}'")
        return self

    @property
    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]

    @property
    def output_step_ids(self) -> list[str]:
        return self.output.step_ids

    def step(self, step_id: str) -> StepDefinition:
        for s in self.steps:
            if s.id == step_id:
                return s
        raise KeyError(step_id)


# --- Per-run types ----------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FlowRequest:
    user_prompt: str
    trace_id: str | None = None
    request_id: str | None = None

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"userPrompt": self.user_prompt}
        if self.trace_id is not None:
            out["traceId"] = self.trace_id
        if self.request_id is not None:
            out["requestId"] = self.request_id
        return out


@dataclass(frozen=True, slots=True)
class StepRequest:
    """What an agent receives for one step invocation."""

    user_prompt: str
    context: dict[str, Any] = field(default_factory=dict)
    trace_id: str | None = None
    request_id: str | None = None


@dataclass(frozen=True, slots=True)
class AgentResponse:
    content: str
    thought: str | None = None
    raw: Any = None


@dataclass(frozen=True, slots=True)
class StepResult:
    step_id: str
    success: bool
    duration: float
    started_at: datetime
    completed_at: datetime
    skipped: bool = False
    skip_reason: str | None = None
    result: AgentResponse | None = None
    error: str | None = None

    @property
    def content(self) -> str | None:
        return self.result.content if self.result is not None else None

    @property
    def status(self) -> StepStatus:
        if self.skipped:
            return "skipped"
        return "succeeded" if self.success else "failed"

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "stepId": self.step_id,
            "status": self.status,
            "success": self.success,
            "duration": self.duration,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat(),
        }
        if self.skipped:
            out["skipped"] = True
            out["skipReason"] = self.skip_reason
        if self.result is not None:
            out["content"] = self.result.content
            if self.result.thought is not None:
                out["thought"] = self.result.thought
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass(frozen=True, slots=True)
class FlowRunResult:
    flow_run_id: str
    flow_id: str
    success: bool
    step_results: dict[str, StepResult]
    output: str
    duration: float
    started_at: datetime
    completed_at: datetime

    def to_json(self) -> dict[str, object]:
        return {
            "flowRunId": self.flow_run_id,
            "flowId": self.flow_id,
            "success": self.success,
            "output": self.output,
            "duration": self.duration,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat(),
            "stepResults": {k: v.to_json() for k, v in self.step_results.items()},
        }
