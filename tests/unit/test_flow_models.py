"""Unit tests for flow definition parsing."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from agent_flow_orchestrator.flows.models import (
    AgentStep,
    BranchStep,
    ConsensusStep,
    FlowDefinition,
    GateStep,
    parse_step,
)


def _flow(steps: list[dict], output: str = "a") -> dict:
    return {"id": "demo", "name": "Demo", "steps": steps, "output": {"from": output}}


def test_camel_case_keys_and_defaults() -> None:
    flow = FlowDefinition.model_validate(
        _flow(
            [
                {"id": "a", "agent": "writer", "retry": {"maxAttempts": 3, "backoffMs": 50}},
                {
                    "id": "b",
                    "agent": "editor",
                    "dependsOn": ["a"],
                    "input": {"source": "step", "stepId": "a", "transformArgs": "x"},
                },
            ],
            output="b",
        )
    )

    a, b = flow.steps
    assert isinstance(a, AgentStep)
    assert a.name == "a"
    assert a.retry.max_attempts == 3
    assert b.depends_on == ["a"]
    assert b.input.step_id == "a"
    assert b.input.transform == "passthrough"
    assert flow.version == "1.0.0"
    assert flow.settings.max_parallelism == 3
    assert flow.settings.fail_fast is True
    assert flow.output.format == "markdown"


def test_step_type_selects_the_variant() -> None:
    assert isinstance(parse_step({"id": "g", "type": "gate", "evaluate": {"agent": "j", "criteria": []}}), GateStep)
    assert isinstance(
        parse_step({"id": "r", "type": "branch", "branches": [{"condition": "true", "goto": "x"}]}),
        BranchStep,
    )
    consensus = parse_step({"id": "c", "type": "consensus"})
    assert isinstance(consensus, ConsensusStep)
    assert consensus.consensus.method == "judge"


def test_branch_targets_include_the_default() -> None:
    step = parse_step(
        {
            "id": "r",
            "type": "branch",
            "branches": [{"condition": "true", "goto": "x"}],
            "default": "y",
        }
    )

    assert step.targets == ["x", "y"]


@pytest.mark.parametrize(
    ("steps", "output", "message"),
    [
        ([{"id": "a", "agent": "w"}, {"id": "a", "agent": "w"}], "a", "Duplicate step id: 'a'"),
        ([{"id": "a", "agent": "w", "dependsOn": ["z"]}], "a", "depends on unknown step 'z'"),
        ([{"id": "a", "agent": "w"}], "z", "output.from references unknown step 'z'"),
        (
            [{"id": "a", "type": "branch", "branches": [{"condition": "true", "goto": "z"}]}],
            "a",
            "targets unknown step 'z'",
        ),
    ],
)
def test_broken_references_are_rejected(steps: list[dict], output: str, message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        FlowDefinition.model_validate(_flow(steps, output))


def test_unknown_fields_and_empty_flows_are_rejected() -> None:
    with pytest.raises(ValidationError):
        FlowDefinition.model_validate(_flow([{"id": "a", "agent": "w", "colour": "red"}]))
    with pytest.raises(ValidationError):
        FlowDefinition.model_validate(_flow([]))
    with pytest.raises(ValidationError):
        FlowDefinition.model_validate(_flow([{"id": "a", "agent": ""}]))


def test_cycles_pass_schema_validation() -> None:
    flow = FlowDefinition.model_validate(
        _flow(
            [
                {"id": "a", "agent": "w", "dependsOn": ["b"]},
                {"id": "b", "agent": "w", "dependsOn": ["a"]},
            ]
        )
    )

    assert flow.step_ids == ["a", "b"]
    assert flow.step("b").depends_on == ["a"]
    with pytest.raises(KeyError):
        flow.step("c")
