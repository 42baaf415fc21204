"""Flow lifecycle events."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

EVENTS_LOGGER_NAME = "agent_flow_orchestrator.events"

# Event names emitted by the runner.
FLOW_STARTED = "flow.started"
FLOW_DEPENDENCIES_RESOLVING = "flow.dependencies.resolving"
FLOW_DEPENDENCIES_RESOLVED = "flow.dependencies.resolved"
FLOW_WAVE_STARTED = "flow.wave.started"
FLOW_WAVE_COMPLETED = "flow.wave.completed"
FLOW_STEP_QUEUED = "flow.step.queued"
FLOW_STEP_STARTED = "flow.step.started"
FLOW_STEP_SKIPPED = "flow.step.skipped"
FLOW_STEP_CONDITION_EVALUATED = "flow.step.condition.evaluated"
FLOW_STEP_TRANSFORM_APPLIED = "flow.step.transform.applied"
FLOW_STEP_GATE_EVALUATED = "flow.step.gate.evaluated"
FLOW_STEP_BRANCH_SELECTED = "flow.step.branch.selected"
FLOW_STEP_LOOP_COMPLETED = "flow.step.loop.completed"
FLOW_STEP_COMPLETED = "flow.step.completed"
FLOW_STEP_FAILED = "flow.step.failed"
FLOW_OUTPUT_AGGREGATED = "flow.output.aggregated"
FLOW_COMPLETED = "flow.completed"
FLOW_FAILED = "flow.failed"


class FlowEventLogger(Protocol):
    def log(self, event: str, payload: Mapping[str, Any]) -> None: ...


class LoggingEventLogger:
    """Write flow events as structured log records.

    The payload travels in ``extra``; the JSON formatter lifts ``event`` to the
    top level of the log line and nests the rest under ``"extra"``.
    """

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO) -> None:
        self.logger = logger or logging.getLogger(EVENTS_LOGGER_NAME)
        self.level = level

    def log(self, event: str, payload: Mapping[str, Any]) -> None:
        level = logging.WARNING if event in (FLOW_STEP_FAILED, FLOW_FAILED) else self.level
        self.logger.log(level, event, extra={"event": event, **payload})
