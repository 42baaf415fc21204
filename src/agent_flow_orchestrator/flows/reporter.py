"""Markdown reports for completed flow runs."""

from __future__ import annotations

import logging
from pathlib import Path

from agent_flow_orchestrator.flows.models import FlowDefinition, FlowRunResult, StepResult

logger = logging.getLogger(__name__)

_STATUS_ICON = {"succeeded": "OK", "failed": "FAILED", "skipped": "SKIPPED"}


def _frontmatter(flow: FlowDefinition, result: FlowRunResult, request_id: str | None) -> str:
    results = list(result.step_results.values())
    fields: dict[str, object] = {
        "type": "flow_report",
        "flow": flow.id,
        "flow_run_id": result.flow_run_id,
        "duration_ms": round(result.duration, 1),
        "steps_completed": sum(1 for r in results if r.success),
        "steps_failed": sum(1 for r in results if not r.success),
        "completed_at": result.completed_at.isoformat(),
        "success": result.success,
    }
    if request_id:
        fields["request_id"] = request_id

    lines = []
    for key, value in fields.items():
        if isinstance(value, bool):
            lines.append(f"{key}: {str(value).lower()}")
        elif isinstance(value, str):
            lines.append(f'{key}: "{value}"')
        else:
            lines.append(f"{key}: {value}")
    return "---\n" + "\n".join(lines) + "\n---\n"


def _summary(result: FlowRunResult) -> str:
    lines = [
        "## Execution Summary",
        "",
        "| Step | Status | Duration | Started | Completed |",
        "|------|--------|----------|---------|-----------|",
    ]
    for r in result.step_results.values():
        lines.append(
            f"| {r.step_id} | {_STATUS_ICON[r.status]} | {r.duration:.0f}ms "
            f"| {r.started_at:%H:%M:%S} | {r.completed_at:%H:%M:%S} |"
        )
    lines += [
        "",
        f"**Total Duration:** {result.duration:.0f}ms",
        f"**Overall Status:** {'Success' if result.success else 'Failed'}",
    ]
    return "\n".join(lines) + "\n"


def _step_output(r: StepResult) -> str:
    lines = [f"### {r.step_id}", ""]
    lines.append(f"**Status:** {_STATUS_ICON[r.status]}")
    lines.append(f"**Duration:** {r.duration:.0f}ms")
    if r.skipped:
        lines.append(f"**Skip Reason:** {r.skip_reason}")
    elif r.success and r.result is not None:
        if r.result.content:
            lines += ["", "**Output:**", "", r.result.content]
        if r.result.thought:
            lines += ["", "**Notes:**", "", r.result.thought]
    elif r.error:
        lines.append(f"**Error:** {r.error}")
    return "\n".join(lines) + "\n"


def _dependency_graph(flow: FlowDefinition) -> str:
    lines = ["## Dependency Graph", "", "```mermaid", "graph TD"]
    for step in flow.steps:
        label = step.agent or step.type
        lines.append(f'    {step.id}["{step.id}<br/>({label})"]')
    for step in flow.steps:
        for dep in step.depends_on:
            lines.append(f"    {dep} --> {step.id}")
    lines += ["```", "", "**Flow Structure:**", ""]
    for step in flow.steps:
        deps = (
            f" (depends on: {', '.join(step.depends_on)})"
            if step.depends_on
            else " (no dependencies)"
        )
        lines.append(f"- **{step.id}**: {step.name}{deps}")
    return "\n".join(lines) + "\n"


def build_flow_report(
    flow: FlowDefinition, result: FlowRunResult, request_id: str | None = None
) -> str:
    status = "Success" if result.success else "Failed"
    sections = [
        _frontmatter(flow, result, request_id),
        f"# Flow Report: {flow.name} ({status})\n",
        _summary(result),
        "## Step Outputs\n",
        *(_step_output(r) for r in result.step_results.values()),
        _dependency_graph(flow),
    ]
    return "\n".join(sections)


def report_filename(flow: FlowDefinition, result: FlowRunResult) -> str:
    timestamp = result.completed_at.strftime("%Y%m%dT%H%M%S")
    return f"flow_{flow.id}_{result.flow_run_id[:8]}_{timestamp}.md"


def write_flow_report(
    flow: FlowDefinition,
    result: FlowRunResult,
    destination: Path,
    request_id: str | None = None,
) -> Path:
    """Write the report to `destination`; a directory gets a generated filename."""

    path = destination / report_filename(flow, result) if destination.is_dir() else destination
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(build_flow_report(flow, result, request_id), encoding="utf-8")
    logger.info(
        "Flow report written",
        extra={"path": str(path), "flow_id": flow.id, "flow_run_id": result.flow_run_id},
    )
    return path
