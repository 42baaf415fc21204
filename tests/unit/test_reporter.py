from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from agent_flow_orchestrator.flows.models import AgentResponse, FlowRunResult, StepResult
from agent_flow_orchestrator.flows.reporter import build_flow_report, report_filename, write_flow_report

_START = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)
_END = datetime(2025, 3, 1, 12, 0, 2, tzinfo=UTC)


def _result() -> FlowRunResult:
    return FlowRunResult(
        flow_run_id="abcdef0123456789",
        flow_id="test-flow",
        success=False,
        step_results={
            "draft": StepResult(
                step_id="draft",
                success=True,
                duration=1200.0,
                started_at=_START,
                completed_at=_END,
                result=AgentResponse(content="A first draft", thought="Reviewer notes"),
            ),
            "polish": StepResult(
                step_id="polish",
                success=True,
                duration=0.0,
                started_at=_END,
                completed_at=_END,
                skipped=True,
                skip_reason="condition evaluated to false",
            ),
            "publish": StepResult(
                step_id="publish",
                success=False,
                duration=5.0,
                started_at=_END,
                completed_at=_END,
                error="quota exceeded",
            ),
        },
        output="A first draft",
        duration=2000.0,
        started_at=_START,
        completed_at=_END,
    )


def _flow(build_flow):
    return build_flow(
        [
            {"id": "draft", "name": "Write a draft", "agent": "writer"},
            {"id": "polish", "agent": "editor", "dependsOn": ["draft"]},
            {"id": "publish", "agent": "publisher", "dependsOn": ["draft", "polish"]},
        ],
        output="draft",
    )


def test_report_sections(build_flow) -> None:
    report = build_flow_report(_flow(build_flow), _result(), request_id="req-7")

    assert report.startswith("---\ntype: \"flow_report\"\nflow: \"test-flow\"\n")
    assert "steps_completed: 2\nsteps_failed: 1\n" in report
    assert "success: false\n" in report
    assert 'request_id: "req-7"\n---\n' in report
    assert "# Flow Report: Test Flow (Failed)" in report
    assert "| draft | OK | 1200ms | 12:00:00 | 12:00:02 |" in report
    assert "| polish | SKIPPED | 0ms |" in report
    assert "**Total Duration:** 2000ms" in report
    assert "**Output:**\n\nA first draft\n\n**Notes:**\n\nReviewer notes" in report
    assert "**Skip Reason:** condition evaluated to false" in report
    assert "**Error:** quota exceeded" in report
    assert "    draft --> publish" in report
    assert '    draft["draft<br/>(writer)"]' in report
    assert "- **draft**: Write a draft (no dependencies)" in report
    assert "- **publish**: publish (depends on: draft, polish)" in report


def test_write_report_into_directory(build_flow, tmp_path: Path) -> None:
    flow = _flow(build_flow)
    result = _result()

    path = write_flow_report(flow, result, tmp_path / "out" / "report.md")
    assert path == tmp_path / "out" / "report.md"
    assert path.read_text(encoding="utf-8").startswith("---\n")

    (tmp_path / "dir").mkdir()
    named = write_flow_report(flow, result, tmp_path / "dir")
    assert named.name == report_filename(flow, result) == "flow_test-flow_abcdef01_20250301T120002.md"
