from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from agent_flow_orchestrator.orchestrator.main import build_parser, main


@pytest.fixture(autouse=True)
def _isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    for name in ("ORCHESTRATOR_FLOWS_PATH", "ORCHESTRATOR_LLM_PROVIDER", "ORCHESTRATOR_PROVIDER_CONFIG"):
        monkeypatch.delenv(name, raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _write_flow(directory: Path, flow_id: str, steps: list[dict], output: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{flow_id}.flow.json"
    path.write_text(
        json.dumps({"id": flow_id, "name": flow_id.title(), "steps": steps, "output": {"from": output}}),
        encoding="utf-8",
    )
    return path


def _pipeline(directory: Path) -> Path:
    return _write_flow(
        directory,
        "pipeline",
        [
            {"id": "a", "agent": "writer"},
            {"id": "b", "agent": "writer"},
            {
                "id": "c",
                "agent": "editor",
                "dependsOn": ["a", "b"],
                "input": {"source": "aggregate", "from": ["a", "b"]},
            },
        ],
        "c",
    )


def test_parser_requires_a_prompt_for_run() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["run", "demo"])


def test_validate_ok_and_invalid(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    good = _pipeline(tmp_path / "flows")
    cyclic = _write_flow(
        tmp_path / "flows",
        "cyclic",
        [{"id": "a", "agent": "w", "dependsOn": ["b"]}, {"id": "b", "agent": "w", "dependsOn": ["a"]}],
        "a",
    )

    assert main(["validate", str(good)]) == 0
    assert "Flow 'pipeline' is valid (3 steps, 2 waves)" in capsys.readouterr().out

    assert main(["validate", str(cyclic)]) == 2
    assert "error: Cycle detected in dependency graph" in capsys.readouterr().err


def test_missing_flow_is_a_usage_error(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["validate", "nowhere"]) == 2
    assert "Failed to load flow" in capsys.readouterr().err


def test_plan_prints_waves_for_a_flow_id(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    _pipeline(tmp_path / "flows")

    assert main(["plan", "pipeline"]) == 0

    out = capsys.readouterr().out.splitlines()
    assert out == ["Pipeline (pipeline v1.0.0)", "Wave 1: a, b", "Wave 2: c"]


def test_list_flows(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["list"]) == 0
    assert capsys.readouterr().out.startswith("No flows found in")

    _pipeline(tmp_path / "flows")
    assert main(["list", str(tmp_path / "flows")]) == 0
    assert capsys.readouterr().out == "pipeline\tPipeline\t3 steps\n"


def test_run_with_mock_provider_writes_output_and_report(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("ORCHESTRATOR_LLM_PROVIDER", "mock")
    monkeypatch.setenv("ORCHESTRATOR_LLM_MOCK_RESPONSE", "final answer")
    monkeypatch.setenv("ORCHESTRATOR_REPORTS_PATH", str(tmp_path / "reports"))
    _pipeline(tmp_path / "flows")

    code = main(["run", "pipeline", "--prompt", "Write it", "--report", "--request-id", "req-1"])

    captured = capsys.readouterr()
    assert code == 0
    assert captured.out == "final answer\n"
    [report] = (tmp_path / "reports").glob("flow_pipeline_*.md")
    assert 'request_id: "req-1"' in report.read_text(encoding="utf-8")


def test_run_json_output(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("ORCHESTRATOR_LLM_PROVIDER", "mock")
    monkeypatch.setenv("ORCHESTRATOR_LLM_MOCK_RESPONSE", "ok")
    flow = _pipeline(tmp_path / "flows")
    prompt = tmp_path / "prompt.txt"
    prompt.write_text("From a file", encoding="utf-8")

    assert main(["run", str(flow), "--prompt-file", str(prompt), "--json"]) == 0

    result = json.loads(capsys.readouterr().out)
    assert result["flowId"] == "pipeline"
    assert result["success"] is True
    assert set(result["stepResults"]) == {"a", "b", "c"}
