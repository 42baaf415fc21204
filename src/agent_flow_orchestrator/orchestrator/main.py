"""CLI entrypoint for the flow orchestrator.

Subcommands:
- run:       execute a flow and print its aggregated output
- validate:  static checks (graph, conditions, transforms, input wiring)
- plan:      print the execution waves
- list:      list the flows found in a directory
- serve:     start the REST API (uvicorn)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from pydantic import ValidationError

from agent_flow_orchestrator import __version__
from agent_flow_orchestrator.flows.errors import (
    FlowExecutionError,
    FlowLoadError,
    FlowValidationError,
)
from agent_flow_orchestrator.flows.loader import find_flow, load_flow, load_flows
from agent_flow_orchestrator.flows.models import FlowDefinition, FlowRequest, StepResult
from agent_flow_orchestrator.flows.reporter import write_flow_report
from agent_flow_orchestrator.flows.validator import validate_flow
from agent_flow_orchestrator.orchestrator.config import OrchestratorSettings
from agent_flow_orchestrator.orchestrator.logging import configure_logging
from agent_flow_orchestrator.orchestrator.runtime import build_runner

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flow-orchestrator",
        description="Run multi-agent flows: DAGs of agent, gate, branch and consensus steps",
    )
    parser.add_argument(
        "--version", action="version", version=f"agent-flow-orchestrator {__version__}"
    )
    parser.add_argument(
        "--log-format",
        choices=("json", "text"),
        default="json",
        help="Log output format (logs go to stderr)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Execute a flow")
    run.add_argument("flow", help="Path to a *.flow.json file, or a flow id in the flows directory")
    prompt = run.add_mutually_exclusive_group(required=True)
    prompt.add_argument("--prompt", default=None, help="User prompt for the flow")
    prompt.add_argument(
        "--prompt-file",
        type=Path,
        default=None,
        help="Read the user prompt from a file ('-' for stdin)",
    )
    run.add_argument("--trace-id", default=None, help="Trace id propagated to every step")
    run.add_argument("--request-id", default=None, help="Request id propagated to every step")
    run.add_argument(
        "--report",
        nargs="?",
        const="",
        default=None,
        metavar="PATH",
        help="Write a markdown report (default location: ORCHESTRATOR_REPORTS_PATH)",
    )
    run.add_argument(
        "--json",
        action="store_true",
        help="Print the full run result as JSON instead of the aggregated output",
    )

    validate = subparsers.add_parser("validate", help="Validate a flow definition")
    validate.add_argument("flow", help="Path to a *.flow.json file, or a flow id")

    plan = subparsers.add_parser("plan", help="Show the execution waves of a flow")
    plan.add_argument("flow", help="Path to a *.flow.json file, or a flow id")

    list_flows = subparsers.add_parser("list", help="List available flows")
    list_flows.add_argument(
        "directory",
        nargs="?",
        type=Path,
        default=None,
        help="Directory to scan (default: ORCHESTRATOR_FLOWS_PATH)",
    )

    serve = subparsers.add_parser("serve", help="Start the REST API server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def _resolve_flow(ref: str, settings: OrchestratorSettings) -> FlowDefinition:
    path = Path(ref)
    if path.suffix == ".json" or path.exists():
        return load_flow(path)
    return find_flow(settings.flows_path, ref)


def _read_prompt(args: argparse.Namespace) -> str:
    if args.prompt is not None:
        return str(args.prompt)
    if str(args.prompt_file) == "-":
        return sys.stdin.read()
    return Path(args.prompt_file).read_text(encoding="utf-8")


def _print_step_summary(step_results: dict[str, StepResult]) -> None:
    for r in step_results.values():
        line = f"  {r.step_id}: {r.status} ({r.duration:.0f}ms)"
        if r.error:
            line += f" - {r.error}"
        elif r.skip_reason:
            line += f" - {r.skip_reason}"
        print(line, file=sys.stderr)


def _cmd_run(args: argparse.Namespace, settings: OrchestratorSettings) -> int:
    flow = _resolve_flow(args.flow, settings)
    request = FlowRequest(
        user_prompt=_read_prompt(args),
        trace_id=args.trace_id,
        request_id=args.request_id,
    )
    runner = build_runner(settings)

    try:
        result = asyncio.run(runner.execute(flow, request))
    except FlowExecutionError as e:
        print(f"Flow '{flow.id}' aborted: {e}", file=sys.stderr)
        _print_step_summary(e.step_results)
        return 1

    if args.report is not None:
        destination = Path(args.report) if args.report else settings.reports_path
        if not args.report:
            destination.mkdir(parents=True, exist_ok=True)
        path = write_flow_report(flow, result, destination, request_id=args.request_id)
        print(f"Report written to {path}", file=sys.stderr)

    if args.json:
        print(json.dumps(result.to_json(), indent=2, ensure_ascii=False))
    else:
        print(result.output)

    if not result.success:
        print(f"Flow '{flow.id}' finished with failed steps:", file=sys.stderr)
        _print_step_summary(result.step_results)
        return 1
    return 0


def _cmd_validate(args: argparse.Namespace, settings: OrchestratorSettings) -> int:
    flow = _resolve_flow(args.flow, settings)
    report = validate_flow(flow)
    for warning in report.warnings:
        print(f"warning: {warning}", file=sys.stderr)
    if not report.valid:
        for error in report.errors:
            print(f"error: {error}", file=sys.stderr)
        return 2
    print(f"Flow '{flow.id}' is valid ({len(flow.steps)} steps, {len(report.waves)} waves)")
    return 0


def _cmd_plan(args: argparse.Namespace, settings: OrchestratorSettings) -> int:
    flow = _resolve_flow(args.flow, settings)
    report = validate_flow(flow)
    if not report.valid:
        for error in report.errors:
            print(f"error: {error}", file=sys.stderr)
        return 2
    print(f"{flow.name} ({flow.id} v{flow.version})")
    for number, wave in enumerate(report.waves, start=1):
        print(f"Wave {number}: {', '.join(wave)}")
    return 0


def _cmd_list(args: argparse.Namespace, settings: OrchestratorSettings) -> int:
    directory = args.directory or settings.flows_path
    flows = load_flows(directory)
    if not flows:
        print(f"No flows found in {directory}")
        return 0
    for flow in flows:
        print(f"{flow.id}\t{flow.name}\t{len(flow.steps)} steps")
    return 0


def _cmd_serve(args: argparse.Namespace, settings: OrchestratorSettings) -> int:
    import uvicorn

    from agent_flow_orchestrator.server.app import create_app

    app = create_app(orchestrator_settings=settings)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


_COMMANDS = {
    "run": _cmd_run,
    "validate": _cmd_validate,
    "plan": _cmd_plan,
    "list": _cmd_list,
    "serve": _cmd_serve,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = OrchestratorSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level, fmt=args.log_format, stream=sys.stderr)

    handler = _COMMANDS.get(args.command)
    if handler is None:
        logger.error("Unknown command", extra={"command": args.command})
        return 2

    try:
        return handler(args, settings)

    except (FlowLoadError, FlowValidationError, ValidationError, ValueError) as e:
        logger.warning("Invalid input", extra={"command": args.command, "error": str(e)})
        print(str(e), file=sys.stderr)
        return 2

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
