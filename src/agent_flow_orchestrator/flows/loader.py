"""Load flow definitions from ``*.flow.json`` files."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from agent_flow_orchestrator.flows.errors import FlowLoadError
from agent_flow_orchestrator.flows.models import FlowDefinition

logger = logging.getLogger(__name__)

FLOW_FILE_SUFFIX = ".flow.json"


def load_flow(path: Path) -> FlowDefinition:
    """Read and validate one flow file.

    Raises:
        FlowLoadError: The file is missing, is not JSON, or fails validation.
    """

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise FlowLoadError(str(path), e.strerror or str(e)) from e

    try:
        return FlowDefinition.model_validate_json(raw)
    except ValidationError as e:
        raise FlowLoadError(str(path), str(e)) from e


def flow_id_for(path: Path) -> str:
    return path.name.removesuffix(FLOW_FILE_SUFFIX)


def list_flow_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.is_file() and p.name.endswith(FLOW_FILE_SUFFIX))


def load_flows(directory: Path) -> list[FlowDefinition]:
    """Load every flow in `directory`; invalid files are skipped with a warning."""

    flows: list[FlowDefinition] = []
    for path in list_flow_files(directory):
        try:
            flow = load_flow(path)
        except FlowLoadError as e:
            logger.warning("Skipping invalid flow file", extra={"path": str(path), "error": e.reason})
            continue
        if flow.id != flow_id_for(path):
            logger.warning(
                "Flow id does not match its filename",
                extra={"path": str(path), "flow_id": flow.id},
            )
        flows.append(flow)
    return flows


def find_flow(directory: Path, flow_id: str) -> FlowDefinition:
    """Load ``{flow_id}.flow.json`` from `directory` and check its id."""

    path = directory / f"{flow_id}{FLOW_FILE_SUFFIX}"
    flow = load_flow(path)
    if flow.id != flow_id:
        raise FlowLoadError(str(path), f"flow id '{flow.id}' does not match filename '{flow_id}'")
    return flow
