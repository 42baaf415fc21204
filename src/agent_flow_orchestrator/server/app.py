"""FastAPI app factory.

Endpoints are thin wrappers over the flow engine: parse the flow, hand it to
the validator or the runner, translate engine errors into HTTP status codes.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, cast

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from agent_flow_orchestrator import __version__
from agent_flow_orchestrator.flows.errors import (
    FlowExecutionError,
    FlowLoadError,
    FlowValidationError,
)
from agent_flow_orchestrator.flows.loader import FLOW_FILE_SUFFIX, find_flow, load_flows
from agent_flow_orchestrator.flows.models import FlowDefinition, FlowRequest
from agent_flow_orchestrator.flows.runner import FlowRunner
from agent_flow_orchestrator.flows.validator import validate_flow
from agent_flow_orchestrator.orchestrator.config import OrchestratorSettings
from agent_flow_orchestrator.orchestrator.runtime import build_runner
from agent_flow_orchestrator.server.config import ServerSettings
from agent_flow_orchestrator.server.job_store import JobRecord, JobStore
from agent_flow_orchestrator.server.models import (
    FlowJob,
    FlowPlan,
    FlowReference,
    FlowSummary,
    JobStatus,
    RunFlowRequest,
)
from agent_flow_orchestrator.server.run_jobs import start_flow_job

logger = logging.getLogger(__name__)


def _iso_to_dt(value: str) -> datetime:
    # Best-effort parsing; the store always writes ISO format.
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.now(tz=UTC)


def _to_api_job(record: JobRecord) -> FlowJob:
    return FlowJob(
        job_id=record.job_id,
        flow_id=record.flow_id,
        status=cast(JobStatus, record.status),
        created_at=_iso_to_dt(record.created_at),
        updated_at=_iso_to_dt(record.updated_at),
        trace_id=record.trace_id,
        request_id=record.request_id,
        result=record.result,
        error=record.error,
    )


def _validation_detail(e: ValidationError) -> list[dict[str, Any]]:
    # `ctx` may hold exception instances, which are not JSON serialisable.
    return [
        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
        for err in e.errors(include_url=False)
    ]


def create_app(
    settings: ServerSettings | None = None,
    *,
    orchestrator_settings: OrchestratorSettings | None = None,
    runner_factory: Callable[[], FlowRunner] | None = None,
) -> FastAPI:
    settings = settings or ServerSettings()
    orchestrator_settings = orchestrator_settings or OrchestratorSettings()

    app = FastAPI(
        title="Agent Flow Orchestrator",
        version=__version__,
        description="REST API for validating, planning and running multi-agent flows.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.settings = settings
    app.state.orchestrator_settings = orchestrator_settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    job_store = JobStore(settings.jobs_state_file, max_records=settings.max_job_history)
    interrupted = job_store.fail_interrupted()
    if interrupted:
        logger.warning("Marked interrupted jobs as failed", extra={"jobs": interrupted})
    make_runner = runner_factory or (lambda: build_runner(orchestrator_settings))
    runner_lock = threading.Lock()
    runner_holder: list[FlowRunner] = []

    def get_runner() -> FlowRunner:
        # Built lazily so the server starts without provider credentials.
        with runner_lock:
            if not runner_holder:
                try:
                    runner_holder.append(make_runner())
                except ValueError as e:
                    raise HTTPException(
                        status_code=409, detail=f"LLM provider is not configured: {e}"
                    ) from e
            return runner_holder[0]

    def resolve_flow(ref: FlowReference) -> FlowDefinition:
        if ref.flow is not None:
            try:
                return FlowDefinition.model_validate(ref.flow)
            except ValidationError as e:
                raise HTTPException(status_code=400, detail=_validation_detail(e)) from e

        flow_id = cast(str, ref.flow_id)
        path = orchestrator_settings.flows_path / f"{flow_id}{FLOW_FILE_SUFFIX}"
        if not path.exists():
            raise HTTPException(status_code=404, detail=f"Flow '{flow_id}' not found")
        try:
            return find_flow(orchestrator_settings.flows_path, flow_id)
        except FlowLoadError as e:
            raise HTTPException(status_code=400, detail=e.reason) from e

    def checked_flow(ref: FlowReference) -> FlowDefinition:
        flow = resolve_flow(ref)
        report = validate_flow(flow)
        if not report.valid:
            raise HTTPException(status_code=400, detail=report.errors)
        return flow

    @app.get("/api/v1/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/v1/flows", response_model=list[FlowSummary])
    def list_flows() -> list[FlowSummary]:
        return [
            FlowSummary(
                id=flow.id,
                name=flow.name,
                version=flow.version,
                description=flow.description,
                step_count=len(flow.steps),
            )
            for flow in load_flows(orchestrator_settings.flows_path)
        ]

    @app.post("/api/v1/flows/validate")
    def validate(ref: FlowReference) -> dict[str, object]:
        return validate_flow(resolve_flow(ref)).to_json()

    @app.post("/api/v1/flows/plan", response_model=FlowPlan)
    def plan(ref: FlowReference) -> FlowPlan:
        report = validate_flow(resolve_flow(ref))
        if not report.valid:
            raise HTTPException(status_code=400, detail=report.errors)
        return FlowPlan(flow_id=report.flow_id, waves=report.waves)

    @app.post("/api/v1/flows/run")
    async def run_flow(req: RunFlowRequest) -> dict[str, object]:
        flow = checked_flow(req)
        request = FlowRequest(
            user_prompt=req.prompt, trace_id=req.trace_id, request_id=req.request_id
        )
        try:
            result = await get_runner().execute(flow, request)
        except FlowValidationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except FlowExecutionError as e:
            logger.warning("Flow run aborted", extra={"flow_id": flow.id, "error": str(e)})
            raise HTTPException(
                status_code=409,
                detail={
                    "message": str(e),
                    "flowRunId": e.flow_run_id,
                    "stepId": e.step_id,
                    "stepResults": {k: v.to_json() for k, v in e.step_results.items()},
                },
            ) from e
        return result.to_json()

    @app.post("/api/v1/flows/jobs", response_model=FlowJob)
    def create_job(req: RunFlowRequest) -> FlowJob:
        flow = checked_flow(req)
        request = FlowRequest(
            user_prompt=req.prompt, trace_id=req.trace_id, request_id=req.request_id
        )
        job_id = start_flow_job(
            flow=flow, request=request, runner=get_runner(), job_store=job_store
        )
        record = job_store.get(job_id)
        if record is None:
            raise HTTPException(status_code=500, detail="Job creation failed")
        return _to_api_job(record)

    @app.get("/api/v1/flows/jobs", response_model=list[FlowJob])
    def list_jobs(status: JobStatus | None = None) -> list[FlowJob]:
        return [_to_api_job(record) for record in job_store.list(status)]

    @app.get("/api/v1/flows/jobs/{job_id}", response_model=FlowJob)
    def get_job(job_id: str) -> FlowJob:
        record = job_store.get(job_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return _to_api_job(record)

    return app
