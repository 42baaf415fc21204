"""Background runner for flow jobs.

Each job gets its own daemon thread and its own event loop; the job store is
the only state shared with the request handlers.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid

from agent_flow_orchestrator.flows.errors import FlowExecutionError
from agent_flow_orchestrator.flows.models import FlowDefinition, FlowRequest
from agent_flow_orchestrator.flows.runner import FlowRunner
from agent_flow_orchestrator.server.job_store import JobStore

logger = logging.getLogger(__name__)


def start_flow_job(
    *,
    flow: FlowDefinition,
    request: FlowRequest,
    runner: FlowRunner,
    job_store: JobStore,
) -> str:
    job_id = uuid.uuid4().hex
    job_store.create(
        job_id=job_id,
        flow_id=flow.id,
        trace_id=request.trace_id,
        request_id=request.request_id,
    )

    thread = threading.Thread(
        target=_run_job,
        name=f"flow-{flow.id}-{job_id}",
        daemon=True,
        kwargs={
            "job_id": job_id,
            "flow": flow,
            "request": request,
            "runner": runner,
            "job_store": job_store,
        },
    )
    thread.start()
    return job_id


def _run_job(
    *,
    job_id: str,
    flow: FlowDefinition,
    request: FlowRequest,
    runner: FlowRunner,
    job_store: JobStore,
) -> None:
    job_store.update(job_id, status="running")

    try:
        result = asyncio.run(runner.execute(flow, request))
        job_store.update(
            job_id,
            status="succeeded" if result.success else "failed",
            result=result.to_json(),
        )

    except FlowExecutionError as e:
        logger.warning(
            "Flow job aborted", extra={"job_id": job_id, "flow_id": flow.id, "error": str(e)}
        )
        job_store.update(
            job_id,
            status="failed",
            error=str(e),
            result={
                "flowRunId": e.flow_run_id,
                "flowId": flow.id,
                "success": False,
                "stepResults": {k: v.to_json() for k, v in e.step_results.items()},
            },
        )

    except Exception as e:
        logger.exception("Flow job failed", extra={"job_id": job_id, "flow_id": flow.id})
        job_store.update(job_id, status="failed", error=str(e))
