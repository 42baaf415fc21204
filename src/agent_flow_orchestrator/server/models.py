"""Pydantic models for the REST server.

Flow definitions travel as plain JSON objects and are parsed into
`FlowDefinition` by the handlers, so a schema problem becomes a 400 with the
pydantic error list rather than a generic 422.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


class FlowReference(BaseModel):
    """Either an inline flow definition or the id of a flow in the flows directory."""

    flow: dict[str, Any] | None = None
    flow_id: str | None = Field(default=None, pattern=r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*$")

    @model_validator(mode="after")
    def _exactly_one(self) -> FlowReference:
        if (self.flow is None) == (self.flow_id is None):
            raise ValueError("Provide exactly one of 'flow' or 'flow_id'")
        return self


class RunFlowRequest(FlowReference):
    prompt: str = Field(min_length=1)
    trace_id: str | None = None
    request_id: str | None = None


class FlowSummary(BaseModel):
    id: str
    name: str
    version: str
    description: str = ""
    step_count: int


class FlowPlan(BaseModel):
    flow_id: str
    waves: list[list[str]]


JobStatus = Literal["queued", "running", "succeeded", "failed"]


class FlowJob(BaseModel):
    job_id: str
    flow_id: str
    status: JobStatus

    created_at: datetime
    updated_at: datetime

    trace_id: str | None = None
    request_id: str | None = None

    result: dict[str, Any] | None = None
    error: str | None = None
