"""Configuration for the REST server.

The server needs no LLM credentials at startup: `/validate`, `/plan` and the
job listing work against flow definitions alone. The provider is only built on
the first request that actually runs a flow.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Settings for the REST API."""

    jobs_state_file: Path = Field(
        default=Path("agent_state/flow_jobs.json"),
        validation_alias="ORCHESTRATOR_JOBS_STATE_FILE",
        description="Where background flow jobs are persisted between restarts.",
    )

    max_job_history: int = Field(
        default=200,
        ge=1,
        validation_alias="ORCHESTRATOR_MAX_JOB_HISTORY",
        description="Finished jobs kept in the store; the oldest are dropped first.",
    )

    # Dev-friendly CORS. Override via ORCHESTRATOR_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="ORCHESTRATOR_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
