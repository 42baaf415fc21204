"""Runtime settings for the flow orchestrator.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

LLM provider settings live in `agent_flow_orchestrator.core.config` under the
``ORCHESTRATOR_LLM_`` prefix.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestratorSettings(BaseSettings):
    """Settings for the orchestrator CLI and server.

    Environment variables:
    - LOG_LEVEL                         (optional)
    - ORCHESTRATOR_FLOWS_PATH           (optional)
    - ORCHESTRATOR_REPORTS_PATH         (optional)
    - ORCHESTRATOR_GATE_REQUIRED_FLOOR  (optional)
    - ORCHESTRATOR_PROVIDER_CONFIG      (optional)
    - ORCHESTRATOR_AGENTS_CONFIG        (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `OrchestratorSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    flows_path: Path = Field(
        default=Path("flows"),
        validation_alias="ORCHESTRATOR_FLOWS_PATH",
        description="Directory searched for *.flow.json definitions",
    )

    reports_path: Path = Field(
        default=Path("reports"),
        validation_alias="ORCHESTRATOR_REPORTS_PATH",
        description="Directory where flow run reports are written",
    )

    gate_required_floor: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        validation_alias="ORCHESTRATOR_GATE_REQUIRED_FLOOR",
        description="Minimum score every required gate criterion must reach",
    )

    provider_config_path: Path | None = Field(
        default=None,
        validation_alias="ORCHESTRATOR_PROVIDER_CONFIG",
        description="JSON file of named LLM provider profiles",
    )

    agents_config_path: Path | None = Field(
        default=None,
        validation_alias="ORCHESTRATOR_AGENTS_CONFIG",
        description="JSON file of per-agent system prompts and sampling overrides",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )
