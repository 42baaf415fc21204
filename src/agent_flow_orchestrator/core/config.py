"""LLM provider and agent configuration.

Provider selection is resolved from three layers, highest priority first:

1. environment variables (``ORCHESTRATOR_LLM_*``, or a `.env` file)
2. a named profile from a provider config JSON file
3. built-in defaults

The provider config file maps profile names to provider configs::

    {
      "default": {"provider": "openai", "model": "gpt-4o"},
      "local": {"provider": "llama", "model_path": "models/llama.gguf"}
    }

A file holding a single config (with a top-level ``"provider"`` key) is also
accepted.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["openai", "llama", "mock"]


class LLMSettings(BaseSettings):
    """Environment-level LLM settings (prefix ``ORCHESTRATOR_LLM_``)."""

    provider: ProviderName = Field(
        default="openai",
        description="LLM provider to use",
    )
    profile: str = Field(
        default="default",
        description="Profile to select from the provider config file",
    )

    # OpenAI settings
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key",
    )
    openai_model: str = Field(
        default="gpt-4",
        description="OpenAI model to use",
    )
    openai_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Temperature for OpenAI model",
    )

    # LLaMA settings
    llama_model_path: Path | None = Field(
        default=None,
        description="Path to LLaMA model file",
    )
    llama_n_ctx: int = Field(
        default=4096,
        gt=0,
        description="Context window size for LLaMA",
    )
    llama_n_threads: int | None = Field(
        default=None,
        description="Number of threads for LLaMA (None = auto)",
    )

    # Mock settings
    mock_response: str | None = Field(
        default=None,
        description="Fixed response returned by the mock provider",
    )

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_LLM_",
        env_file=".env",
        extra="ignore",
    )


class _ProviderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class OpenAIProviderConfig(_ProviderConfig):
    provider: Literal["openai"] = "openai"
    api_key: str | None = None
    model: str = "gpt-4"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class LlamaProviderConfig(_ProviderConfig):
    provider: Literal["llama"] = "llama"
    model_path: Path | None = None
    n_ctx: int = Field(default=4096, gt=0)
    n_threads: int | None = None


class MockProviderConfig(_ProviderConfig):
    provider: Literal["mock"] = "mock"
    response: str | None = None


ProviderConfig = Annotated[
    OpenAIProviderConfig | LlamaProviderConfig | MockProviderConfig,
    Field(discriminator="provider"),
]

_PROVIDER_ADAPTER: TypeAdapter[ProviderConfig] = TypeAdapter(ProviderConfig)

# LLMSettings field -> (provider, provider config field)
_SETTINGS_FIELDS: dict[str, tuple[str, str]] = {
    "openai_api_key": ("openai", "api_key"),
    "openai_model": ("openai", "model"),
    "openai_temperature": ("openai", "temperature"),
    "llama_model_path": ("llama", "model_path"),
    "llama_n_ctx": ("llama", "n_ctx"),
    "llama_n_threads": ("llama", "n_threads"),
    "mock_response": ("mock", "response"),
}


def load_named_provider_config(path: Path, profile: str = "default") -> dict[str, Any]:
    """Read one provider profile from a JSON config file.

    Raises:
        ValueError: The file is not a JSON object or lacks the profile.
    """

    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Provider config {path} must be a JSON object")
    if "provider" in data:
        return data
    selected = data.get(profile)
    if not isinstance(selected, dict):
        raise ValueError(f"Provider config {path} has no profile '{profile}'")
    return selected


def resolve_provider_config(
    settings: LLMSettings | None = None,
    named: Mapping[str, Any] | Path | None = None,
) -> OpenAIProviderConfig | LlamaProviderConfig | MockProviderConfig:
    """Merge env settings over a named config over defaults."""

    settings = settings if settings is not None else LLMSettings()
    if isinstance(named, Path):
        named = load_named_provider_config(named, settings.profile)

    explicit = settings.model_fields_set
    profile = dict(named or {})
    if "provider" in explicit and profile.get("provider", settings.provider) != settings.provider:
        # A profile written for another provider contributes nothing.
        profile = {}
    merged: dict[str, Any] = {"provider": settings.provider}
    merged.update(profile)
    if "provider" in explicit:
        merged["provider"] = settings.provider

    provider = merged["provider"]
    for field_name, (owner, key) in _SETTINGS_FIELDS.items():
        if owner != provider:
            continue
        if field_name in explicit or key not in merged:
            merged[key] = getattr(settings, field_name)

    return _PROVIDER_ADAPTER.validate_python(merged)


class AgentProfile(BaseModel):
    """Per-agent prompt and sampling overrides for the LLM executor."""

    model_config = ConfigDict(extra="forbid")

    system_prompt: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)


_PROFILES_ADAPTER: TypeAdapter[dict[str, AgentProfile]] = TypeAdapter(dict[str, AgentProfile])


def load_agent_profiles(path: Path) -> dict[str, AgentProfile]:
    """Read ``{agent_id: {system_prompt, temperature, max_tokens}}`` from JSON."""

    return _PROFILES_ADAPTER.validate_json(path.read_text(encoding="utf-8"))
