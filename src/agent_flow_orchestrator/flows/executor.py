"""Agent invocation: the executor interface and an LLM-backed implementation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol

from agent_flow_orchestrator.flows.models import AgentResponse, RetryPolicy, StepRequest

if TYPE_CHECKING:
    from agent_flow_orchestrator.core.config import AgentProfile
    from agent_flow_orchestrator.llm.provider import LLMProvider

logger = logging.getLogger(__name__)


class AgentExecutor(Protocol):
    async def run(self, agent_id: str, request: StepRequest) -> AgentResponse: ...


def retry_policy_from_context(context: Mapping[str, Any]) -> RetryPolicy:
    raw = context.get("retry")
    if raw is None:
        return RetryPolicy()
    if isinstance(raw, RetryPolicy):
        return raw
    return RetryPolicy.model_validate(raw)


class LLMAgentExecutor:
    """Run agents as chat completions against an `LLMProvider`.

    Provider SDKs are synchronous, so each call runs in a worker thread. The
    step's retry policy (``context["retry"]``) is applied here with exponential
    backoff: ``backoff_ms * 2**attempt``.
    """

    def __init__(
        self,
        provider: LLMProvider,
        profiles: Mapping[str, AgentProfile] | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.provider = provider
        self.profiles = dict(profiles or {})
        self._sleep = sleep

    def _messages(self, agent_id: str, request: StepRequest) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        profile = self.profiles.get(agent_id)
        if profile is not None and profile.system_prompt:
            messages.append({"role": "system", "content": profile.system_prompt})
        messages.append({"role": "user", "content": request.user_prompt})
        return messages

    async def run(self, agent_id: str, request: StepRequest) -> AgentResponse:
        policy = retry_policy_from_context(request.context)
        profile = self.profiles.get(agent_id)
        messages = self._messages(agent_id, request)

        attempt = 0
        while True:
            try:
                content = await asyncio.to_thread(
                    self.provider.chat,
                    messages,
                    max_tokens=profile.max_tokens if profile else None,
                    temperature=profile.temperature if profile else None,
                )
            except Exception as e:
                if attempt + 1 >= policy.max_attempts:
                    raise
                attempt += 1
                delay = policy.backoff_ms / 1000 * (2 ** (attempt - 1))
                logger.warning(
                    "Agent call failed; retrying",
                    extra={
                        "agent": agent_id,
                        "attempt": attempt,
                        "max_attempts": policy.max_attempts,
                        "delay_seconds": delay,
                        "error": str(e),
                        "trace_id": request.trace_id,
                    },
                )
                await self._sleep(delay)
                continue

            return AgentResponse(
                content=content,
                raw={"agent": agent_id, "attempts": attempt + 1},
            )
