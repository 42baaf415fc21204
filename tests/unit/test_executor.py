"""Unit tests for the LLM-backed agent executor."""

from __future__ import annotations

from typing import Any

import pytest

from agent_flow_orchestrator.core.config import AgentProfile, MockProviderConfig
from agent_flow_orchestrator.flows.executor import LLMAgentExecutor, retry_policy_from_context
from agent_flow_orchestrator.flows.models import RetryPolicy, StepRequest
from agent_flow_orchestrator.llm.mock_provider import MockLLMProvider


class FlakyProvider(MockLLMProvider):
    def __init__(self, failures: int) -> None:
        super().__init__(MockProviderConfig(response="recovered"))
        self.failures = failures
        self.attempts = 0

    def chat(self, messages: list[dict[str, str]], max_tokens=None, temperature=None, **kwargs: Any) -> str:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise ConnectionError(f"attempt {self.attempts} failed")
        return super().chat(messages, max_tokens, temperature, **kwargs)


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


async def test_system_prompt_comes_from_agent_profile() -> None:
    provider = MockLLMProvider(MockProviderConfig(response="ok"))
    executor = LLMAgentExecutor(provider, {"writer": AgentProfile(system_prompt="You write.")})

    response = await executor.run("writer", StepRequest(user_prompt="Draft it"))

    assert response.content == "ok"
    assert response.raw == {"agent": "writer", "attempts": 1}
    assert provider.calls == [
        [{"role": "system", "content": "You write."}, {"role": "user", "content": "Draft it"}]
    ]


async def test_agent_without_profile_sends_only_the_prompt() -> None:
    provider = MockLLMProvider()

    response = await LLMAgentExecutor(provider).run("anyone", StepRequest(user_prompt="Hello"))

    assert provider.calls == [[{"role": "user", "content": "Hello"}]]
    assert response.content.startswith("[mock:")
    assert response.content.endswith("Hello")


async def test_retries_with_exponential_backoff() -> None:
    provider = FlakyProvider(failures=2)
    sleep = FakeSleep()
    request = StepRequest(
        user_prompt="Draft it",
        context={"retry": {"maxAttempts": 3, "backoffMs": 100}},
    )

    response = await LLMAgentExecutor(provider, sleep=sleep).run("writer", request)

    assert response.content == "recovered"
    assert response.raw["attempts"] == 3
    assert sleep.delays == [0.1, 0.2]


async def test_last_failure_propagates() -> None:
    provider = FlakyProvider(failures=5)
    sleep = FakeSleep()
    request = StepRequest(user_prompt="x", context={"retry": RetryPolicy(max_attempts=2, backoff_ms=0)})

    with pytest.raises(ConnectionError, match="attempt 2 failed"):
        await LLMAgentExecutor(provider, sleep=sleep).run("writer", request)

    assert provider.attempts == 2
    assert sleep.delays == [0.0]


def test_retry_policy_defaults_to_a_single_attempt() -> None:
    assert retry_policy_from_context({}) == RetryPolicy()
    assert retry_policy_from_context({"retry": {"max_attempts": 4}}).max_attempts == 4
