"""Deterministic provider for offline runs and tests."""

import hashlib
from typing import Any

from agent_flow_orchestrator.core.config import MockProviderConfig
from agent_flow_orchestrator.llm.provider import LLMProvider, Message


class MockLLMProvider(LLMProvider):
    """Return a fixed response, or a stable digest of the last user message.

    No network, no model files: the same prompt always yields the same text.
    """

    name = "mock"

    def __init__(self, config: MockProviderConfig | None = None) -> None:
        self.config = config or MockProviderConfig()
        self.calls: list[list[Message]] = []

    def chat(
        self,
        messages: list[Message],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        self.calls.append(list(messages))
        if self.config.response is not None:
            return self.config.response

        prompt = next(
            (m["content"] for m in reversed(messages) if m.get("role") == "user"),
            "",
        )
        digest = hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:12]
        first_line = prompt.strip().splitlines()[0][:80] if prompt.strip() else ""
        return f"[mock:{digest}] {first_line}".rstrip()

    def count_tokens(self, text: str) -> int:
        return len(text.split())
