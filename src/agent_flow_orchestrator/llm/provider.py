"""Provider interface used by the agent executor."""

from abc import ABC, abstractmethod
from typing import Any

Message = dict[str, str]


class LLMProvider(ABC):
    """A synchronous chat-completion backend.

    Every flow agent runs as a chat call against one provider, so `chat` is
    the only required method. The executor runs it in a worker thread.
    """

    name: str = "base"

    @abstractmethod
    def chat(
        self,
        messages: list[Message],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        """Complete a conversation.

        Args:
            messages: ``{"role", "content"}`` dicts, optionally led by a system message.
            max_tokens: Upper bound on generated tokens (provider default if None).
            temperature: Sampling temperature (provider default if None).
            **kwargs: Passed through to the backend.

        Returns:
            The assistant reply; empty string when the backend returned none.
        """

    def generate(
        self,
        prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        """Single-prompt completion; defaults to a one-message chat."""
        return self.chat(
            [{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
            **kwargs,
        )

    def count_tokens(self, text: str) -> int:
        """Approximate token count (about four characters per token)."""
        return len(text) // 4
