"""OpenAI chat completions provider."""

import logging
from typing import Any

from openai import OpenAI

from agent_flow_orchestrator.core.config import OpenAIProviderConfig
from agent_flow_orchestrator.llm.provider import LLMProvider, Message

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """Chat completions through the OpenAI API."""

    name = "openai"

    def __init__(self, config: OpenAIProviderConfig, client: OpenAI | None = None) -> None:
        """Build the client.

        Args:
            config: Resolved OpenAI provider config.
            client: Pre-built client (tests inject a fake one).

        Raises:
            ValueError: If no API key is configured and no client was given.
        """
        if client is None and not config.api_key:
            raise ValueError("OpenAI API key is required (set ORCHESTRATOR_LLM_OPENAI_API_KEY)")

        self.config = config
        self.client = client or OpenAI(api_key=config.api_key)

        logger.info("OpenAI provider initialized", extra={"model": config.model})

    def chat(
        self,
        messages: list[Message],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        logger.debug(
            "Requesting chat completion",
            extra={"model": self.config.model, "messages": len(messages)},
        )

        response = self.client.chat.completions.create(
            model=self.config.model,
            messages=messages,  # type: ignore[arg-type]
            max_tokens=max_tokens,
            temperature=temperature if temperature is not None else self.config.temperature,
            **kwargs,
        )

        content = response.choices[0].message.content or ""
        logger.debug("Chat completion received", extra={"characters": len(content)})
        return content
