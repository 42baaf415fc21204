"""Local LLaMA LLM provider implementation."""

import logging
from typing import Any

from agent_flow_orchestrator.core.config import LlamaProviderConfig
from agent_flow_orchestrator.llm.provider import LLMProvider, Message

logger = logging.getLogger(__name__)

_DEFAULT_MAX_TOKENS = 512
_DEFAULT_TEMPERATURE = 0.7


class LLaMAProvider(LLMProvider):
    """Local LLaMA model provider implementation.

    Requires the optional ``llama`` extra:
        pip install agent-flow-orchestrator[llama]
    """

    name = "llama"

    def __init__(self, config: LlamaProviderConfig) -> None:
        """Load the model.

        Raises:
            ValueError: If model path is not provided.
            ImportError: If llama-cpp-python is not installed.
        """
        if not config.model_path:
            raise ValueError("LLaMA model path is required (set ORCHESTRATOR_LLM_LLAMA_MODEL_PATH)")

        try:
            from llama_cpp import Llama
        except ImportError as e:
            raise ImportError(
                "llama-cpp-python is required for LLaMA provider. "
                "Install it with: pip install llama-cpp-python"
            ) from e

        self.config = config

        logger.info("Loading LLaMA model", extra={"model_path": str(config.model_path)})

        self.llm = Llama(
            model_path=str(config.model_path),
            n_ctx=config.n_ctx,
            n_threads=config.n_threads,
            verbose=False,
        )

    def chat(
        self,
        messages: list[Message],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        logger.debug("Requesting chat completion", extra={"messages": len(messages)})

        result = self.llm.create_chat_completion(
            messages=messages,
            max_tokens=max_tokens or _DEFAULT_MAX_TOKENS,
            temperature=temperature if temperature is not None else _DEFAULT_TEMPERATURE,
            **kwargs,
        )
        return result["choices"][0]["message"]["content"] or ""

    def count_tokens(self, text: str) -> int:
        return len(self.llm.tokenize(text.encode("utf-8")))
