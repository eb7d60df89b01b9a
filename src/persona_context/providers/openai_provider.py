# persona_context/providers/openai_provider.py
"""
OpenAI-compatible LLM and embedding adapters.

Works with any endpoint that speaks the OpenAI chat-completions API
(OpenAI itself, OpenRouter, local servers) by pointing ``base_url`` at it.
Requires the ``openai`` extra.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any

import openai
from openai import AsyncOpenAI

from persona_context.config import DEFAULT_EMBEDDING_MODEL, EMBEDDING_TIMEOUT_SECONDS
from persona_context.exceptions import LLMInvocationError, LLMTimeoutError
from persona_context.generation.similarity import cosine_similarity
from persona_context.models.generation import LLMResponse, ModelConfig

logger = logging.getLogger(__name__)

_THINK_BLOCK = re.compile(r"<think(?:ing)?>(.*?)</think(?:ing)?>\s*", re.IGNORECASE | re.DOTALL)


def extract_thinking(content: str) -> tuple[str, str | None]:
    """Split inline ``<think>`` blocks out of a reply: ``(visible, thinking)``."""
    blocks = [m.strip() for m in _THINK_BLOCK.findall(content)]
    if not blocks:
        return content, None
    visible = _THINK_BLOCK.sub("", content).strip()
    return visible, "\n\n".join(b for b in blocks if b) or None


def _log_finish_reason(choice: Any, model_config: ModelConfig) -> tuple[str | None, str | None]:
    """
    Log how the completion ended and return ``(finish_reason, stopped_at)``.

    ``stopped_at`` is the matched stop sequence when the server reports it
    (vLLM and some OpenRouter providers send ``stop_reason``); plain OpenAI
    only says ``stop``.
    """
    finish_reason = getattr(choice, "finish_reason", None)
    stop_reason = getattr(choice, "stop_reason", None)
    stopped_at = stop_reason if isinstance(stop_reason, str) and stop_reason in model_config.stop_sequences else None

    if stopped_at is not None:
        logger.info(f"{model_config.model} hit stop sequence {stopped_at!r}; possible impersonation cut off")
    elif finish_reason == "length":
        logger.warning(f"{model_config.model} stopped at the token limit; the reply may be truncated")
    else:
        logger.debug(
            f"{model_config.model} finished with {finish_reason} "
            f"({len(model_config.stop_sequences)} stop sequences set)"
        )
    return finish_reason, stopped_at


class OpenAIInvoker:
    """``LLMInvoker`` backed by ``AsyncOpenAI``; one client per API key."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL")
        self.default_api_key = api_key or os.getenv("OPENAI_API_KEY")
        self._clients: dict[str | None, AsyncOpenAI] = {}
        if client is not None:
            self._clients[None] = client

    def _client_for(self, api_key: str | None) -> AsyncOpenAI:
        key = api_key or None
        if key not in self._clients:
            self._clients[key] = AsyncOpenAI(api_key=key or self.default_api_key, base_url=self.base_url)
        return self._clients[key]

    async def invoke(
        self,
        messages: list[dict[str, Any]],
        model_config: ModelConfig,
        api_key: str | None = None,
    ) -> LLMResponse:
        params: dict[str, Any] = {"model": model_config.model, "messages": messages}
        for name in ("temperature", "top_p", "frequency_penalty", "max_tokens"):
            value = getattr(model_config, name)
            if value is not None:
                params[name] = value
        if model_config.stop_sequences:
            params["stop"] = model_config.stop_sequences

        try:
            completion = await self._client_for(api_key).chat.completions.create(**params)
        except openai.APITimeoutError as e:
            raise LLMTimeoutError(f"{model_config.model} request timed out") from e
        except openai.APIStatusError as e:
            raise LLMInvocationError(f"{model_config.model} returned {e.status_code}: {e.message}", e.status_code) from e
        except openai.APIConnectionError as e:
            raise ConnectionError(f"Could not reach the LLM endpoint: {e}") from e

        if not completion.choices:
            logger.warning(f"{model_config.model} returned no choices")
            return LLMResponse(content="", model_used=completion.model)

        choice = completion.choices[0]
        message = choice.message
        content, thinking = extract_thinking(message.content or "")
        reasoning = getattr(message, "reasoning_content", None) or getattr(message, "reasoning", None)
        finish_reason, stopped_at = _log_finish_reason(choice, model_config)
        usage = completion.usage
        return LLMResponse(
            content=content,
            model_used=completion.model or model_config.model,
            thinking_content=reasoning or thinking,
            tokens_in=usage.prompt_tokens if usage else None,
            tokens_out=usage.completion_tokens if usage else None,
            finish_reason=finish_reason,
            stop_sequence_triggered=stopped_at,
        )


class OpenAIEmbeddingService:
    """``EmbeddingService`` backed by the embeddings endpoint."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str = DEFAULT_EMBEDDING_MODEL,
        timeout_seconds: float = EMBEDDING_TIMEOUT_SECONDS,
    ):
        self.client = client
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._failed = False

    @classmethod
    def from_env(cls) -> OpenAIEmbeddingService:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            return cls(client=None)
        return cls(client=AsyncOpenAI(api_key=api_key, base_url=os.getenv("OPENAI_BASE_URL")))

    def is_service_ready(self) -> bool:
        return self.client is not None and not self._failed

    async def get_embedding(self, text: str) -> list[float] | None:
        if self.client is None:
            return None
        try:
            result = await self.client.embeddings.create(model=self.model, input=text, timeout=self.timeout_seconds)
        except openai.AuthenticationError as e:
            # A bad key will not fix itself; stop trying for this process.
            self._failed = True
            logger.warning(f"Embedding service disabled: {e}")
            return None
        except openai.OpenAIError as e:
            logger.debug(f"Embedding request failed: {e}")
            return None
        if not result.data:
            return None
        return list(result.data[0].embedding)

    def cosine_similarity(self, a: list[float], b: list[float]) -> float:
        return cosine_similarity(a, b)
