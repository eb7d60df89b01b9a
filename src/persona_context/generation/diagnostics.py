# persona_context/generation/diagnostics.py
"""
Diagnostic flight recorder.

A ``DiagnosticCollector`` travels with one generation request. Each stage
records what it saw (memories, token budget, the exact prompt, model
parameters, raw and cleaned responses, errors); ``finalize`` turns it into
a JSON-serializable payload for a ``DiagnosticSink``. Persisting that
payload is fire-and-forget, see ``store_diagnostics``.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from persona_context.generation.background import BackgroundTasks
from persona_context.interfaces import DiagnosticSink
from persona_context.models.budget import TokenBudget
from persona_context.models.generation import LLMResponse, ModelConfig
from persona_context.models.memory import MemoryDocument

logger = logging.getLogger(__name__)

MEMORY_PREVIEW_LENGTH = 100
MAX_ERROR_SIZE = 50_000
NOT_RECORDED = "[not recorded]"


class DiagnosticMeta(BaseModel):
    request_id: str
    personality_id: str
    personality_name: str
    user_id: str
    channel_id: str
    guild_id: str | None = None
    trigger_message_id: str | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class AttemptRecord(BaseModel):
    attempt: int
    outcome: str = Field(..., description="accepted | empty | duplicate | error")
    model_used: str | None = None
    content_length: int = 0
    detail: str | None = None


def build_preview(content: str, length: int = MEMORY_PREVIEW_LENGTH) -> str:
    """First and last ``length`` characters of long text."""
    if len(content) <= length * 2:
        return content
    return f"{content[:length]} ... {content[-length:]}"


class DiagnosticCollector:
    """Accumulates diagnostics for one request; every ``record_*`` overwrites the previous value."""

    def __init__(self, meta: DiagnosticMeta, clock=time.monotonic):
        self.meta = meta
        self._clock = clock
        self._start = clock()

        self.memory_retrieval: dict[str, Any] | None = None
        self.token_budget: dict[str, Any] | None = None
        self.assembled_prompt: dict[str, Any] | None = None
        self.llm_config: dict[str, Any] | None = None
        self.llm_response: dict[str, Any] | None = None
        self.post_processing: dict[str, Any] | None = None
        self.error: dict[str, Any] | None = None
        self.attempts: list[AttemptRecord] = []

        self._llm_start: float | None = None
        self._llm_end: float | None = None

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_memory_retrieval(self, retrieved: list[MemoryDocument], selected: list[MemoryDocument]) -> None:
        selected_ids = {m.metadata.id for m in selected if m.metadata.id}
        self.memory_retrieval = {
            "memories_found": [
                {
                    "id": m.metadata.id or "unknown",
                    "score": m.metadata.score or 0.0,
                    "preview": build_preview(m.page_content),
                    "included_in_prompt": m.metadata.id in selected_ids,
                }
                for m in retrieved
            ]
        }

    def record_token_budget(
        self,
        budget: TokenBudget,
        memories_dropped: int = 0,
        history_messages_dropped: int = 0,
    ) -> None:
        self.token_budget = {
            **budget.model_dump(),
            "memories_dropped": memories_dropped,
            "history_messages_dropped": history_messages_dropped,
        }

    def record_assembled_prompt(self, messages: list[dict[str, Any]], token_estimate: int) -> None:
        self.assembled_prompt = {
            "messages": [{"role": m.get("role", "user"), "content": str(m.get("content", ""))} for m in messages],
            "total_token_estimate": token_estimate,
        }

    def record_llm_config(self, model_config: ModelConfig, provider: str | None = None) -> None:
        self.llm_config = {**model_config.model_dump(), "provider": provider}

    def mark_llm_invocation_start(self) -> None:
        self._llm_start = self._clock()

    def reset_llm_timing_for_retry(self) -> None:
        self._llm_start = None
        self._llm_end = None

    def record_llm_response(self, response: LLMResponse) -> None:
        self._llm_end = self._clock()
        self.llm_response = {
            "raw_content": response.content,
            "model_used": response.model_used,
            "prompt_tokens": response.tokens_in,
            "completion_tokens": response.tokens_out,
            "finish_reason": response.finish_reason,
            "stop_sequence_triggered": response.stop_sequence_triggered,
        }

    def record_attempt(self, record: AttemptRecord) -> None:
        self.attempts.append(record)

    def record_post_processing(
        self,
        raw_content: str,
        deduplicated_content: str,
        final_content: str,
        thinking_content: str | None = None,
    ) -> None:
        transforms: list[str] = []
        if raw_content != deduplicated_content:
            transforms.append("duplicate_removal")
        if thinking_content:
            transforms.append("thinking_extraction")
        if deduplicated_content != final_content:
            transforms.append("artifact_strip")
        self.post_processing = {
            "transforms_applied": transforms,
            "duplicate_detected": raw_content != deduplicated_content,
            "thinking_extracted": thinking_content is not None,
            "final_content": final_content,
        }

    def record_error(
        self,
        message: str,
        category: str,
        failed_at_stage: str,
        reference_id: str | None = None,
        raw_error: dict[str, Any] | None = None,
    ) -> None:
        if raw_error is not None:
            serialized = json.dumps(raw_error, default=str)
            if len(serialized) > MAX_ERROR_SIZE:
                raw_error = {
                    "_truncated": True,
                    "_original_size": len(serialized),
                    "preview": serialized[:MAX_ERROR_SIZE],
                }
        self.error = {
            "message": message,
            "category": category,
            "reference_id": reference_id,
            "raw_error": raw_error,
            "failed_at_stage": failed_at_stage,
        }

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def finalize(self) -> dict[str, Any]:
        timing: dict[str, int] = {"total_duration_ms": int((self._clock() - self._start) * 1000)}
        if self._llm_start is not None and self._llm_end is not None:
            timing["llm_invocation_ms"] = max(0, int((self._llm_end - self._llm_start) * 1000))

        payload: dict[str, Any] = {
            "meta": self.meta.model_dump(),
            "memory_retrieval": self.memory_retrieval or {"memories_found": []},
            "token_budget": self.token_budget or {},
            "assembled_prompt": self.assembled_prompt or {"messages": [], "total_token_estimate": 0},
            "llm_config": self.llm_config or {"model": NOT_RECORDED},
            "llm_response": self.llm_response or {"raw_content": NOT_RECORDED},
            "post_processing": self.post_processing or {"transforms_applied": []},
            "attempts": [a.model_dump() for a in self.attempts],
            "timing": timing,
        }
        if self.error is not None:
            payload["error"] = self.error

        logger.debug(
            f"Finalized diagnostics for {self.meta.request_id}: "
            f"{timing['total_duration_ms']}ms, attempts={len(self.attempts)}, error={self.error is not None}"
        )
        return payload


async def _store(sink: DiagnosticSink, payload: dict[str, Any]) -> None:
    try:
        await sink.store(payload)
    except Exception as e:
        logger.warning(f"Failed to store diagnostics for {payload['meta']['request_id']}: {e}")


def store_diagnostics(
    collector: DiagnosticCollector,
    sink: DiagnosticSink | None,
    tasks: BackgroundTasks,
) -> None:
    """Persist ``collector`` without waiting for the write."""
    if sink is None:
        return
    tasks.spawn(_store(sink, collector.finalize()), name=f"diagnostics-{collector.meta.request_id}")
