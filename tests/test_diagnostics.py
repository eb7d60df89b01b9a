# tests/test_diagnostics.py
"""
Tests for the diagnostic collector and fire-and-forget persistence.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from persona_context.generation.background import BackgroundTasks
from persona_context.generation.diagnostics import (
    MAX_ERROR_SIZE,
    NOT_RECORDED,
    AttemptRecord,
    DiagnosticCollector,
    DiagnosticMeta,
    build_preview,
    store_diagnostics,
)
from persona_context.models.budget import TokenBudget
from persona_context.models.generation import LLMResponse, ModelConfig
from persona_context.models.memory import MemoryDocument, MemoryMetadata
from persona_context.stores import InMemoryDiagnosticSink

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _make_collector(clock=None) -> DiagnosticCollector:
    meta = DiagnosticMeta(
        request_id="req-1",
        personality_id="p-1",
        personality_name="Emily",
        user_id="u-1",
        channel_id="c-1",
    )
    if clock is None:
        return DiagnosticCollector(meta)
    return DiagnosticCollector(meta, clock=clock)


def _make_memory(memory_id: str, text: str, score: float = 0.5) -> MemoryDocument:
    return MemoryDocument(page_content=text, metadata=MemoryMetadata(id=memory_id, score=score))


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class TestBuildPreview:
    def test_short_text_unchanged(self):
        assert build_preview("hello") == "hello"

    def test_long_text_keeps_both_ends(self):
        text = "a" * 150 + "b" * 150
        preview = build_preview(text)
        assert preview.startswith("a" * 100)
        assert preview.endswith("b" * 100)
        assert " ... " in preview


class TestDiagnosticCollector:
    """Tests for DiagnosticCollector."""

    def test_finalize_defaults(self):
        payload = _make_collector().finalize()
        assert payload["meta"]["request_id"] == "req-1"
        assert payload["llm_config"] == {"model": NOT_RECORDED}
        assert payload["llm_response"] == {"raw_content": NOT_RECORDED}
        assert payload["memory_retrieval"] == {"memories_found": []}
        assert payload["post_processing"] == {"transforms_applied": []}
        assert "error" not in payload

    def test_finalize_is_json_serializable(self):
        collector = _make_collector()
        collector.record_token_budget(TokenBudget.allocate(1000, 100, 10), history_messages_dropped=2)
        collector.record_llm_config(ModelConfig(model="m", context_window_tokens=1000), provider="openai")
        collector.record_assembled_prompt([{"role": "system", "content": "sys"}], token_estimate=5)
        json.dumps(collector.finalize())

    def test_memory_retrieval_marks_selected(self):
        collector = _make_collector()
        kept = _make_memory("m-1", "likes tea")
        dropped = _make_memory("m-2", "likes coffee")
        collector.record_memory_retrieval([kept, dropped], [kept])
        found = collector.finalize()["memory_retrieval"]["memories_found"]
        assert [(m["id"], m["included_in_prompt"]) for m in found] == [("m-1", True), ("m-2", False)]

    def test_token_budget_carries_drop_counts(self):
        collector = _make_collector()
        collector.record_token_budget(TokenBudget.allocate(1000, 100, 10), memories_dropped=1)
        budget = collector.finalize()["token_budget"]
        assert budget["history_budget"] == 890
        assert budget["memories_dropped"] == 1

    def test_timing(self):
        clock = FakeClock()
        collector = _make_collector(clock)
        clock.now = 101.0
        collector.mark_llm_invocation_start()
        clock.now = 101.5
        collector.record_llm_response(LLMResponse(content="hi", model_used="m"))
        clock.now = 102.0
        timing = collector.finalize()["timing"]
        assert timing["total_duration_ms"] == 2000
        assert timing["llm_invocation_ms"] == 500

    def test_timing_reset_for_retry(self):
        clock = FakeClock()
        collector = _make_collector(clock)
        collector.mark_llm_invocation_start()
        collector.record_llm_response(LLMResponse(content=""))
        collector.reset_llm_timing_for_retry()
        assert "llm_invocation_ms" not in collector.finalize()["timing"]

    def test_last_record_wins(self):
        collector = _make_collector()
        collector.record_llm_response(LLMResponse(content="first"))
        collector.record_llm_response(LLMResponse(content="second"))
        assert collector.finalize()["llm_response"]["raw_content"] == "second"

    def test_attempts_accumulate(self):
        collector = _make_collector()
        collector.record_attempt(AttemptRecord(attempt=1, outcome="duplicate"))
        collector.record_attempt(AttemptRecord(attempt=2, outcome="accepted"))
        assert [a["outcome"] for a in collector.finalize()["attempts"]] == ["duplicate", "accepted"]

    @pytest.mark.parametrize(
        "raw, deduplicated, final, thinking, expected",
        [
            ("a", "a", "a", None, []),
            ("aa", "a", "a", None, ["duplicate_removal"]),
            ("a", "a", "b", None, ["artifact_strip"]),
            ("aa", "a", "b", "hmm", ["duplicate_removal", "thinking_extraction", "artifact_strip"]),
        ],
    )
    def test_post_processing_transforms(self, raw, deduplicated, final, thinking, expected):
        collector = _make_collector()
        collector.record_post_processing(raw, deduplicated, final, thinking)
        assert collector.finalize()["post_processing"]["transforms_applied"] == expected

    def test_error_recorded(self):
        collector = _make_collector()
        collector.record_error("boom", "server_error", "generation", reference_id="ref-1", raw_error={"x": 1})
        error = collector.finalize()["error"]
        assert error["failed_at_stage"] == "generation"
        assert error["raw_error"] == {"x": 1}

    def test_large_raw_error_truncated(self):
        collector = _make_collector()
        collector.record_error("boom", "unknown", "generation", raw_error={"body": "x" * (MAX_ERROR_SIZE + 10)})
        raw = collector.finalize()["error"]["raw_error"]
        assert raw["_truncated"] is True
        assert raw["_original_size"] > MAX_ERROR_SIZE
        assert len(raw["preview"]) == MAX_ERROR_SIZE


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestStoreDiagnostics:
    """Tests for store_diagnostics and BackgroundTasks."""

    @pytest.mark.asyncio
    async def test_stores_payload(self):
        sink = InMemoryDiagnosticSink()
        tasks = BackgroundTasks()
        store_diagnostics(_make_collector(), sink, tasks)
        await tasks.drain()
        assert sink.payloads[0]["meta"]["request_id"] == "req-1"
        assert len(tasks) == 0

    @pytest.mark.asyncio
    async def test_sink_failure_is_swallowed(self, caplog):
        sink = AsyncMock()
        sink.store.side_effect = RuntimeError("db down")
        tasks = BackgroundTasks()
        store_diagnostics(_make_collector(), sink, tasks)
        await tasks.drain()
        assert "db down" in caplog.text

    @pytest.mark.asyncio
    async def test_no_sink(self):
        tasks = BackgroundTasks()
        store_diagnostics(_make_collector(), None, tasks)
        assert len(tasks) == 0

    @pytest.mark.asyncio
    async def test_spawn_does_not_block(self):
        release = asyncio.Event()
        finished = []

        async def slow():
            await release.wait()
            finished.append(True)

        tasks = BackgroundTasks()
        tasks.spawn(slow(), name="slow")
        assert len(tasks) == 1
        assert finished == []
        release.set()
        await tasks.drain()
        assert finished == [True]

    @pytest.mark.asyncio
    async def test_task_exception_is_logged(self, caplog):
        async def broken():
            raise ValueError("bad")

        tasks = BackgroundTasks()
        task = tasks.spawn(broken(), name="broken")
        await tasks.drain()
        assert task.exception() is None
        assert "Background task broken failed" in caplog.text

    @pytest.mark.asyncio
    async def test_drain_timeout(self):
        tasks = BackgroundTasks()
        task = tasks.spawn(asyncio.sleep(10), name="sleeper")
        await tasks.drain(timeout=0.01)
        assert not task.done()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
