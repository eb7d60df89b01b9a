# tests/test_orchestrator.py
"""
Tests for the generation retry loop.

The invoker is an AsyncMock; each test scripts its replies through
``side_effect``.
"""

import asyncio

import pytest

from conftest import WordEstimator, make_entry
from persona_context.context.assembler import ContextAssembler
from persona_context.context.window_manager import ContextWindowManager
from persona_context.exceptions import LLMInvocationError, LLMTimeoutError
from persona_context.generation.diagnostics import DiagnosticCollector, DiagnosticMeta
from persona_context.generation.duplicates import DuplicateDetector
from persona_context.generation.orchestrator import GenerationOrchestrator
from persona_context.models.enums import DetectionMethod
from persona_context.models.generation import LLMResponse, ModelConfig

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

PREVIOUS = "Hello Alice, lovely to see you again today!"
FRESH = "A perfectly fresh reply about dinner."


def _make_response(content: str, thinking: str | None = None) -> LLMResponse:
    return LLMResponse(content=content, model_used="test-model", thinking_content=thinking)


def _make_orchestrator(invoker, max_attempts: int = 3) -> GenerationOrchestrator:
    return GenerationOrchestrator(
        invoker,
        ContextAssembler(ContextWindowManager(WordEstimator())),
        DuplicateDetector(),
        max_attempts=max_attempts,
    )


def _make_collector() -> DiagnosticCollector:
    return DiagnosticCollector(
        DiagnosticMeta(
            request_id="req-1",
            personality_id="p-1",
            personality_name="Emily",
            user_id="u-1",
            channel_id="c-1",
        )
    )


async def _generate(orchestrator, conversation, model_config, now, collector=None):
    window = orchestrator.detector.build_window(conversation.history)
    result = await orchestrator.generate(conversation, window, model_config, collector=collector, now=now)
    return result, window


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestAcceptedResponse:
    """Tests for first-attempt success."""

    @pytest.mark.asyncio
    async def test_first_attempt(self, mock_invoker, conversation, model_config, now):
        result, _ = await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert result.response.content == FRESH
        assert result.attempts == 1
        assert result.used_fallback is False
        assert result.duplicate_check.is_duplicate is False
        assert mock_invoker.invoke.await_count == 1

    @pytest.mark.asyncio
    async def test_sends_system_and_user_messages(self, mock_invoker, conversation, model_config, now):
        await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        messages = mock_invoker.invoke.call_args.args[0]
        assert [m["role"] for m in messages] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_stop_sequences_sent(self, mock_invoker, conversation, model_config, now):
        await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        sent = mock_invoker.invoke.call_args.args[1]
        assert "\nAlice:" in sent.stop_sequences
        assert "\nEmily:" in sent.stop_sequences
        assert model_config.stop_sequences == []

    @pytest.mark.asyncio
    async def test_finish_reason_recorded(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.return_value = LLMResponse(
            content=FRESH, model_used="test-model", finish_reason="stop", stop_sequence_triggered="\nAlice:"
        )
        collector = _make_collector()
        await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now, collector)
        payload = collector.finalize()
        assert "\nAlice:" in payload["llm_config"]["stop_sequences"]
        assert payload["llm_response"]["finish_reason"] == "stop"
        assert payload["llm_response"]["stop_sequence_triggered"] == "\nAlice:"

    @pytest.mark.asyncio
    async def test_accepted_reply_joins_window(self, mock_invoker, conversation, model_config, now):
        _, window = await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert window.contents() == [FRESH, PREVIOUS]

    @pytest.mark.asyncio
    async def test_artifacts_cleaned(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.return_value = _make_response(f"Emily: {FRESH}</message>")
        result, _ = await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert result.response.content == FRESH

    @pytest.mark.asyncio
    async def test_token_budget_reported(self, mock_invoker, conversation, model_config, now):
        result, _ = await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert result.token_budget.context_window_tokens == 4000
        assert result.token_budget.history_tokens_used <= result.token_budget.history_budget


# ---------------------------------------------------------------------------
# Empty and duplicate responses
# ---------------------------------------------------------------------------


class TestRetries:
    """Tests for empty and duplicate retry handling."""

    @pytest.mark.asyncio
    async def test_empty_then_success(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.side_effect = [_make_response(""), _make_response(FRESH)]
        result, _ = await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert result.response.content == FRESH
        assert result.attempts == 2
        assert result.empty_retries == 1

    @pytest.mark.asyncio
    async def test_retry_escalates_parameters(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.side_effect = [_make_response(""), _make_response(FRESH)]
        await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        first_config = mock_invoker.invoke.call_args_list[0].args[1]
        second_config = mock_invoker.invoke.call_args_list[1].args[1]
        assert first_config.temperature is None
        assert second_config.temperature >= 0.95
        assert second_config.frequency_penalty == 0.5

    @pytest.mark.asyncio
    async def test_duplicate_then_success(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.side_effect = [_make_response(PREVIOUS), _make_response(FRESH)]
        result, _ = await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert result.response.content == FRESH
        assert result.duplicate_retries == 1
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_persistent_duplicate_returned(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.side_effect = [_make_response(PREVIOUS)] * 3
        result, window = await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert result.response.content == PREVIOUS
        assert result.attempts == 3
        assert result.duplicate_retries == 3
        assert result.duplicate_check.detection_method == DetectionMethod.EXACT_HASH
        assert len(window) == 1

    @pytest.mark.asyncio
    async def test_empty_final_attempt_uses_duplicate_fallback(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.side_effect = [_make_response(PREVIOUS), _make_response(""), _make_response("")]
        result, _ = await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert result.response.content == PREVIOUS
        assert result.used_fallback is True

    @pytest.mark.asyncio
    async def test_all_empty(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.side_effect = [_make_response("")] * 3
        result, _ = await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert result.response.content == ""
        assert result.empty_retries == 3
        assert result.used_fallback is False

    @pytest.mark.asyncio
    async def test_artifact_only_reply_counts_as_empty(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.side_effect = [_make_response("</message>"), _make_response(FRESH)]
        result, _ = await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert result.empty_retries == 1
        assert result.response.content == FRESH

    @pytest.mark.asyncio
    async def test_third_attempt_reduces_history(self, mock_invoker, conversation, model_config, now):
        conversation.history = [make_entry("user", f"turn number {i:02d}") for i in range(10)]
        mock_invoker.invoke.side_effect = [_make_response(""), _make_response(""), _make_response(FRESH)]
        await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        second_prompt = mock_invoker.invoke.call_args_list[1].args[0][0]["content"]
        third_prompt = mock_invoker.invoke.call_args_list[2].args[0][0]["content"]
        assert "turn number 00" in second_prompt
        assert "turn number 00" not in third_prompt
        assert "turn number 09" in third_prompt

    @pytest.mark.asyncio
    async def test_thinking_preserved_across_attempts(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.side_effect = [_make_response("", thinking="let me think"), _make_response(FRESH)]
        result, _ = await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert result.response.thinking_content == "let me think"

    @pytest.mark.asyncio
    async def test_collector_records_attempts(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.side_effect = [_make_response(""), _make_response(PREVIOUS), _make_response(FRESH)]
        collector = _make_collector()
        await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now, collector)
        payload = collector.finalize()
        assert [a["outcome"] for a in payload["attempts"]] == ["empty", "duplicate", "accepted"]
        assert payload["llm_response"]["raw_content"] == FRESH


# ---------------------------------------------------------------------------
# Invocation errors
# ---------------------------------------------------------------------------


class TestInvocationErrors:
    """Tests for timeouts and provider errors."""

    @pytest.mark.asyncio
    async def test_timeout_raises(self, mock_invoker, conversation, now):
        async def slow(*args, **kwargs):
            await asyncio.sleep(10)

        mock_invoker.invoke.side_effect = slow
        config = ModelConfig(model="test-model", context_window_tokens=4000, timeout_seconds=0.01)
        with pytest.raises(LLMTimeoutError):
            await _generate(_make_orchestrator(mock_invoker, max_attempts=1), conversation, config, now)

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self, mock_invoker, conversation, now):
        async def slow(*args, **kwargs):
            await asyncio.sleep(10)

        mock_invoker.invoke.side_effect = slow
        config = ModelConfig(model="test-model", context_window_tokens=4000, timeout_seconds=0.01)
        with pytest.raises(LLMTimeoutError):
            await _generate(_make_orchestrator(mock_invoker), conversation, config, now)
        assert mock_invoker.invoke.await_count == 3

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.side_effect = [LLMInvocationError("overloaded", status_code=503), _make_response(FRESH)]
        result, _ = await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert result.response.content == FRESH
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.side_effect = LLMInvocationError("bad key", status_code=401)
        with pytest.raises(LLMInvocationError):
            await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert mock_invoker.invoke.await_count == 1

    @pytest.mark.asyncio
    async def test_error_after_duplicate_returns_fallback(self, mock_invoker, conversation, model_config, now):
        mock_invoker.invoke.side_effect = [
            _make_response(PREVIOUS),
            LLMInvocationError("bad key", status_code=401),
        ]
        result, _ = await _generate(_make_orchestrator(mock_invoker), conversation, model_config, now)
        assert result.response.content == PREVIOUS
        assert result.used_fallback is True
