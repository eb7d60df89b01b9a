# tests/test_retry.py
"""
Tests for retry decisions, fallback selection and per-attempt isolation.
"""

import pytest

from conftest import make_entry
from persona_context.generation.cloning import clone_context_for_retry, reduce_history
from persona_context.generation.retry import (
    RETRY_ATTEMPT_2_FREQUENCY_PENALTY,
    RETRY_ATTEMPT_3_HISTORY_REDUCTION,
    build_retry_config,
    decide_duplicate,
    decide_empty_response,
    get_retry_temperature,
    select_better_fallback,
)
from persona_context.models.enums import FallbackReason, RetryAction
from persona_context.models.generation import LLMResponse, ModelConfig
from persona_context.models.history import ImageDescription, MessageMetadata

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_response(content: str) -> LLMResponse:
    return LLMResponse(content=content, model_used="m")


# ---------------------------------------------------------------------------
# Retry config
# ---------------------------------------------------------------------------


class TestRetryConfig:
    """Tests for escalating retry parameters."""

    def test_first_attempt_has_no_overrides(self):
        config = build_retry_config(1)
        assert config.temperature_override is None
        assert config.frequency_penalty_override is None
        assert config.history_reduction_percent is None

    def test_second_attempt(self):
        config = build_retry_config(2)
        assert 0.95 <= config.temperature_override <= 1.0
        assert config.frequency_penalty_override == RETRY_ATTEMPT_2_FREQUENCY_PENALTY
        assert config.history_reduction_percent is None

    @pytest.mark.parametrize("attempt", [3, 4])
    def test_third_attempt_onwards(self, attempt):
        config = build_retry_config(attempt)
        assert config.attempt == attempt
        assert config.frequency_penalty_override == 0.5
        assert config.history_reduction_percent == RETRY_ATTEMPT_3_HISTORY_REDUCTION

    def test_temperature_range(self):
        for _ in range(50):
            assert 0.95 <= get_retry_temperature() <= 1.0

    def test_model_config_with_retry(self):
        base = ModelConfig(model="m", context_window_tokens=100, temperature=0.3, frequency_penalty=0.0)
        applied = base.with_retry(build_retry_config(2))
        assert applied.temperature >= 0.95
        assert applied.frequency_penalty == 0.5
        assert base.temperature == 0.3

    def test_model_config_first_attempt_unchanged(self):
        base = ModelConfig(model="m", context_window_tokens=100, temperature=0.3)
        assert base.with_retry(build_retry_config(1)) == base


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


class TestDecisions:
    """Tests for the empty/duplicate state machine."""

    def test_non_empty_continues(self):
        assert decide_empty_response("hi", 1, 3) == RetryAction.CONTINUE

    @pytest.mark.parametrize("content", ["", None])
    def test_empty_retries_while_attempts_remain(self, content):
        assert decide_empty_response(content, 1, 3) == RetryAction.RETRY
        assert decide_empty_response(content, 2, 3) == RetryAction.RETRY

    def test_empty_on_last_attempt_returns(self):
        assert decide_empty_response("", 3, 3) == RetryAction.RETURN

    def test_duplicate_retries_then_returns(self):
        assert decide_duplicate(1, 3, match_index=0) == RetryAction.RETRY
        assert decide_duplicate(3, 3, match_index=0) == RetryAction.RETURN

    def test_single_attempt_budget(self):
        assert decide_empty_response("", 1, 1) == RetryAction.RETURN
        assert decide_duplicate(1, 1) == RetryAction.RETURN


class TestFallbackSelection:
    """Tests for select_better_fallback."""

    def test_first_fallback(self):
        fallback = select_better_fallback(None, _make_response(""), FallbackReason.EMPTY, 1)
        assert fallback.reason == FallbackReason.EMPTY
        assert fallback.attempt == 1

    def test_duplicate_beats_empty(self):
        current = select_better_fallback(None, _make_response(""), FallbackReason.EMPTY, 1)
        better = select_better_fallback(current, _make_response("dup"), FallbackReason.DUPLICATE, 2)
        assert better.reason == FallbackReason.DUPLICATE
        assert better.attempt == 2

    def test_empty_never_replaces_duplicate(self):
        current = select_better_fallback(None, _make_response("dup"), FallbackReason.DUPLICATE, 1)
        kept = select_better_fallback(current, _make_response(""), FallbackReason.EMPTY, 2)
        assert kept.attempt == 1

    def test_longer_duplicate_wins(self):
        current = select_better_fallback(None, _make_response("short"), FallbackReason.DUPLICATE, 1)
        better = select_better_fallback(current, _make_response("much longer"), FallbackReason.DUPLICATE, 2)
        assert better.attempt == 2

    def test_tie_keeps_earlier(self):
        current = select_better_fallback(None, _make_response("aaaa"), FallbackReason.DUPLICATE, 1)
        kept = select_better_fallback(current, _make_response("bbbb"), FallbackReason.DUPLICATE, 2)
        assert kept.attempt == 1


# ---------------------------------------------------------------------------
# Cloning
# ---------------------------------------------------------------------------


class TestCloning:
    """Tests for per-attempt context isolation."""

    def test_clone_is_deep(self, conversation):
        clone = clone_context_for_retry(conversation)
        clone.history[0].message_metadata = MessageMetadata(
            image_descriptions=[ImageDescription(filename="a.png", description="A")]
        )
        clone.history.append(make_entry("user", "extra"))
        assert conversation.history[0].message_metadata is None
        assert len(conversation.history) == 2

    def test_nested_lists_not_shared(self, conversation):
        conversation.history[0].message_metadata = MessageMetadata()
        clone = clone_context_for_retry(conversation)
        clone.history[0].message_metadata.image_descriptions.append(
            ImageDescription(filename="a.png", description="A")
        )
        assert conversation.history[0].message_metadata.image_descriptions == []

    def test_reduce_history_drops_oldest(self):
        entries = [make_entry("user", str(i)) for i in range(10)]
        reduced = reduce_history(entries, 0.3)
        assert [e.content for e in reduced] == [str(i) for i in range(3, 10)]

    def test_reduce_history_rounds_down(self):
        entries = [make_entry("user", str(i)) for i in range(3)]
        assert len(reduce_history(entries, 0.3)) == 3

    @pytest.mark.parametrize("pct", [None, 0.0])
    def test_no_reduction(self, pct):
        entries = [make_entry("user", "x")]
        assert reduce_history(entries, pct) is entries
