# tests/test_window_manager.py
"""
Tests for the context window manager.

Covers:
- TokenBudget allocation and the history usage invariant
- build_context recency selection (contiguous suffix, no partial messages)
- select_and_serialize_history with real counting and cross-channel fill
- Memory budget and memory selection
"""

import logging

import pytest

from conftest import FIXED_NOW, WordEstimator, make_entry
from persona_context.context.window_manager import ContextWindowConfig, ContextWindowManager
from persona_context.models.budget import TokenBudget
from persona_context.models.environment import CrossChannelGroup, GuildEnvironment
from persona_context.models.memory import MemoryDocument

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _words(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


def _make_history(sizes: list[int]) -> list:
    """History whose entries carry cached token counts."""
    return [
        make_entry("user" if i % 2 == 0 else "assistant", f"message {i}", token_count=size)
        for i, size in enumerate(sizes)
    ]


def _make_manager(**config) -> ContextWindowManager:
    return ContextWindowManager(WordEstimator(), ContextWindowConfig(**config))


# ---------------------------------------------------------------------------
# TokenBudget
# ---------------------------------------------------------------------------


class TestTokenBudget:
    """Tests for the budget ledger."""

    def test_allocate(self):
        budget = TokenBudget.allocate(8000, 500, 50, 200)
        assert budget.history_budget == 7250
        assert budget.history_tokens_used == 0

    def test_allocate_never_negative(self):
        assert TokenBudget.allocate(100, 500, 50, 200).history_budget == 0

    def test_record_usage(self):
        budget = TokenBudget.allocate(1000, 100, 10, 0)
        budget.record_history_usage(500)
        assert budget.total_used == 610

    def test_record_usage_over_budget_rejected(self):
        budget = TokenBudget.allocate(100, 50, 10, 0)
        with pytest.raises(ValueError):
            budget.record_history_usage(41)


# ---------------------------------------------------------------------------
# build_context
# ---------------------------------------------------------------------------


class TestBuildContext:
    """Tests for budgeted history selection."""

    def test_everything_fits(self):
        manager = _make_manager()
        memories = [MemoryDocument(page_content=_words(200))]
        result = manager.build_context(
            system_prompt=_words(500),
            current_message=_words(50),
            relevant_memories=memories,
            conversation_history=_make_history([100] * 10),
            context_window_tokens=8000,
        )
        assert result.token_budget.history_budget == 7250
        assert result.token_budget.history_tokens_used == 1000
        assert result.metadata.messages_included == 10
        assert result.metadata.messages_dropped == 0

    def test_saturated_window_selects_nothing(self):
        manager = _make_manager()
        history = _make_history([10] * 4)
        result = manager.build_context(
            system_prompt=_words(8000),
            current_message="hi",
            relevant_memories=[],
            conversation_history=history,
            context_window_tokens=8000,
        )
        assert result.token_budget.history_budget == 0
        assert result.selected_history == []
        assert result.metadata.messages_dropped == 4

    def test_drops_oldest_first(self):
        manager = _make_manager()
        history = _make_history([40, 30, 20, 10])
        result = manager.build_context(_words(10), _words(5), [], history, context_window_tokens=50)
        assert result.token_budget.history_budget == 35
        assert [e.content for e in result.selected_history] == ["message 2", "message 3"]
        assert result.token_budget.history_tokens_used == 30

    def test_stops_at_first_overflow(self):
        # A small message older than an oversized one is never pulled in.
        manager = _make_manager()
        history = _make_history([1, 100, 5])
        result = manager.build_context("", "", [], history, context_window_tokens=20)
        assert [e.content for e in result.selected_history] == ["message 2"]

    def test_structured_content_is_counted(self):
        manager = _make_manager()
        content = [{"type": "text", "text": "hello world"}]
        result = manager.build_context("sys", content, [], [], context_window_tokens=100)
        assert result.token_budget.current_message_tokens > 0
        assert isinstance(result.current_message, str)

    def test_uncached_entries_are_counted_from_formatted_text(self):
        manager = _make_manager()
        history = [make_entry("user", "one two three")]
        result = manager.build_context("", "", [], history, context_window_tokens=100)
        assert result.token_budget.history_tokens_used == manager.estimator.count_text_tokens(
            '<message from="User" role="user">one two three</message>'
        )

    @pytest.mark.parametrize("window", [0, 1, 15, 37, 60, 99, 150, 1000])
    def test_budget_and_suffix_invariants(self, window):
        manager = _make_manager()
        history = _make_history([7, 3, 12, 1, 9, 4, 20, 2])
        result = manager.build_context(_words(5), _words(3), [], history, context_window_tokens=window)

        budget = result.token_budget
        assert budget.history_budget >= 0
        assert budget.history_tokens_used <= budget.history_budget

        selected = result.selected_history
        assert selected == history[len(history) - len(selected):]
        assert budget.history_tokens_used == sum(e.token_count for e in selected)


# ---------------------------------------------------------------------------
# select_and_serialize_history
# ---------------------------------------------------------------------------


class TestSelectAndSerialize:
    """Tests for chat log serialization within budget."""

    def test_zero_budget(self):
        manager = _make_manager()
        result = manager.select_and_serialize_history(_make_history([1, 1]), "Emily", 0)
        assert result.serialized_history == ""
        assert result.messages_dropped == 2
        assert result.history_tokens_used == 0

    def test_zero_budget_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="persona_context.context.window_manager"):
            _make_manager().select_and_serialize_history(_make_history([1, 1]), "Emily", 0)
        assert "No history budget available: 2 history messages dropped" in caplog.text

    def test_empty_history(self):
        result = _make_manager().select_and_serialize_history([], "Emily", 100)
        assert result.messages_included == 0
        assert result.messages_dropped == 0

    def test_none_history(self):
        result = _make_manager().select_and_serialize_history(None, "Emily", 100)
        assert result.serialized_history == ""

    def test_all_included(self):
        manager = _make_manager()
        history = [make_entry("user", "hello there"), make_entry("assistant", "hi back")]
        result = manager.select_and_serialize_history(history, "Emily", 1000, now=FIXED_NOW)
        assert result.messages_included == 2
        assert "hello there" in result.serialized_history
        assert 'from="Emily" role="assistant">hi back' in result.serialized_history
        assert 0 < result.history_tokens_used <= 1000

    def test_real_count_trims_oldest(self):
        manager = _make_manager()
        history = [make_entry("user", _words(30)) for _ in range(5)]
        result = manager.select_and_serialize_history(history, "Emily", 70)
        assert result.history_tokens_used <= 70
        assert result.messages_included < 5
        assert result.messages_included + result.messages_dropped == 5

    @pytest.mark.parametrize("budget", [3, 10, 25, 50, 200])
    def test_usage_never_exceeds_budget(self, budget):
        manager = _make_manager()
        history = [make_entry("user", _words(n)) for n in (4, 9, 2, 6)]
        result = manager.select_and_serialize_history(history, "Emily", budget)
        assert result.history_tokens_used <= budget

    def test_cross_channel_fills_remaining_budget(self):
        manager = _make_manager()
        group = CrossChannelGroup(
            channel_environment=GuildEnvironment(guild_name="G", channel_name="other"),
            messages=[make_entry("user", "elsewhere", token_count=1)],
        )
        result = manager.select_and_serialize_history(
            [make_entry("user", "here")], "Emily", 500, cross_channel_groups=[group]
        )
        assert "<prior_conversations>" in result.cross_channel_history
        assert result.history_tokens_used <= 500

    def test_no_cross_channel_when_budget_exhausted(self):
        manager = _make_manager()
        group = CrossChannelGroup(
            channel_environment=GuildEnvironment(guild_name="G", channel_name="other"),
            messages=[make_entry("user", "elsewhere", token_count=1)],
        )
        history = [make_entry("user", _words(20), token_count=1)]
        full = manager.select_and_serialize_history(history, "Emily", 1000)
        result = manager.select_and_serialize_history(
            history, "Emily", full.history_tokens_used, cross_channel_groups=[group]
        )
        assert result.cross_channel_history == ""


# ---------------------------------------------------------------------------
# Memories
# ---------------------------------------------------------------------------


class TestMemoryBudget:
    """Tests for memory budgeting and selection."""

    def test_capped_by_ratio(self):
        manager = _make_manager(memory_budget_ratio=0.25)
        assert manager.calculate_memory_budget(1000, 100, 10) == 250

    def test_capped_by_remaining(self):
        manager = _make_manager(memory_budget_ratio=0.25)
        assert manager.calculate_memory_budget(1000, 850, 50) == 100

    def test_never_negative(self):
        assert _make_manager().calculate_memory_budget(100, 200, 50) == 0

    def test_history_budget_helper(self):
        assert _make_manager().calculate_history_budget(1000, 300, 50, 100) == 550
        assert _make_manager().calculate_history_budget(100, 300, 50, 100) == 0

    def test_selection_keeps_relevance_order(self):
        manager = _make_manager()
        docs = [MemoryDocument(page_content=_words(5)) for _ in range(3)]
        result = manager.select_memories_within_budget(docs, 100)
        assert result.selected_memories == docs
        assert result.tokens_used == 15
        assert result.memories_dropped == 0

    def test_large_memory_skipped_smaller_kept(self):
        manager = _make_manager()
        docs = [
            MemoryDocument(page_content=_words(5)),
            MemoryDocument(page_content=_words(50)),
            MemoryDocument(page_content=_words(3)),
        ]
        result = manager.select_memories_within_budget(docs, 10)
        assert result.selected_memories == [docs[0], docs[2]]
        assert result.tokens_used == 8
        assert result.memories_dropped == 1

    def test_zero_budget_drops_everything(self):
        docs = [MemoryDocument(page_content="x")]
        result = _make_manager().select_memories_within_budget(docs, 0)
        assert result.selected_memories == []
        assert result.memories_dropped == 1
