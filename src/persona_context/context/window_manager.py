# persona_context/context/window_manager.py
"""
Context Window Manager.

Allocates the fixed per-request token budget across the system prompt,
the current message, memories and history, and selects which history
messages survive the cut.

Selection is recency-based: walk history newest-first, stop before the
first message that would overflow the budget, never truncate a message,
and reverse the survivors back to chronological order. The result is
always a contiguous suffix of the input. A cached ``token_count`` is
trusted over recomputation.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from persona_context.config import MEMORY_BUDGET_RATIO
from persona_context.context.cross_channel import serialize_cross_channel_history
from persona_context.context.history_formatter import (
    estimate_formatted_length,
    format_conversation_history,
    format_single_history_entry,
)
from persona_context.context.memory_formatter import count_memory_tokens, format_single_memory
from persona_context.models.budget import (
    HistorySerialization,
    MemorySelection,
    PromptContext,
    SelectionMetadata,
    TokenBudget,
)
from persona_context.models.enums import SelectionStrategy
from persona_context.models.environment import CrossChannelGroup
from persona_context.models.history import ConversationEntry
from persona_context.models.memory import MemoryDocument
from persona_context.tokens import TokenEstimator, default_estimator
from persona_context.utils.timefmt import TimeGapConfig

logger = logging.getLogger(__name__)

CHAT_LOG_WRAPPER = "<chat_log>\n</chat_log>"
CHARS_PER_TOKEN = 4


class ContextWindowConfig(BaseModel):
    """Configuration for budget allocation."""

    memory_budget_ratio: float = Field(
        default=MEMORY_BUDGET_RATIO, ge=0.0, le=1.0, description="Max share of the window for memories"
    )
    time_gap: TimeGapConfig | None = Field(default=None, description="Mark long pauses in <chat_log>")


class ContextWindowManager:
    """Token budgeting and history selection for one request at a time."""

    def __init__(
        self,
        estimator: TokenEstimator | None = None,
        config: ContextWindowConfig | None = None,
    ):
        self.estimator = estimator or default_estimator()
        self.config = config or ContextWindowConfig()

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def build_context(
        self,
        system_prompt: Any,
        current_message: Any,
        relevant_memories: list[MemoryDocument],
        conversation_history: list[ConversationEntry],
        context_window_tokens: int,
        personality_name: str = "Assistant",
        tz_name: str | None = None,
        now: datetime | None = None,
    ) -> PromptContext:
        """
        Compute the token budget and the history suffix that fits it.

        ``system_prompt`` and ``current_message`` may be plain text or any
        structured message content; non-text content is stringified before
        counting. Memories are costed from their formatted representation.
        """
        budget = TokenBudget.allocate(
            context_window_tokens=context_window_tokens,
            system_prompt_tokens=self.estimator.count_content_tokens(system_prompt),
            current_message_tokens=self.estimator.count_content_tokens(current_message),
            memory_tokens=count_memory_tokens(relevant_memories, self.estimator, tz_name, now),
        )

        def cost(entry: ConversationEntry) -> int:
            return self.estimator.count_text_tokens(
                format_single_history_entry(entry, personality_name, now=now, tz_name=tz_name)
            )

        selected, used = self._select_suffix(conversation_history, budget.history_budget, cost)
        budget.record_history_usage(used)

        dropped = len(conversation_history) - len(selected)
        logger.info(
            f"Token budget: total={budget.context_window_tokens}, system={budget.system_prompt_tokens}, "
            f"current={budget.current_message_tokens}, memories={budget.memory_tokens}, "
            f"historyBudget={budget.history_budget}, historyUsed={used}"
        )
        if budget.history_budget <= 0:
            logger.warning(
                "No history budget available: system prompt, current message and memories "
                "consumed the entire context window"
            )
        if dropped:
            logger.debug(f"Dropped {dropped} history messages due to token budget")

        return PromptContext(
            system_prompt=system_prompt if isinstance(system_prompt, str) else str(system_prompt),
            current_message=current_message if isinstance(current_message, str) else str(current_message),
            selected_history=selected,
            relevant_memories=relevant_memories,
            token_budget=budget,
            metadata=SelectionMetadata(
                messages_included=len(selected),
                messages_dropped=dropped,
                strategy=SelectionStrategy.RECENCY,
            ),
        )

    def calculate_history_budget(
        self,
        context_window_tokens: int,
        system_prompt_base_tokens: int,
        current_message_tokens: int,
        memory_tokens: int,
    ) -> int:
        return max(
            0,
            context_window_tokens - system_prompt_base_tokens - current_message_tokens - memory_tokens,
        )

    def _select_suffix(
        self,
        history: list[ConversationEntry],
        history_budget: int,
        cost: Callable[[ConversationEntry], int],
    ) -> tuple[list[ConversationEntry], int]:
        if not history or history_budget <= 0:
            return [], 0

        selected: list[ConversationEntry] = []
        used = 0
        for entry in reversed(history):
            tokens = entry.token_count if entry.token_count is not None else cost(entry)
            if used + tokens > history_budget:
                logger.debug(f"Stopping history inclusion: {used + tokens} > {history_budget}")
                break
            selected.append(entry)
            used += tokens

        selected.reverse()
        return selected, used

    # ------------------------------------------------------------------
    # History serialization
    # ------------------------------------------------------------------

    def select_and_serialize_history(
        self,
        raw_history: list[ConversationEntry] | None,
        personality_name: str,
        history_budget: int,
        cross_channel_groups: list[CrossChannelGroup] | None = None,
        tz_name: str | None = None,
        now: datetime | None = None,
    ) -> HistorySerialization:
        """
        Select history within budget and render it for ``<chat_log>``.

        Entries without a cached count are estimated from their formatted
        length. The rendered XML is then counted for real; if the estimate
        undershot, the oldest selected entries are dropped until it fits.
        Cross-channel history gets whatever budget is left.
        """
        raw_history = raw_history or []
        if history_budget <= 0:
            logger.warning(
                f"No history budget available: {len(raw_history)} history messages dropped "
                f"(budget: {history_budget})"
            )
            return HistorySerialization(messages_dropped=len(raw_history))
        if not raw_history:
            return HistorySerialization()

        wrapper_overhead = self.estimator.count_text_tokens(CHAT_LOG_WRAPPER)
        available = history_budget - wrapper_overhead
        if available <= 0:
            return HistorySerialization(messages_dropped=len(raw_history))

        def estimate(entry: ConversationEntry) -> int:
            return math.ceil(estimate_formatted_length(entry, personality_name, now, tz_name) / CHARS_PER_TOKEN)

        selected, _ = self._select_suffix(raw_history, available, estimate)

        serialized = self._render(selected, personality_name, tz_name, now)
        actual = self.estimator.count_text_tokens(serialized) + wrapper_overhead
        while selected and actual > history_budget:
            selected = selected[1:]
            serialized = self._render(selected, personality_name, tz_name, now)
            actual = self.estimator.count_text_tokens(serialized) + wrapper_overhead
        if not selected:
            serialized = ""
            actual = 0

        logger.info(
            f"Selected {len(selected)}/{len(raw_history)} history messages "
            f"({actual} tokens, budget: {history_budget})"
        )

        cross_xml = ""
        if cross_channel_groups and actual < history_budget:
            cross_xml, cross_tokens = self._fit_cross_channel(
                cross_channel_groups, personality_name, history_budget - actual, tz_name, now
            )
            if cross_xml:
                actual += cross_tokens
                logger.info(
                    f"Added cross-channel history ({cross_tokens} tokens, {len(cross_channel_groups)} channels)"
                )

        return HistorySerialization(
            serialized_history=serialized,
            cross_channel_history=cross_xml,
            history_tokens_used=actual,
            messages_included=len(selected),
            messages_dropped=len(raw_history) - len(selected),
        )

    def _render(
        self,
        entries: list[ConversationEntry],
        personality_name: str,
        tz_name: str | None,
        now: datetime | None,
    ) -> str:
        return format_conversation_history(entries, personality_name, self.config.time_gap, now, tz_name)

    def _fit_cross_channel(
        self,
        groups: list[CrossChannelGroup],
        personality_name: str,
        remaining: int,
        tz_name: str | None,
        now: datetime | None,
    ) -> tuple[str, int]:
        """Serialize cross-channel history, shrinking its budget until the real count fits."""
        budget = remaining
        while budget > 0:
            xml = serialize_cross_channel_history(groups, personality_name, budget, now, tz_name)
            if not xml:
                return "", 0
            tokens = self.estimator.count_text_tokens(xml)
            if tokens <= remaining:
                return xml, tokens
            budget -= tokens - remaining
        return "", 0

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    def calculate_memory_budget(
        self,
        context_window_tokens: int,
        system_prompt_base_tokens: int = 0,
        current_message_tokens: int = 0,
        history_tokens: int = 0,
    ) -> int:
        """Memories get at most ``memory_budget_ratio`` of the window, and never more than is left."""
        cap = int(context_window_tokens * self.config.memory_budget_ratio)
        left = context_window_tokens - system_prompt_base_tokens - current_message_tokens - history_tokens
        return max(0, min(cap, left))

    def select_memories_within_budget(
        self,
        memories: list[MemoryDocument],
        token_budget: int,
        tz_name: str | None = None,
        now: datetime | None = None,
    ) -> MemorySelection:
        """
        Keep memories in relevance order while they fit.

        A memory too large for the remaining budget is skipped; later,
        smaller memories may still be included.
        """
        if not memories or token_budget <= 0:
            return MemorySelection(memories_dropped=len(memories))

        selected: list[MemoryDocument] = []
        used = 0
        for doc in memories:
            tokens = self.estimator.count_text_tokens(format_single_memory(doc, tz_name, now))
            if used + tokens > token_budget:
                continue
            selected.append(doc)
            used += tokens

        dropped = len(memories) - len(selected)
        if dropped:
            logger.debug(f"Dropped {dropped} memories over budget ({used}/{token_budget} tokens used)")

        return MemorySelection(
            selected_memories=selected,
            tokens_used=used,
            memories_included=len(selected),
            memories_dropped=dropped,
        )
