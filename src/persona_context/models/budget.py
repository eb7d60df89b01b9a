# persona_context/models/budget.py
"""Token budget ledger and selection results."""

from __future__ import annotations

from pydantic import BaseModel, Field

from persona_context.models.enums import SelectionStrategy
from persona_context.models.history import ConversationEntry
from persona_context.models.memory import MemoryDocument


class TokenBudget(BaseModel):
    """
    Per-request token ledger.

    ``history_budget`` is derived: ``max(0, total - system - current - memory)``.
    After selection ``history_tokens_used <= history_budget`` always holds.
    """

    context_window_tokens: int = Field(..., ge=0)
    system_prompt_tokens: int = Field(default=0, ge=0)
    current_message_tokens: int = Field(default=0, ge=0)
    memory_tokens: int = Field(default=0, ge=0)
    history_budget: int = Field(default=0, ge=0)
    history_tokens_used: int = Field(default=0, ge=0)

    @classmethod
    def allocate(
        cls,
        context_window_tokens: int,
        system_prompt_tokens: int,
        current_message_tokens: int,
        memory_tokens: int = 0,
    ) -> TokenBudget:
        history_budget = max(
            0,
            context_window_tokens - system_prompt_tokens - current_message_tokens - memory_tokens,
        )
        return cls(
            context_window_tokens=context_window_tokens,
            system_prompt_tokens=system_prompt_tokens,
            current_message_tokens=current_message_tokens,
            memory_tokens=memory_tokens,
            history_budget=history_budget,
        )

    def record_history_usage(self, tokens: int) -> None:
        if tokens < 0 or tokens > self.history_budget:
            raise ValueError(f"history usage {tokens} outside budget {self.history_budget}")
        self.history_tokens_used = tokens

    @property
    def total_used(self) -> int:
        return (
            self.system_prompt_tokens
            + self.current_message_tokens
            + self.memory_tokens
            + self.history_tokens_used
        )


class SelectionMetadata(BaseModel):
    messages_included: int = Field(default=0, ge=0)
    messages_dropped: int = Field(default=0, ge=0)
    strategy: SelectionStrategy = Field(default=SelectionStrategy.RECENCY)


class PromptContext(BaseModel):
    """Result of ``ContextWindowManager.build_context``."""

    system_prompt: str
    current_message: str
    selected_history: list[ConversationEntry] = Field(default_factory=list)
    relevant_memories: list[MemoryDocument] = Field(default_factory=list)
    token_budget: TokenBudget
    metadata: SelectionMetadata = Field(default_factory=SelectionMetadata)


class HistorySerialization(BaseModel):
    """Result of selecting and serializing history into ``<chat_log>`` XML."""

    serialized_history: str = Field(default="", description="Current-channel message XML")
    cross_channel_history: str = Field(default="", description="<prior_conversations> block or ''")
    history_tokens_used: int = Field(default=0, ge=0)
    messages_included: int = Field(default=0, ge=0)
    messages_dropped: int = Field(default=0, ge=0)


class MemorySelection(BaseModel):
    selected_memories: list[MemoryDocument] = Field(default_factory=list)
    tokens_used: int = Field(default=0, ge=0)
    memories_included: int = Field(default=0, ge=0)
    memories_dropped: int = Field(default=0, ge=0)
