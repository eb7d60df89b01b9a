# persona_context/context/assembler.py
"""
Per-attempt prompt assembly.

Turns a (cloned) ``ConversationContext`` into the messages sent to the
model, in budget order:

1. apply retry history reduction and inject image descriptions
2. build the user turn and count it
3. render the system prompt without memories or history and count it
4. fit memories into their capped share of what is left
5. allocate the ``TokenBudget``; history gets the remainder
6. select and serialize history (and cross-channel history) within it
7. render the final system prompt
8. pick the stop sequences for the speakers involved
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from persona_context.config import MAX_STOP_SEQUENCES
from persona_context.context.history_formatter import inject_image_descriptions
from persona_context.context.memory_formatter import format_memories_context
from persona_context.context.window_manager import ContextWindowManager
from persona_context.generation.cloning import reduce_history
from persona_context.models.budget import HistorySerialization, MemorySelection, TokenBudget
from persona_context.models.generation import ConversationContext, ModelConfig, RetryConfig
from persona_context.prompt.builder import HumanMessage, PromptBuilder
from persona_context.prompt.environment import generate_request_id
from persona_context.prompt.stop_sequences import build_stop_sequences
from persona_context.tokens import TokenEstimator

logger = logging.getLogger(__name__)


class AssembledPrompt(BaseModel):
    """Everything one attempt sends to the model, plus how it was budgeted."""

    messages: list[dict[str, Any]]
    system_prompt: str
    human_message: HumanMessage
    token_budget: TokenBudget
    history: HistorySerialization = Field(default_factory=HistorySerialization)
    memories: MemorySelection = Field(default_factory=MemorySelection)
    request_id: str
    stop_sequences: list[str] = Field(default_factory=list)

    @property
    def token_estimate(self) -> int:
        return self.token_budget.total_used


class ContextAssembler:
    def __init__(
        self,
        window_manager: ContextWindowManager | None = None,
        prompt_builder: PromptBuilder | None = None,
        max_stop_sequences: int = MAX_STOP_SEQUENCES,
    ):
        self.window_manager = window_manager or ContextWindowManager()
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.max_stop_sequences = max_stop_sequences

    @property
    def estimator(self) -> TokenEstimator:
        return self.window_manager.estimator

    def assemble(
        self,
        context: ConversationContext,
        model_config: ModelConfig,
        retry: RetryConfig | None = None,
        now: datetime | None = None,
    ) -> AssembledPrompt:
        """Build the prompt for one attempt. ``context`` must already be a per-attempt clone."""
        personality = context.personality
        tz_name = context.user_timezone
        window = model_config.context_window_tokens
        request_id = generate_request_id()

        history = reduce_history(context.history, retry.history_reduction_percent if retry else None)
        inject_image_descriptions(history, context.image_descriptions)

        human = self.prompt_builder.build_human_message(
            context.user_message,
            active_persona_name=context.active_persona_name,
            active_persona_id=context.active_persona_id,
            discord_username=context.discord_username,
            personality_name=personality.name,
        )
        current_tokens = self.estimator.count_text_tokens(human.content)

        base_prompt = self.prompt_builder.build_full_system_prompt(
            context, include_memories=False, now=now, request_id=request_id
        )
        system_tokens = self.estimator.count_text_tokens(base_prompt)

        memory_budget = self.window_manager.calculate_memory_budget(window, system_tokens, current_tokens)
        memories = self.window_manager.select_memories_within_budget(context.memories, memory_budget, tz_name, now)
        memory_tokens = self.estimator.count_text_tokens(
            format_memories_context(memories.selected_memories, tz_name, now)
        )

        budget = TokenBudget.allocate(window, system_tokens, current_tokens, memory_tokens)

        cross_groups = context.cross_channel_groups if personality.cross_channel_history_enabled else None
        serialization = self.window_manager.select_and_serialize_history(
            history, personality.name, budget.history_budget, cross_groups, tz_name, now
        )
        budget.record_history_usage(serialization.history_tokens_used)

        final_context = context.model_copy(update={"memories": memories.selected_memories, "history": history})
        system_prompt = self.prompt_builder.build_full_system_prompt(
            final_context,
            serialized_history=serialization.serialized_history,
            cross_channel_history=serialization.cross_channel_history,
            now=now,
            request_id=request_id,
        )

        logger.info(
            f"Assembled prompt for {personality.name}: window={window}, system={system_tokens}, "
            f"current={current_tokens}, memories={memory_tokens} ({memories.memories_included} kept, "
            f"{memories.memories_dropped} dropped), history={serialization.history_tokens_used}/"
            f"{budget.history_budget} ({serialization.messages_included} kept, "
            f"{serialization.messages_dropped} dropped)"
        )

        return AssembledPrompt(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": human.content},
            ],
            system_prompt=system_prompt,
            human_message=human,
            token_budget=budget,
            history=serialization,
            memories=memories,
            request_id=request_id,
            stop_sequences=build_stop_sequences(
                personality.name, context.participants, context.active_persona_name, self.max_stop_sequences
            ),
        )
