# persona_context/generation/cloning.py
"""Per-attempt isolation of the conversation context."""

from __future__ import annotations

import logging
import math

from persona_context.models.generation import ConversationContext
from persona_context.models.history import ConversationEntry

logger = logging.getLogger(__name__)


def clone_context_for_retry(context: ConversationContext) -> ConversationContext:
    """
    Deep copy of ``context``.

    Enrichment such as image-description injection mutates history entries
    and their metadata lists; every attempt works on its own copy so nothing
    leaks from one attempt into the next or back to the caller.
    """
    return context.model_copy(deep=True)


def reduce_history(entries: list[ConversationEntry], reduction_percent: float | None) -> list[ConversationEntry]:
    """Drop the oldest ``reduction_percent`` of entries (rounded down)."""
    if not reduction_percent or not entries:
        return entries
    drop = math.floor(len(entries) * reduction_percent)
    if drop <= 0:
        return entries
    logger.info(f"Retry history reduction: dropping {drop} oldest of {len(entries)} messages")
    return entries[drop:]
