# persona_context/context/cross_channel.py
"""
Cross-channel history serializer.

Renders conversation snippets from other channels and DMs into a single
``<prior_conversations>`` block under one running token budget shared by
all groups. Messages are dropped, never truncated: the first message that
does not fit ends inclusion for its group and every later group.
"""

from __future__ import annotations

import logging
from datetime import datetime

from persona_context.context.history_formatter import format_single_history_entry
from persona_context.context.location import format_location
from persona_context.models.environment import CrossChannelGroup

logger = logging.getLogger(__name__)


def serialize_cross_channel_history(
    groups: list[CrossChannelGroup],
    personality_name: str,
    budget: int,
    now: datetime | None = None,
    tz_name: str | None = None,
) -> str:
    """Return the ``<prior_conversations>`` block, or '' when nothing fits."""
    if budget <= 0 or not groups:
        return ""

    personality_names = {personality_name}
    for group in groups:
        personality_names.update(m.personality_name for m in group.messages if m.is_assistant and m.personality_name)

    blocks: list[str] = []
    tokens_used = 0
    messages_included = 0
    exhausted = False

    for group in groups:
        rendered: list[str] = []
        for message in group.messages:
            cost = message.token_count or 0
            if tokens_used + cost > budget:
                exhausted = True
                break
            formatted = format_single_history_entry(
                message, personality_name, personality_names=personality_names, now=now, tz_name=tz_name
            )
            tokens_used += cost
            if formatted:
                rendered.append(formatted)
                messages_included += 1

        if rendered:
            location = format_location(group.channel_environment)
            blocks.append("<channel_history>\n" + location + "\n" + "\n".join(rendered) + "\n</channel_history>")
        if exhausted:
            break

    if not blocks:
        logger.debug(f"No cross-channel messages fit in budget {budget}")
        return ""

    logger.debug(
        f"Serialized {messages_included} cross-channel messages from {len(blocks)} channel(s) "
        f"({tokens_used}/{budget} tokens)"
    )
    return "<prior_conversations>\n" + "\n".join(blocks) + "\n</prior_conversations>"
