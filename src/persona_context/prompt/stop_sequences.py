# persona_context/prompt/stop_sequences.py
"""
Stop sequences that end a reply when the model starts writing someone
else's turn.

A model that misses its own end-of-turn token tends to carry on with
``\\nAlice: ...`` or a fresh ``<message ...>`` element, speaking for a
participant or for itself. Stopping generation there keeps one reply to
one speaker.
"""

from __future__ import annotations

import logging

from persona_context.config import MAX_STOP_SEQUENCES
from persona_context.models.personality import ParticipantInfo

logger = logging.getLogger(__name__)

MESSAGE_TURN_SEQUENCE = "\n<message "


def build_stop_sequences(
    personality_name: str,
    participants: list[ParticipantInfo] | None = None,
    active_persona_name: str | None = None,
    max_sequences: int = MAX_STOP_SEQUENCES,
) -> list[str]:
    """
    Return ``\\nName:`` sequences, most likely impersonation first.

    Order: the XML turn opener, the active speaker, the personality itself,
    then the other participants as listed. Names are de-duplicated case
    insensitively and the list is cut to ``max_sequences`` (OpenAI accepts
    at most four).
    """
    if max_sequences <= 0:
        return []

    names: list[str] = []
    if active_persona_name:
        names.append(active_persona_name)
    names.append(personality_name)
    names.extend(p.name for p in participants or [])

    sequences = [MESSAGE_TURN_SEQUENCE]
    seen: set[str] = set()
    for name in names:
        name = name.strip()
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        sequences.append(f"\n{name}:")

    if len(sequences) > max_sequences:
        logger.debug(f"Keeping {max_sequences} of {len(sequences)} stop sequences")
    return sequences[:max_sequences]
