# persona_context/prompt/personality.py
"""Personality character fields and the behaviour protocol."""

from __future__ import annotations

import re

from persona_context.models.personality import PersonalityConfig

_USER_PLACEHOLDER = re.compile(r"\{\{?user\}\}?", re.IGNORECASE)
_ASSISTANT_PLACEHOLDER = re.compile(r"\{\{?(?:assistant|char)\}\}?", re.IGNORECASE)

# (heading, field) in render order
_CHARACTER_SECTIONS: tuple[tuple[str, str], ...] = (
    ("Character Information", "character_info"),
    ("Personality Traits", "personality_traits"),
    ("Conversational Tone", "personality_tone"),
    ("Age", "personality_age"),
    ("Physical Appearance", "personality_appearance"),
    ("What I Like", "personality_likes"),
    ("What I Dislike", "personality_dislikes"),
    ("Conversational Goals", "conversational_goals"),
    ("Conversational Examples", "conversational_examples"),
)


def replace_placeholders(text: str, user_name: str, assistant_name: str) -> str:
    text = _USER_PLACEHOLDER.sub(lambda _: user_name, text)
    return _ASSISTANT_PLACEHOLDER.sub(lambda _: assistant_name, text)


def format_personality_fields(
    personality: PersonalityConfig,
    user_name: str,
    assistant_name: str | None = None,
) -> tuple[str, str]:
    """
    Split a personality into its character text and its protocol text.

    Returns ``(persona, protocol)``; either may be ''. Placeholders are
    resolved in both.
    """
    assistant_name = assistant_name or personality.name
    sections = [f"## Your Identity\nYou are {personality.visible_name}."]
    for heading, field in _CHARACTER_SECTIONS:
        value = getattr(personality, field)
        if value:
            sections.append(f"## {heading}\n{value.strip()}")

    persona = replace_placeholders("\n\n".join(sections), user_name, assistant_name)
    protocol = replace_placeholders(personality.system_prompt.strip(), user_name, assistant_name)
    return persona, protocol
