# persona_context/generation/artifacts.py
"""
Response clean-up.

Models sometimes echo the markup they were shown in the prompt (speaker
tags, closing tags, ``Name:`` prefixes, timestamp brackets) or, after a
stop-token failure, write their whole reply twice. Both are removed here
before a response is checked or returned.
"""

from __future__ import annotations

import logging
import re

from persona_context.generation.similarity import string_similarity

logger = logging.getLogger(__name__)

# =============================================================================
# Artifact stripping
# =============================================================================

_TRAILING_CLOSING_TAG = re.compile(r"</[\w-]+>\s*$", re.IGNORECASE)
_TRAILING_REACTIONS = re.compile(r"\s*<reactions>.*?</reactions>\s*$", re.IGNORECASE | re.DOTALL)
_LEADING_LAST_MESSAGE = re.compile(r"^<last_message>.*?</last_message>\s*", re.IGNORECASE | re.DOTALL)
_LEADING_FROM = re.compile(r"^<from(?:\s[^>]*)?>[^<]*</from>\s*", re.IGNORECASE)
_LEADING_TIMESTAMP = re.compile(
    r"^\[(?:[^\]\n]*\bago|now|just now|\d{4}-\d{2}-\d{2}[^\]\n]*)\]\s*",
    re.IGNORECASE,
)


def _leading_speaker_tag(personality_name: str) -> re.Pattern[str]:
    name = re.escape(personality_name)
    return re.compile(rf"""^<message\s+speaker=["']{name}["'][^>]*>\s*""", re.IGNORECASE)


def _leading_name_prefix(personality_name: str) -> re.Pattern[str]:
    name = re.escape(personality_name)
    return re.compile(rf"^{name}:\s*(?:\[[^\]\n]*\]\s*)?", re.IGNORECASE)


def _strip_trailing(content: str) -> str:
    # One tag at a time so a trailing </reactions> is removed with its whole block.
    while True:
        stripped = _TRAILING_REACTIONS.sub("", content, count=1)
        if stripped == content:
            stripped = _TRAILING_CLOSING_TAG.sub("", content, count=1)
        if stripped == content:
            return content
        content = stripped


def _strip_leading(content: str, pattern: re.Pattern[str]) -> str:
    # Repeated echoes of the same prefix collapse in one pass.
    while True:
        stripped = pattern.sub("", content, count=1).lstrip()
        if stripped == content:
            return content
        content = stripped


def strip_response_artifacts(content: str, personality_name: str) -> str:
    """
    Remove echoed prompt markup from a model response.

    Patterns are anchored to the start or end of the text; markup in the
    middle of a reply is left alone. The full pattern set is re-applied
    until nothing matches; every match shortens the text, so this ends and
    a second call is always a no-op.
    """
    if not content:
        return content

    leading = [
        _LEADING_LAST_MESSAGE,
        _LEADING_FROM,
        _leading_speaker_tag(personality_name),
        _leading_name_prefix(personality_name),
        _LEADING_TIMESTAMP,
    ]

    original_length = len(content)
    result = content
    while True:
        before = result
        result = _strip_trailing(result).strip()
        for pattern in leading:
            result = _strip_leading(result, pattern)
        result = result.strip()
        if result == before:
            break

    if result != content.strip():
        logger.info(
            f"Stripped response artifacts for {personality_name}: "
            f"{original_length} -> {len(result)} chars (removed {original_length - len(result)})"
        )
    return result


# =============================================================================
# Intra-turn duplicates
# =============================================================================

MIN_LENGTH_FOR_DUPLICATION_CHECK = 100
ANCHOR_LENGTH = 30
INTRA_TURN_SIMILARITY_THRESHOLD = 0.8


def remove_duplicate_response(content: str) -> str:
    """
    Drop a repeated second copy of the reply (stop-token failure).

    Take the opening characters as an anchor, look for the anchor again
    later in the text and, when the text after it repeats the text before
    it, keep only the first copy.
    """
    length = len(content)
    if length < MIN_LENGTH_FOR_DUPLICATION_CHECK:
        return content

    anchor_length = min(ANCHOR_LENGTH, length // 3)
    anchor = content[:anchor_length]

    index = content.find(anchor, anchor_length)
    while index != -1:
        first_raw = content[:index]
        second_raw = content[index:]
        first = first_raw.strip()
        second = second_raw.strip()
        if not second:
            break

        first_lower = first.lower()
        second_lower = second.lower()
        similarity = 0.0
        method = "none"

        if first_lower.startswith(second_lower):
            similarity, method = 1.0, "second-prefix"
        elif second_lower.startswith(first_lower):
            similarity, method = 1.0, "first-prefix"
        else:
            ratio = len(first) / len(second)
            if 0.5 < ratio < 2.0:
                similarity, method = string_similarity(first, second), "similarity"

        if similarity >= INTRA_TURN_SIMILARITY_THRESHOLD:
            deduplicated = first_raw.rstrip()
            logger.warning(
                f"Removed intra-turn duplicate ({method}, similarity {similarity:.3f}): "
                f"{length} -> {len(deduplicated)} chars, split at {index}"
            )
            return deduplicated

        index = content.find(anchor, index + 1)

    return content


def clean_response(content: str, personality_name: str) -> str:
    """Intra-turn de-duplication followed by artifact stripping."""
    return strip_response_artifacts(remove_duplicate_response(content), personality_name)
