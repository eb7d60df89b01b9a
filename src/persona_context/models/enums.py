# persona_context/models/enums.py
"""Enums shared across context assembly and generation."""

from enum import Enum

# =============================================================================
# Enums
# =============================================================================


class MessageRole(str, Enum):
    """Conversation roles as stored by the history service."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChannelType(str, Enum):
    """Discriminant for where a conversation takes place."""

    DM = "dm"
    GUILD = "guild"


class DetectionMethod(str, Enum):
    """Duplicate detection strategies, cheapest first."""

    EXACT_HASH = "exact_hash"
    WORD_JACCARD = "word_jaccard"
    SIMILARITY = "similarity"
    SEMANTIC_EMBEDDING = "semantic_embedding"
    NONE = "none"


class RetryAction(str, Enum):
    """Outcome of the empty/duplicate response state machine."""

    CONTINUE = "continue"  # Response is usable, keep going
    RETRY = "retry"  # Attempts remain, try again
    RETURN = "return"  # Exhausted, return what we have


class FallbackReason(str, Enum):
    """Why an attempt's response was held back as a fallback."""

    EMPTY = "empty"
    DUPLICATE = "duplicate"


class SelectionStrategy(str, Enum):
    """History selection strategies."""

    RECENCY = "recency"
