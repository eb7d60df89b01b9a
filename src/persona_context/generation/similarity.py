# persona_context/generation/similarity.py
"""
Text similarity primitives used by duplicate detection.

All functions are pure and cheap enough to run against a small window of
recent responses on every generation.
"""

from __future__ import annotations

import hashlib
import math
import re
from collections import Counter

_MARKDOWN_EMPHASIS = re.compile(r"[*_~]{1,2}([^*_~]+)[*_~]{1,2}")
_NON_WORD = re.compile(r"[^\w\s']")
_WHITESPACE = re.compile(r"\s+")

# Footer lines the bot appends to its own messages. Only trailing lines match.
_BOT_FOOTER_LINE = re.compile(
    r"\n-# (?:Model: \[[^\]]*\]\(<[^>]*>\)(?: • 📍 auto)?|🆓 Using free model[^\n]*|📍 auto-response)\s*$"
)


def content_hash(content: str) -> str:
    """First 16 hex chars of sha256 over the lower-cased, trimmed text."""
    normalized = content.lower().strip()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]


def normalize_for_comparison(text: str) -> str:
    """Lower-case, drop Markdown emphasis and punctuation, collapse whitespace."""
    text = text.lower()
    text = _MARKDOWN_EMPHASIS.sub(r"\1", text)
    text = _NON_WORD.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def word_jaccard_similarity(a: str, b: str) -> float:
    """|A ∩ B| / |A ∪ B| over the normalized word sets."""
    n1 = normalize_for_comparison(a)
    n2 = normalize_for_comparison(b)
    if n1 == n2:
        return 1.0
    if not n1 or not n2:
        return 0.0

    words1 = set(n1.split())
    words2 = set(n2.split())
    if not words1 or not words2:
        return 0.0

    intersection = len(words1 & words2)
    union = len(words1) + len(words2) - intersection
    return intersection / union


def string_similarity(a: str, b: str) -> float:
    """
    Dice coefficient on character bigrams, case-insensitive.

    1.0 for identical strings, 0.0 when either side is empty.
    """
    if a == b:
        return 1.0

    s1 = a.lower().strip()
    s2 = b.lower().strip()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if len(s1) == 1 or len(s2) == 1:
        return 0.0

    bigrams1 = Counter(s1[i : i + 2] for i in range(len(s1) - 1))
    matches = 0
    for i in range(len(s2) - 1):
        bigram = s2[i : i + 2]
        if bigrams1[bigram] > 0:
            matches += 1
            bigrams1[bigram] -= 1

    total = (len(s1) - 1) + (len(s2) - 1)
    return (2 * matches) / total


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def strip_bot_footers(content: str) -> str:
    """Remove trailing model / guest-mode / auto-response footer lines."""
    previous = None
    while previous != content:
        previous = content
        content = _BOT_FOOTER_LINE.sub("", content)
    return content
