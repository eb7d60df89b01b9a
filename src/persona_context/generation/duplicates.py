# persona_context/generation/duplicates.py
"""
Cross-turn duplicate detection.

Catches the model giving the same reply to different messages (typically
provider-side caching on free-tier models). A candidate response is
compared against a small window of the personality's most recent replies
with an ordered list of strategies, cheapest first::

    exact_hash          sha256 of the trimmed, lower-cased text
    word_jaccard        overlap of normalized word sets
    similarity          Dice coefficient on character bigrams
    semantic_embedding  cosine similarity of embeddings (optional service)

Each strategy has an availability predicate; an unavailable one is skipped,
never an error. The reported method is the cheapest that fired, at the
first (most recent) matching window position. Lexical strategies always
score the whole window so ``max_similarity`` reflects the strongest signal
found; the embedding strategy only runs when no lexical strategy fired.

Usage::

    detector = DuplicateDetector(embedding_service=service)
    window = DuplicateWindow.from_history(history, embedding_cache=detector.embedding_cache)
    candidate = Fingerprint.from_content(text)
    result = await detector.check(candidate, window)
    if not result.is_duplicate:
        detector.record_accepted(candidate, window)
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Iterator
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from persona_context.cache import TTLCache
from persona_context.config import DUPLICATE_WINDOW_SIZE, EMBEDDING_TIMEOUT_SECONDS
from persona_context.context.history_formatter import get_recent_assistant_messages, role_distribution
from persona_context.generation.similarity import (
    content_hash,
    string_similarity,
    strip_bot_footers,
    word_jaccard_similarity,
)
from persona_context.interfaces import EmbeddingService
from persona_context.models.enums import DetectionMethod
from persona_context.models.generation import DuplicateCheckResult
from persona_context.models.history import ConversationEntry

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.85
NEAR_MISS_THRESHOLD = 0.7
WORD_JACCARD_THRESHOLD = 0.75
SEMANTIC_SIMILARITY_THRESHOLD = 0.88

# Shorter texts are too generic ("lol", "ok!") to call duplicates.
MIN_LENGTH_FOR_SIMILARITY_CHECK = 30


def _snippet(content: str, max_length: int = 60) -> str:
    return content if len(content) <= max_length else content[:max_length] + "..."


# =============================================================================
# Models
# =============================================================================


class DuplicateDetectionConfig(BaseModel):
    word_jaccard_threshold: float = Field(default=WORD_JACCARD_THRESHOLD, ge=0.0, le=1.0)
    similarity_threshold: float = Field(default=DEFAULT_SIMILARITY_THRESHOLD, ge=0.0, le=1.0)
    semantic_threshold: float = Field(default=SEMANTIC_SIMILARITY_THRESHOLD, ge=0.0, le=1.0)
    near_miss_threshold: float = Field(default=NEAR_MISS_THRESHOLD, ge=0.0, le=1.0)
    min_length: int = Field(default=MIN_LENGTH_FOR_SIMILARITY_CHECK, ge=0)
    window_size: int = Field(default=DUPLICATE_WINDOW_SIZE, ge=1)
    embedding_timeout_seconds: float = Field(default=EMBEDDING_TIMEOUT_SECONDS, gt=0)


class Fingerprint(BaseModel):
    """A response prepared for comparison: footer-free text, its hash, and optionally its embedding."""

    content: str
    content_hash: str
    embedding: list[float] | None = Field(default=None)

    @classmethod
    def from_content(cls, content: str, embedding: list[float] | None = None) -> Fingerprint:
        clean = strip_bot_footers(content)
        return cls(content=clean, content_hash=content_hash(clean), embedding=embedding)


class DuplicateWindow:
    """
    Bounded window of recent assistant replies, most recent first.

    Position 0 is the latest reply. Pushing past capacity evicts the oldest.
    """

    def __init__(self, capacity: int = DUPLICATE_WINDOW_SIZE):
        self.capacity = capacity
        self._entries: deque[Fingerprint] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Fingerprint]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> Fingerprint:
        return self._entries[index]

    def push(self, fingerprint: Fingerprint) -> None:
        self._entries.appendleft(fingerprint)

    def contents(self) -> list[str]:
        return [fp.content for fp in self._entries]

    @classmethod
    def from_messages(
        cls,
        messages: list[str],
        capacity: int = DUPLICATE_WINDOW_SIZE,
        embedding_cache: TTLCache | None = None,
    ) -> DuplicateWindow:
        """Build from replies given most-recent-first; cached embeddings are attached by hash."""
        window = cls(capacity)
        for message in reversed(messages[:capacity]):
            fp = Fingerprint.from_content(message)
            if embedding_cache is not None:
                fp.embedding = embedding_cache.get(fp.content_hash)
            window.push(fp)
        return window

    @classmethod
    def from_history(
        cls,
        history: list[ConversationEntry],
        capacity: int = DUPLICATE_WINDOW_SIZE,
        embedding_cache: TTLCache | None = None,
    ) -> DuplicateWindow:
        messages = get_recent_assistant_messages(history, capacity)

        if not history:
            logger.debug("Duplicate window empty: no conversation history")
        elif not messages:
            # Non-empty history with no assistant turns usually means roles were mis-tagged upstream.
            logger.warning(
                f"No assistant messages found in {len(history)} history entries; "
                f"duplicate detection is disabled for this request. "
                f"Role distribution: {role_distribution(history)}"
            )
        else:
            logger.debug(f"Duplicate window built from {len(messages)} assistant messages")

        return cls.from_messages(messages, capacity, embedding_cache)


# =============================================================================
# Strategies
# =============================================================================


@runtime_checkable
class DetectionStrategy(Protocol):
    """
    One layer of the cascade.

    ``score`` returns a similarity per window position (None where the
    position could not be scored).
    """

    method: DetectionMethod
    threshold: float

    def is_available(self) -> bool: ...

    async def score(self, candidate: Fingerprint, window: DuplicateWindow) -> list[float | None]: ...


class ExactHashStrategy:
    method = DetectionMethod.EXACT_HASH
    threshold = 1.0

    def is_available(self) -> bool:
        return True

    async def score(self, candidate: Fingerprint, window: DuplicateWindow) -> list[float | None]:
        return [1.0 if fp.content_hash == candidate.content_hash else 0.0 for fp in window]


class WordJaccardStrategy:
    method = DetectionMethod.WORD_JACCARD

    def __init__(self, threshold: float = WORD_JACCARD_THRESHOLD):
        self.threshold = threshold

    def is_available(self) -> bool:
        return True

    async def score(self, candidate: Fingerprint, window: DuplicateWindow) -> list[float | None]:
        return [word_jaccard_similarity(candidate.content, fp.content) for fp in window]


class BigramSimilarityStrategy:
    method = DetectionMethod.SIMILARITY

    def __init__(self, threshold: float = DEFAULT_SIMILARITY_THRESHOLD):
        self.threshold = threshold

    def is_available(self) -> bool:
        return True

    async def score(self, candidate: Fingerprint, window: DuplicateWindow) -> list[float | None]:
        return [string_similarity(candidate.content, fp.content) for fp in window]


class SemanticEmbeddingStrategy:
    """
    Cosine similarity against the embeddings of previously accepted replies.

    Window entries without a cached embedding are not scored. Any failure
    of the embedding service yields no scores.
    """

    method = DetectionMethod.SEMANTIC_EMBEDDING

    def __init__(
        self,
        service: EmbeddingService | None,
        threshold: float = SEMANTIC_SIMILARITY_THRESHOLD,
        timeout_seconds: float = EMBEDDING_TIMEOUT_SECONDS,
    ):
        self.service = service
        self.threshold = threshold
        self.timeout_seconds = timeout_seconds

    def is_available(self) -> bool:
        if self.service is None:
            return False
        try:
            return bool(self.service.is_service_ready())
        except Exception as e:
            logger.debug(f"Embedding service readiness check failed: {e}")
            return False

    async def score(self, candidate: Fingerprint, window: DuplicateWindow) -> list[float | None]:
        if self.service is None:
            return []
        if candidate.embedding is None:
            try:
                candidate.embedding = await asyncio.wait_for(
                    self.service.get_embedding(candidate.content), timeout=self.timeout_seconds
                )
            except Exception as e:
                logger.debug(f"Embedding unavailable, skipping semantic check: {e!r}")
                return []
        if candidate.embedding is None:
            logger.debug("Embedding service returned nothing, skipping semantic check")
            return []

        scores: list[float | None] = []
        for fp in window:
            if fp.embedding is None:
                scores.append(None)
            else:
                scores.append(self.service.cosine_similarity(candidate.embedding, fp.embedding))
        return scores


# =============================================================================
# Detector
# =============================================================================


class DuplicateDetector:
    """Runs the strategy cascade and remembers embeddings of accepted replies."""

    def __init__(
        self,
        config: DuplicateDetectionConfig | None = None,
        embedding_service: EmbeddingService | None = None,
        embedding_cache: TTLCache | None = None,
        strategies: list[DetectionStrategy] | None = None,
    ):
        self.config = config or DuplicateDetectionConfig()
        self.embedding_service = embedding_service
        self.embedding_cache = embedding_cache if embedding_cache is not None else TTLCache()
        self.strategies: list[DetectionStrategy] = strategies or [
            ExactHashStrategy(),
            WordJaccardStrategy(self.config.word_jaccard_threshold),
            BigramSimilarityStrategy(self.config.similarity_threshold),
            SemanticEmbeddingStrategy(
                embedding_service, self.config.semantic_threshold, self.config.embedding_timeout_seconds
            ),
        ]

    def build_window(self, history: list[ConversationEntry]) -> DuplicateWindow:
        return DuplicateWindow.from_history(history, self.config.window_size, self.embedding_cache)

    async def check(self, candidate: Fingerprint | str, window: DuplicateWindow) -> DuplicateCheckResult:
        if isinstance(candidate, str):
            candidate = Fingerprint.from_content(candidate)

        if len(candidate.content) < self.config.min_length:
            logger.debug(f"Skipping duplicate check: response too short ({len(candidate.content)} chars)")
            return DuplicateCheckResult()
        if len(window) == 0:
            return DuplicateCheckResult()

        eligible = [len(fp.content) >= self.config.min_length for fp in window]
        result = DuplicateCheckResult()

        for strategy in self.strategies:
            if result.is_duplicate and strategy.method == DetectionMethod.SEMANTIC_EMBEDDING:
                break
            if not strategy.is_available():
                logger.debug(f"Duplicate strategy {strategy.method.value} unavailable, skipping")
                continue

            scores = await strategy.score(candidate, window)
            for index, score in enumerate(scores):
                if score is None or not eligible[index]:
                    continue
                if score > result.max_similarity:
                    result.max_similarity = score
                    result.max_similarity_index = index
                if not result.is_duplicate and score >= strategy.threshold:
                    result.is_duplicate = True
                    result.match_index = index
                    result.detection_method = strategy.method

        if result.is_duplicate:
            logger.warning(
                f"Cross-turn duplicate via {result.detection_method.value}: matches the reply from "
                f"{result.match_index + 1} turn(s) ago (max similarity {result.max_similarity:.3f}). "
                f"Response: {_snippet(candidate.content)!r}"
            )
        elif result.max_similarity >= self.config.near_miss_threshold:
            logger.info(
                f"Duplicate NEAR-MISS: similarity {result.max_similarity * 100:.1f}% is below the "
                f"{self.config.similarity_threshold * 100:.0f}% threshold "
                f"({result.max_similarity_index + 1} turn(s) back, window={len(window)})"
            )
        else:
            logger.debug(
                f"Duplicate check passed: max similarity {result.max_similarity:.3f} "
                f"across {len(window)} recent messages"
            )
        return result

    def record_accepted(self, candidate: Fingerprint | str, window: DuplicateWindow | None = None) -> None:
        """Remember an accepted reply so later turns can be compared against it."""
        if isinstance(candidate, str):
            candidate = Fingerprint.from_content(candidate)
        if candidate.embedding is not None:
            self.embedding_cache.put(candidate.content_hash, candidate.embedding)
        if window is not None:
            window.push(candidate)
