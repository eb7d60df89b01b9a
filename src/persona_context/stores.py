# persona_context/stores.py
"""
In-memory collaborator implementations.

Dict-backed stores for tests, local runs and examples. Each satisfies the
matching protocol in ``persona_context.interfaces``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from persona_context.generation.similarity import word_jaccard_similarity
from persona_context.models.environment import CrossChannelGroup
from persona_context.models.history import ConversationEntry
from persona_context.models.memory import MemoryDocument
from persona_context.models.personality import PersonalityConfig, UserPersona

logger = logging.getLogger(__name__)


class InMemoryPersonalityStore:
    def __init__(self, personalities: list[PersonalityConfig] | None = None):
        self._personalities = {p.id: p for p in personalities or []}

    def add(self, personality: PersonalityConfig) -> None:
        self._personalities[personality.id] = personality

    async def get_personality_config(self, personality_id: str) -> PersonalityConfig | None:
        return self._personalities.get(personality_id)


class InMemoryPersonaStore:
    """Personas keyed by ``(user_id, personality_id)``, with a per-user default under ``None``."""

    def __init__(self) -> None:
        self._personas: dict[tuple[str, str | None], UserPersona] = {}

    def add(self, user_id: str, persona: UserPersona, personality_id: str | None = None) -> None:
        self._personas[(user_id, personality_id)] = persona

    async def get_persona_for_user(self, user_id: str, personality_id: str) -> UserPersona | None:
        return self._personas.get((user_id, personality_id)) or self._personas.get((user_id, None))


class InMemoryMemoryStore:
    """
    Ranks stored memories by word overlap with the query.

    ``filters`` may carry ``personality_id`` and ``limit``; memories are
    scoped by ``personality_id`` when it is given.
    """

    def __init__(self, min_score: float = 0.0) -> None:
        self.min_score = min_score
        self._memories: dict[str | None, list[MemoryDocument]] = defaultdict(list)

    def add(self, memory: MemoryDocument, personality_id: str | None = None) -> None:
        self._memories[personality_id].append(memory)

    async def retrieve_relevant_memories(self, query: str, filters: dict[str, Any]) -> list[MemoryDocument]:
        personality_id = filters.get("personality_id")
        limit = filters.get("limit", 10)
        pool = self._memories.get(personality_id, []) if personality_id else [
            m for docs in self._memories.values() for m in docs
        ]

        scored: list[MemoryDocument] = []
        for doc in pool:
            score = word_jaccard_similarity(query, doc.page_content)
            if score > self.min_score:
                scored.append(doc.model_copy(update={"metadata": doc.metadata.model_copy(update={"score": score})}))
        scored.sort(key=lambda d: d.metadata.score or 0.0, reverse=True)
        return scored[:limit]


class InMemoryHistoryStore:
    def __init__(self) -> None:
        self._channels: dict[str, list[ConversationEntry]] = defaultdict(list)
        self._cross_channel: dict[tuple[str, str], list[CrossChannelGroup]] = {}

    def append(self, channel_id: str, entry: ConversationEntry) -> None:
        self._channels[channel_id].append(entry)

    def set_cross_channel(self, personality_id: str, user_id: str, groups: list[CrossChannelGroup]) -> None:
        self._cross_channel[(personality_id, user_id)] = groups

    async def get_recent_history(self, channel_id: str, limit: int) -> list[ConversationEntry]:
        if limit <= 0:
            return []
        return [e.model_copy(deep=True) for e in self._channels.get(channel_id, [])[-limit:]]

    async def get_cross_channel_history(
        self,
        personality_id: str,
        user_id: str,
        exclude_channel_id: str,
        limit: int,
    ) -> list[CrossChannelGroup]:
        groups = [
            g for g in self._cross_channel.get((personality_id, user_id), []) if g.channel_id != exclude_channel_id
        ]
        return [g.model_copy(update={"messages": g.messages[-limit:]}, deep=True) for g in groups]


class InMemoryDiagnosticSink:
    def __init__(self) -> None:
        self.payloads: list[dict[str, Any]] = []

    async def store(self, payload: dict[str, Any]) -> None:
        self.payloads.append(payload)


class StaticCredentialProvider:
    """Returns keys from a ``{(user_id, provider): key}`` mapping."""

    def __init__(self, keys: dict[tuple[str, str], str] | None = None):
        self._keys = dict(keys or {})

    async def resolve_api_key(self, user_id: str, provider: str) -> str | None:
        return self._keys.get((user_id, provider))
