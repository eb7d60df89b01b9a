# persona_context/interfaces.py
"""
Collaborator protocols.

Everything outside context assembly and generation (persistence, model
APIs, embeddings, diagnostics storage, credentials) is reached through
these narrow async interfaces. ``persona_context.stores`` has in-memory
implementations; ``persona_context.providers`` has the OpenAI-backed ones.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from persona_context.models.environment import CrossChannelGroup
from persona_context.models.generation import LLMResponse, ModelConfig
from persona_context.models.history import ConversationEntry
from persona_context.models.memory import MemoryDocument
from persona_context.models.personality import PersonalityConfig, UserPersona

# =============================================================================
# Stores
# =============================================================================


@runtime_checkable
class PersonalityStore(Protocol):
    async def get_personality_config(self, personality_id: str) -> PersonalityConfig | None: ...


@runtime_checkable
class PersonaStore(Protocol):
    async def get_persona_for_user(self, user_id: str, personality_id: str) -> UserPersona | None: ...


@runtime_checkable
class MemoryStore(Protocol):
    async def retrieve_relevant_memories(self, query: str, filters: dict[str, Any]) -> list[MemoryDocument]:
        """Memories ordered most relevant first."""
        ...


@runtime_checkable
class HistoryStore(Protocol):
    async def get_recent_history(self, channel_id: str, limit: int) -> list[ConversationEntry]:
        """At most ``limit`` entries, oldest first."""
        ...

    async def get_cross_channel_history(
        self,
        personality_id: str,
        user_id: str,
        exclude_channel_id: str,
        limit: int,
    ) -> list[CrossChannelGroup]: ...


# =============================================================================
# Services
# =============================================================================


@runtime_checkable
class LLMInvoker(Protocol):
    """
    Calls the model. May raise transport errors; the orchestrator applies
    the timeout and the retry policy around it.
    """

    async def invoke(
        self,
        messages: list[dict[str, Any]],
        model_config: ModelConfig,
        api_key: str | None = None,
    ) -> LLMResponse: ...


@runtime_checkable
class EmbeddingService(Protocol):
    def is_service_ready(self) -> bool: ...

    async def get_embedding(self, text: str) -> list[float] | None: ...

    def cosine_similarity(self, a: list[float], b: list[float]) -> float: ...


@runtime_checkable
class DiagnosticSink(Protocol):
    async def store(self, payload: dict[str, Any]) -> None: ...


@runtime_checkable
class CredentialProvider(Protocol):
    async def resolve_api_key(self, user_id: str, provider: str) -> str | None:
        """The user's own key for ``provider``, or None for guest mode."""
        ...
