# persona_context/models/generation.py
"""Job payloads, generation state and results."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, Field

from persona_context.base_models import DictCompatModel
from persona_context.exceptions import ErrorInfo
from persona_context.models.budget import TokenBudget
from persona_context.models.enums import DetectionMethod, FallbackReason
from persona_context.models.environment import ChannelEnvironment, CrossChannelGroup
from persona_context.models.history import ConversationEntry, ImageDescription
from persona_context.models.memory import MemoryDocument
from persona_context.models.personality import (
    ParticipantInfo,
    PersonalityConfig,
    UserPersona,
)

# =============================================================================
# Job payload
# =============================================================================


class QuotedMessage(BaseModel):
    author: str = Field(default="")
    content: str = Field(default="")


class MessageAttachment(BaseModel):
    name: str = Field(default="attachment")
    content_type: str | None = Field(default=None)


class IncomingMessage(BaseModel):
    """Structured form of the triggering message."""

    content: str = Field(default="")
    referenced_message: QuotedMessage | None = Field(default=None)
    attachments: list[MessageAttachment] = Field(default_factory=list)


class ConfigOverrides(BaseModel):
    """Per-user or per-channel overrides resolved upstream."""

    model: str | None = Field(default=None)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    context_window_tokens: int | None = Field(default=None, gt=0)
    max_tokens: int | None = Field(default=None, gt=0)


class JobContext(BaseModel):
    """Conversation context shipped with the job."""

    user_id: str
    channel_id: str
    server_id: str | None = Field(default=None)
    user_name: str | None = Field(default=None)
    discord_username: str | None = Field(default=None)
    active_persona_id: str | None = Field(default=None)
    active_persona_name: str | None = Field(default=None)
    user_timezone: str | None = Field(default=None)
    environment: ChannelEnvironment | None = Field(default=None)
    conversation_history: list[ConversationEntry] | None = Field(
        default=None, description="None means fetch from the history store"
    )
    cross_channel_groups: list[CrossChannelGroup] = Field(default_factory=list)
    referenced_messages_formatted: str | None = Field(default=None)
    image_descriptions: dict[str, list[ImageDescription]] = Field(
        default_factory=dict, description="Keyed by history entry id"
    )
    is_proxy_message: bool = Field(default=False)
    trigger_message_id: str | None = Field(default=None)


class JobPayload(BaseModel):
    request_id: str = Field(..., min_length=1)
    personality_id: str = Field(..., min_length=1)
    message: str | IncomingMessage
    context: JobContext
    job_id: str | None = Field(default=None)
    config_overrides: ConfigOverrides | None = Field(default=None)


# =============================================================================
# Generation inputs
# =============================================================================


class ModelConfig(BaseModel):
    """Effective model parameters for one job."""

    model: str
    context_window_tokens: int = Field(..., gt=0)
    temperature: float | None = Field(default=None)
    top_p: float | None = Field(default=None)
    frequency_penalty: float | None = Field(default=None)
    max_tokens: int | None = Field(default=None)
    timeout_seconds: float = Field(default=480.0, gt=0)
    config_source: str = Field(default="personality")
    stop_sequences: list[str] = Field(default_factory=list)

    def with_retry(self, retry: RetryConfig) -> ModelConfig:
        update: dict[str, Any] = {}
        if retry.temperature_override is not None:
            update["temperature"] = retry.temperature_override
        if retry.frequency_penalty_override is not None:
            update["frequency_penalty"] = retry.frequency_penalty_override
        return self.model_copy(update=update)


class AuthInfo(BaseModel):
    api_key: str | None = Field(default=None)
    provider: str = Field(default="openai")
    is_guest_mode: bool = Field(default=True)


class RetryConfig(BaseModel):
    """Escalating parameters for one generation attempt."""

    attempt: int = Field(default=1, ge=1)
    temperature_override: float | None = Field(default=None)
    frequency_penalty_override: float | None = Field(default=None)
    history_reduction_percent: float | None = Field(default=None, ge=0.0, le=1.0)


class ConversationContext(BaseModel):
    """
    Everything needed to render a prompt. Cloned before every attempt so
    enrichment on one attempt is never visible to another.
    """

    personality: PersonalityConfig
    user_message: str
    history: list[ConversationEntry] = Field(default_factory=list)
    cross_channel_groups: list[CrossChannelGroup] = Field(default_factory=list)
    memories: list[MemoryDocument] = Field(default_factory=list)
    participants: list[ParticipantInfo] = Field(default_factory=list)
    environment: ChannelEnvironment | None = Field(default=None)
    active_persona_id: str | None = Field(default=None)
    active_persona_name: str | None = Field(default=None)
    discord_username: str | None = Field(default=None)
    user_timezone: str | None = Field(default=None)
    referenced_messages_formatted: str | None = Field(default=None)
    image_descriptions: dict[str, list[ImageDescription]] = Field(default_factory=dict)


# =============================================================================
# Generation outputs
# =============================================================================


class LLMResponse(BaseModel):
    model_config = {"protected_namespaces": ()}

    content: str = Field(default="")
    model_used: str | None = Field(default=None)
    thinking_content: str | None = Field(default=None)
    tokens_in: int | None = Field(default=None)
    tokens_out: int | None = Field(default=None)
    finish_reason: str | None = Field(default=None)
    stop_sequence_triggered: str | None = Field(default=None)


class DuplicateCheckResult(BaseModel):
    """Outcome of checking one candidate against the duplicate window."""

    is_duplicate: bool = Field(default=False)
    match_index: int = Field(default=-1, description="Window position, most-recent-first; -1 when none")
    detection_method: DetectionMethod = Field(default=DetectionMethod.NONE)
    max_similarity: float = Field(default=0.0, ge=0.0)
    max_similarity_index: int = Field(default=-1)


class FallbackResponse(BaseModel):
    response: LLMResponse
    reason: FallbackReason
    attempt: int


class OrchestratedResponse(BaseModel):
    response: LLMResponse
    attempts: int = Field(default=1)
    duplicate_retries: int = Field(default=0)
    empty_retries: int = Field(default=0)
    used_fallback: bool = Field(default=False)
    duplicate_check: DuplicateCheckResult | None = Field(default=None)
    token_budget: TokenBudget | None = Field(default=None)


class GenerationMetadata(BaseModel):
    model_config = {"protected_namespaces": ()}

    processing_time_ms: int = Field(..., ge=0)
    model_used: str | None = Field(default=None)
    provider_used: str | None = Field(default=None)
    config_source: str | None = Field(default=None)
    is_guest_mode: bool | None = Field(default=None)
    attempts: int = Field(default=0)
    duplicate_retries: int = Field(default=0)
    empty_retries: int = Field(default=0)
    cross_turn_duplicate_detected: bool = Field(default=False)
    thinking_content: str | None = Field(default=None)
    show_thinking: bool = Field(default=False)
    token_budget: TokenBudget | None = Field(default=None)


class GenerationResult(DictCompatModel):
    """What the job handler receives. ``metadata.processing_time_ms`` is always set."""

    request_id: str | None = Field(default=None)
    success: bool
    content: str | None = Field(default=None)
    error: str | None = Field(default=None)
    error_info: ErrorInfo | None = Field(default=None)
    personality_error_message: str | None = Field(default=None)
    metadata: GenerationMetadata


# =============================================================================
# Pipeline state
# =============================================================================


class GenerationContext(BaseModel):
    """
    State threaded through the pipeline steps.

    Each step fills in its own fields and returns this same object, or
    raises. ``start_time`` is a ``time.monotonic()`` anchor.
    """

    raw_payload: Any
    start_time: float = Field(default_factory=time.monotonic)

    job: JobPayload | None = Field(default=None)
    user_message: str | None = Field(default=None)
    personality: PersonalityConfig | None = Field(default=None)
    user_persona: UserPersona | None = Field(default=None)
    participants: list[ParticipantInfo] = Field(default_factory=list)
    memories: list[MemoryDocument] = Field(default_factory=list)
    history: list[ConversationEntry] = Field(default_factory=list)
    llm_config: ModelConfig | None = Field(default=None)
    auth: AuthInfo | None = Field(default=None)
    conversation_context: ConversationContext | None = Field(default=None)
    result: GenerationResult | None = Field(default=None)

    model_config = {"arbitrary_types_allowed": True}

    def elapsed_ms(self) -> int:
        return max(0, int((time.monotonic() - self.start_time) * 1000))
