# persona_context/pipeline.py
"""
Job pipeline.

``GenerationPipeline.generate(payload)`` is the single entry point used by
the job handler. It runs the steps strictly in order::

    Validation -> Normalization -> Dependency -> Config -> Auth -> Context -> Generation

Each step receives the ``GenerationContext``, fills in its own fields and
returns it, or raises. Any exception ends the pipeline and is converted
into a ``success=False`` ``GenerationResult`` carrying a user-safe
``ErrorInfo``; ``metadata.processing_time_ms`` is set on every result.
Retries happen inside the generation step only; earlier steps never re-run.

Usage::

    pipeline = GenerationPipeline.create(
        invoker=OpenAIInvoker(),
        personality_store=store,
        history_store=history,
    )
    result = await pipeline.generate(job_payload)
    if result.success:
        await send(result.content)
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from persona_context.cache import TTLCache
from persona_context.config import GenerationSettings
from persona_context.context.assembler import ContextAssembler
from persona_context.context.history_formatter import extract_participants
from persona_context.context.window_manager import ContextWindowConfig, ContextWindowManager
from persona_context.exceptions import (
    DependencyResolutionError,
    ErrorCategory,
    ErrorInfo,
    ErrorType,
    JobValidationError,
    PipelineOrderError,
    USER_ERROR_MESSAGES,
    classify_error,
    format_personality_error_message,
    generate_error_reference_id,
)
from persona_context.generation.background import BackgroundTasks
from persona_context.generation.diagnostics import DiagnosticCollector, DiagnosticMeta, store_diagnostics
from persona_context.generation.duplicates import DuplicateDetectionConfig, DuplicateDetector
from persona_context.generation.orchestrator import GenerationOrchestrator
from persona_context.interfaces import (
    CredentialProvider,
    DiagnosticSink,
    EmbeddingService,
    HistoryStore,
    LLMInvoker,
    MemoryStore,
    PersonalityStore,
    PersonaStore,
)
from persona_context.models.generation import (
    AuthInfo,
    ConversationContext,
    GenerationContext,
    GenerationMetadata,
    GenerationResult,
    JobPayload,
    ModelConfig,
)
from persona_context.models.history import ConversationEntry
from persona_context.models.personality import ParticipantInfo
from persona_context.prompt.builder import PromptBuilder
from persona_context.tokens import TokenEstimator

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100
DEFAULT_MEMORY_LIMIT = 10
DEFAULT_CROSS_CHANNEL_LIMIT = 20


def _require(value: Any, step: str, prerequisite: str) -> Any:
    if value is None:
        raise PipelineOrderError(f"{prerequisite} must run before {step}")
    return value


def normalize_history(entries: list[ConversationEntry]) -> list[ConversationEntry]:
    """Drop entries with neither text nor metadata. Role casing is normalised by the model itself."""
    kept = [e for e in entries if e.content.strip() or e.message_metadata is not None]
    if len(kept) != len(entries):
        logger.debug(f"Dropped {len(entries) - len(kept)} empty history entries")
    return kept


@runtime_checkable
class PipelineStep(Protocol):
    name: str

    async def process(self, context: GenerationContext) -> GenerationContext: ...


# =============================================================================
# Steps
# =============================================================================


class ValidationStep:
    name = "Validation"

    async def process(self, context: GenerationContext) -> GenerationContext:
        try:
            context.job = JobPayload.model_validate(context.raw_payload)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) or "payload" for err in e.errors())
            raise JobValidationError(f"Invalid job payload ({e.error_count()} errors): {fields}") from e
        return context


class NormalizationStep:
    name = "Normalization"

    def __init__(self, prompt_builder: PromptBuilder | None = None):
        self.prompt_builder = prompt_builder or PromptBuilder()

    async def process(self, context: GenerationContext) -> GenerationContext:
        job: JobPayload = _require(context.job, self.name, "ValidationStep")
        context.user_message = self.prompt_builder.format_user_message(
            job.message, job.context.is_proxy_message, job.context.user_name
        )
        if job.context.conversation_history is not None:
            context.history = normalize_history(job.context.conversation_history)
        return context


class DependencyStep:
    """
    Resolves collaborator data. The personality is required; personas,
    memories and cross-channel history are best effort.
    """

    name = "Dependency"

    def __init__(
        self,
        personality_store: PersonalityStore,
        persona_store: PersonaStore | None = None,
        memory_store: MemoryStore | None = None,
        history_store: HistoryStore | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        memory_limit: int = DEFAULT_MEMORY_LIMIT,
        cross_channel_limit: int = DEFAULT_CROSS_CHANNEL_LIMIT,
    ):
        self.personality_store = personality_store
        self.persona_store = persona_store
        self.memory_store = memory_store
        self.history_store = history_store
        self.history_limit = history_limit
        self.memory_limit = memory_limit
        self.cross_channel_limit = cross_channel_limit

    async def process(self, context: GenerationContext) -> GenerationContext:
        job: JobPayload = _require(context.job, self.name, "ValidationStep")
        user_message: str = _require(context.user_message, self.name, "NormalizationStep")
        job_ctx = job.context

        personality = await self.personality_store.get_personality_config(job.personality_id)
        if personality is None:
            raise DependencyResolutionError(f"Personality {job.personality_id} not found")
        context.personality = personality

        if self.persona_store is not None:
            try:
                context.user_persona = await self.persona_store.get_persona_for_user(job_ctx.user_id, personality.id)
            except Exception as e:
                logger.warning(f"Persona lookup failed for user {job_ctx.user_id}: {e}")

        if job_ctx.conversation_history is None and self.history_store is not None:
            try:
                fetched = await self.history_store.get_recent_history(job_ctx.channel_id, self.history_limit)
                context.history = normalize_history(fetched)
            except Exception as e:
                logger.warning(f"History fetch failed for channel {job_ctx.channel_id}: {e}")

        if self.memory_store is not None:
            filters = {
                "personality_id": personality.id,
                "user_id": job_ctx.user_id,
                "channel_id": job_ctx.channel_id,
                "limit": self.memory_limit,
            }
            try:
                context.memories = await self.memory_store.retrieve_relevant_memories(user_message, filters)
            except Exception as e:
                logger.warning(f"Memory retrieval failed for {personality.name}: {e}")

        context.participants = self._participants(context)
        logger.debug(
            f"Resolved dependencies for {personality.name}: history={len(context.history)}, "
            f"memories={len(context.memories)}, participants={len(context.participants)}"
        )
        return context

    def _participants(self, context: GenerationContext) -> list[ParticipantInfo]:
        job_ctx = context.job.context
        persona = context.user_persona
        active_id = job_ctx.active_persona_id or (persona.persona_id if persona else None)
        active_name = job_ctx.active_persona_name or (persona.preferred_name if persona else None)

        participants = []
        for p in extract_participants(context.history, active_id, active_name):
            is_active = p.persona_id == active_id
            participants.append(
                ParticipantInfo(
                    persona_id=p.persona_id,
                    name=p.persona_name,
                    content=persona.content if is_active and persona else "",
                    pronouns=persona.pronouns if is_active and persona else None,
                    is_active=is_active,
                )
            )
        return participants

    async def fetch_cross_channel(self, context: GenerationContext) -> None:
        job_ctx = context.job.context
        if job_ctx.cross_channel_groups or self.history_store is None:
            return
        try:
            groups = await self.history_store.get_cross_channel_history(
                context.personality.id, job_ctx.user_id, job_ctx.channel_id, self.cross_channel_limit
            )
        except Exception as e:
            logger.warning(f"Cross-channel history fetch failed: {e}")
            return
        job_ctx.cross_channel_groups = groups


class ConfigStep:
    """Effective model parameters: job overrides, then personality, then settings."""

    name = "Config"

    def __init__(self, settings: GenerationSettings | None = None):
        self.settings = settings or GenerationSettings()

    async def process(self, context: GenerationContext) -> GenerationContext:
        job: JobPayload = _require(context.job, self.name, "ValidationStep")
        personality = _require(context.personality, self.name, "DependencyStep")
        overrides = job.config_overrides

        if overrides is not None and overrides.model:
            model, source = overrides.model, "override"
        elif personality.model:
            model, source = personality.model, "personality"
        else:
            model, source = self.settings.default_model, "default"

        def pick(name: str) -> Any:
            value = getattr(overrides, name, None) if overrides is not None else None
            return value if value is not None else getattr(personality, name)

        context.llm_config = ModelConfig(
            model=model,
            context_window_tokens=pick("context_window_tokens") or self.settings.context_window_tokens,
            temperature=pick("temperature"),
            top_p=personality.top_p,
            frequency_penalty=personality.frequency_penalty,
            max_tokens=pick("max_tokens"),
            timeout_seconds=self.settings.llm_timeout_seconds,
            config_source=source,
        )
        logger.debug(
            f"Model config for {personality.name}: {model} ({source}), "
            f"window={context.llm_config.context_window_tokens}"
        )
        return context


class AuthStep:
    """The user's own key when a credential provider has one, guest mode otherwise."""

    name = "Auth"

    def __init__(self, credential_provider: CredentialProvider | None = None, provider: str = "openai"):
        self.credential_provider = credential_provider
        self.provider = provider

    async def process(self, context: GenerationContext) -> GenerationContext:
        job: JobPayload = _require(context.job, self.name, "ValidationStep")
        _require(context.llm_config, self.name, "ConfigStep")

        api_key = None
        if self.credential_provider is not None:
            try:
                api_key = await self.credential_provider.resolve_api_key(job.context.user_id, self.provider)
            except Exception as e:
                logger.warning(f"Credential lookup failed for user {job.context.user_id}, using guest mode: {e}")

        context.auth = AuthInfo(api_key=api_key, provider=self.provider, is_guest_mode=api_key is None)
        return context


class ContextStep:
    """Builds the ``ConversationContext`` that every generation attempt clones."""

    name = "Context"

    def __init__(self, dependency_step: DependencyStep | None = None):
        self.dependency_step = dependency_step

    async def process(self, context: GenerationContext) -> GenerationContext:
        job: JobPayload = _require(context.job, self.name, "ValidationStep")
        personality = _require(context.personality, self.name, "DependencyStep")
        _require(context.auth, self.name, "AuthStep")
        job_ctx = job.context

        if personality.cross_channel_history_enabled and self.dependency_step is not None:
            await self.dependency_step.fetch_cross_channel(context)

        persona = context.user_persona
        context.conversation_context = ConversationContext(
            personality=personality,
            user_message=context.user_message or "",
            history=context.history,
            cross_channel_groups=job_ctx.cross_channel_groups,
            memories=context.memories,
            participants=context.participants,
            environment=job_ctx.environment,
            active_persona_id=job_ctx.active_persona_id or (persona.persona_id if persona else None),
            active_persona_name=job_ctx.active_persona_name or (persona.preferred_name if persona else None),
            discord_username=job_ctx.discord_username,
            user_timezone=job_ctx.user_timezone,
            referenced_messages_formatted=job_ctx.referenced_messages_formatted,
            image_descriptions=job_ctx.image_descriptions,
        )
        return context


class GenerationStep:
    name = "Generation"

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        diagnostic_sink: DiagnosticSink | None = None,
        background: BackgroundTasks | None = None,
    ):
        self.orchestrator = orchestrator
        self.diagnostic_sink = diagnostic_sink
        self.background = background if background is not None else BackgroundTasks()

    async def process(self, context: GenerationContext) -> GenerationContext:
        job: JobPayload = _require(context.job, self.name, "ValidationStep")
        model_config: ModelConfig = _require(context.llm_config, self.name, "ConfigStep")
        auth: AuthInfo = _require(context.auth, self.name, "AuthStep")
        conversation: ConversationContext = _require(context.conversation_context, self.name, "ContextStep")
        personality = conversation.personality

        collector = DiagnosticCollector(
            DiagnosticMeta(
                request_id=job.request_id,
                personality_id=personality.id,
                personality_name=personality.name,
                user_id=job.context.user_id,
                channel_id=job.context.channel_id,
                guild_id=job.context.server_id,
                trigger_message_id=job.context.trigger_message_id,
            )
        )
        collector.record_memory_retrieval(context.memories, conversation.memories)

        window = self.orchestrator.detector.build_window(context.history)
        try:
            outcome = await self.orchestrator.generate(conversation, window, model_config, collector, auth.api_key)
        except Exception as e:
            info = classify_error(e)
            e.reference_id = info.reference_id
            logger.error(
                f"Generation failed for {job.request_id} ({info.category.value}, ref {info.reference_id}): {e}"
            )
            collector.record_error(str(e), info.category.value, "GenerationStep", info.reference_id)
            store_diagnostics(collector, self.diagnostic_sink, self.background)
            raise

        response = outcome.response
        metadata = GenerationMetadata(
            processing_time_ms=context.elapsed_ms(),
            model_used=response.model_used or model_config.model,
            provider_used=auth.provider,
            config_source=model_config.config_source,
            is_guest_mode=auth.is_guest_mode,
            attempts=outcome.attempts,
            duplicate_retries=outcome.duplicate_retries,
            empty_retries=outcome.empty_retries,
            cross_turn_duplicate_detected=outcome.duplicate_retries > 0,
            thinking_content=response.thinking_content,
            show_thinking=personality.show_thinking,
            token_budget=outcome.token_budget,
        )

        if not response.content:
            message = "LLM returned empty response after all retry attempts"
            reference_id = generate_error_reference_id()
            logger.warning(f"All attempts produced empty content for {job.request_id} (ref {reference_id})")
            collector.record_error(message, ErrorCategory.EMPTY_RESPONSE.value, "GenerationStep", reference_id)
            store_diagnostics(collector, self.diagnostic_sink, self.background)
            context.result = GenerationResult(
                request_id=job.request_id,
                success=False,
                error=USER_ERROR_MESSAGES[ErrorCategory.EMPTY_RESPONSE],
                error_info=ErrorInfo(
                    type=ErrorType.TRANSIENT,
                    category=ErrorCategory.EMPTY_RESPONSE,
                    user_message=USER_ERROR_MESSAGES[ErrorCategory.EMPTY_RESPONSE],
                    technical_message=message,
                    reference_id=reference_id,
                    should_retry=False,
                ),
                personality_error_message=_personality_error(
                    personality.error_message, ErrorCategory.EMPTY_RESPONSE, reference_id
                ),
                metadata=metadata,
            )
            return context

        store_diagnostics(collector, self.diagnostic_sink, self.background)
        logger.info(
            f"Generation completed for {job.request_id} in {metadata.processing_time_ms}ms "
            f"(attempts={outcome.attempts}, duplicate_retries={outcome.duplicate_retries}, "
            f"empty_retries={outcome.empty_retries})"
        )
        context.result = GenerationResult(
            request_id=job.request_id,
            success=True,
            content=response.content,
            metadata=metadata,
        )
        return context


def _personality_error(message: str | None, category: ErrorCategory, reference_id: str) -> str | None:
    if not message:
        return None
    return format_personality_error_message(message, category, reference_id)


def _raw_request_id(raw: Any) -> Any:
    return raw.get("request_id") if isinstance(raw, dict) else None


# =============================================================================
# Pipeline
# =============================================================================


class GenerationPipeline:
    def __init__(self, steps: list[PipelineStep]):
        self.steps = steps

    @classmethod
    def create(
        cls,
        invoker: LLMInvoker,
        personality_store: PersonalityStore,
        persona_store: PersonaStore | None = None,
        memory_store: MemoryStore | None = None,
        history_store: HistoryStore | None = None,
        embedding_service: EmbeddingService | None = None,
        diagnostic_sink: DiagnosticSink | None = None,
        credential_provider: CredentialProvider | None = None,
        settings: GenerationSettings | None = None,
        estimator: TokenEstimator | None = None,
        background: BackgroundTasks | None = None,
    ) -> GenerationPipeline:
        """Wire the standard seven steps from collaborators and settings."""
        settings = settings or GenerationSettings()
        estimator = estimator or TokenEstimator(settings.token_model)
        prompt_builder = PromptBuilder()
        window_manager = ContextWindowManager(
            estimator, ContextWindowConfig(memory_budget_ratio=settings.memory_budget_ratio)
        )
        detector = DuplicateDetector(
            DuplicateDetectionConfig(
                window_size=settings.duplicate_window_size,
                embedding_timeout_seconds=settings.embedding_timeout_seconds,
            ),
            embedding_service=embedding_service,
            embedding_cache=TTLCache(
                max_entries=settings.embedding_cache_size, ttl_seconds=settings.embedding_cache_ttl_seconds
            ),
        )
        orchestrator = GenerationOrchestrator(
            invoker,
            ContextAssembler(window_manager, prompt_builder, settings.max_stop_sequences),
            detector,
            max_attempts=settings.max_attempts,
        )
        dependency_step = DependencyStep(personality_store, persona_store, memory_store, history_store)
        return cls(
            [
                ValidationStep(),
                NormalizationStep(prompt_builder),
                dependency_step,
                ConfigStep(settings),
                AuthStep(credential_provider),
                ContextStep(dependency_step),
                GenerationStep(orchestrator, diagnostic_sink, background),
            ]
        )

    async def generate(self, payload: dict[str, Any] | JobPayload) -> GenerationResult:
        raw = payload.model_dump() if isinstance(payload, JobPayload) else payload
        context = GenerationContext(raw_payload=raw)

        for step in self.steps:
            try:
                context = await step.process(context)
            except Exception as e:
                return self._failure(context, e, step.name)

        if context.result is None:
            return self._failure(context, PipelineOrderError("No step produced a result"), "Pipeline")
        return context.result

    def _failure(self, context: GenerationContext, exc: Exception, step_name: str) -> GenerationResult:
        info = classify_error(exc)
        request_id = context.job.request_id if context.job else _raw_request_id(context.raw_payload)
        if isinstance(exc, JobValidationError):
            logger.error(f"Job {request_id} rejected: {exc}")
        else:
            logger.error(
                f"Job {request_id} failed at {step_name} ({info.category.value}, ref {info.reference_id}): {exc}",
                exc_info=not isinstance(exc, (DependencyResolutionError, PipelineOrderError)),
            )

        personality = context.personality
        llm_config = context.llm_config
        return GenerationResult(
            request_id=request_id if isinstance(request_id, str) else None,
            success=False,
            error=info.user_message,
            error_info=info,
            personality_error_message=_personality_error(
                personality.error_message if personality else None, info.category, info.reference_id
            ),
            metadata=GenerationMetadata(
                processing_time_ms=context.elapsed_ms(),
                model_used=llm_config.model if llm_config else None,
                provider_used=context.auth.provider if context.auth else None,
                config_source=llm_config.config_source if llm_config else None,
                is_guest_mode=context.auth.is_guest_mode if context.auth else None,
                show_thinking=personality.show_thinking if personality else False,
            ),
        )
