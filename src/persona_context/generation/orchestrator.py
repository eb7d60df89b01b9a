# persona_context/generation/orchestrator.py
"""
Generation Orchestrator.

Drives up to ``max_attempts`` LLM calls for one user message::

    for each attempt:
        retry config  ->  clone context  ->  assemble prompt  ->  invoke (timeout)
        clean response (intra-turn duplicates, echoed markup)
        empty?      RETRY while attempts remain, else RETURN
        duplicate?  RETRY while attempts remain, else RETURN
        accept

Rejected responses are kept as a fallback (real content beats empty). A
failed invocation is retried unless its error is permanent; when nothing
is left to try, the best fallback is returned, or the error propagates.
Reasoning content seen on any attempt is carried onto the final response
when that response has none of its own.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from persona_context.config import MAX_GENERATION_ATTEMPTS
from persona_context.context.assembler import ContextAssembler
from persona_context.exceptions import LLMTimeoutError, classify_error, is_permanent_error
from persona_context.generation.artifacts import remove_duplicate_response, strip_response_artifacts
from persona_context.generation.cloning import clone_context_for_retry
from persona_context.generation.diagnostics import AttemptRecord, DiagnosticCollector
from persona_context.generation.duplicates import DuplicateDetector, DuplicateWindow, Fingerprint
from persona_context.generation.retry import (
    build_retry_config,
    decide_duplicate,
    decide_empty_response,
    select_better_fallback,
)
from persona_context.interfaces import LLMInvoker
from persona_context.models.budget import TokenBudget
from persona_context.models.enums import FallbackReason, RetryAction
from persona_context.models.generation import (
    ConversationContext,
    DuplicateCheckResult,
    FallbackResponse,
    LLMResponse,
    ModelConfig,
    OrchestratedResponse,
)

logger = logging.getLogger(__name__)


class GenerationOrchestrator:
    def __init__(
        self,
        invoker: LLMInvoker,
        assembler: ContextAssembler | None = None,
        detector: DuplicateDetector | None = None,
        max_attempts: int = MAX_GENERATION_ATTEMPTS,
    ):
        self.invoker = invoker
        self.assembler = assembler or ContextAssembler()
        self.detector = detector or DuplicateDetector()
        self.max_attempts = max(1, max_attempts)

    async def _invoke(
        self, messages: list[dict], model_config: ModelConfig, api_key: str | None = None
    ) -> LLMResponse:
        try:
            return await asyncio.wait_for(
                self.invoker.invoke(messages, model_config, api_key), timeout=model_config.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise LLMTimeoutError(
                f"LLM call to {model_config.model} timed out after {model_config.timeout_seconds}s"
            ) from e

    def _clean(self, response: LLMResponse, personality_name: str) -> tuple[LLMResponse, str]:
        raw = response.content or ""
        deduplicated = remove_duplicate_response(raw)
        cleaned = strip_response_artifacts(deduplicated, personality_name)
        return response.model_copy(update={"content": cleaned}), deduplicated

    @staticmethod
    def _restore_thinking(response: LLMResponse, preserved: str | None) -> LLMResponse:
        if not response.thinking_content and preserved:
            return response.model_copy(update={"thinking_content": preserved})
        return response

    async def generate(
        self,
        context: ConversationContext,
        window: DuplicateWindow,
        model_config: ModelConfig,
        collector: DiagnosticCollector | None = None,
        api_key: str | None = None,
        now: datetime | None = None,
    ) -> OrchestratedResponse:
        personality_name = context.personality.name
        duplicate_retries = 0
        empty_retries = 0
        preserved_thinking: str | None = None
        fallback: FallbackResponse | None = None
        token_budget: TokenBudget | None = None

        def finish(
            response: LLMResponse,
            attempt: int,
            used_fallback: bool = False,
            check: DuplicateCheckResult | None = None,
        ) -> OrchestratedResponse:
            return OrchestratedResponse(
                response=self._restore_thinking(response, preserved_thinking),
                attempts=attempt,
                duplicate_retries=duplicate_retries,
                empty_retries=empty_retries,
                used_fallback=used_fallback,
                duplicate_check=check,
                token_budget=token_budget,
            )

        for attempt in range(1, self.max_attempts + 1):
            retry = build_retry_config(attempt)
            if attempt > 1:
                logger.info(
                    f"Retry attempt {attempt}/{self.max_attempts}: temperature={retry.temperature_override}, "
                    f"frequency_penalty={retry.frequency_penalty_override}, "
                    f"history_reduction={retry.history_reduction_percent}"
                )

            attempt_context = clone_context_for_retry(context)
            prompt = self.assembler.assemble(attempt_context, model_config, retry, now)
            token_budget = prompt.token_budget
            attempt_config = model_config.with_retry(retry)
            if prompt.stop_sequences:
                attempt_config = attempt_config.model_copy(update={"stop_sequences": prompt.stop_sequences})

            if collector is not None:
                collector.reset_llm_timing_for_retry()
                collector.record_token_budget(
                    prompt.token_budget, prompt.memories.memories_dropped, prompt.history.messages_dropped
                )
                collector.record_assembled_prompt(prompt.messages, prompt.token_estimate)
                collector.record_llm_config(attempt_config)
                collector.mark_llm_invocation_start()

            try:
                raw_response = await self._invoke(prompt.messages, attempt_config, api_key)
            except Exception as e:
                info = classify_error(e)
                if collector is not None:
                    collector.record_attempt(AttemptRecord(attempt=attempt, outcome="error", detail=str(e)))
                retryable = not is_permanent_error(info.category)
                if retryable and attempt < self.max_attempts:
                    logger.warning(
                        f"LLM invocation failed on attempt {attempt}/{self.max_attempts} "
                        f"({info.category.value}): {e}; retrying"
                    )
                    continue
                if fallback is not None:
                    logger.warning(
                        f"LLM invocation failed ({info.category.value}); returning {fallback.reason.value} "
                        f"fallback from attempt {fallback.attempt}"
                    )
                    return finish(fallback.response, attempt, used_fallback=True)
                raise

            if collector is not None:
                collector.record_llm_response(raw_response)

            response, deduplicated = self._clean(raw_response, personality_name)
            if collector is not None:
                collector.record_post_processing(
                    raw_response.content or "", deduplicated, response.content, response.thinking_content
                )
            if response.thinking_content:
                preserved_thinking = response.thinking_content

            empty_action = decide_empty_response(response.content, attempt, self.max_attempts)
            if empty_action != RetryAction.CONTINUE:
                empty_retries += 1
                if collector is not None:
                    collector.record_attempt(
                        AttemptRecord(attempt=attempt, outcome="empty", model_used=response.model_used)
                    )
                fallback = select_better_fallback(fallback, response, FallbackReason.EMPTY, attempt)
                if empty_action == RetryAction.RETRY:
                    continue
                if fallback.reason == FallbackReason.DUPLICATE:
                    logger.warning(
                        f"All attempts exhausted; returning duplicate fallback from attempt {fallback.attempt}"
                    )
                    return finish(fallback.response, attempt, used_fallback=True)
                return finish(response, attempt)

            candidate = Fingerprint.from_content(response.content)
            check = await self.detector.check(candidate, window)

            if not check.is_duplicate:
                if collector is not None:
                    collector.record_attempt(
                        AttemptRecord(
                            attempt=attempt,
                            outcome="accepted",
                            model_used=response.model_used,
                            content_length=len(response.content),
                        )
                    )
                if duplicate_retries or empty_retries:
                    logger.info(
                        f"Retry succeeded on attempt {attempt} (model={response.model_used}, "
                        f"duplicate_retries={duplicate_retries}, empty_retries={empty_retries})"
                    )
                self.detector.record_accepted(candidate, window)
                return finish(response, attempt, check=check)

            duplicate_retries += 1
            if collector is not None:
                collector.record_attempt(
                    AttemptRecord(
                        attempt=attempt,
                        outcome="duplicate",
                        model_used=response.model_used,
                        content_length=len(response.content),
                        detail=check.detection_method.value,
                    )
                )
            fallback = select_better_fallback(fallback, response, FallbackReason.DUPLICATE, attempt)
            if decide_duplicate(attempt, self.max_attempts, check.match_index) == RetryAction.RETURN:
                return finish(response, attempt, check=check)

        # The final attempt always returns or raises.
        raise RuntimeError("generation loop ended without a response")
