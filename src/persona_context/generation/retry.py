# persona_context/generation/retry.py
"""
Retry decisions for the generation loop.

Empty and duplicate responses are expected, recoverable outcomes, so they
are modelled as explicit decisions rather than exceptions::

    content empty?   attempts left -> RETRY     exhausted -> RETURN
    duplicate?       attempts left -> RETRY     exhausted -> RETURN
    otherwise        CONTINUE (empty check) / accept

Each retry escalates: attempt 2 raises temperature and adds a frequency
penalty; attempt 3 onwards also drops the oldest 30% of history.
"""

from __future__ import annotations

import logging
import random

from persona_context.models.enums import FallbackReason, RetryAction
from persona_context.models.generation import FallbackResponse, LLMResponse, RetryConfig

logger = logging.getLogger(__name__)

RETRY_TEMPERATURE_MIN = 0.95
RETRY_TEMPERATURE_MAX = 1.0
RETRY_ATTEMPT_2_FREQUENCY_PENALTY = 0.5
RETRY_ATTEMPT_3_HISTORY_REDUCTION = 0.3


def get_retry_temperature() -> float:
    """High temperature with jitter, so identical retries do not hit a provider cache."""
    return random.uniform(RETRY_TEMPERATURE_MIN, RETRY_TEMPERATURE_MAX)


def build_retry_config(attempt: int) -> RetryConfig:
    if attempt <= 1:
        return RetryConfig(attempt=max(1, attempt))
    if attempt == 2:
        return RetryConfig(
            attempt=attempt,
            temperature_override=get_retry_temperature(),
            frequency_penalty_override=RETRY_ATTEMPT_2_FREQUENCY_PENALTY,
        )
    return RetryConfig(
        attempt=attempt,
        temperature_override=get_retry_temperature(),
        frequency_penalty_override=RETRY_ATTEMPT_2_FREQUENCY_PENALTY,
        history_reduction_percent=RETRY_ATTEMPT_3_HISTORY_REDUCTION,
    )


def decide_empty_response(content: str | None, attempt: int, max_attempts: int) -> RetryAction:
    if content:
        return RetryAction.CONTINUE
    if attempt < max_attempts:
        logger.warning(f"Empty response on attempt {attempt}/{max_attempts}, retrying")
        return RetryAction.RETRY
    logger.error(f"Empty response on final attempt {attempt}/{max_attempts}, giving up")
    return RetryAction.RETURN


def decide_duplicate(attempt: int, max_attempts: int, match_index: int = -1) -> RetryAction:
    if attempt < max_attempts:
        logger.warning(
            f"Duplicate response on attempt {attempt}/{max_attempts} "
            f"(match {match_index + 1} turn(s) back), retrying with escalated parameters"
        )
        return RetryAction.RETRY
    logger.error(
        f"Duplicate response persisted through all {max_attempts} attempts, returning it anyway"
    )
    return RetryAction.RETURN


def select_better_fallback(
    current: FallbackResponse | None,
    response: LLMResponse,
    reason: FallbackReason,
    attempt: int,
) -> FallbackResponse:
    """
    Keep the most useful rejected response.

    A duplicate (real content) beats an empty one; between equals the
    longer content wins, ties keep the earlier response.
    """
    candidate = FallbackResponse(response=response, reason=reason, attempt=attempt)
    if current is None:
        return candidate

    if candidate.reason != current.reason:
        return candidate if candidate.reason == FallbackReason.DUPLICATE else current

    if len(candidate.response.content) > len(current.response.content):
        return candidate
    return current
