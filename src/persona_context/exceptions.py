# persona_context/exceptions.py
"""
Error taxonomy for context assembly and generation.

Exceptions are raised where the failure happens and converted into a
user-safe ``ErrorInfo`` at the pipeline boundary by ``classify_error``.
Raw exception text only ever lands in ``ErrorInfo.technical_message``.
"""

from __future__ import annotations

import asyncio
import random
import string
import time
from enum import Enum

from pydantic import BaseModel, Field

# =============================================================================
# Enums
# =============================================================================


class ErrorType(str, Enum):
    """Whether retrying the same request could succeed."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class ErrorCategory(str, Enum):
    """Coarse failure categories surfaced to the bot client."""

    AUTHENTICATION = "authentication"
    QUOTA_EXCEEDED = "quota_exceeded"
    CONTENT_POLICY = "content_policy"
    BAD_REQUEST = "bad_request"
    MODEL_NOT_FOUND = "model_not_found"
    VALIDATION = "validation"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    NETWORK = "network"
    EMPTY_RESPONSE = "empty_response"
    CENSORED = "censored"
    UNKNOWN = "unknown"


PERMANENT_ERROR_CATEGORIES = frozenset(
    {
        ErrorCategory.AUTHENTICATION,
        ErrorCategory.QUOTA_EXCEEDED,
        ErrorCategory.CONTENT_POLICY,
        ErrorCategory.BAD_REQUEST,
        ErrorCategory.MODEL_NOT_FOUND,
        ErrorCategory.VALIDATION,
    }
)

TRANSIENT_ERROR_CATEGORIES = frozenset(
    {
        ErrorCategory.RATE_LIMIT,
        ErrorCategory.SERVER_ERROR,
        ErrorCategory.TIMEOUT,
        ErrorCategory.NETWORK,
        ErrorCategory.EMPTY_RESPONSE,
        ErrorCategory.CENSORED,
    }
)

HTTP_STATUS_TO_CATEGORY: dict[int, ErrorCategory] = {
    400: ErrorCategory.BAD_REQUEST,
    401: ErrorCategory.AUTHENTICATION,
    402: ErrorCategory.QUOTA_EXCEEDED,
    403: ErrorCategory.CONTENT_POLICY,
    404: ErrorCategory.MODEL_NOT_FOUND,
    408: ErrorCategory.TIMEOUT,
    429: ErrorCategory.RATE_LIMIT,
    500: ErrorCategory.SERVER_ERROR,
    502: ErrorCategory.SERVER_ERROR,
    503: ErrorCategory.SERVER_ERROR,
    504: ErrorCategory.SERVER_ERROR,
}

USER_ERROR_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.AUTHENTICATION: "The API key for this request was rejected.",
    ErrorCategory.QUOTA_EXCEEDED: "The account behind this request is out of credits.",
    ErrorCategory.CONTENT_POLICY: "The provider refused this request on content-policy grounds.",
    ErrorCategory.BAD_REQUEST: "The provider could not process this request.",
    ErrorCategory.MODEL_NOT_FOUND: "The configured model is not available.",
    ErrorCategory.VALIDATION: "The request was malformed and could not be processed.",
    ErrorCategory.RATE_LIMIT: "Too many requests right now. Please try again shortly.",
    ErrorCategory.SERVER_ERROR: "The AI provider is having trouble. Please try again.",
    ErrorCategory.TIMEOUT: "The response took too long. Please try again.",
    ErrorCategory.NETWORK: "Could not reach the AI provider. Please try again.",
    ErrorCategory.EMPTY_RESPONSE: "The model returned an empty response.",
    ErrorCategory.CENSORED: "The model declined to answer.",
    ErrorCategory.UNKNOWN: "Something went wrong while generating a response.",
}


# =============================================================================
# Exceptions
# =============================================================================


class PersonaContextError(Exception):
    """Base class for all errors raised by this package."""

    category: ErrorCategory = ErrorCategory.UNKNOWN


class JobValidationError(PersonaContextError):
    """The job payload is malformed. Fatal, never retried."""

    category = ErrorCategory.VALIDATION


class PipelineOrderError(PersonaContextError):
    """A pipeline step ran before the steps it depends on."""


class DependencyResolutionError(PersonaContextError):
    """A required collaborator record (e.g. the personality) is missing."""

    category = ErrorCategory.BAD_REQUEST


class TransientGenerationError(PersonaContextError):
    """An LLM call failed in a way that a later attempt may not."""

    category = ErrorCategory.SERVER_ERROR


class LLMTimeoutError(TransientGenerationError):
    """The LLM call exceeded its configured timeout."""

    category = ErrorCategory.TIMEOUT


class LLMInvocationError(TransientGenerationError):
    """The LLM provider returned an error response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
        if status_code is not None:
            self.category = HTTP_STATUS_TO_CATEGORY.get(
                status_code,
                ErrorCategory.SERVER_ERROR if status_code >= 500 else ErrorCategory.UNKNOWN,
            )

    @property
    def is_retryable(self) -> bool:
        return self.category not in PERMANENT_ERROR_CATEGORIES


# =============================================================================
# Classification
# =============================================================================


class ErrorInfo(BaseModel):
    """Structured, user-safe description of a failure."""

    type: ErrorType = Field(default=ErrorType.UNKNOWN)
    category: ErrorCategory = Field(default=ErrorCategory.UNKNOWN)
    user_message: str = Field(..., description="Safe to show to end users")
    technical_message: str = Field(default="", description="Raw detail for logs and diagnostics")
    reference_id: str = Field(..., description="Short id that correlates logs with a user report")
    should_retry: bool = Field(default=False)


def generate_error_reference_id() -> str:
    """Return a short base36 id: millisecond timestamp plus a random suffix."""
    alphabet = string.digits + string.ascii_lowercase
    millis = int(time.time() * 1000)
    digits = []
    while millis:
        millis, rem = divmod(millis, 36)
        digits.append(alphabet[rem])
    suffix = "".join(random.choice(alphabet) for _ in range(3))
    return "".join(reversed(digits)) + suffix


def error_type_for(category: ErrorCategory) -> ErrorType:
    if category in PERMANENT_ERROR_CATEGORIES:
        return ErrorType.PERMANENT
    if category in TRANSIENT_ERROR_CATEGORIES:
        return ErrorType.TRANSIENT
    return ErrorType.UNKNOWN


def classify_http_status(status_code: int) -> tuple[ErrorType, ErrorCategory]:
    category = HTTP_STATUS_TO_CATEGORY.get(status_code)
    if category is None:
        category = ErrorCategory.SERVER_ERROR if status_code >= 500 else ErrorCategory.UNKNOWN
    return error_type_for(category), category


def is_permanent_error(category: ErrorCategory) -> bool:
    return category in PERMANENT_ERROR_CATEGORIES


def is_transient_error(category: ErrorCategory) -> bool:
    return category in TRANSIENT_ERROR_CATEGORIES


def classify_error(exc: BaseException) -> ErrorInfo:
    """
    Convert any exception into an ``ErrorInfo``.

    The reference id is fresh unless an earlier classification already
    stamped one on the exception, so logs, diagnostics and the user-facing
    result all quote the same id.
    """
    if isinstance(exc, PersonaContextError):
        category = exc.category
    elif isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        category = ErrorCategory.TIMEOUT
    elif isinstance(exc, (ConnectionError, OSError)):
        category = ErrorCategory.NETWORK
    else:
        category = ErrorCategory.UNKNOWN

    error_type = error_type_for(category)
    return ErrorInfo(
        type=error_type,
        category=category,
        user_message=USER_ERROR_MESSAGES[category],
        technical_message=str(exc) or exc.__class__.__name__,
        reference_id=getattr(exc, "reference_id", None) or generate_error_reference_id(),
        should_retry=error_type == ErrorType.TRANSIENT,
    )


def format_error_spoiler(category: ErrorCategory, reference_id: str) -> str:
    """Discord spoiler footer, e.g. ``||*(error: quota exceeded; reference: abc)*||``."""
    label = category.value.replace("_", " ")
    return f"||*(error: {label}; reference: {reference_id})*||"


def format_personality_error_message(message: str, category: ErrorCategory, reference_id: str) -> str:
    return f"{message} {format_error_spoiler(category, reference_id)}"
