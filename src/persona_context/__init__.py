# persona_context/__init__.py
"""
Persona Context Engine.

Builds the LLM context for persona-driven chat bots and runs generation:
- Token budgeting across system prompt, memories and conversation history
- XML-tagged system prompt composition
- Cross-turn duplicate detection with escalating retries
- Response artifact cleanup and structured, user-safe errors
"""

from .config import GenerationSettings
from .context.assembler import AssembledPrompt, ContextAssembler
from .context.window_manager import ContextWindowConfig, ContextWindowManager
from .exceptions import (
    DependencyResolutionError,
    ErrorCategory,
    ErrorInfo,
    ErrorType,
    JobValidationError,
    LLMInvocationError,
    LLMTimeoutError,
    PersonaContextError,
    PipelineOrderError,
    classify_error,
)
from .generation.artifacts import clean_response, strip_response_artifacts
from .generation.duplicates import DuplicateDetector, DuplicateWindow
from .generation.orchestrator import GenerationOrchestrator
from .models import (
    ConversationEntry,
    GenerationResult,
    JobPayload,
    MemoryDocument,
    ModelConfig,
    PersonalityConfig,
    TokenBudget,
)
from .pipeline import (
    AuthStep,
    ConfigStep,
    ContextStep,
    DependencyStep,
    GenerationPipeline,
    GenerationStep,
    NormalizationStep,
    ValidationStep,
)
from .prompt import PromptBuilder
from .tokens import TokenEstimator

__all__ = [
    # Pipeline
    "GenerationPipeline",
    "ValidationStep",
    "NormalizationStep",
    "DependencyStep",
    "ConfigStep",
    "AuthStep",
    "ContextStep",
    "GenerationStep",
    # Context
    "AssembledPrompt",
    "ContextAssembler",
    "ContextWindowConfig",
    "ContextWindowManager",
    "PromptBuilder",
    "TokenEstimator",
    # Generation
    "DuplicateDetector",
    "DuplicateWindow",
    "GenerationOrchestrator",
    "clean_response",
    "strip_response_artifacts",
    # Models
    "ConversationEntry",
    "GenerationResult",
    "JobPayload",
    "MemoryDocument",
    "ModelConfig",
    "PersonalityConfig",
    "TokenBudget",
    # Errors
    "DependencyResolutionError",
    "ErrorCategory",
    "ErrorInfo",
    "ErrorType",
    "JobValidationError",
    "LLMInvocationError",
    "LLMTimeoutError",
    "PersonaContextError",
    "PipelineOrderError",
    "classify_error",
    # Settings
    "GenerationSettings",
]
