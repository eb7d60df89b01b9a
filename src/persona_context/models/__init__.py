# persona_context/models/__init__.py
"""
Data models for context assembly and generation.

All public names are re-exported here so callers can write
``from persona_context.models import ConversationEntry``.
"""

# --- budget & selection -------------------------------------------------------
from persona_context.models.budget import (  # noqa: F401
    HistorySerialization,
    MemorySelection,
    PromptContext,
    SelectionMetadata,
    TokenBudget,
)

# --- enums ----------------------------------------------------------------------
from persona_context.models.enums import (  # noqa: F401
    ChannelType,
    DetectionMethod,
    FallbackReason,
    MessageRole,
    RetryAction,
    SelectionStrategy,
)

# --- environment & cross-channel -----------------------------------------------
from persona_context.models.environment import (  # noqa: F401
    ChannelEnvironment,
    CrossChannelGroup,
    DMEnvironment,
    GuildEnvironment,
)

# --- generation -----------------------------------------------------------------
from persona_context.models.generation import (  # noqa: F401
    AuthInfo,
    ConfigOverrides,
    ConversationContext,
    DuplicateCheckResult,
    FallbackResponse,
    GenerationContext,
    GenerationMetadata,
    GenerationResult,
    IncomingMessage,
    JobContext,
    JobPayload,
    LLMResponse,
    MessageAttachment,
    ModelConfig,
    OrchestratedResponse,
    QuotedMessage,
    RetryConfig,
)

# --- history --------------------------------------------------------------------
from persona_context.models.history import (  # noqa: F401
    AttachmentRef,
    ConversationEntry,
    ImageDescription,
    MessageMetadata,
    Participant,
    Reaction,
    Reactor,
    ReferencedMessage,
)

# --- memory ---------------------------------------------------------------------
from persona_context.models.memory import MemoryDocument, MemoryMetadata  # noqa: F401

# --- personality ----------------------------------------------------------------
from persona_context.models.personality import (  # noqa: F401
    GuildMemberInfo,
    ParticipantInfo,
    PersonalityConfig,
    UserPersona,
)
