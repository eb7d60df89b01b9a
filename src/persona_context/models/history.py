# persona_context/models/history.py
"""Raw conversation history entries and their structured metadata."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from persona_context.models.enums import MessageRole

# =============================================================================
# Metadata
# =============================================================================


class AttachmentRef(BaseModel):
    """Attachment metadata carried on a stored reference."""

    content_type: str = Field(default="application/octet-stream")
    name: str | None = Field(default=None)


class ReferencedMessage(BaseModel):
    """A message quoted by a reply or a message link."""

    discord_message_id: str = Field(..., description="Snowflake of the quoted message")
    author_username: str = Field(default="")
    author_display_name: str = Field(default="")
    content: str = Field(default="")
    timestamp: datetime | None = Field(default=None)
    is_forwarded: bool = Field(default=False)
    embeds: str | None = Field(default=None, description="Pre-rendered embed text")
    attachments: list[AttachmentRef] = Field(default_factory=list)
    location_context: str | None = Field(default=None, description="Pre-rendered <location> XML")

    @property
    def author_name(self) -> str:
        return self.author_display_name or self.author_username


class ImageDescription(BaseModel):
    """Vision-model description of an image attachment."""

    filename: str
    description: str


class Reactor(BaseModel):
    display_name: str


class Reaction(BaseModel):
    """An emoji reaction and who added it."""

    emoji: str
    is_custom: bool = Field(default=False)
    reactors: list[Reactor] = Field(default_factory=list)


class MessageMetadata(BaseModel):
    """Structured per-message metadata, formatted at prompt time."""

    referenced_messages: list[ReferencedMessage] = Field(default_factory=list)
    image_descriptions: list[ImageDescription] = Field(default_factory=list)
    embeds_xml: list[str] = Field(default_factory=list, description="Already-formatted embed XML")
    voice_transcripts: list[str] = Field(default_factory=list)
    reactions: list[Reaction] = Field(default_factory=list)


# =============================================================================
# Entries
# =============================================================================


class ConversationEntry(BaseModel):
    """
    One raw history item, oldest-first as returned by the history store.

    ``token_count`` is authoritative when present: budgeting never
    recomputes a cached count.
    """

    id: str | None = Field(default=None, description="Internal message id")
    discord_message_ids: list[str] = Field(
        default_factory=list, description="Discord snowflakes (long messages are chunked)"
    )
    role: str = Field(..., description="user or assistant; legacy casing is normalised")
    content: str = Field(default="")
    created_at: datetime | None = Field(default=None)
    token_count: int | None = Field(default=None, ge=0)
    is_forwarded: bool = Field(default=False)
    message_metadata: MessageMetadata | None = Field(default=None)

    # User side
    persona_id: str | None = Field(default=None)
    persona_name: str | None = Field(default=None)
    discord_username: str | None = Field(default=None)

    # Assistant side (multi-AI channels)
    personality_id: str | None = Field(default=None)
    personality_name: str | None = Field(default=None)

    @field_validator("role", mode="before")
    @classmethod
    def _normalise_role(cls, value: object) -> str:
        if isinstance(value, MessageRole):
            return value.value
        return str(value).strip().lower()

    @property
    def is_user(self) -> bool:
        return self.role == MessageRole.USER.value

    @property
    def is_assistant(self) -> bool:
        return self.role == MessageRole.ASSISTANT.value


class Participant(BaseModel):
    """A persona seen speaking in the conversation."""

    persona_id: str
    persona_name: str
    is_active: bool = Field(default=False)
