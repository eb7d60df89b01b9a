# persona_context/models/personality.py
"""Personality configuration and participant personas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class PersonalityConfig(BaseModel):
    """An AI personality as loaded from the personality store."""

    id: str
    name: str
    display_name: str | None = Field(default=None)
    system_prompt: str = Field(default="", description="Behaviour protocol; may contain {user}/{assistant}")

    # Character fields
    character_info: str | None = Field(default=None)
    personality_traits: str | None = Field(default=None)
    personality_tone: str | None = Field(default=None)
    personality_age: str | None = Field(default=None)
    personality_appearance: str | None = Field(default=None)
    personality_likes: str | None = Field(default=None)
    personality_dislikes: str | None = Field(default=None)
    conversational_goals: str | None = Field(default=None)
    conversational_examples: str | None = Field(default=None)

    # Model parameters
    model: str | None = Field(default=None)
    context_window_tokens: int | None = Field(default=None, gt=0)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    frequency_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)

    show_thinking: bool = Field(default=False)
    error_message: str | None = Field(default=None, description="Personality-flavoured failure text")
    cross_channel_history_enabled: bool = Field(default=False)

    @property
    def visible_name(self) -> str:
        return self.display_name or self.name


class UserPersona(BaseModel):
    """A user's persona for a given personality."""

    persona_id: str | None = Field(default=None)
    content: str = Field(default="", description="Free-form 'about me' text written by the user")
    preferred_name: str | None = Field(default=None)
    pronouns: str | None = Field(default=None)


class GuildMemberInfo(BaseModel):
    """Server-side details about a participant."""

    roles: list[str] = Field(default_factory=list)
    display_color: str | None = Field(default=None)
    joined_at: datetime | None = Field(default=None)


class ParticipantInfo(BaseModel):
    """A conversation participant as rendered in the <participants> block."""

    persona_id: str
    name: str
    content: str = Field(default="")
    pronouns: str | None = Field(default=None)
    is_active: bool = Field(default=False)
    guild_info: GuildMemberInfo | None = Field(default=None)
