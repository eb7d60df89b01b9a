# persona_context/models/environment.py
"""Where a conversation happens, and cross-channel history groups."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator

from persona_context.models.history import ConversationEntry


class DMEnvironment(BaseModel):
    type: Literal["dm"] = "dm"


class GuildEnvironment(BaseModel):
    """A guild channel. Every name here is user-controlled and must be escaped."""

    type: Literal["guild"] = "guild"
    guild_name: str = Field(default="")
    channel_name: str = Field(default="")
    channel_type: str | None = Field(default=None)
    category_name: str | None = Field(default=None)
    thread_name: str | None = Field(default=None)
    topic: str | None = Field(default=None)


ChannelEnvironment = Annotated[DMEnvironment | GuildEnvironment, Field(discriminator="type")]


class CrossChannelGroup(BaseModel):
    """
    Messages from one other channel, chronological.

    Every message must carry an explicit ``token_count``: cross-channel
    budgeting never tokenizes.
    """

    channel_id: str | None = Field(default=None)
    channel_environment: ChannelEnvironment
    messages: list[ConversationEntry] = Field(default_factory=list)

    @field_validator("messages")
    @classmethod
    def _require_token_counts(cls, messages: list[ConversationEntry]) -> list[ConversationEntry]:
        for message in messages:
            if message.token_count is None:
                raise ValueError("cross-channel messages must carry token_count")
        return messages
