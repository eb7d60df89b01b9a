# persona_context/prompt/builder.py
"""
Prompt Builder.

Composes the full system prompt by concatenating independently-formatted
sections in a fixed order::

    <system_identity>         who the personality is
    <identity_constraints>    what it must never do
    <platform_constraints>
    <context>                 date, location (DM or guild), request id
    <participants>            user personas, group-conversation note
    <memory_archive>          long-term memories
    <prior_conversations>     cross-channel history
    <contextual_references>   replies and message links
    <chat_log>                current-channel history
    <protocol>                behaviour rules, near the end
    <output_constraints>      format rules, at the very end

Every section formatter escapes user-controlled text itself and returns ''
when it has nothing to contribute, so composition is plain concatenation.
"""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import BaseModel, Field

from persona_context.context.memory_formatter import format_memories_context
from persona_context.models.generation import ConversationContext, IncomingMessage
from persona_context.prompt.constraints import (
    OUTPUT_CONSTRAINTS,
    PLATFORM_CONSTRAINTS,
    build_identity_constraints,
    detect_name_collision,
)
from persona_context.prompt.environment import format_context_section
from persona_context.prompt.participants import format_participants_context
from persona_context.prompt.personality import format_personality_fields
from persona_context.utils.xml import escape_xml, escape_xml_content

logger = logging.getLogger(__name__)

DEFAULT_USER_MESSAGE = "Hello"


class HumanMessage(BaseModel):
    """The user turn as sent to the model, and the text worth storing."""

    content: str
    content_for_storage: str = Field(..., description="Without speaker wrapper or appended references")


def build_disambiguated_display_name(
    persona_name: str,
    personality_name: str | None = None,
    discord_username: str | None = None,
) -> str:
    if personality_name and discord_username and persona_name.lower() == personality_name.lower():
        return f"{persona_name} (@{discord_username})"
    return persona_name


def wrap_with_speaker_identification(content: str, display_name: str, persona_id: str | None = None) -> str:
    id_attr = f' id="{escape_xml(persona_id)}"' if persona_id else ""
    return f"<from{id_attr}>{escape_xml(display_name)}</from>\n\n{content}"


class PromptBuilder:
    """Builds system prompts and user turns from a ``ConversationContext``."""

    def build_full_system_prompt(
        self,
        context: ConversationContext,
        serialized_history: str = "",
        cross_channel_history: str = "",
        include_memories: bool = True,
        now: datetime | None = None,
        request_id: str | None = None,
    ) -> str:
        personality = context.personality
        user_name = context.active_persona_name or "User"
        persona, protocol = format_personality_fields(personality, user_name)

        identity_section = (
            "<system_identity>\n"
            f"<role>You are {escape_xml_content(personality.visible_name)}.</role>\n"
            "<character>\n"
            f"{escape_xml_content(persona)}\n"
            "</character>\n"
            "</system_identity>"
        )

        collision = detect_name_collision(context.active_persona_name, context.discord_username, personality.name)
        identity_constraints = build_identity_constraints(personality.name, collision)

        context_section = format_context_section(context.environment, context.user_timezone, now, request_id)
        participants_section = format_participants_context(context.participants, context.active_persona_name)
        memory_section = (
            format_memories_context(context.memories, context.user_timezone, now) if include_memories else ""
        )
        cross_channel_section = f"\n\n{cross_channel_history}" if cross_channel_history else ""
        references_section = (
            "\n\n<contextual_references>\n"
            f"{context.referenced_messages_formatted}\n"
            "</contextual_references>"
            if context.referenced_messages_formatted
            else ""
        )
        chat_log_section = f"\n\n<chat_log>\n{serialized_history}\n</chat_log>" if serialized_history else ""
        protocol_section = f"\n\n<protocol>\n{escape_xml_content(protocol)}\n</protocol>" if protocol else ""
        output_section = f"\n\n{OUTPUT_CONSTRAINTS}"

        prompt = (
            f"{identity_section}\n\n{identity_constraints}\n\n{PLATFORM_CONSTRAINTS}"
            f"{context_section}{participants_section}{memory_section}{cross_channel_section}"
            f"{references_section}{chat_log_section}{protocol_section}{output_section}"
        )

        logger.info(
            f"Prompt composition: identity={len(identity_section)} "
            f"identityConstraints={len(identity_constraints)} context={len(context_section)} "
            f"participants={len(participants_section)} memories={len(memory_section)} "
            f"crossChannel={len(cross_channel_section)} references={len(references_section)} "
            f"history={len(serialized_history)} protocol={len(protocol_section)} total={len(prompt)} chars"
        )
        return prompt

    def build_human_message(
        self,
        user_message: str,
        active_persona_name: str | None = None,
        active_persona_id: str | None = None,
        discord_username: str | None = None,
        personality_name: str | None = None,
        referenced_messages_descriptions: str | None = None,
    ) -> HumanMessage:
        content_for_storage = user_message
        message = user_message
        if referenced_messages_descriptions:
            message = f"{message}\n\n{referenced_messages_descriptions}" if message else referenced_messages_descriptions

        final = escape_xml_content(message)
        if active_persona_name:
            display_name = build_disambiguated_display_name(active_persona_name, personality_name, discord_username)
            final = wrap_with_speaker_identification(final, display_name, active_persona_id)

        return HumanMessage(content=final, content_for_storage=content_for_storage)

    def format_user_message(
        self,
        message: str | IncomingMessage | None,
        is_proxy_message: bool = False,
        user_name: str | None = None,
    ) -> str:
        """Flatten the triggering message to text, defaulting to "Hello" when empty."""
        proxy_prefix = f"[Message from {user_name}]\n" if is_proxy_message and user_name else ""

        if isinstance(message, str):
            text = message.strip()
            return proxy_prefix + text if text else DEFAULT_USER_MESSAGE

        if isinstance(message, IncomingMessage):
            ref_prefix = ""
            if message.referenced_message is not None and message.referenced_message.content:
                ref = message.referenced_message
                ref_prefix = f'[Replying to {ref.author}: "{ref.content}"]\n'
            attachment_suffix = "".join(f"\n[Attachment: {a.name}]" for a in message.attachments)
            result = ref_prefix + proxy_prefix + message.content + attachment_suffix
            return result if result.strip() else DEFAULT_USER_MESSAGE

        return proxy_prefix or DEFAULT_USER_MESSAGE
