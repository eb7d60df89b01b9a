# persona_context/context/history_formatter.py
"""
Conversation history rendering.

Each raw entry becomes one ``<message>`` element::

    <message from="Alice" from_id="persona-1" role="user" t="2024-01-15 (Monday) 12:00 • 2h ago">
    Hello!
    <quoted_messages>...</quoted_messages>
    <image_descriptions>...</image_descriptions>
    </message>

``format_single_history_entry`` is the single source of truth used both by
the ``<chat_log>`` serializer and by token estimation. System entries and
unknown roles render as ''.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime

from persona_context.models.enums import MessageRole
from persona_context.models.history import (
    ConversationEntry,
    ImageDescription,
    MessageMetadata,
    Participant,
    ReferencedMessage,
)
from persona_context.utils.timefmt import (
    TimeGapConfig,
    calculate_time_gap,
    format_prompt_timestamp,
    format_time_gap_marker,
    should_show_gap,
)
from persona_context.utils.xml import escape_xml, escape_xml_content

logger = logging.getLogger(__name__)

# Legacy locations were stored as Markdown; those are not shown.
_LEGACY_LOCATION_MARKERS = ("**Server**", "This conversation is taking place")


# =============================================================================
# Participants & roles
# =============================================================================


def extract_participants(
    history: list[ConversationEntry],
    active_persona_id: str | None = None,
    active_persona_name: str | None = None,
) -> list[Participant]:
    """Unique user personas seen in history, plus the active persona."""
    personas: dict[str, str] = {}
    for entry in history:
        if entry.is_user and entry.persona_id and entry.persona_name:
            personas[entry.persona_id] = entry.persona_name

    if active_persona_id and active_persona_name:
        personas[active_persona_id] = active_persona_name

    if personas:
        logger.debug(f"Found {len(personas)} participant(s): {', '.join(personas.values())}")

    return [
        Participant(persona_id=pid, persona_name=name, is_active=pid == active_persona_id)
        for pid, name in personas.items()
    ]


def role_distribution(history: list[ConversationEntry]) -> dict[str, int]:
    return dict(Counter(entry.role for entry in history))


def get_recent_assistant_messages(history: list[ConversationEntry], limit: int = 5) -> list[str]:
    """Contents of the most recent assistant messages, most-recent-first."""
    recent: list[str] = []
    for entry in reversed(history):
        if entry.is_assistant and entry.content:
            recent.append(entry.content)
            if len(recent) >= limit:
                break
    return recent


def _collect_personality_names(history: list[ConversationEntry], personality_name: str) -> set[str]:
    names = {personality_name}
    for entry in history:
        if entry.is_assistant and entry.personality_name:
            names.add(entry.personality_name)
    return names


def _collect_history_message_ids(history: list[ConversationEntry]) -> set[str]:
    ids: set[str] = set()
    for entry in history:
        ids.update(mid for mid in entry.discord_message_ids if mid)
    return ids


def _is_author_assistant(author: str, personality_names: set[str]) -> bool:
    lowered = author.lower()
    return any(lowered.startswith(name.lower()) for name in personality_names)


def _resolve_speaker(
    entry: ConversationEntry,
    personality_name: str,
    personality_names: set[str],
) -> tuple[str, str] | None:
    """Return (speaker name, role) or None when the entry is not rendered."""
    if entry.is_user:
        speaker = entry.persona_name or "User"
        lowered = speaker.lower()
        collides = any(name.lower() == lowered for name in personality_names)
        if collides and entry.discord_username:
            speaker = f"{speaker} (@{entry.discord_username})"
        return speaker, MessageRole.USER.value

    if entry.is_assistant:
        return entry.personality_name or personality_name, MessageRole.ASSISTANT.value

    return None


# =============================================================================
# Metadata sections
# =============================================================================


def format_referenced_message(
    ref: ReferencedMessage,
    personality_names: set[str],
    now: datetime | None = None,
    tz_name: str | None = None,
) -> str:
    """A quoted message, in the same ``<message>`` shape with ``quoted="true"``."""
    author = ref.author_name
    role = "assistant" if _is_author_assistant(author, personality_names) else "user"
    time_attr = (
        f' t="{escape_xml(format_prompt_timestamp(ref.timestamp, now, tz_name))}"'
        if ref.timestamp is not None
        else ""
    )
    forwarded_attr = ' forwarded="true"' if ref.is_forwarded else ""

    sections = ""
    if ref.embeds:
        sections += f"\n<embeds>{escape_xml_content(ref.embeds)}</embeds>"
    if ref.attachments:
        items = ", ".join(f"[{att.content_type}: {att.name or 'attachment'}]" for att in ref.attachments)
        sections += f"\n<attachments>{escape_xml_content(items)}</attachments>"
    if ref.location_context and not any(m in ref.location_context for m in _LEGACY_LOCATION_MARKERS):
        sections += f"\n{ref.location_context}"

    return (
        f'<message from="{escape_xml(author)}" role="{role}"{time_attr}{forwarded_attr} quoted="true">'
        f"{escape_xml_content(ref.content)}{sections}</message>"
    )


def _quoted_section(
    entry: ConversationEntry,
    personality_names: set[str],
    history_message_ids: set[str] | None,
    now: datetime | None,
    tz_name: str | None,
) -> str:
    meta = entry.message_metadata
    if not entry.is_user or meta is None or not meta.referenced_messages:
        return ""
    refs = meta.referenced_messages
    if history_message_ids is not None:
        refs = [ref for ref in refs if ref.discord_message_id not in history_message_ids]
    if not refs:
        return ""
    body = "\n".join(format_referenced_message(ref, personality_names, now, tz_name) for ref in refs)
    return f"\n<quoted_messages>\n{body}\n</quoted_messages>"


def _image_section(meta: MessageMetadata) -> str:
    if not meta.image_descriptions:
        return ""
    body = "\n".join(
        f'<image filename="{escape_xml(img.filename)}">{escape_xml_content(img.description)}</image>'
        for img in meta.image_descriptions
    )
    return f"\n<image_descriptions>\n{body}\n</image_descriptions>"


def _embeds_section(meta: MessageMetadata) -> str:
    if not meta.embeds_xml:
        return ""
    return "\n<embeds>\n" + "\n".join(meta.embeds_xml) + "\n</embeds>"


def _voice_section(meta: MessageMetadata) -> str:
    if not meta.voice_transcripts:
        return ""
    body = "\n".join(f"<transcript>{escape_xml_content(t)}</transcript>" for t in meta.voice_transcripts)
    return f"\n<voice_transcripts>\n{body}\n</voice_transcripts>"


def _reactions_section(meta: MessageMetadata) -> str:
    if not meta.reactions:
        return ""
    lines = []
    for reaction in meta.reactions:
        custom_attr = ' custom="true"' if reaction.is_custom else ""
        reactors = ", ".join(escape_xml(r.display_name) for r in reaction.reactors)
        lines.append(f'<reaction emoji="{escape_xml(reaction.emoji)}"{custom_attr}>{reactors}</reaction>')
    return "\n<reactions>\n" + "\n".join(lines) + "\n</reactions>"


# =============================================================================
# Entries
# =============================================================================


def format_single_history_entry(
    entry: ConversationEntry,
    personality_name: str,
    history_message_ids: set[str] | None = None,
    personality_names: set[str] | None = None,
    now: datetime | None = None,
    tz_name: str | None = None,
) -> str:
    names = personality_names if personality_names is not None else {personality_name}
    speaker = _resolve_speaker(entry, personality_name, names)
    if speaker is None:
        return ""
    speaker_name, role = speaker

    from_id_attr = (
        f' from_id="{escape_xml(entry.persona_id)}"' if entry.is_user and entry.persona_id else ""
    )
    time_attr = (
        f' t="{escape_xml(format_prompt_timestamp(entry.created_at, now, tz_name))}"'
        if entry.created_at is not None
        else ""
    )
    forwarded_attr = ' forwarded="true"' if entry.is_forwarded else ""

    sections = _quoted_section(entry, names, history_message_ids, now, tz_name)
    meta = entry.message_metadata
    if meta is not None:
        sections += _image_section(meta)
        sections += _embeds_section(meta)
        sections += _voice_section(meta)
        sections += _reactions_section(meta)

    return (
        f'<message from="{escape_xml(speaker_name)}"{from_id_attr} role="{role}"{time_attr}{forwarded_attr}>'
        f"{escape_xml_content(entry.content)}{sections}</message>"
    )


def format_conversation_history(
    history: list[ConversationEntry],
    personality_name: str,
    time_gap: TimeGapConfig | None = None,
    now: datetime | None = None,
    tz_name: str | None = None,
) -> str:
    """Render entries for ``<chat_log>``, quotes already in history not repeated."""
    if not history:
        return ""

    history_message_ids = _collect_history_message_ids(history)
    personality_names = _collect_personality_names(history, personality_name)

    messages: list[str] = []
    previous_ts: datetime | None = None
    for entry in history:
        if time_gap is not None and previous_ts is not None and entry.created_at is not None:
            gap = calculate_time_gap(previous_ts, entry.created_at)
            if should_show_gap(gap, time_gap):
                messages.append(format_time_gap_marker(gap))

        formatted = format_single_history_entry(
            entry, personality_name, history_message_ids, personality_names, now, tz_name
        )
        if formatted:
            messages.append(formatted)
            if entry.created_at is not None:
                previous_ts = entry.created_at

    return "\n".join(messages)


def estimate_formatted_length(
    entry: ConversationEntry,
    personality_name: str,
    now: datetime | None = None,
    tz_name: str | None = None,
) -> int:
    """Character length of the entry as rendered; divide by 4 for a token estimate."""
    return len(format_single_history_entry(entry, personality_name, now=now, tz_name=tz_name))


# =============================================================================
# Enrichment
# =============================================================================


def inject_image_descriptions(
    entries: list[ConversationEntry],
    descriptions: dict[str, list[ImageDescription]],
) -> int:
    """
    Attach image descriptions to the entries they belong to, in place.

    Only ever call this on cloned entries. Returns the number of entries
    enriched.
    """
    if not descriptions:
        return 0

    enriched = 0
    for entry in entries:
        keys = [entry.id, *entry.discord_message_ids]
        found = [img for key in keys if key and key in descriptions for img in descriptions[key]]
        if not found:
            continue
        if entry.message_metadata is None:
            entry.message_metadata = MessageMetadata()
        existing = {(img.filename, img.description) for img in entry.message_metadata.image_descriptions}
        for img in found:
            if (img.filename, img.description) not in existing:
                entry.message_metadata.image_descriptions.append(img)
                existing.add((img.filename, img.description))
        enriched += 1

    if enriched:
        logger.debug(f"Injected image descriptions into {enriched} history entries")
    return enriched
