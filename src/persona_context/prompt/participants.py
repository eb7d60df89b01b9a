# persona_context/prompt/participants.py
"""``<participants>`` block: who else is in the conversation."""

from __future__ import annotations

from persona_context.models.personality import GuildMemberInfo, ParticipantInfo
from persona_context.utils.xml import escape_xml, wrap_cdata

PARTICIPANTS_INSTRUCTION = (
    "Each participant has an id. Messages in the chat_log carry a from_id attribute "
    "that matches one of these ids; use it to tell who said what."
)

# Example speaker for the group note when the active persona is unknown.
FALLBACK_SPEAKER_NAME = "Alice"


def _format_guild_info(info: GuildMemberInfo) -> str:
    attrs = ""
    if info.display_color:
        attrs += f' color="{escape_xml(info.display_color)}"'
    if info.joined_at is not None:
        attrs += f' joined="{info.joined_at.date().isoformat()}"'
    roles = ""
    if info.roles:
        roles = "\n<roles>\n" + "\n".join(f"<role>{escape_xml(r)}</role>" for r in info.roles) + "\n</roles>\n"
    return f"<guild_info{attrs}>{roles}</guild_info>"


def format_participant(participant: ParticipantInfo) -> str:
    active_attr = ' active="true"' if participant.is_active else ""
    lines = [
        f'<participant id="{escape_xml(participant.persona_id)}"{active_attr}>',
        f"<name>{escape_xml(participant.name)}</name>",
    ]
    if participant.pronouns:
        lines.append(f"<pronouns>{escape_xml(participant.pronouns)}</pronouns>")
    if participant.guild_info is not None:
        lines.append(_format_guild_info(participant.guild_info))
    if participant.content:
        lines.append(f'<about source="user_input">{wrap_cdata(participant.content)}</about>')
    lines.append("</participant>")
    return "\n".join(lines)


def format_participants_context(
    participants: list[ParticipantInfo],
    active_persona_name: str | None = None,
) -> str:
    """Return the ``<participants>`` block, or '' when there is nobody to describe."""
    if not participants:
        return ""

    parts = [format_participant(p) for p in participants]
    parts.append(f"<instruction>{PARTICIPANTS_INSTRUCTION}</instruction>")

    if len(participants) > 1:
        speaker = escape_xml(active_persona_name or FALLBACK_SPEAKER_NAME)
        parts.append(
            "<note>This is a group conversation with several people. Each message is "
            f"attributed to its speaker, as in {speaker}: message. Reply to the active "
            "participant and do not speak for anyone else.</note>"
        )

    return "\n\n<participants>\n" + "\n".join(parts) + "\n</participants>"
