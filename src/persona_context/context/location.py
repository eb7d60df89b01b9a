# persona_context/context/location.py
"""``<location>`` rendering shared by the environment and cross-channel blocks."""

from __future__ import annotations

from persona_context.models.environment import DMEnvironment, GuildEnvironment
from persona_context.utils.xml import escape_xml, escape_xml_content

DM_LOCATION = '<location type="dm">Direct Message (private one-on-one chat)</location>'


def format_location(environment: DMEnvironment | GuildEnvironment | None) -> str:
    """Render where a conversation happens. Guild names are user-controlled and escaped."""
    if environment is None or isinstance(environment, DMEnvironment):
        return DM_LOCATION

    parts = [f'<server name="{escape_xml(environment.guild_name)}"/>']
    if environment.category_name:
        parts.append(f'<category name="{escape_xml(environment.category_name)}"/>')
    channel_type = f' type="{escape_xml(environment.channel_type)}"' if environment.channel_type else ""
    parts.append(f'<channel name="{escape_xml(environment.channel_name)}"{channel_type}/>')
    if environment.thread_name:
        parts.append(f'<thread name="{escape_xml(environment.thread_name)}"/>')
    if environment.topic:
        parts.append(f"<topic>{escape_xml_content(environment.topic)}</topic>")

    return '<location type="guild">\n' + "\n".join(parts) + "\n</location>"
