# persona_context/prompt/environment.py
"""``<context>`` block: date, location and a cache-busting request id."""

from __future__ import annotations

import random
import string
import time
from datetime import datetime

from persona_context.context.location import format_location
from persona_context.models.environment import DMEnvironment, GuildEnvironment
from persona_context.utils.timefmt import format_full_datetime
from persona_context.utils.xml import escape_xml_content


def generate_request_id() -> str:
    """Unique per render so provider-side prompt caches never return a stale answer."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{int(time.time() * 1000)}-{suffix}"


def format_context_section(
    environment: DMEnvironment | GuildEnvironment | None,
    tz_name: str | None = None,
    now: datetime | None = None,
    request_id: str | None = None,
) -> str:
    datetime_text = escape_xml_content(format_full_datetime(now, tz_name))
    return (
        "\n\n<context>\n"
        f"<datetime>{datetime_text}</datetime>\n"
        f"{format_location(environment)}\n"
        f"<request_id>{request_id or generate_request_id()}</request_id>\n"
        "</context>"
    )
