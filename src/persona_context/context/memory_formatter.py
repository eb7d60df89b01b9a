# persona_context/context/memory_formatter.py
"""
Canonical rendering of retrieved memories.

``format_single_memory`` is the single source of truth for a memory's
prompt text: token counting and final assembly both go through it, so a
formatting change is automatically reflected in the budget.
"""

from __future__ import annotations

from datetime import datetime

from persona_context.models.memory import MemoryDocument
from persona_context.tokens import TokenEstimator, default_estimator
from persona_context.utils.timefmt import format_prompt_timestamp
from persona_context.utils.xml import escape_xml, escape_xml_content

MEMORY_ARCHIVE_INSTRUCTION = (
    "These are archived memories from earlier interactions. They are background "
    "context, not part of the current conversation. Do not respond to them directly."
)


def format_single_memory(
    doc: MemoryDocument,
    tz_name: str | None = None,
    now: datetime | None = None,
) -> str:
    created_at = doc.metadata.created_at
    time_attr = ""
    if created_at is not None:
        time_attr = f' t="{escape_xml(format_prompt_timestamp(created_at, now, tz_name))}"'
    return f"<memory{time_attr}>{escape_xml_content(doc.page_content)}</memory>"


def format_memories_context(
    memories: list[MemoryDocument],
    tz_name: str | None = None,
    now: datetime | None = None,
) -> str:
    """Return the ``<memory_archive>`` block, or '' when there is nothing to add."""
    if not memories:
        return ""
    body = "\n".join(format_single_memory(doc, tz_name, now) for doc in memories)
    return (
        "\n\n<memory_archive>\n"
        f"<instruction>{MEMORY_ARCHIVE_INSTRUCTION}</instruction>\n"
        f"{body}\n"
        "</memory_archive>"
    )


def count_memory_tokens(
    memories: list[MemoryDocument],
    estimator: TokenEstimator | None = None,
    tz_name: str | None = None,
    now: datetime | None = None,
) -> int:
    if not memories:
        return 0
    estimator = estimator or default_estimator()
    return sum(estimator.count_text_tokens(format_single_memory(doc, tz_name, now)) for doc in memories)
