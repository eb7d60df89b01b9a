# persona_context/models/memory.py
"""Long-term memory documents returned by the memory store."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class MemoryMetadata(BaseModel):
    id: str | None = Field(default=None)
    created_at: datetime | None = Field(default=None)
    score: float | None = Field(default=None, description="Retrieval relevance, higher is better")
    channel_id: str | None = Field(default=None)
    extra: dict[str, Any] = Field(default_factory=dict)


class MemoryDocument(BaseModel):
    """
    A retrieved memory. Formatted lazily; its token cost is always
    computed from the formatted representation, never the raw text.
    """

    page_content: str
    metadata: MemoryMetadata = Field(default_factory=MemoryMetadata)
