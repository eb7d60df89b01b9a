# persona_context/cache.py
"""
Bounded TTL cache.

A small LRU cache whose entries also expire after a fixed age. Used for
process-local state that must stay bounded and must be injectable, such as
the embeddings of recently accepted responses.

Typical usage:
    1. ``get`` (O(1), refreshes LRU order, drops expired entries)
    2. on miss, compute the value
    3. ``put`` it back; the least recently used entry is evicted when full
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr

from persona_context.config import EMBEDDING_CACHE_SIZE, EMBEDDING_CACHE_TTL_SECONDS


class TTLCache(BaseModel):
    """LRU cache with per-entry expiry."""

    max_entries: int = Field(default=EMBEDDING_CACHE_SIZE, ge=1, description="Maximum entries to cache")
    ttl_seconds: float = Field(default=EMBEDDING_CACHE_TTL_SECONDS, gt=0, description="Entry lifetime")

    # key -> (stored_at, value); OrderedDict keeps LRU order
    _entries: OrderedDict = PrivateAttr(default_factory=OrderedDict)
    _clock: Callable[[], float] = PrivateAttr(default=time.monotonic)

    hits: int = Field(default=0)
    misses: int = Field(default=0)
    evictions: int = Field(default=0)

    model_config = {"arbitrary_types_allowed": True}

    def __init__(self, clock: Callable[[], float] | None = None, **data: Any):
        super().__init__(**data)
        if clock is not None:
            self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self._live(key)

    def _live(self, key: str) -> bool:
        item = self._entries.get(key)
        if item is None:
            return False
        stored_at, _ = item
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            return False
        return True

    def get(self, key: str) -> Any | None:
        if self._live(key):
            self._entries.move_to_end(key)
            self.hits += 1
            return self._entries[key][1]
        self.misses += 1
        return None

    def put(self, key: str, value: Any) -> None:
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = (self._clock(), value)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self.evictions += 1

    def clear(self) -> None:
        self._entries.clear()

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0
