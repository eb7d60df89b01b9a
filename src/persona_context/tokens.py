# persona_context/tokens.py
"""
Token counting for prompt budgeting.

Counts use the tiktoken encoding of the configured model, falling back to
``cl100k_base`` for models tiktoken does not know. Non-text content
(multi-part message arrays, dicts) is JSON-stringified before counting.
"""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any

import tiktoken

from persona_context.config import DEFAULT_TOKEN_MODEL

logger = logging.getLogger(__name__)

FALLBACK_ENCODING = "cl100k_base"


@lru_cache(maxsize=16)
def _encoding_for(model: str) -> tiktoken.Encoding:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        logger.debug(f"No tiktoken encoding for {model}, using {FALLBACK_ENCODING}")
        return tiktoken.get_encoding(FALLBACK_ENCODING)


class TokenEstimator:
    """Counts tokens for text and message content with one model's tokenizer."""

    def __init__(self, model: str = DEFAULT_TOKEN_MODEL):
        self.model = model
        self._encoding = _encoding_for(model)

    def count_text_tokens(self, text: str | None) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))

    def count_content_tokens(self, content: Any) -> int:
        """Count a message's content, stringifying anything that is not text."""
        if content is None:
            return 0
        if isinstance(content, str):
            return self.count_text_tokens(content)
        return self.count_text_tokens(json.dumps(content, default=str, ensure_ascii=False))


@lru_cache(maxsize=1)
def default_estimator() -> TokenEstimator:
    return TokenEstimator(DEFAULT_TOKEN_MODEL)
