# persona_context/config.py
"""Runtime defaults, overridable through the environment or a .env file."""

from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

# Central model config: can be overridden by environment variable
DEFAULT_TOKEN_MODEL = os.getenv("PERSONA_DEFAULT_TOKEN_MODEL", "gpt-4o-mini")
DEFAULT_LLM_MODEL = os.getenv("PERSONA_DEFAULT_LLM_MODEL", "gpt-4o-mini")
DEFAULT_EMBEDDING_MODEL = os.getenv("PERSONA_EMBEDDING_MODEL", "text-embedding-3-small")

DEFAULT_CONTEXT_WINDOW_TOKENS = int(os.getenv("PERSONA_CONTEXT_WINDOW_TOKENS", "131072"))
MEMORY_BUDGET_RATIO = float(os.getenv("PERSONA_MEMORY_BUDGET_RATIO", "0.25"))

MAX_GENERATION_ATTEMPTS = int(os.getenv("PERSONA_MAX_ATTEMPTS", "3"))
LLM_TIMEOUT_SECONDS = float(os.getenv("PERSONA_LLM_TIMEOUT", "480"))
EMBEDDING_TIMEOUT_SECONDS = float(os.getenv("PERSONA_EMBEDDING_TIMEOUT", "10"))

DUPLICATE_WINDOW_SIZE = int(os.getenv("PERSONA_DUPLICATE_WINDOW", "5"))
EMBEDDING_CACHE_SIZE = int(os.getenv("PERSONA_EMBEDDING_CACHE_SIZE", "500"))
EMBEDDING_CACHE_TTL_SECONDS = float(os.getenv("PERSONA_EMBEDDING_CACHE_TTL", "3600"))

# OpenAI chat completions accept at most four.
MAX_STOP_SEQUENCES = int(os.getenv("PERSONA_MAX_STOP_SEQUENCES", "4"))


class GenerationSettings(BaseModel):
    """Per-process generation settings, seeded from the module defaults."""

    token_model: str = Field(default=DEFAULT_TOKEN_MODEL, description="Model whose tokenizer is used for budgeting")
    default_model: str = Field(default=DEFAULT_LLM_MODEL, description="LLM used when a personality names none")
    context_window_tokens: int = Field(default=DEFAULT_CONTEXT_WINDOW_TOKENS, gt=0)
    memory_budget_ratio: float = Field(default=MEMORY_BUDGET_RATIO, ge=0.0, le=1.0)
    max_attempts: int = Field(default=MAX_GENERATION_ATTEMPTS, ge=1)
    llm_timeout_seconds: float = Field(default=LLM_TIMEOUT_SECONDS, gt=0)
    embedding_timeout_seconds: float = Field(default=EMBEDDING_TIMEOUT_SECONDS, gt=0)
    duplicate_window_size: int = Field(default=DUPLICATE_WINDOW_SIZE, ge=1)
    embedding_cache_size: int = Field(default=EMBEDDING_CACHE_SIZE, ge=1)
    embedding_cache_ttl_seconds: float = Field(default=EMBEDDING_CACHE_TTL_SECONDS, gt=0)
    max_stop_sequences: int = Field(default=MAX_STOP_SEQUENCES, ge=0)
