# tests/conftest.py
"""
Shared pytest fixtures and configuration for persona_context tests.

Token counting uses ``WordEstimator`` (one token per whitespace-separated
word) so budgets are easy to reason about and no tokenizer data is needed.
"""

import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from persona_context.models.generation import ConversationContext, LLMResponse, ModelConfig
from persona_context.models.history import ConversationEntry
from persona_context.models.personality import PersonalityConfig
from persona_context.tokens import TokenEstimator

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logging.getLogger("persona_context").setLevel(logging.DEBUG)

FIXED_NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class WordEstimator(TokenEstimator):
    """Counts one token per whitespace-separated word."""

    def __init__(self):
        self.model = "words"

    def count_text_tokens(self, text):
        if not text:
            return 0
        return len(text.split())


def make_entry(
    role: str = "user",
    content: str = "hello",
    token_count: int | None = None,
    **kwargs,
) -> ConversationEntry:
    return ConversationEntry(role=role, content=content, token_count=token_count, **kwargs)


def make_personality(**kwargs) -> PersonalityConfig:
    data = {"id": "p-1", "name": "Emily", "system_prompt": "Be kind to {user}."}
    data.update(kwargs)
    return PersonalityConfig(**data)


@pytest.fixture
def estimator():
    return WordEstimator()


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def personality():
    return make_personality()


@pytest.fixture
def conversation(personality):
    """A short two-party conversation context."""
    return ConversationContext(
        personality=personality,
        user_message="What should I cook tonight?",
        history=[
            make_entry("user", "Hi Emily", persona_id="u-1", persona_name="Alice"),
            make_entry("assistant", "Hello Alice, lovely to see you again today!"),
        ],
        active_persona_id="u-1",
        active_persona_name="Alice",
    )


@pytest.fixture
def model_config():
    return ModelConfig(model="test-model", context_window_tokens=4000, timeout_seconds=5)


@pytest.fixture
def mock_invoker():
    """LLM invoker whose replies are set per test via ``side_effect`` or ``return_value``."""
    invoker = AsyncMock()
    invoker.invoke.return_value = LLMResponse(content="A perfectly fresh reply about dinner.", model_used="test-model")
    return invoker


# Test markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
