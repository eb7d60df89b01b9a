# persona_context/prompt/__init__.py
"""System prompt composition."""

from persona_context.prompt.builder import HumanMessage, PromptBuilder  # noqa: F401
