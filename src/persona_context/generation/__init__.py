# persona_context/generation/__init__.py
"""
LLM generation: retry loop, duplicate detection and response clean-up.

Import from the submodules directly, e.g.
``from persona_context.generation.orchestrator import GenerationOrchestrator``.
"""
