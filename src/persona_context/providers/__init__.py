# persona_context/providers/__init__.py
"""
Concrete collaborator adapters.

``openai_provider`` needs the ``openai`` extra and is not imported here.
"""
