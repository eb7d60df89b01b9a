# persona_context/utils/__init__.py
