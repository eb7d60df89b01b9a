# persona_context/context/__init__.py
"""
Context assembly: token budgeting, history and memory selection, and the
XML renderers whose output is counted against the budget.
"""
