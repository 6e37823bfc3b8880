"""Hybrid search orchestration.

Includes the ``SearchOrchestrator`` which debounces query edits and drives
the lexical and semantic sources independently.
"""
