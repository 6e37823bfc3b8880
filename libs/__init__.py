"""Shared libraries for the search core.

Subpackages:
- ``libs.common``: configuration, logging and metrics.
- ``libs.note_store``: note search interfaces and concrete backends.

Notes:
- Avoid orchestration logic here; keep modules cohesive and broadly useful.
"""
