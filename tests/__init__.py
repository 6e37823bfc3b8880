"""Tests for the search core.

Unit tests run against in-process fakes for the embedding worker and the
note store. Model-backed tests live under ``integration`` and are opt-in.
"""
