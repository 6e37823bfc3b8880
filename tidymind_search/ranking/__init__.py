"""Result grouping for presentation.

Contents
- ``merge``: per-source ordering and source-grouped output
"""
