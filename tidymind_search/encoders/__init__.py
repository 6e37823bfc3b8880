"""Embedding bridge and background worker.

Import convenience:
- from tidymind_search.encoders.embedding_bridge import EmbeddingBridge
"""
