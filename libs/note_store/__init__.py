"""Note store adapters.

Primary components:
- ``base``: lexical and semantic search interfaces, hit models, exceptions.
- ``rest``: client for the hosted backend's REST/RPC endpoints.
- ``pgsql``: direct PostgreSQL/pgvector implementation of the interfaces.
- ``factory``: builds a store from ``NoteStoreConfig``.
"""
