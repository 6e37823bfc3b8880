"""Integration tests that load the real embedding model in a worker process."""
