"""Result caching for search sources."""
