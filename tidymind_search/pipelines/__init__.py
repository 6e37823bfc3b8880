"""Retry policies for collaborator calls."""
