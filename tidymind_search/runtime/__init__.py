"""Runtime state shared across components (embedding worker lifecycle)."""
