"""Domain models (value objects, entries, configuration and errors)."""
