"""Configuration loading (YAML, .env and environment variables)."""
