"""Database models for codex-relay."""
