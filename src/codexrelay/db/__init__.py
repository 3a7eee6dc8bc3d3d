"""Mapping store persistence: connection management and repositories."""
