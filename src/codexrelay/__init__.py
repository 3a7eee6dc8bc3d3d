"""codex-relay: mirror coding agent session logs into threaded chat channels."""

__version__ = "0.1.0"
