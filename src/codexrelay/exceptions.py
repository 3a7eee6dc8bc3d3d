"""Custom exceptions for codex-relay."""

from pathlib import Path
from typing import Optional


class CodexRelayError(Exception):
    """Base exception for codex-relay errors."""


class ProcessAlreadyRunningError(CodexRelayError):
    """Raised when another relay instance holds the single-instance lock."""

    def __init__(self, lock_path: Path, owner_pid: Optional[int] = None):
        self.lock_path = lock_path
        self.owner_pid = owner_pid
        if owner_pid:
            message = f"Another relay instance is already running (PID {owner_pid})."
        else:
            message = "Another relay instance is already running."
        super().__init__(message)


class StoreError(CodexRelayError):
    """Raised when the mapping store cannot return an authoritative row."""


class AgentRuntimeError(CodexRelayError):
    """Raised when the agent runtime fails to run a turn."""


class RelayOperationError(CodexRelayError):
    """Raised when an operator operation (setup, replay, remove) cannot proceed."""
