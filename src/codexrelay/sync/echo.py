"""
Echo suppression between the interactive and the tail-replay paths.

A turn started from chat is streamed back live, and shortly afterwards the
same turn shows up in the session log the watcher tails. For each chat
thread we remember, for a short time, the normalized user and assistant
texts already delivered live so the tail-replay path can skip them.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from codexrelay.utils.text import normalize_text

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 8.0


@dataclass
class _EchoEntry:
    expires_at: float
    user: set[str] = field(default_factory=set)
    assistant: set[str] = field(default_factory=set)


class EchoSuppressor:
    """
    Time-boxed per-thread cache of texts delivered interactively.

    Args:
        ttl_seconds: Lifetime of an entry since its last activity
        clock: Monotonic time source
        is_in_flight: Returns True while a live turn for the thread is
            streaming; such entries are never pruned
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        is_in_flight: Optional[Callable[[str], bool]] = None,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.is_in_flight = is_in_flight or (lambda thread_id: False)
        self._entries: dict[str, _EchoEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def start(self, thread_id: str, prompt: str) -> None:
        """Begin suppression for a new interactive turn (replaces any entry)."""
        normalized = normalize_text(prompt)
        if normalized is None:
            return
        self._entries[thread_id] = _EchoEntry(
            expires_at=self.clock() + self.ttl_seconds, user={normalized}
        )

    def remember_assistant(self, thread_id: str, text: str) -> None:
        """Record an assistant text delivered live and refresh the entry."""
        normalized = normalize_text(text)
        if normalized is None:
            return
        entry = self._entries.get(thread_id)
        if entry is None:
            return
        entry.assistant.add(normalized)
        entry.expires_at = self.clock() + self.ttl_seconds

    def extend(self, thread_id: str) -> None:
        entry = self._entries.get(thread_id)
        if entry is not None:
            entry.expires_at = self.clock() + self.ttl_seconds

    def should_suppress(self, thread_id: str, role: str, text: str) -> bool:
        """True if this text was already delivered live to the thread."""
        self.prune()
        entry = self._entries.get(thread_id)
        if entry is None:
            return False
        normalized = normalize_text(text)
        if normalized is None:
            return False
        known = entry.user if role == "user" else entry.assistant
        return normalized in known

    def prune(self) -> None:
        """Drop expired entries whose thread has no turn in flight."""
        now = self.clock()
        for thread_id, entry in list(self._entries.items()):
            if entry.expires_at > now:
                continue
            if self.is_in_flight(thread_id):
                continue
            del self._entries[thread_id]

    def clear(self) -> None:
        self._entries.clear()
