"""
Agent runtime abstraction.

An AgentRuntime opens (or resumes) a conversation thread in a working
directory; AgentThread.run_streamed runs one turn and yields the agent's
events as they arrive. Events follow the `codex exec --json` stream:

    {"type": "thread.started", "thread_id": "..."}
    {"type": "turn.started"}
    {"type": "item.started" | "item.updated" | "item.completed", "item": {...}}
    {"type": "turn.completed", "usage": {...}}
    {"type": "turn.failed", "error": {"message": "..."}}
    {"type": "error", "message": "..."}
"""

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Protocol


@dataclass
class AgentEvent:
    """One event of a streamed agent turn."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def thread_id(self) -> Optional[str]:
        value = self.data.get("thread_id")
        return value if isinstance(value, str) else None

    @property
    def item(self) -> dict[str, Any]:
        item = self.data.get("item")
        return item if isinstance(item, dict) else {}

    @property
    def item_type(self) -> Optional[str]:
        value = self.item.get("type")
        return value if isinstance(value, str) else None

    @property
    def error_message(self) -> Optional[str]:
        error = self.data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        message = self.data.get("message")
        return message if isinstance(message, str) else None


def parse_agent_event(line: str) -> Optional[AgentEvent]:
    """Decode one JSONL line of the event stream (None if it is not an event)."""
    if not line.strip():
        return None
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        return None
    return AgentEvent(type=data["type"], data=data)


class AgentThread(Protocol):
    """A conversation with the agent; `id` is known after thread.started."""

    id: Optional[str]

    def run_streamed(self, prompt: str) -> AsyncIterator[AgentEvent]:
        ...


class AgentRuntime(Protocol):
    """Factory for agent threads."""

    def open_thread(
        self,
        working_directory: str,
        thread_id: Optional[str] = None,
        model: Optional[str] = None,
        approval_mode: Optional[str] = None,
    ) -> AgentThread:
        """Start a new thread, or resume `thread_id` when given."""
        ...
