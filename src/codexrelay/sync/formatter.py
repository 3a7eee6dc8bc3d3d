"""
Text rendering of agent events for chat.

Verbosity levels:
    0 (quiet)    final responses and errors only
    1 (normal)   progress indicators, tool names, short reasoning
    2 (detailed) commands with their output, longer reasoning
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from codexrelay.agent.base import AgentEvent
from codexrelay.utils.text import DEFAULT_MESSAGE_LIMIT, split_message, truncate

WORKING = "⏳"
DONE = "✅"
ERROR = "❌"
REASONING = "🧠"
COMMAND = "💻"
FILE_CHANGE = "📝"
TODO = "📋"
SEARCH = "🔍"

_FILE_KIND_ICONS = {"add": "➕", "delete": "➖"}


@dataclass
class FormattedMessage:
    """A chat message rendered from one event."""

    content: str
    is_transient: bool = False
    """Progress message: edited in place, deleted once a durable message is sent."""

    extra_chunks: list[str] = field(default_factory=list)
    """Continuation chunks of long content, sent as separate messages."""


class EventFormatter:
    """Render AgentEvents as chat text according to a verbosity level."""

    def __init__(self, verbose_level: int = 1, message_limit: int = DEFAULT_MESSAGE_LIMIT):
        self.verbose_level = verbose_level
        self.message_limit = message_limit

    def format_event(self, event: AgentEvent) -> Optional[FormattedMessage]:
        """
        Format one event.

        Returns:
            FormattedMessage, or None if the event is not shown at this level
        """
        if event.type == "turn.started":
            return FormattedMessage(f"{WORKING} **Working...**", is_transient=True)

        if event.type == "item.started":
            return self._item_started(event.item)

        if event.type == "item.updated":
            return self._item_updated(event.item)

        if event.type == "item.completed":
            return self._item_completed(event.item)

        if event.type == "turn.completed":
            if self.verbose_level == 0:
                return None
            usage = event.data.get("usage") or {}
            input_tokens = int(usage.get("input_tokens") or 0)
            output_tokens = int(usage.get("output_tokens") or 0)
            return FormattedMessage(
                f"{DONE} **Turn completed** ({input_tokens:,} in / {output_tokens:,} out)"
            )

        if event.type == "turn.failed":
            return self._chunked(f"{ERROR} **Error:** {event.error_message or 'turn failed'}")

        if event.type == "error":
            return self._chunked(
                f"{ERROR} **Stream error:** {event.error_message or 'unknown error'}"
            )

        return None

    def _item_started(self, item: dict[str, Any]) -> Optional[FormattedMessage]:
        if self.verbose_level == 0:
            return None

        item_type = item.get("type")
        if item_type == "reasoning":
            return FormattedMessage(f"{REASONING} *Thinking...*", is_transient=True)

        if item_type == "command_execution":
            if self.verbose_level >= 2:
                command = truncate(str(item.get("command") or ""), 200)
                return FormattedMessage(
                    f"{COMMAND} Running: `{command}`", is_transient=True
                )
            return FormattedMessage(f"{COMMAND} Running command...", is_transient=True)

        if item_type == "todo_list":
            return FormattedMessage(self._todo_list(item), is_transient=True)

        return None

    def _item_updated(self, item: dict[str, Any]) -> Optional[FormattedMessage]:
        if self.verbose_level == 0:
            return None

        item_type = item.get("type")
        if item_type == "command_execution":
            output = item.get("aggregated_output")
            if self.verbose_level >= 2 and output:
                command = truncate(str(item.get("command") or ""), 80)
                return FormattedMessage(
                    f"{COMMAND} Running: `{command}`\n```\n{truncate(str(output), 800)}\n```",
                    is_transient=True,
                )
            return None

        if item_type == "todo_list":
            return FormattedMessage(self._todo_list(item), is_transient=True)

        return None

    def _item_completed(self, item: dict[str, Any]) -> Optional[FormattedMessage]:
        item_type = item.get("type")

        if item_type == "agent_message":
            text = str(item.get("text") or "")
            if not text.strip():
                return None
            return self._chunked(text)

        if item_type == "error":
            return self._chunked(f"{ERROR} {item.get('message') or 'error'}")

        if self.verbose_level == 0:
            return None

        if item_type == "reasoning":
            text = str(item.get("text") or "")
            if not text:
                return None
            limit = 2000 if self.verbose_level >= 2 else 500
            return self._chunked(f"{REASONING} **Reasoning**\n{truncate(text, limit)}")

        if item_type == "command_execution":
            exit_code = item.get("exit_code")
            ok = item.get("status") == "completed" and exit_code == 0
            icon = DONE if ok else ERROR
            exit_info = f" (exit {exit_code})" if exit_code is not None else ""
            command_limit = 500 if self.verbose_level >= 2 else 100
            output_limit = 2000 if self.verbose_level >= 2 else 500
            command = truncate(str(item.get("command") or ""), command_limit)
            output = item.get("aggregated_output")
            body = f"\n```\n{truncate(str(output), output_limit)}\n```" if output else ""
            return self._chunked(f"{icon} `{command}`{exit_info}{body}")

        if item_type == "file_change":
            changes = item.get("changes") or []
            lines = [
                f"{_FILE_KIND_ICONS.get(change.get('kind'), '✏️')} `{change.get('path')}`"
                for change in changes
                if isinstance(change, dict)
            ]
            return self._chunked(
                f"{FILE_CHANGE} **File Changes**\n" + ("\n".join(lines) or "No changes")
            )

        if item_type == "mcp_tool_call":
            icon = DONE if item.get("status") == "completed" else ERROR
            return FormattedMessage(
                f"🔧 **MCP Tool:** {item.get('server')}/{item.get('tool')} {icon}"
            )

        if item_type == "web_search":
            return FormattedMessage(f"{SEARCH} **Web search:** {item.get('query')}")

        if item_type == "todo_list":
            return self._chunked(self._todo_list(item))

        return None

    def _todo_list(self, item: dict[str, Any]) -> str:
        lines = [
            f"{'✅' if entry.get('completed') else '⬜'} {entry.get('text')}"
            for entry in item.get("items") or []
            if isinstance(entry, dict)
        ]
        return f"{TODO} **Todo List**\n" + ("\n".join(lines) or "Empty")

    def _chunked(self, text: str) -> FormattedMessage:
        chunks = split_message(text, self.message_limit)
        return FormattedMessage(chunks[0], extra_chunks=chunks[1:])
