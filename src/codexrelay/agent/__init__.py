"""Agent runtime abstraction and the Codex CLI runtime."""

from codexrelay.agent.base import (
    AgentEvent,
    AgentRuntime,
    AgentThread,
    parse_agent_event,
)
from codexrelay.agent.codex_exec import CodexExecRuntime, CodexExecThread

__all__ = [
    "AgentEvent",
    "AgentRuntime",
    "AgentThread",
    "CodexExecRuntime",
    "CodexExecThread",
    "parse_agent_event",
]
