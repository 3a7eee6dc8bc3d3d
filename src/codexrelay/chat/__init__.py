"""Chat platform abstraction and the in-memory simulator."""

from codexrelay.chat.base import (
    ChatChannel,
    ChatErrorCode,
    ChatEventHandler,
    ChatMessage,
    ChatPlatform,
    ChatPlatformError,
    ChatThread,
    is_gone,
)
from codexrelay.chat.simulator import SentMessage, SimulatedChatPlatform

__all__ = [
    "ChatChannel",
    "ChatErrorCode",
    "ChatEventHandler",
    "ChatMessage",
    "ChatPlatform",
    "ChatPlatformError",
    "ChatThread",
    "SentMessage",
    "SimulatedChatPlatform",
    "is_gone",
]
