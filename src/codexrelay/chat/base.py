"""
Chat platform abstraction.

The relay always talks to chat through the ChatPlatform protocol, so the
sync engine is testable without a real chat workspace. Failures are raised
as ChatPlatformError carrying a ChatErrorCode; only NOT_FOUND and
NO_ACCESS mean a channel or thread is gone for good.
"""

import enum
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

from codexrelay.exceptions import CodexRelayError


class ChatErrorCode(str, enum.Enum):
    """Classification of chat platform failures."""

    NOT_FOUND = "not_found"  # Channel/thread/message deleted
    NO_ACCESS = "no_access"  # Bot lost access (treated as deleted)
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"  # Network / platform outage
    UNKNOWN = "unknown"


GONE_CODES = frozenset({ChatErrorCode.NOT_FOUND, ChatErrorCode.NO_ACCESS})


class ChatPlatformError(CodexRelayError):
    """A chat platform call failed."""

    def __init__(self, message: str, code: ChatErrorCode = ChatErrorCode.UNKNOWN):
        super().__init__(message)
        self.code = ChatErrorCode(code)

    @property
    def is_gone(self) -> bool:
        return self.code in GONE_CODES


def is_gone(error: BaseException) -> bool:
    """True only for errors proving the target no longer exists for us."""
    return isinstance(error, ChatPlatformError) and error.is_gone


@dataclass
class ChatChannel:
    id: str
    name: str
    topic: str = ""


@dataclass
class ChatThread:
    id: str
    channel_id: str
    name: str


@dataclass
class ChatMessage:
    """An inbound message posted by a chat user."""

    id: str
    channel_id: str
    author_id: str
    text: str
    thread_id: Optional[str] = None
    thread_name: Optional[str] = None
    is_bot: bool = False


class ChatEventHandler(Protocol):
    """Receiver of inbound chat events (the relay bridge)."""

    async def on_message(self, message: ChatMessage) -> Any:
        ...

    async def on_thread_created(self, chat_thread: ChatThread) -> Any:
        ...


@runtime_checkable
class ChatPlatform(Protocol):
    """Operations the relay needs from a chat platform."""

    def attach(self, handler: ChatEventHandler) -> None:
        """Deliver user messages and new threads to handler from now on."""
        ...

    async def fetch_channel(self, channel_id: str) -> ChatChannel:
        """Fetch a channel. Raises ChatPlatformError(NOT_FOUND) if deleted."""
        ...

    async def create_channel(self, name: str, topic: str = "") -> ChatChannel:
        ...

    async def delete_channel(self, channel_id: str) -> None:
        ...

    async def fetch_thread(self, thread_id: str) -> ChatThread:
        """Fetch a thread. Raises ChatPlatformError(NOT_FOUND) if deleted."""
        ...

    async def create_thread(self, channel_id: str, name: str) -> ChatThread:
        ...

    async def delete_thread(self, thread_id: str) -> None:
        ...

    async def send_message(self, target_id: str, text: str) -> str:
        """Post text to a channel or thread. Returns the message id."""
        ...

    async def edit_message(self, target_id: str, message_id: str, text: str) -> None:
        ...

    async def delete_message(self, target_id: str, message_id: str) -> None:
        ...
