"""
In-memory chat platform.

Records every operation for inspection and makes no network calls. Backs
`codex-relay run --simulate` and the test suite. Failures can be injected
per operation to exercise the relay's error handling.
"""

import asyncio
import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Callable, Optional

from codexrelay.chat.base import (
    ChatChannel,
    ChatErrorCode,
    ChatEventHandler,
    ChatMessage,
    ChatPlatformError,
    ChatThread,
)

logger = logging.getLogger(__name__)


@dataclass
class SentMessage:
    """Record of a message sent through the platform (for testing)."""

    id: str
    target_id: str
    text: str
    deleted: bool = False


class SimulatedChatPlatform:
    """
    In-memory chat platform for testing and simulation.

    Implements the ChatPlatform protocol. Each call yields to the event loop
    (optionally after `latency` seconds) so concurrent callers interleave
    the way they would against a real API.
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.channels: dict[str, ChatChannel] = {}
        self.threads: dict[str, ChatThread] = {}
        self.messages: dict[str, SentMessage] = {}
        self.edits: list[dict[str, str]] = []
        self.calls: list[str] = []
        self._counter = 100
        self._failures: dict[str, deque[ChatErrorCode]] = defaultdict(deque)
        # Callback for each sent message (used by the CLI console)
        self.on_message_sent: Optional[Callable[[SentMessage], Any]] = None
        self.handler: Optional[ChatEventHandler] = None

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter:06d}"

    def fail_next(
        self, operation: str, code: ChatErrorCode = ChatErrorCode.UNAVAILABLE, times: int = 1
    ) -> None:
        """Make the next `times` calls of `operation` raise ChatPlatformError(code)."""
        for _ in range(times):
            self._failures[operation].append(ChatErrorCode(code))

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        await asyncio.sleep(self.latency)
        failures = self._failures.get(operation)
        if failures:
            code = failures.popleft()
            raise ChatPlatformError(f"Simulated {operation} failure ({code.value})", code)

    # ── Inspection helpers ────────────────────────────────────────────

    def messages_in(self, target_id: str) -> list[str]:
        """Texts of the live messages sent to a channel or thread, in order."""
        return [
            m.text
            for m in self.messages.values()
            if m.target_id == target_id and not m.deleted
        ]

    def threads_in(self, channel_id: str) -> list[ChatThread]:
        return [t for t in self.threads.values() if t.channel_id == channel_id]

    def remove_channel(self, channel_id: str) -> None:
        """Delete a channel out-of-band, as a workspace admin would."""
        self.channels.pop(channel_id, None)
        for thread_id in [t.id for t in self.threads_in(channel_id)]:
            self.threads.pop(thread_id, None)

    def remove_thread(self, thread_id: str) -> None:
        self.threads.pop(thread_id, None)

    # ── ChatPlatform ──────────────────────────────────────────────────

    async def fetch_channel(self, channel_id: str) -> ChatChannel:
        await self._enter("fetch_channel")
        channel = self.channels.get(channel_id)
        if channel is None:
            raise ChatPlatformError(
                f"Unknown channel {channel_id}", ChatErrorCode.NOT_FOUND
            )
        return channel

    async def create_channel(self, name: str, topic: str = "") -> ChatChannel:
        await self._enter("create_channel")
        channel = ChatChannel(id=self._next_id("C"), name=name, topic=topic)
        self.channels[channel.id] = channel
        logger.info(f"[sim] #{name} created ({channel.id})")
        return channel

    async def delete_channel(self, channel_id: str) -> None:
        await self._enter("delete_channel")
        if channel_id not in self.channels:
            raise ChatPlatformError(
                f"Unknown channel {channel_id}", ChatErrorCode.NOT_FOUND
            )
        self.remove_channel(channel_id)
        logger.info(f"[sim] channel {channel_id} deleted")

    async def fetch_thread(self, thread_id: str) -> ChatThread:
        await self._enter("fetch_thread")
        thread = self.threads.get(thread_id)
        if thread is None:
            raise ChatPlatformError(
                f"Unknown thread {thread_id}", ChatErrorCode.NOT_FOUND
            )
        return thread

    async def create_thread(self, channel_id: str, name: str) -> ChatThread:
        await self._enter("create_thread")
        if channel_id not in self.channels:
            raise ChatPlatformError(
                f"Unknown channel {channel_id}", ChatErrorCode.NOT_FOUND
            )
        thread = ChatThread(id=self._next_id("T"), channel_id=channel_id, name=name)
        self.threads[thread.id] = thread
        logger.info(f"[sim] thread {name!r} created in {channel_id} ({thread.id})")
        return thread

    async def delete_thread(self, thread_id: str) -> None:
        await self._enter("delete_thread")
        if self.threads.pop(thread_id, None) is None:
            raise ChatPlatformError(
                f"Unknown thread {thread_id}", ChatErrorCode.NOT_FOUND
            )
        logger.info(f"[sim] thread {thread_id} deleted")

    async def send_message(self, target_id: str, text: str) -> str:
        await self._enter("send_message")
        if target_id not in self.channels and target_id not in self.threads:
            raise ChatPlatformError(
                f"Unknown channel or thread {target_id}", ChatErrorCode.NOT_FOUND
            )
        message = SentMessage(id=self._next_id("M"), target_id=target_id, text=text)
        self.messages[message.id] = message
        logger.debug(f"[sim] {target_id} <- {text[:80]!r}")
        if self.on_message_sent:
            self.on_message_sent(message)
        return message.id

    async def edit_message(self, target_id: str, message_id: str, text: str) -> None:
        await self._enter("edit_message")
        message = self.messages.get(message_id)
        if message is None or message.deleted:
            raise ChatPlatformError(
                f"Unknown message {message_id}", ChatErrorCode.NOT_FOUND
            )
        message.text = text
        self.edits.append({"target_id": target_id, "id": message_id, "text": text})

    async def delete_message(self, target_id: str, message_id: str) -> None:
        await self._enter("delete_message")
        message = self.messages.get(message_id)
        if message is None or message.deleted:
            raise ChatPlatformError(
                f"Unknown message {message_id}", ChatErrorCode.NOT_FOUND
            )
        message.deleted = True

    # ── Inbound events (what a user would do) ─────────────────────────

    def attach(self, handler: ChatEventHandler) -> None:
        self.handler = handler

    async def open_thread(self, channel_id: str, name: str) -> ChatThread:
        """Create a thread as a user would, and announce it to the handler."""
        thread = await self.create_thread(channel_id, name)
        if self.handler is not None:
            await self.handler.on_thread_created(thread)
        return thread

    async def post_message(
        self, thread_id: str, text: str, author_id: str = "user"
    ) -> Any:
        """
        Post text into a thread as a user and hand it to the handler.

        Returns:
            Whatever the handler's on_message returns (None if detached)

        Raises:
            ChatPlatformError: If the thread does not exist
        """
        thread = self.threads.get(thread_id)
        if thread is None:
            raise ChatPlatformError(f"Unknown thread {thread_id}", ChatErrorCode.NOT_FOUND)
        message = ChatMessage(
            id=self._next_id("U"),
            channel_id=thread.channel_id,
            author_id=author_id,
            text=text,
            thread_id=thread.id,
            thread_name=thread.name,
        )
        if self.handler is None:
            return None
        return await self.handler.on_message(message)
