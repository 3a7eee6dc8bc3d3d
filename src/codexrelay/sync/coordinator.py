"""
Sync coordinator: session logs -> chat channels and threads.

New sessions are handled one at a time per canonical project path, log
updates one batch at a time per session id. Both the chat platform and
the mapping store can be raced by other triggers, so every creation is
followed by a re-read of the authoritative row and the undo of any chat
entity that lost the race.
"""

import logging
import os
from collections import deque
from dataclasses import dataclass
from typing import Optional

from codexrelay.chat.base import ChatChannel, ChatPlatform, ChatPlatformError, is_gone
from codexrelay.config import Settings, settings as default_settings
from codexrelay.models.db import MessageDirection, Project, Thread, ThreadStatus
from codexrelay.parsers.codex import CodexSession, get_session_title
from codexrelay.parsers.records import (
    EventMsgRecord,
    decode_record,
    extract_assistant_texts,
    extract_user_texts,
    extract_visible_user_message,
)
from codexrelay.store import MappingStore
from codexrelay.sync.echo import EchoSuppressor
from codexrelay.sync.keyed import KeyedSerializer
from codexrelay.utils.paths import (
    canonicalize_project_path,
    channel_slug,
    project_name_for,
)
from codexrelay.utils.text import split_message

logger = logging.getLogger(__name__)

USER_PREFIX = "👤 **User:**"
ASSISTANT_PREFIX = "🤖 **Codex:**"
PROJECT_PREFIX = "📁"


def project_welcome(project_name: str, project_path: str, model: str, footer: str) -> str:
    return (
        f"{PROJECT_PREFIX} **Project: {project_name}**\n"
        f"📁 **Path:** `{project_path}`\n"
        f"🤖 **Model:** {model}\n\n"
        f"{footer}"
    )


def session_intro(session: CodexSession) -> str:
    return (
        f"🔗 Codex session `{session.id[:12]}...`\n"
        f"📅 {session.timestamp}\n"
        f"🤖 {session.model or 'default'}"
    )


@dataclass
class DeliveryReport:
    """Outcome of delivering one batch of lines to a chat thread."""

    user_sent: int = 0
    assistant_sent: int = 0
    suppressed: int = 0
    send_failures: int = 0


class SyncCoordinator:
    """Maps sessions to chat threads and relays their log lines."""

    def __init__(
        self,
        store: MappingStore,
        chat: ChatPlatform,
        echo: EchoSuppressor,
        config: Optional[Settings] = None,
    ):
        config = config or default_settings
        self.store = store
        self.chat = chat
        self.echo = echo
        self.default_model = config.default_model
        self.message_limit = config.chat_message_limit
        self.max_buffered_lines = config.max_buffered_session_lines

        self.project_serializer = KeyedSerializer()
        self.session_serializer = KeyedSerializer()
        self._buffers: dict[str, deque[str]] = {}

    # ── Buffering ─────────────────────────────────────────────────────

    def buffered_lines(self, session_id: str) -> list[str]:
        return list(self._buffers.get(session_id, ()))

    def _buffer(self, session_id: str, lines: list[str]) -> None:
        if not lines:
            return
        queued = self._buffers.get(session_id)
        if queued is None:
            queued = self._buffers[session_id] = deque(maxlen=self.max_buffered_lines)
        queued.extend(lines)
        logger.debug(
            f"Buffered session updates for {session_id[:12]} while waiting for "
            f"thread mapping ({len(queued)} lines)"
        )

    def discard_pending(self) -> None:
        """Drop every buffered line (shutdown)."""
        if self._buffers:
            total = sum(len(q) for q in self._buffers.values())
            logger.info(f"Discarding {total} buffered session lines")
        self._buffers.clear()

    # ── New sessions ──────────────────────────────────────────────────

    async def handle_new_session(self, session: CodexSession) -> Optional[Thread]:
        """
        Ensure a project channel and a thread exist for a newly seen session.

        Returns:
            The session's Thread row, or None if the attempt was aborted
        """
        project_path = canonicalize_project_path(session.cwd)
        thread = await self.project_serializer.run(
            project_path, lambda: self._setup_session(session, project_path)
        )
        if thread is not None:
            await self.flush(session.id)
        return thread

    async def _setup_session(
        self, session: CodexSession, project_path: str
    ) -> Optional[Thread]:
        if not os.path.exists(project_path):
            logger.debug(f"Project directory no longer exists, skipping: {project_path}")
            return None

        project = await self.ensure_project(
            project_path,
            model=session.model,
            footer="Auto-synced from new Codex session.",
        )
        if project is None:
            return None

        existing = self.store.get_thread_by_session(session.id)
        if existing is not None:
            return existing

        return await self.ensure_session_thread(project, session, get_session_title(session))

    async def ensure_project(
        self,
        project_path: str,
        project_name: Optional[str] = None,
        model: Optional[str] = None,
        approval_mode: Optional[str] = None,
        footer: str = "",
    ) -> Optional[Project]:
        """
        Return the project for a canonical path, creating its channel if needed.

        A stored project whose channel is gone is discarded and recreated.
        Transient chat failures abort without touching the store.
        """
        project = self.store.find_project_by_path(project_path)
        if project is not None:
            try:
                await self.chat.fetch_channel(project.channel_id)
                return project
            except ChatPlatformError as e:
                if not is_gone(e):
                    logger.warning(
                        f"Channel fetch failed for {project.project_name} "
                        f"(transient), skipping: {e}"
                    )
                    return None
                logger.info(
                    f"Stale project detected, recreating channel for "
                    f"{project.project_name} (old channel {project.channel_id}, {e.code.value})"
                )
                self.store.delete_project(project.id)

        name = project_name or project_name_for(project_path)
        try:
            channel = await self.chat.create_channel(
                channel_slug(name), topic=f"{PROJECT_PREFIX} Codex project: {project_path}"
            )
        except ChatPlatformError as e:
            logger.warning(f"Failed to create channel for {name}: {e}")
            return None

        project = self.store.create_project(
            channel.id, project_path, name, model=model, approval_mode=approval_mode
        )

        if project.channel_id != channel.id:
            # Lost the creation race: keep the winner's channel
            await self._discard_channel(channel)
            try:
                await self.chat.fetch_channel(project.channel_id)
            except ChatPlatformError as e:
                logger.warning(
                    f"Existing mapped channel {project.channel_id} not accessible "
                    f"for {project_path}: {e}"
                )
                return None
            return project

        await self._send_quietly(
            channel.id,
            project_welcome(name, project_path, model or self.default_model, footer),
        )
        logger.info(f"Created project channel #{channel.name} for {project_path}")
        return project

    async def ensure_session_thread(
        self, project: Project, session: CodexSession, thread_name: str
    ) -> Optional[Thread]:
        """Create the chat thread for a session unless another trigger already did."""
        try:
            chat_thread = await self.chat.create_thread(project.channel_id, thread_name)
        except ChatPlatformError as e:
            logger.warning(f"Failed to create thread for session {session.id[:12]}: {e}")
            return None

        mapped = self.store.get_thread_by_session(session.id)
        if mapped is not None and mapped.chat_thread_id != chat_thread.id:
            await self._discard_thread(chat_thread.id)
            return mapped

        thread = self.store.create_thread(
            chat_thread.id, project.id, thread_name, agent_session_id=session.id
        )
        if thread.chat_thread_id != chat_thread.id:
            await self._discard_thread(chat_thread.id)
            return thread

        await self._send_quietly(chat_thread.id, session_intro(session))
        logger.info(
            f"Created thread {thread_name!r} for session {session.id[:12]} "
            f"in {project.project_name}"
        )
        return thread

    async def _discard_channel(self, channel: ChatChannel) -> None:
        try:
            await self.chat.delete_channel(channel.id)
        except ChatPlatformError as e:
            logger.warning(f"Failed to delete redundant channel {channel.id}: {e}")

    async def _discard_thread(self, chat_thread_id: str) -> None:
        try:
            await self.chat.delete_thread(chat_thread_id)
        except ChatPlatformError as e:
            logger.warning(f"Failed to delete redundant thread {chat_thread_id}: {e}")

    async def _send_quietly(self, target_id: str, text: str) -> Optional[str]:
        try:
            return await self.chat.send_message(target_id, text)
        except ChatPlatformError as e:
            logger.warning(f"Failed to send message to {target_id}: {e}")
            return None

    # ── Log updates ───────────────────────────────────────────────────

    async def handle_session_update(
        self, session: CodexSession, lines: list[str]
    ) -> Optional[DeliveryReport]:
        """Deliver appended lines, or buffer them until the thread exists."""
        return await self.session_serializer.run(
            session.id, lambda: self._process_update(session.id, lines)
        )

    async def flush(self, session_id: str) -> Optional[DeliveryReport]:
        """Deliver lines buffered for a session whose thread now exists."""
        return await self.session_serializer.run(
            session_id, lambda: self._process_update(session_id, [])
        )

    async def _process_update(
        self, session_id: str, lines: list[str]
    ) -> Optional[DeliveryReport]:
        thread = self.store.get_thread_by_session(session_id)
        if thread is None:
            self._buffer(session_id, lines)
            return None

        batch = list(self._buffers.pop(session_id, ())) + list(lines)
        if not batch:
            return None
        if len(batch) > len(lines):
            logger.debug(
                f"Flushing {len(batch) - len(lines)} buffered lines for {session_id[:12]}"
            )

        try:
            await self.chat.fetch_thread(thread.chat_thread_id)
        except ChatPlatformError as e:
            if is_gone(e):
                logger.info(
                    f"Chat thread {thread.chat_thread_id} is gone, removing stale "
                    f"mapping for session {session_id[:12]}"
                )
                self.store.delete_thread(thread.id)
            else:
                logger.warning(
                    f"Thread fetch failed for session {session_id[:12]} "
                    f"(transient), keeping {len(batch)} lines for retry: {e}"
                )
                self._buffer(session_id, batch)
            return None

        return await self._deliver(thread, batch)

    async def _deliver(self, thread: Thread, lines: list[str]) -> DeliveryReport:
        report = DeliveryReport()
        sent_user: set[str] = set()
        sent_assistant: set[str] = set()
        chat_thread_id = thread.chat_thread_id

        for line in lines:
            record = decode_record(line)
            if record is None:
                continue
            event_type = getattr(record, "event_type", None) or record.type

            for raw in extract_user_texts(record):
                text = extract_visible_user_message(raw)
                if not text or text in sent_user:
                    continue
                sent_user.add(text)
                if self.echo.should_suppress(chat_thread_id, "user", text):
                    report.suppressed += 1
                    continue
                if await self._send_chunked(thread, USER_PREFIX, text, event_type):
                    report.user_sent += 1
                    if thread.status != ThreadStatus.ACTIVE.value:
                        self.store.update_status(thread.id, ThreadStatus.ACTIVE)
                        thread.status = ThreadStatus.ACTIVE.value
                else:
                    report.send_failures += 1

            for raw in extract_assistant_texts(record):
                text = raw.strip()
                if not text or text in sent_assistant:
                    continue
                sent_assistant.add(text)
                if self.echo.should_suppress(chat_thread_id, "assistant", text):
                    report.suppressed += 1
                    continue
                if await self._send_chunked(thread, ASSISTANT_PREFIX, text, event_type):
                    report.assistant_sent += 1
                else:
                    report.send_failures += 1

            if isinstance(record, EventMsgRecord) and record.event_type == "task_complete":
                self.store.update_status(thread.id, ThreadStatus.COMPLETED)
                thread.status = ThreadStatus.COMPLETED.value

        if report.send_failures and not (report.user_sent or report.assistant_sent):
            logger.warning(
                f"Extracted messages for thread {chat_thread_id} but none were sent "
                f"({report.send_failures} failures)"
            )
        return report

    async def _send_chunked(
        self, thread: Thread, prefix: str, text: str, event_type: str
    ) -> bool:
        first_id: Optional[str] = None
        for chunk in split_message(f"{prefix}\n{text}", self.message_limit):
            try:
                message_id = await self.chat.send_message(thread.chat_thread_id, chunk)
            except ChatPlatformError as e:
                logger.warning(
                    f"Failed to send message chunk to thread {thread.chat_thread_id}: {e}"
                )
                return False
            first_id = first_id or message_id

        self.store.add_message(
            thread.id,
            MessageDirection.AGENT_TO_CHAT,
            text,
            chat_message_id=first_id,
            event_type=event_type,
        )
        return True
