"""
Relay bridge service.

Wires the session watcher, sync coordinator and interactive message sync
to one chat platform and one agent runtime, and exposes the operator
operations (project setup, bulk sync, replay, removal, status).
"""

import asyncio
import importlib
import logging
import os
from dataclasses import dataclass, field
from typing import Optional

from codexrelay.agent.base import AgentRuntime
from codexrelay.chat.base import (
    ChatMessage,
    ChatPlatform,
    ChatPlatformError,
    ChatThread,
    is_gone,
)
from codexrelay.chat.simulator import SimulatedChatPlatform
from codexrelay.config import Settings, settings as default_settings
from codexrelay.exceptions import RelayOperationError
from codexrelay.models.db import Project, Thread, ThreadStatus
from codexrelay.parsers.codex import (
    CodexSession,
    get_session_display_name,
    get_sessions_for_project,
    parse_session_messages,
    scan_all_sessions,
)
from codexrelay.store import MappingStore
from codexrelay.sync.coordinator import ASSISTANT_PREFIX, USER_PREFIX, SyncCoordinator
from codexrelay.sync.echo import EchoSuppressor
from codexrelay.sync.formatter import EventFormatter
from codexrelay.sync.message_sync import MessageSync, TurnOutcome
from codexrelay.utils.paths import canonicalize_project_path
from codexrelay.utils.text import split_message
from codexrelay.watch import SessionWatcher

logger = logging.getLogger(__name__)

AVAILABLE_SESSIONS_LIMIT = 15


@dataclass
class SyncSummary:
    """Result of a bulk project sync."""

    created: int = 0
    skipped: int = 0
    threads_created: int = 0
    details: list[str] = field(default_factory=list)


@dataclass
class ReplayResult:
    """Result of replaying a session into a chat thread."""

    session_id: str
    sent: int = 0
    failed: int = 0
    user_count: int = 0
    assistant_count: int = 0


@dataclass
class BridgeStatus:
    projects: int
    active_threads: int
    model: str
    approval_mode: str
    sandbox_mode: str
    watcher_running: bool


def create_chat_platform(config: Optional[Settings] = None) -> ChatPlatform:
    """
    Build the configured chat platform.

    `chat_platform` is either "simulator" or "package.module:factory", where
    factory is called with the Settings and returns a ChatPlatform. The
    RelayBridge attaches itself to the platform to receive inbound events.
    """
    config = config or default_settings
    target = config.chat_platform.strip()
    if target == "simulator":
        return SimulatedChatPlatform()

    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise RelayOperationError(
            f"Invalid chat platform {target!r}: expected 'simulator' or 'module:factory'"
        )
    module = importlib.import_module(module_name)
    factory = getattr(module, attr)
    return factory(config)


class RelayBridge:
    """The running relay: one chat platform, one agent runtime, one store."""

    def __init__(
        self,
        store: MappingStore,
        chat: ChatPlatform,
        runtime: AgentRuntime,
        config: Optional[Settings] = None,
        watcher: Optional[SessionWatcher] = None,
    ):
        self.config = config or default_settings
        self.store = store
        self.chat = chat
        self.runtime = runtime

        self.echo = EchoSuppressor(
            ttl_seconds=self.config.echo_ttl_seconds,
            is_in_flight=lambda chat_thread_id: self.message_sync.is_processing(
                chat_thread_id
            ),
        )
        self.coordinator = SyncCoordinator(store, chat, self.echo, self.config)
        self.message_sync = MessageSync(
            store,
            chat,
            runtime,
            self.echo,
            EventFormatter(self.config.verbose_level, self.config.chat_message_limit),
        )
        self.watcher = watcher or SessionWatcher(
            self.config.sessions_directory,
            self.coordinator.handle_new_session,
            self.coordinator.handle_session_update,
            debounce_seconds=self.config.watch_debounce_seconds,
            poll_interval=self.config.watch_poll_interval,
            poll_window_seconds=self.config.watch_poll_window_seconds,
        )
        chat.attach(self)

    def scan_sessions(self) -> dict[str, list[CodexSession]]:
        return scan_all_sessions(
            self.config.sessions_directory,
            self.config.archived_sessions_directory,
            include_archived=self.config.sync_archived,
        )

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def start(self) -> None:
        """Mark every existing session file seen, then start watching."""
        seen = 0
        for sessions in self.scan_sessions().values():
            for session in sessions:
                self.watcher.mark_seen(session.file_path)
                seen += 1
        logger.info(f"Marked {seen} existing session files as seen")
        self.watcher.start()

    async def stop(self) -> None:
        self.watcher.stop()
        self.coordinator.discard_pending()
        self.echo.clear()
        logger.info("Relay bridge stopped")

    # ── Chat events ───────────────────────────────────────────────────

    async def on_thread_created(self, chat_thread: ChatThread) -> Optional[Thread]:
        """Register a thread created inside a project channel."""
        project = self.store.get_project_by_channel(chat_thread.channel_id)
        if project is None:
            return None

        existing = self.store.get_thread_by_chat_thread(chat_thread.id)
        if existing is not None:
            return existing

        thread = self.store.create_thread(chat_thread.id, project.id, chat_thread.name)
        logger.info(
            f"Thread {chat_thread.name!r} created and mapped to {project.project_name}"
        )
        try:
            await self.chat.send_message(
                chat_thread.id,
                f"✅ **Codex Thread Ready**\n"
                f"Connected to project **{project.project_name}**\n"
                f"📁 `{project.project_path}`\n\n"
                f"Send a message to start working with Codex.",
            )
        except ChatPlatformError as e:
            logger.warning(f"Failed to send ready notice to {chat_thread.id}: {e}")
        return thread

    async def on_message(self, message: ChatMessage) -> TurnOutcome:
        """Forward a user message posted in a project thread to the agent."""
        if message.is_bot or not message.thread_id:
            return TurnOutcome.IGNORED

        project = self.store.get_project_by_channel(message.channel_id)
        if project is None:
            return TurnOutcome.IGNORED

        if self.store.get_thread_by_chat_thread(message.thread_id) is None:
            self.store.create_thread(
                message.thread_id, project.id, message.thread_name or message.thread_id
            )
            logger.info(
                f"Auto-registered chat thread {message.thread_id} in {project.project_name}"
            )

        return await self.message_sync.handle_user_message(message)

    # ── Operator operations ───────────────────────────────────────────

    async def setup_project(
        self,
        project_path: str,
        name: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Project:
        """
        Register a project directory and create its channel.

        Raises:
            RelayOperationError: If the path does not exist, the project is
                already registered, or the channel cannot be created
        """
        canonical = canonicalize_project_path(project_path)
        if not os.path.isdir(canonical):
            raise RelayOperationError(f"Path does not exist: {project_path}")

        existing = self.store.find_project_by_path(canonical)
        if existing is not None:
            raise RelayOperationError(
                f"Project already registered as {existing.project_name} "
                f"(channel {existing.channel_id})"
            )

        project = await self.coordinator.project_serializer.run(
            canonical,
            lambda: self.coordinator.ensure_project(
                canonical,
                project_name=name,
                model=model,
                footer=(
                    f"🔒 **Approval:** {self.config.approval_mode}\n\n"
                    f"Create a thread in this channel to start a Codex conversation."
                ),
            ),
        )
        if project is None:
            raise RelayOperationError(f"Failed to set up project channel for {canonical}")

        logger.info(f"Project setup complete: {project.project_name} ({canonical})")
        return project

    async def sync_projects(self) -> SyncSummary:
        """Create channels and threads for every project found in the session logs."""
        summary = SyncSummary()

        for project_path, sessions in self.scan_sessions().items():
            canonical = canonicalize_project_path(project_path)
            if self.store.find_project_by_path(canonical) is not None:
                summary.skipped += 1
                continue
            if not os.path.isdir(canonical):
                summary.skipped += 1
                continue

            project = await self.coordinator.project_serializer.run(
                canonical,
                lambda: self._sync_project(canonical, sessions, summary),
            )
            if project is None:
                summary.skipped += 1
                continue

            summary.created += 1
            summary.details.append(
                f"✅ {project.project_name}: {len(sessions)} sessions -> {project.channel_id}"
            )

        logger.info(
            f"Sync projects complete: {summary.created} created, {summary.skipped} skipped"
        )
        return summary

    async def _sync_project(
        self, canonical: str, sessions: list[CodexSession], summary: SyncSummary
    ) -> Optional[Project]:
        project = await self.coordinator.ensure_project(
            canonical,
            model=sessions[0].model if sessions else None,
            footer=(
                f"📊 **Sessions found:** {len(sessions)}\n\n"
                f"Synced from local Codex sessions."
            ),
        )
        if project is None:
            return None

        seen: set[str] = set()
        for session in sessions:
            if session.id in seen:
                continue
            seen.add(session.id)
            if self.store.get_thread_by_session(session.id) is not None:
                continue
            thread = await self.coordinator.ensure_session_thread(
                project, session, get_session_display_name(session)
            )
            if thread is not None:
                summary.threads_created += 1
        return project

    async def replay_session(
        self, chat_thread_id: str, session_id: Optional[str] = None
    ) -> ReplayResult:
        """
        Replay a session log's chat messages into a thread.

        Sends replay_batch_size messages, then pauses replay_batch_delay
        seconds, to stay under chat rate limits.

        Raises:
            RelayOperationError: If the thread is unmapped or the session
                cannot be found on disk
        """
        thread = self.store.get_thread_by_chat_thread(chat_thread_id)
        if thread is None:
            raise RelayOperationError(
                "This thread is not linked to a Codex project. Run a project sync first."
            )
        project = self.store.get_project_by_id(thread.project_id)
        if project is None:
            raise RelayOperationError("Project not found.")

        sessions = get_sessions_for_project(
            project.project_path,
            self.config.sessions_directory,
            self.config.archived_sessions_directory,
            include_archived=self.config.sync_archived,
        )
        target_id = session_id or thread.agent_session_id
        match = next((s for s in sessions if s.id == target_id), None) if target_id else None
        if match is None:
            available = "\n".join(
                f"{s.id} ({get_session_display_name(s)}, {s.model or 'default'})"
                for s in sessions[:AVAILABLE_SESSIONS_LIMIT]
            )
            reason = f"Session not found: {target_id}" if target_id else "No session linked"
            raise RelayOperationError(
                f"{reason}\n\nAvailable sessions for {project.project_name}:\n"
                f"{available or 'None'}"
            )

        messages = [
            m
            for m in parse_session_messages(match.file_path)
            if m.role == "user" or (m.role == "assistant" and m.kind == "text")
        ]
        result = ReplayResult(session_id=match.id)
        result.user_count = sum(1 for m in messages if m.role == "user")
        result.assistant_count = len(messages) - result.user_count

        for message in messages:
            prefix = USER_PREFIX if message.role == "user" else ASSISTANT_PREFIX
            for chunk in split_message(
                f"{prefix}\n{message.text}", self.config.chat_message_limit
            ):
                try:
                    await self.chat.send_message(chat_thread_id, chunk)
                except ChatPlatformError as e:
                    result.failed += 1
                    logger.warning(
                        f"Failed to send replay chunk to {chat_thread_id}: {e}"
                    )
                    break
            result.sent += 1

            if result.sent % self.config.replay_batch_size == 0:
                await asyncio.sleep(self.config.replay_batch_delay)

        done = f"✅ Synced **{result.sent}** messages from Codex session."
        if result.failed:
            done += f"\n⚠️ Failed chunks: **{result.failed}**"
        try:
            await self.chat.send_message(chat_thread_id, done)
        except ChatPlatformError as e:
            logger.warning(f"Failed to send replay summary to {chat_thread_id}: {e}")

        logger.info(
            f"Replayed session {match.id[:12]} into {chat_thread_id}: "
            f"{result.sent} sent, {result.failed} failed"
        )
        return result

    async def remove_project(self, project_name: str) -> Project:
        """
        Delete a project's channel and its mapping rows.

        Raises:
            RelayOperationError: If no project has that name
            ChatPlatformError: If the channel delete fails transiently
        """
        project = self.store.get_project_by_name(project_name)
        if project is None:
            raise RelayOperationError(f"Project not found: {project_name}")

        try:
            await self.chat.delete_channel(project.channel_id)
        except ChatPlatformError as e:
            if not is_gone(e):
                raise
            logger.info(f"Channel {project.channel_id} already gone")

        for thread in self.store.list_threads(project.id):
            self.message_sync.forget_thread(thread.chat_thread_id)
        self.store.delete_project(project.id)
        logger.info(f"Project removed: {project.project_name}")
        return project

    def status(self) -> BridgeStatus:
        projects = self.store.list_projects()
        active = sum(
            1
            for project in projects
            for thread in self.store.list_threads(project.id)
            if thread.status == ThreadStatus.ACTIVE.value
        )
        return BridgeStatus(
            projects=len(projects),
            active_threads=active,
            model=self.config.default_model,
            approval_mode=self.config.approval_mode,
            sandbox_mode=self.config.sandbox_mode,
            watcher_running=self.watcher.is_running,
        )
