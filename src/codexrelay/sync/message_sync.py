"""
Interactive path: chat message -> agent turn -> streamed reply.

At most one turn runs per chat thread; a message arriving while a turn is
streaming is answered with a busy notice instead of being queued.
"""

import enum
import logging
from typing import Optional

from codexrelay.agent.base import AgentRuntime, AgentThread
from codexrelay.chat.base import ChatMessage, ChatPlatform, ChatPlatformError
from codexrelay.models.db import MessageDirection, Project, Thread, ThreadStatus
from codexrelay.store import MappingStore
from codexrelay.sync.echo import EchoSuppressor
from codexrelay.sync.formatter import EventFormatter, FormattedMessage

logger = logging.getLogger(__name__)

BUSY_NOTICE = "⏳ A previous request is still processing. Please wait."


class TurnOutcome(str, enum.Enum):
    IGNORED = "ignored"
    BUSY = "busy"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageSync:
    """Runs agent turns for messages posted in mapped chat threads."""

    def __init__(
        self,
        store: MappingStore,
        chat: ChatPlatform,
        runtime: AgentRuntime,
        echo: EchoSuppressor,
        formatter: Optional[EventFormatter] = None,
    ):
        self.store = store
        self.chat = chat
        self.runtime = runtime
        self.echo = echo
        self.formatter = formatter or EventFormatter()
        self.processing: set[str] = set()
        self._agent_threads: dict[str, AgentThread] = {}

    def is_processing(self, chat_thread_id: str) -> bool:
        return chat_thread_id in self.processing

    def forget_thread(self, chat_thread_id: str) -> None:
        self._agent_threads.pop(chat_thread_id, None)

    async def handle_user_message(self, message: ChatMessage) -> TurnOutcome:
        """
        Forward a chat message to the agent and stream the response back.

        Returns:
            TurnOutcome describing what happened
        """
        chat_thread_id = message.thread_id
        prompt = message.text
        if not chat_thread_id or not prompt.strip():
            return TurnOutcome.IGNORED
        self.echo.prune()

        if chat_thread_id in self.processing:
            try:
                await self.chat.send_message(chat_thread_id, BUSY_NOTICE)
            except ChatPlatformError as e:
                logger.warning(f"Failed to send busy notice to {chat_thread_id}: {e}")
            return TurnOutcome.BUSY

        thread = self.store.get_thread_by_chat_thread(chat_thread_id)
        if thread is None:
            logger.warning(f"No thread mapping found for chat thread {chat_thread_id}")
            return TurnOutcome.IGNORED

        project = self.store.get_project_by_id(thread.project_id)
        if project is None:
            logger.error(f"Project {thread.project_id} not found for thread {thread.id}")
            return TurnOutcome.IGNORED

        self.store.add_message(
            thread.id, MessageDirection.USER_TO_AGENT, prompt, chat_message_id=message.id
        )
        self.echo.start(chat_thread_id, prompt)
        self.processing.add(chat_thread_id)

        try:
            agent_thread = self._agent_thread_for(thread, project)
            await self._stream_response(agent_thread, thread, prompt)
            return TurnOutcome.COMPLETED
        except Exception as e:
            logger.error(
                f"Error processing message in chat thread {chat_thread_id}: {e}",
                exc_info=True,
            )
            try:
                await self.chat.send_message(chat_thread_id, f"❌ **Error:** {str(e)[:500]}")
            except ChatPlatformError as send_error:
                logger.warning(f"Failed to report error to {chat_thread_id}: {send_error}")
            self.store.update_status(thread.id, ThreadStatus.ERROR)
            return TurnOutcome.FAILED
        finally:
            self.processing.discard(chat_thread_id)
            self.echo.extend(chat_thread_id)

    def _agent_thread_for(self, thread: Thread, project: Project) -> AgentThread:
        agent_thread = self._agent_threads.get(thread.chat_thread_id)
        if agent_thread is None:
            agent_thread = self.runtime.open_thread(
                project.project_path,
                thread_id=thread.agent_session_id,
                model=project.model,
                approval_mode=project.approval_mode,
            )
            self._agent_threads[thread.chat_thread_id] = agent_thread
        return agent_thread

    async def _stream_response(
        self, agent_thread: AgentThread, thread: Thread, prompt: str
    ) -> None:
        chat_thread_id = thread.chat_thread_id
        transient_id: Optional[str] = None

        try:
            async for event in agent_thread.run_streamed(prompt):
                if event.type == "item.completed" and event.item_type == "agent_message":
                    self.echo.remember_assistant(
                        chat_thread_id, str(event.item.get("text") or "")
                    )

                if event.type == "thread.started":
                    self._capture_session_id(thread, event.thread_id)
                    continue

                formatted = self.formatter.format_event(event)
                if formatted is None:
                    continue

                if formatted.is_transient:
                    if transient_id is None:
                        transient_id = await self._send(chat_thread_id, formatted.content)
                    else:
                        await self._edit(chat_thread_id, transient_id, formatted.content)
                    continue

                if transient_id is not None:
                    await self._delete(chat_thread_id, transient_id)
                    transient_id = None

                await self._send_durable(thread, formatted, event.type)
        finally:
            if transient_id is not None:
                await self._delete(chat_thread_id, transient_id)

    def _capture_session_id(self, thread: Thread, agent_session_id: Optional[str]) -> None:
        if not agent_session_id or thread.agent_session_id:
            return
        owner = self.store.get_thread_by_session(agent_session_id)
        if owner is not None and owner.id != thread.id:
            logger.warning(
                f"Codex thread {agent_session_id} already mapped to "
                f"chat thread {owner.chat_thread_id}"
            )
            return
        self.store.update_agent_session_id(thread.id, agent_session_id)
        thread.agent_session_id = agent_session_id
        logger.info(
            f"Codex thread id captured for {thread.chat_thread_id}: {agent_session_id}"
        )

    async def _send_durable(
        self, thread: Thread, formatted: FormattedMessage, event_type: str
    ) -> None:
        sent_id = await self._send(thread.chat_thread_id, formatted.content)
        if sent_id is not None:
            self.store.add_message(
                thread.id,
                MessageDirection.AGENT_TO_CHAT,
                formatted.content,
                chat_message_id=sent_id,
                event_type=event_type,
            )
        for chunk in formatted.extra_chunks:
            await self._send(thread.chat_thread_id, chunk)

    async def _send(self, target_id: str, text: str) -> Optional[str]:
        try:
            return await self.chat.send_message(target_id, text)
        except ChatPlatformError as e:
            logger.error(f"Failed to send chat message to {target_id}: {e}")
            return None

    async def _edit(self, target_id: str, message_id: str, text: str) -> None:
        try:
            await self.chat.edit_message(target_id, message_id, text)
        except ChatPlatformError as e:
            logger.error(f"Failed to edit chat message {message_id}: {e}")

    async def _delete(self, target_id: str, message_id: str) -> None:
        try:
            await self.chat.delete_message(target_id, message_id)
        except ChatPlatformError as e:
            logger.debug(f"Failed to delete transient message {message_id}: {e}")
