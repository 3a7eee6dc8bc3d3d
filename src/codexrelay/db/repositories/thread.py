"""
Thread repository.
"""

from datetime import UTC, datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from codexrelay.db.repositories.base import BaseRepository
from codexrelay.exceptions import StoreError
from codexrelay.models.db import Thread, ThreadStatus


class ThreadRepository(BaseRepository[Thread]):
    """Repository for Thread model."""

    def __init__(self, session: Session):
        super().__init__(Thread, session)

    def get_by_chat_thread(self, chat_thread_id: str) -> Optional[Thread]:
        """Get thread by chat platform thread id."""
        return (
            self.session.query(Thread)
            .filter(Thread.chat_thread_id == chat_thread_id)
            .first()
        )

    def get_by_session(self, agent_session_id: str) -> Optional[Thread]:
        """Get thread by Codex session id."""
        return (
            self.session.query(Thread)
            .filter(Thread.agent_session_id == agent_session_id)
            .first()
        )

    def list_by_project(self, project_id: int) -> List[Thread]:
        """Threads of a project, newest first."""
        return (
            self.session.query(Thread)
            .filter(Thread.project_id == project_id)
            .order_by(Thread.created_at.desc(), Thread.id.desc())
            .all()
        )

    def get_or_create(
        self,
        chat_thread_id: str,
        project_id: int,
        thread_name: str,
        agent_session_id: Optional[str] = None,
    ) -> Thread:
        """
        Get or create the thread row (race-safe).

        Keyed by agent_session_id when given, else by chat_thread_id. A chat
        thread already registered without a session gets the session linked
        onto it.

        Returns:
            The authoritative Thread; compare its chat_thread_id with the one
            passed in to detect a lost race

        Raises:
            StoreError: If no row can be read back after the insert
        """
        if agent_session_id:
            thread = self.get_by_session(agent_session_id)
            if thread:
                return thread

        thread = self.get_by_chat_thread(chat_thread_id)
        if thread:
            if agent_session_id and thread.agent_session_id is None:
                self.session.execute(
                    update(Thread)
                    .where(Thread.id == thread.id, Thread.agent_session_id.is_(None))
                    .values(
                        agent_session_id=agent_session_id,
                        updated_at=datetime.now(UTC),
                    )
                )
                self.session.flush()
                self.session.refresh(thread)
            return thread

        stmt = (
            sqlite_insert(Thread)
            .values(
                chat_thread_id=chat_thread_id,
                agent_session_id=agent_session_id,
                project_id=project_id,
                thread_name=thread_name,
                status=ThreadStatus.ACTIVE.value,
                created_at=datetime.now(UTC),
                updated_at=datetime.now(UTC),
            )
            .on_conflict_do_nothing()
        )
        self.session.execute(stmt)
        self.session.flush()

        thread = None
        if agent_session_id:
            thread = self.get_by_session(agent_session_id)
        if thread is None:
            thread = self.get_by_chat_thread(chat_thread_id)
        if thread is None:
            raise StoreError(
                f"Thread creation/fetch failed for chat_thread_id={chat_thread_id}, "
                f"session={agent_session_id}"
            )
        return thread

    def update_session_id(self, id: int, agent_session_id: str) -> Optional[Thread]:
        return self.update(
            id, agent_session_id=agent_session_id, updated_at=datetime.now(UTC)
        )

    def update_status(self, id: int, status: ThreadStatus) -> Optional[Thread]:
        return self.update(
            id, status=ThreadStatus(status).value, updated_at=datetime.now(UTC)
        )
