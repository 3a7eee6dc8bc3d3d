"""
Mapping store facade.

One transaction per call; every returned row is detached from its session
(the session factory does not expire on commit) so callers can read it
freely without touching the database again.
"""

import logging
from typing import List, Optional

from codexrelay.db.connection import Database
from codexrelay.db.reconcile import ReconcileReport, reconcile_duplicates
from codexrelay.db.repositories import (
    MessageRepository,
    ProjectRepository,
    ThreadRepository,
)
from codexrelay.models.db import (
    Message,
    MessageDirection,
    Project,
    Thread,
    ThreadStatus,
)
from codexrelay.utils.paths import canonicalize_project_path

logger = logging.getLogger(__name__)


class MappingStore:
    """Durable project/thread mapping over a Database."""

    def __init__(self, database: Database):
        self.database = database

    # ── Projects ──────────────────────────────────────────────────────

    def create_project(
        self,
        channel_id: str,
        project_path: str,
        project_name: str,
        model: Optional[str] = None,
        approval_mode: Optional[str] = None,
    ) -> Project:
        """
        Create the project for a path, or return the one that already exists.

        The returned project's channel_id differs from the one passed in
        when another writer created the project first.
        """
        canonical = canonicalize_project_path(project_path)
        with self.database.session() as session:
            return ProjectRepository(session).get_or_create(
                channel_id=channel_id,
                project_path=canonical,
                project_name=project_name,
                model=model,
                approval_mode=approval_mode,
            )

    def get_project_by_id(self, project_id: int) -> Optional[Project]:
        with self.database.session() as session:
            return ProjectRepository(session).get(project_id)

    def get_project_by_path(self, project_path: str) -> Optional[Project]:
        """Exact lookup on the canonical form of project_path."""
        with self.database.session() as session:
            return ProjectRepository(session).get_by_path(
                canonicalize_project_path(project_path)
            )

    def get_project_by_channel(self, channel_id: str) -> Optional[Project]:
        with self.database.session() as session:
            return ProjectRepository(session).get_by_channel(channel_id)

    def get_project_by_name(self, project_name: str) -> Optional[Project]:
        with self.database.session() as session:
            return ProjectRepository(session).get_by_name(project_name)

    def find_project_by_path(self, project_path: str) -> Optional[Project]:
        """
        Look up a project by path, tolerating legacy path spellings.

        Falls back to canonicalizing every stored path; a match stored under
        a non-canonical spelling is rewritten to the canonical one.
        """
        canonical = canonicalize_project_path(project_path)
        with self.database.session() as session:
            repo = ProjectRepository(session)
            project = repo.get_by_path(canonical)
            if project:
                return project

            for candidate in repo.list_all():
                if canonicalize_project_path(candidate.project_path) != canonical:
                    continue
                logger.info(
                    f"Rewriting legacy project path {candidate.project_path!r} "
                    f"-> {canonical!r}"
                )
                return repo.update_path(candidate.id, canonical)
        return None

    def list_projects(self) -> List[Project]:
        with self.database.session() as session:
            return ProjectRepository(session).list_all()

    def delete_project(self, project_id: int) -> bool:
        """Delete a project; its threads and messages go with it."""
        with self.database.session() as session:
            return ProjectRepository(session).delete(project_id)

    # ── Threads ───────────────────────────────────────────────────────

    def create_thread(
        self,
        chat_thread_id: str,
        project_id: int,
        thread_name: str,
        agent_session_id: Optional[str] = None,
    ) -> Thread:
        """
        Create the thread row, or return the authoritative existing one.

        Keyed by agent_session_id when present, else by chat_thread_id.
        """
        with self.database.session() as session:
            return ThreadRepository(session).get_or_create(
                chat_thread_id=chat_thread_id,
                project_id=project_id,
                thread_name=thread_name,
                agent_session_id=agent_session_id,
            )

    def get_thread_by_id(self, thread_id: int) -> Optional[Thread]:
        with self.database.session() as session:
            return ThreadRepository(session).get(thread_id)

    def get_thread_by_chat_thread(self, chat_thread_id: str) -> Optional[Thread]:
        with self.database.session() as session:
            return ThreadRepository(session).get_by_chat_thread(chat_thread_id)

    def get_thread_by_session(self, agent_session_id: str) -> Optional[Thread]:
        with self.database.session() as session:
            return ThreadRepository(session).get_by_session(agent_session_id)

    def list_threads(self, project_id: int) -> List[Thread]:
        with self.database.session() as session:
            return ThreadRepository(session).list_by_project(project_id)

    def update_agent_session_id(
        self, thread_id: int, agent_session_id: str
    ) -> Optional[Thread]:
        with self.database.session() as session:
            return ThreadRepository(session).update_session_id(
                thread_id, agent_session_id
            )

    def update_status(self, thread_id: int, status: ThreadStatus) -> Optional[Thread]:
        with self.database.session() as session:
            return ThreadRepository(session).update_status(thread_id, status)

    def delete_thread(self, thread_id: int) -> bool:
        with self.database.session() as session:
            return ThreadRepository(session).delete(thread_id)

    # ── Messages ──────────────────────────────────────────────────────

    def add_message(
        self,
        thread_id: int,
        direction: MessageDirection,
        content: str,
        chat_message_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> Message:
        with self.database.session() as session:
            return MessageRepository(session).add(
                thread_id=thread_id,
                direction=direction,
                content=content,
                chat_message_id=chat_message_id,
                event_type=event_type,
            )

    def recent_messages(self, thread_id: int, limit: int = 50) -> List[Message]:
        with self.database.session() as session:
            return MessageRepository(session).recent(thread_id, limit)

    # ── Maintenance ───────────────────────────────────────────────────

    def reconcile_duplicates(self) -> ReconcileReport:
        with self.database.session() as session:
            return reconcile_duplicates(session)
