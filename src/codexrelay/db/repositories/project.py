"""
Project repository.
"""

from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from codexrelay.db.repositories.base import BaseRepository
from codexrelay.exceptions import StoreError
from codexrelay.models.db import Project


class ProjectRepository(BaseRepository[Project]):
    """Repository for Project model."""

    def __init__(self, session: Session):
        super().__init__(Project, session)

    def get_by_path(self, project_path: str) -> Optional[Project]:
        """
        Get project by its stored (canonical) path.

        Args:
            project_path: Canonical project directory

        Returns:
            Project instance or None
        """
        return (
            self.session.query(Project)
            .filter(Project.project_path == project_path)
            .first()
        )

    def get_by_channel(self, channel_id: str) -> Optional[Project]:
        """Get project by its chat channel id."""
        return (
            self.session.query(Project).filter(Project.channel_id == channel_id).first()
        )

    def get_by_name(self, project_name: str) -> Optional[Project]:
        """Get the oldest project with the given display name (case-insensitive)."""
        return (
            self.session.query(Project)
            .filter(func.lower(Project.project_name) == project_name.lower())
            .order_by(Project.id)
            .first()
        )

    def list_all(self) -> List[Project]:
        """All projects, ordered by name."""
        return (
            self.session.query(Project)
            .order_by(Project.project_name, Project.id)
            .all()
        )

    def get_or_create(
        self,
        channel_id: str,
        project_path: str,
        project_name: str,
        model: Optional[str] = None,
        approval_mode: Optional[str] = None,
    ) -> Project:
        """
        Get the project for a path, creating it if absent (race-safe).

        Uses SQLite's INSERT ... ON CONFLICT DO NOTHING, then re-reads the
        row: when another writer got there first, its row (and its channel
        id) is returned instead of ours.

        Args:
            channel_id: Chat channel created for this project
            project_path: Canonical project directory
            project_name: Display name
            model: Default model for new threads
            approval_mode: Default approval mode for new threads

        Returns:
            The authoritative Project for project_path

        Raises:
            StoreError: If the row cannot be read back after the insert
        """
        project = self.get_by_path(project_path)
        if project:
            return project

        stmt = (
            sqlite_insert(Project)
            .values(
                channel_id=channel_id,
                project_path=project_path,
                project_name=project_name,
                model=model,
                approval_mode=approval_mode,
            )
            .on_conflict_do_nothing()
        )
        self.session.execute(stmt)
        self.session.flush()

        project = self.get_by_path(project_path)
        if not project:
            # Conflict on channel_id with a different path
            raise StoreError(
                f"Project creation/fetch failed for path={project_path}, "
                f"channel_id={channel_id}"
            )
        return project

    def update_path(self, id: int, project_path: str) -> Optional[Project]:
        return self.update(id, project_path=project_path)
