"""
Repository layer for database operations.

Provides a clean API for CRUD operations on database models.
"""

from codexrelay.db.repositories.base import BaseRepository
from codexrelay.db.repositories.message import MessageRepository
from codexrelay.db.repositories.project import ProjectRepository
from codexrelay.db.repositories.thread import ThreadRepository

__all__ = [
    "BaseRepository",
    "MessageRepository",
    "ProjectRepository",
    "ThreadRepository",
]
