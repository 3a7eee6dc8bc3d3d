"""
Database connection management for codex-relay.

Provides the SQLite engine, session management and transaction support for
the mapping store.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Optional

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker

from codexrelay.config import Settings, settings as default_settings
from codexrelay.models.db import Base

logger = logging.getLogger(__name__)


def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    # SQLite enforces FOREIGN KEY / ON DELETE CASCADE per connection only
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_sqlite_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for a SQLite URL with foreign keys enforced.

    Args:
        database_url: e.g. "sqlite:////home/me/.local/state/codex-relay/codex-relay.db"
        echo: Log SQL statements

    Returns:
        Engine
    """
    engine = create_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": 30},
        pool_pre_ping=True,
    )
    event.listen(engine, "connect", _enable_foreign_keys)
    return engine


class Database:
    """
    Owns the engine and session factory of one mapping store file.

    Example:
        >>> db = Database.from_settings()
        >>> db.init()
        >>> with db.session() as session:
        >>>     session.execute(text("SELECT 1"))
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.engine = create_sqlite_engine(database_url, echo=echo)
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "Database":
        config = config or default_settings
        return cls(config.database_url)

    @property
    def path(self) -> Optional[Path]:
        """Filesystem path of the database (None for in-memory databases)."""
        database = self.engine.url.database
        if not database or database == ":memory:":
            return None
        return Path(database)

    def init(self) -> None:
        """Create the parent directory and any missing tables."""
        path = self.path
        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
        Base.metadata.create_all(bind=self.engine)
        logger.debug(f"Mapping store initialized: {self.database_url}")

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """
        Context manager for database sessions with automatic cleanup.

        Commits on success, rolls back on exception.

        Yields:
            Session: A SQLAlchemy session
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def check_connection(self) -> bool:
        """
        Check if database connection is working.

        Returns:
            bool: True if connection successful, False otherwise
        """
        try:
            with self.session() as session:
                session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection failed: {e}")
            return False

    def dispose(self) -> None:
        self.engine.dispose()
