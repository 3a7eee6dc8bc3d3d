"""
Startup checks for the codex-relay bridge.

Acquires the single-instance lock and prepares the mapping store before any
session is watched. Fails fast with clear, actionable error messages when
requirements aren't met.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from codexrelay.config import Settings, settings as default_settings
from codexrelay.db.connection import Database
from codexrelay.db.reconcile import ReconcileReport
from codexrelay.exceptions import ProcessAlreadyRunningError
from codexrelay.store import MappingStore
from codexrelay.utils.process_lock import ProcessLock, acquire_process_lock

logger = logging.getLogger(__name__)


class StartupCheckError(Exception):
    """Raised when a critical startup check fails."""

    def __init__(self, message: str, hint: Optional[str] = None):
        self.message = message
        self.hint = hint
        super().__init__(message)

    def __str__(self) -> str:
        error_msg = f"\n{'='*70}\n❌ STARTUP CHECK FAILED\n{'='*70}\n\n{self.message}\n"
        if self.hint:
            error_msg += f"\n💡 Hint: {self.hint}\n"
        error_msg += f"{'='*70}\n"
        return error_msg


@dataclass
class StartupResult:
    """Resources acquired by a successful startup."""

    lock: ProcessLock
    database: Database
    store: MappingStore
    reconcile_report: ReconcileReport
    duration_ms: float = 0.0

    def close(self) -> None:
        """Dispose the database and release the lock."""
        self.database.dispose()
        self.lock.release()


def check_process_lock(config: Settings) -> ProcessLock:
    """
    Acquire the single-instance lock.

    Raises:
        StartupCheckError: If another relay instance holds the lock
    """
    lock_path = config.lock_file
    try:
        return acquire_process_lock(lock_path)
    except ProcessAlreadyRunningError as e:
        owner = f"PID {e.owner_pid}" if e.owner_pid else "an unknown process"
        raise StartupCheckError(
            f"Another relay instance is already running ({owner}).\n"
            f"Lock file: {e.lock_path}",
            "Stop the other instance first.\n"
            f"  - If no relay is running, delete the lock file: rm {e.lock_path}",
        ) from e
    except OSError as e:
        raise StartupCheckError(
            f"Cannot create lock file: {lock_path}\nError: {str(e)}",
            "Check filesystem and parent directory permissions",
        ) from e


def check_database(config: Settings) -> Database:
    """
    Create the mapping store schema and verify it answers queries.

    Raises:
        StartupCheckError: If the database cannot be opened
    """
    database = Database.from_settings(config)
    try:
        database.init()
    except PermissionError as e:
        database.dispose()
        raise StartupCheckError(
            f"Permission denied: {str(e)}",
            f"Create directory manually: mkdir -p {config.database_file.parent}\n"
            f"  Or set DATABASE_PATH to a writable location",
        ) from e
    except (OSError, SQLAlchemyError) as e:
        database.dispose()
        raise StartupCheckError(
            f"Cannot open mapping store: {config.database_file}\nError: {str(e)}",
            "The database file may be corrupted or locked by another tool",
        ) from e

    if not database.check_connection():
        database.dispose()
        raise StartupCheckError(
            f"Mapping store did not answer a test query: {config.database_file}",
            "Database may be corrupted or misconfigured",
        )
    return database


def run_startup_checks(config: Optional[Settings] = None) -> StartupResult:
    """
    Execute all startup checks.

    Runs checks in order of dependency:
    1. Single-instance lock
    2. Mapping store (schema + connectivity)
    3. Duplicate reconciliation

    Returns:
        StartupResult holding the lock, database and store

    Raises:
        StartupCheckError: If any critical check fails (the lock is released)
    """
    config = config or default_settings
    started = time.time()

    lock = check_process_lock(config)
    try:
        database = check_database(config)
    except StartupCheckError:
        lock.release()
        raise

    store = MappingStore(database)
    try:
        report = store.reconcile_duplicates()
    except SQLAlchemyError as e:
        database.dispose()
        lock.release()
        raise StartupCheckError(
            f"Failed to reconcile duplicate mappings\nError: {str(e)}",
            f"Inspect or remove the database file: {config.database_file}",
        ) from e

    if report.changed:
        logger.info(
            f"Reconciled mapping store: {report.projects_merged} projects merged, "
            f"{report.threads_merged} threads merged, "
            f"{report.paths_rewritten} paths rewritten"
        )

    duration_ms = (time.time() - started) * 1000
    logger.info(f"Startup checks passed ({duration_ms:.1f}ms)")
    return StartupResult(
        lock=lock,
        database=database,
        store=store,
        reconcile_report=report,
        duration_ms=duration_ms,
    )
