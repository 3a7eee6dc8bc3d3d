"""
Startup reconciliation of duplicate mapping rows.

Older databases may hold several projects whose paths are different
spellings of the same directory, or several threads claiming the same Codex
session. Reconciliation folds each group into its earliest row. It is
idempotent and runs on every startup.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import delete, func, update
from sqlalchemy.orm import Session

from codexrelay.models.db import Message, Project, Thread
from codexrelay.utils.paths import canonicalize_project_path

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    """What a reconciliation pass changed."""

    projects_merged: int = 0
    threads_moved: int = 0
    paths_rewritten: int = 0
    threads_merged: int = 0
    messages_moved: int = 0

    @property
    def changed(self) -> bool:
        return any(
            (
                self.projects_merged,
                self.threads_moved,
                self.paths_rewritten,
                self.threads_merged,
                self.messages_moved,
            )
        )


def _merge_projects(session: Session, report: ReconcileReport) -> None:
    groups: dict[str, list[Project]] = defaultdict(list)
    for project in session.query(Project).order_by(Project.id).all():
        groups[canonicalize_project_path(project.project_path)].append(project)

    for canonical, projects in groups.items():
        keeper, losers = projects[0], projects[1:]
        loser_ids = [p.id for p in losers]

        if loser_ids:
            result = session.execute(
                update(Thread)
                .where(Thread.project_id.in_(loser_ids))
                .values(project_id=keeper.id)
                .execution_options(synchronize_session=False)
            )
            report.threads_moved += result.rowcount or 0
            session.execute(
                delete(Project)
                .where(Project.id.in_(loser_ids))
                .execution_options(synchronize_session=False)
            )
            report.projects_merged += len(loser_ids)
            logger.info(
                f"Merged {len(loser_ids)} duplicate project rows into "
                f"project {keeper.id} ({canonical})"
            )

        if keeper.project_path != canonical:
            session.execute(
                update(Project)
                .where(Project.id == keeper.id)
                .values(project_path=canonical)
                .execution_options(synchronize_session=False)
            )
            report.paths_rewritten += 1

    session.flush()


def _merge_threads(session: Session, report: ReconcileReport) -> None:
    duplicated = (
        session.query(Thread.agent_session_id)
        .filter(Thread.agent_session_id.is_not(None))
        .group_by(Thread.agent_session_id)
        .having(func.count(Thread.id) > 1)
        .all()
    )

    for (agent_session_id,) in duplicated:
        ids = [
            row.id
            for row in session.query(Thread.id)
            .filter(Thread.agent_session_id == agent_session_id)
            .order_by(Thread.id)
            .all()
        ]
        keeper_id, loser_ids = ids[0], ids[1:]

        result = session.execute(
            update(Message)
            .where(Message.thread_id.in_(loser_ids))
            .values(thread_id=keeper_id)
            .execution_options(synchronize_session=False)
        )
        report.messages_moved += result.rowcount or 0
        session.execute(
            delete(Thread)
            .where(Thread.id.in_(loser_ids))
            .execution_options(synchronize_session=False)
        )
        report.threads_merged += len(loser_ids)
        logger.info(
            f"Merged {len(loser_ids)} duplicate thread rows for session "
            f"{agent_session_id[:12]} into thread {keeper_id}"
        )

    session.flush()


def reconcile_duplicates(session: Session) -> ReconcileReport:
    """
    Fold duplicate project and thread rows into their earliest row.

    Args:
        session: Open session; the caller owns the transaction

    Returns:
        ReconcileReport describing the changes
    """
    report = ReconcileReport()
    _merge_projects(session, report)
    _merge_threads(session, report)
    session.expire_all()
    return report
