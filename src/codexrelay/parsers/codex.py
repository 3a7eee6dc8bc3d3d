"""
Codex session discovery.

Codex stores JSONL session logs under ~/.codex/sessions/YYYY/MM/DD/*.jsonl
(and ~/.codex/archived_sessions/). The first line of every log is a
session_meta record carrying the session id and the working directory the
session runs in, which is what groups sessions into projects.
"""

import logging
import os
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Optional

from dateutil import parser as date_parser

from codexrelay.parsers.records import (
    EventMsgRecord,
    ResponseItemRecord,
    SessionMetaRecord,
    TurnContextRecord,
    decode_record,
    extract_assistant_texts,
    extract_reasoning_text,
    extract_user_texts,
    extract_visible_user_message,
)
from codexrelay.utils.paths import canonicalize_project_path
from codexrelay.utils.text import truncate

logger = logging.getLogger(__name__)

MODEL_LOOKAHEAD_LINES = 20
DEFAULT_MAX_DEPTH = 5
TITLE_MAX_LENGTH = 90

_ROLLOUT_NAME = re.compile(r"rollout-(\d{4})-(\d{2})-(\d{2})T(\d{2})-(\d{2})")


@dataclass
class CodexSession:
    """One session log on disk."""

    id: str
    cwd: str
    timestamp: str
    model: Optional[str]
    file_path: Path

    @property
    def started_at(self) -> Optional[datetime]:
        """Parsed session timestamp, or None if it is missing or invalid."""
        if not self.timestamp:
            return None
        try:
            return date_parser.isoparse(self.timestamp)
        except (ValueError, TypeError):
            return None


@dataclass
class SessionMessage:
    """A chat-relevant message recovered from a session log."""

    timestamp: str
    role: str  # user | assistant
    kind: str  # text | reasoning
    text: str


def parse_session_meta(file_path: Path) -> Optional[CodexSession]:
    """
    Read the session identity from the head of a log file.

    Returns:
        CodexSession, or None if the file is unreadable or its first line is
        not a complete session_meta record
    """
    file_path = Path(file_path)
    head: list[str] = []
    try:
        with file_path.open("r", encoding="utf-8", errors="replace") as f:
            for idx, line in enumerate(f):
                if idx >= MODEL_LOOKAHEAD_LINES:
                    break
                head.append(line)
    except OSError as e:
        logger.debug(f"Cannot read session file {file_path}: {e}")
        return None

    if not head:
        return None

    meta = decode_record(head[0])
    if not isinstance(meta, SessionMetaRecord):
        return None

    model: Optional[str] = None
    for line in head[1:]:
        record = decode_record(line)
        if isinstance(record, TurnContextRecord) and record.model:
            model = record.model
            break

    return CodexSession(
        id=meta.id,
        cwd=meta.cwd,
        timestamp=meta.timestamp,
        model=model,
        file_path=file_path,
    )


def find_session_files(root: Path, max_depth: int = DEFAULT_MAX_DEPTH) -> list[Path]:
    """
    Recursively collect *.jsonl files below root.

    Missing directories and permission errors yield no files rather than
    raising.
    """
    files: list[Path] = []

    def _collect(directory: Path, depth: int) -> None:
        if depth > max_depth:
            return
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError:
            return
        for entry in entries:
            try:
                if entry.is_dir():
                    _collect(Path(entry.path), depth + 1)
                elif entry.name.endswith(".jsonl"):
                    files.append(Path(entry.path))
            except OSError:
                continue

    _collect(Path(root).expanduser(), 0)
    return files


def _sort_key(session: CodexSession) -> tuple[datetime, str]:
    started = session.started_at
    if started is None:
        started = datetime.min.replace(tzinfo=UTC)
    elif started.tzinfo is None:
        started = started.replace(tzinfo=UTC)
    return (started, session.timestamp)


def scan_all_sessions(
    sessions_dir: Path,
    archived_dir: Optional[Path] = None,
    include_archived: bool = False,
) -> dict[str, list[CodexSession]]:
    """
    Scan session logs and group them by working directory.

    Args:
        sessions_dir: Live sessions directory
        archived_dir: Archived sessions directory
        include_archived: Whether to include archived_dir in the scan

    Returns:
        Mapping of cwd -> sessions, newest first
    """
    roots = [Path(sessions_dir)]
    if include_archived and archived_dir is not None:
        roots.append(Path(archived_dir))

    grouped: dict[str, list[CodexSession]] = {}
    for root in roots:
        for file_path in find_session_files(root):
            session = parse_session_meta(file_path)
            if session:
                grouped.setdefault(session.cwd, []).append(session)

    for sessions in grouped.values():
        sessions.sort(key=_sort_key, reverse=True)

    total = sum(len(s) for s in grouped.values())
    logger.info(f"Session scan complete: {len(grouped)} projects, {total} sessions")
    return grouped


def get_sessions_for_project(
    project_path: str,
    sessions_dir: Path,
    archived_dir: Optional[Path] = None,
    include_archived: bool = False,
) -> list[CodexSession]:
    """Sessions whose canonical working directory matches project_path."""
    target = canonicalize_project_path(project_path)
    matches: list[CodexSession] = []
    for cwd, sessions in scan_all_sessions(
        sessions_dir, archived_dir, include_archived
    ).items():
        if canonicalize_project_path(cwd) == target:
            matches.extend(sessions)
    matches.sort(key=_sort_key, reverse=True)
    return matches


def parse_session_messages(file_path: Path) -> list[SessionMessage]:
    """
    Extract the user and assistant messages of a session log, in file order.

    Developer-role items and injected context are skipped.
    """
    messages: list[SessionMessage] = []
    try:
        with Path(file_path).open("r", encoding="utf-8", errors="replace") as f:
            lines = f.readlines()
    except OSError as e:
        logger.error(f"Failed to read session file {file_path}: {e}")
        return messages

    for line in lines:
        record = decode_record(line)
        if record is None:
            continue
        timestamp = getattr(record, "timestamp", "") or ""

        if isinstance(record, ResponseItemRecord) and record.item_type == "reasoning":
            reasoning = extract_reasoning_text(record)
            if reasoning:
                messages.append(
                    SessionMessage(timestamp, "assistant", "reasoning", reasoning)
                )
            continue

        # user_message events duplicate the response_item user turn
        if isinstance(record, EventMsgRecord) and record.event_type == "user_message":
            continue

        for text in extract_user_texts(record):
            visible = extract_visible_user_message(text)
            if visible:
                messages.append(SessionMessage(timestamp, "user", "text", visible))

        for text in extract_assistant_texts(record):
            messages.append(SessionMessage(timestamp, "assistant", "text", text))

    return messages


def get_session_display_name(session: CodexSession) -> str:
    """
    Short label for a session.

    Examples:
        rollout-2026-02-24T14-16-49-019c8e81-....jsonl -> "2026-02-24 14:16"
    """
    match = _ROLLOUT_NAME.search(Path(session.file_path).name)
    if match:
        year, month, day, hour, minute = match.groups()
        return f"{year}-{month}-{day} {hour}:{minute}"
    return session.id[:12]


def get_session_title(session: CodexSession) -> str:
    """Thread title: the first visible user message, else the display name."""
    for message in parse_session_messages(session.file_path):
        if message.role == "user" and message.kind == "text":
            first_line = message.text.splitlines()[0].strip()
            if first_line:
                return truncate(first_line, TITLE_MAX_LENGTH)
    return get_session_display_name(session)
