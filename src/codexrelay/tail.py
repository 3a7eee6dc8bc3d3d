"""
Incremental reading of append-only session logs.

A TailCursor remembers how far into a file we have read and any trailing
text that has not yet been terminated by a newline. read_new_lines turns the
bytes appended since the last call into complete logical lines, so a line
is never emitted twice and never emitted in pieces.
"""

import codecs
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from codexrelay.parsers.records import is_complete_record

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    """Type of file change detected."""

    APPEND = "append"  # New content added to end
    TRUNCATE = "truncate"  # File shrank below our offset (reread from start)
    UNCHANGED = "unchanged"  # No changes detected


@dataclass
class TailCursor:
    """Read position within one session log."""

    offset: int = 0
    """Byte offset of the first byte not yet consumed."""

    partial: str = ""
    """Trailing fragment read but not yet terminated by a newline."""

    last_event_at: Optional[datetime] = None
    """When data was last read from the file (drives follow-up polling)."""

    def reset(self) -> None:
        self.offset = 0
        self.partial = ""


def detect_change(size: int, cursor: TailCursor) -> ChangeType:
    """
    Classify the file's current size against the cursor.

    Examples:
        >>> detect_change(10, TailCursor(offset=10))
        <ChangeType.UNCHANGED: 'unchanged'>
        >>> detect_change(4, TailCursor(offset=10))
        <ChangeType.TRUNCATE: 'truncate'>
    """
    if size < cursor.offset:
        return ChangeType.TRUNCATE
    if size == cursor.offset:
        return ChangeType.UNCHANGED
    return ChangeType.APPEND


def _split_lines(text: str) -> tuple[list[str], str]:
    parts = text.split("\n")
    trailing = parts.pop()
    lines = [part.rstrip("\r") for part in parts]

    # A trailing fragment that already parses is a whole record whose
    # newline has not been written yet
    if trailing.strip() and is_complete_record(trailing):
        lines.append(trailing.rstrip("\r"))
        trailing = ""

    return [line for line in lines if line.strip()], trailing


def read_new_lines(file_path: Path, cursor: TailCursor) -> list[str]:
    """
    Read the complete lines appended since the cursor position.

    Args:
        file_path: Session log to read
        cursor: Read position, advanced in place

    Returns:
        Complete, non-blank lines in file order (empty if nothing new)
    """
    try:
        size = Path(file_path).stat().st_size
    except OSError as e:
        logger.debug(f"Cannot stat {file_path}: {e}")
        return []

    change = detect_change(size, cursor)
    if change == ChangeType.TRUNCATE:
        logger.info(
            f"File shrank below read offset ({size} < {cursor.offset}), "
            f"rereading {Path(file_path).name} from the start"
        )
        cursor.reset()
    elif change == ChangeType.UNCHANGED:
        return []

    try:
        with open(file_path, "rb") as f:
            f.seek(cursor.offset)
            data = f.read(size - cursor.offset)
    except OSError as e:
        logger.warning(f"Failed to read {file_path}: {e}")
        return []

    if not data:
        return []

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    text = decoder.decode(data, final=False)
    pending_bytes, _ = decoder.getstate()

    # Bytes of a multi-byte character cut at the end of the range stay unread
    cursor.offset += len(data) - len(pending_bytes)

    lines, cursor.partial = _split_lines(cursor.partial + text)
    return lines
