"""
Codex session log parsing.

Record decoding for individual log lines and discovery of session logs on
disk.
"""

from codexrelay.parsers.codex import (
    CodexSession,
    SessionMessage,
    find_session_files,
    get_session_display_name,
    get_session_title,
    get_sessions_for_project,
    parse_session_messages,
    parse_session_meta,
    scan_all_sessions,
)
from codexrelay.parsers.records import (
    EventMsgRecord,
    ResponseItemRecord,
    SessionMetaRecord,
    SessionRecord,
    TurnContextRecord,
    UnrecognizedRecord,
    decode_record,
    is_complete_record,
)

__all__ = [
    "CodexSession",
    "SessionMessage",
    "find_session_files",
    "get_session_display_name",
    "get_session_title",
    "get_sessions_for_project",
    "parse_session_messages",
    "parse_session_meta",
    "scan_all_sessions",
    "EventMsgRecord",
    "ResponseItemRecord",
    "SessionMetaRecord",
    "SessionRecord",
    "TurnContextRecord",
    "UnrecognizedRecord",
    "decode_record",
    "is_complete_record",
]
