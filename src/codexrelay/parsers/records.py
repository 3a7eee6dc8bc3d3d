"""
Codex session log records.

Each line of a session log is one JSON object with a `type` and a `payload`.
Lines are decoded into a closed set of record variants; anything with an
unknown shape becomes an UnrecognizedRecord and lines that are not JSON
objects decode to None. Unknown fields are ignored throughout.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from codexrelay.utils.text import normalize_text


@dataclass
class SessionMetaRecord:
    """First line of a session log: session identity and working directory."""

    id: str
    cwd: str
    timestamp: str = ""
    originator: Optional[str] = None
    cli_version: Optional[str] = None
    model_provider: Optional[str] = None
    type: str = "session_meta"


@dataclass
class TurnContextRecord:
    """Per-turn context (model metadata)."""

    model: Optional[str] = None
    type: str = "turn_context"


@dataclass
class ResponseItemRecord:
    """A model response item: message, reasoning, function call, ..."""

    item_type: str
    role: Optional[str] = None
    content: list[Any] = field(default_factory=list)
    summary: list[Any] = field(default_factory=list)
    phase: Optional[str] = None
    timestamp: str = ""
    type: str = "response_item"


@dataclass
class EventMsgRecord:
    """A runtime event: user_message, agent_message, task_complete, ..."""

    event_type: str
    message: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""
    type: str = "event_msg"


@dataclass
class UnrecognizedRecord:
    """A JSON object whose shape is not one of the known variants."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)


SessionRecord = Union[
    SessionMetaRecord,
    TurnContextRecord,
    ResponseItemRecord,
    EventMsgRecord,
    UnrecognizedRecord,
]


def _load_object(line: str) -> Optional[dict[str, Any]]:
    if not line or not line.strip():
        return None
    try:
        data = json.loads(line)
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return data


def is_complete_record(fragment: str) -> bool:
    """True if the fragment is, on its own, one complete JSON object."""
    return _load_object(fragment) is not None


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def decode_record(line: str) -> Optional[SessionRecord]:
    """
    Decode one log line.

    Returns:
        A record variant, or None for blank / malformed / non-object lines
    """
    data = _load_object(line)
    if data is None:
        return None

    rec_type = data.get("type")
    payload = data.get("payload")
    if not isinstance(payload, dict):
        payload = {}
    timestamp = data.get("timestamp") if isinstance(data.get("timestamp"), str) else ""

    if rec_type == "session_meta":
        session_id = payload.get("id") or payload.get("session_id")
        cwd = payload.get("cwd")
        if isinstance(session_id, str) and session_id and isinstance(cwd, str):
            return SessionMetaRecord(
                id=session_id,
                cwd=cwd,
                timestamp=_str_or_none(payload.get("timestamp")) or timestamp,
                originator=_str_or_none(payload.get("originator")),
                cli_version=_str_or_none(payload.get("cli_version")),
                model_provider=_str_or_none(payload.get("model_provider")),
            )

    elif rec_type == "turn_context":
        return TurnContextRecord(model=_str_or_none(payload.get("model")))

    elif rec_type == "response_item":
        item_type = payload.get("type")
        if isinstance(item_type, str):
            content = payload.get("content")
            summary = payload.get("summary")
            return ResponseItemRecord(
                item_type=item_type,
                role=_str_or_none(payload.get("role")),
                content=content if isinstance(content, list) else [],
                summary=summary if isinstance(summary, list) else [],
                phase=_str_or_none(payload.get("phase")),
                timestamp=timestamp,
            )

    elif rec_type == "event_msg":
        event_type = payload.get("type")
        if isinstance(event_type, str):
            return EventMsgRecord(
                event_type=event_type,
                message=_str_or_none(payload.get("message")),
                payload=payload,
                timestamp=timestamp,
            )

    return UnrecognizedRecord(type=str(rec_type or ""), payload=payload)


def _content_texts(content: list[Any], part_type: str) -> str:
    texts = []
    for item in content:
        if isinstance(item, dict) and item.get("type") == part_type:
            text = item.get("text")
            if isinstance(text, str) and text:
                texts.append(text)
        elif isinstance(item, str) and item:
            texts.append(item)
    return "\n".join(texts)


def extract_user_texts(record: Optional[SessionRecord]) -> list[str]:
    """User-authored texts carried by a record (developer items are skipped)."""
    if isinstance(record, ResponseItemRecord):
        if record.item_type == "message" and record.role == "user":
            text = _content_texts(record.content, "input_text")
            return [text] if text else []
    elif isinstance(record, EventMsgRecord):
        if record.event_type == "user_message" and record.message:
            return [record.message]
    return []


def extract_assistant_texts(record: Optional[SessionRecord]) -> list[str]:
    """Assistant texts carried by a record."""
    if isinstance(record, ResponseItemRecord):
        if record.item_type == "message" and record.role == "assistant":
            text = _content_texts(record.content, "output_text")
            return [text] if text else []
    elif isinstance(record, EventMsgRecord):
        if record.event_type == "agent_message" and record.message:
            return [record.message]
    return []


def extract_reasoning_text(record: Optional[SessionRecord]) -> Optional[str]:
    """Joined reasoning summary text of a reasoning item."""
    if not isinstance(record, ResponseItemRecord) or record.item_type != "reasoning":
        return None
    texts = [
        item.get("text")
        for item in record.summary
        if isinstance(item, dict)
        and item.get("type") == "summary_text"
        and isinstance(item.get("text"), str)
        and item.get("text")
    ]
    return "\n".join(texts) or None


# Context blocks the CLI injects into the user turn
_INJECTED_BLOCKS = re.compile(
    r"<(environment_context|user_instructions|INSTRUCTIONS|turn_aborted)>.*?</\1>",
    re.DOTALL,
)
_IDE_REQUEST_MARKER = "## My request for Codex:"
_AGENTS_PREAMBLE = "# AGENTS.md instructions"


def extract_visible_user_message(text: str) -> Optional[str]:
    """
    Strip injected context from a user text and return what the user typed.

    Returns:
        The visible message, or None if the text is entirely injected context
    """
    if _IDE_REQUEST_MARKER in text:
        text = text.rsplit(_IDE_REQUEST_MARKER, 1)[1]

    text = _INJECTED_BLOCKS.sub("", text)
    normalized = normalize_text(text)
    if normalized is None:
        return None
    if normalized.startswith(_AGENTS_PREAMBLE):
        return None
    return normalized
