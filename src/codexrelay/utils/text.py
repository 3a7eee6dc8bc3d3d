"""Text helpers shared by the formatter, the replay path and echo suppression."""

from typing import Optional

DEFAULT_MESSAGE_LIMIT = 2000


def split_message(text: str, limit: int = DEFAULT_MESSAGE_LIMIT) -> list[str]:
    """
    Split text into chunks that fit the chat platform's message limit.

    Prefers splitting at a newline, then at a space; falls back to a hard cut
    when neither appears in the last 70% of the window.

    Examples:
        >>> split_message("short")
        ['short']
    """
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= limit:
            chunks.append(remaining)
            break

        split_at = remaining.rfind("\n", 0, limit)
        if split_at < limit * 0.3:
            split_at = remaining.rfind(" ", 0, limit)
        if split_at < limit * 0.3:
            split_at = limit

        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:].lstrip()

    return chunks


def truncate(text: str, max_length: int) -> str:
    """Cut text to max_length characters, marking the cut with '...'."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def normalize_text(text: str) -> Optional[str]:
    """Normalize line endings and surrounding whitespace; None if nothing is left."""
    normalized = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    return normalized or None
