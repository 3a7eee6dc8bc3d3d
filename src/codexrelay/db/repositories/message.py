"""
Message repository.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from codexrelay.db.repositories.base import BaseRepository
from codexrelay.models.db import Message, MessageDirection


class MessageRepository(BaseRepository[Message]):
    """Repository for the relayed-message audit trail."""

    def __init__(self, session: Session):
        super().__init__(Message, session)

    def add(
        self,
        thread_id: int,
        direction: MessageDirection,
        content: str,
        chat_message_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> Message:
        return self.create(
            thread_id=thread_id,
            direction=MessageDirection(direction).value,
            content=content,
            chat_message_id=chat_message_id,
            event_type=event_type,
        )

    def recent(self, thread_id: int, limit: int = 50) -> List[Message]:
        """
        The latest messages of a thread, oldest first.

        Args:
            thread_id: Thread primary key
            limit: Maximum number of messages

        Returns:
            Up to `limit` messages in chronological order
        """
        rows = (
            self.session.query(Message)
            .filter(Message.thread_id == thread_id)
            .order_by(Message.id.desc())
            .limit(limit)
            .all()
        )
        return list(reversed(rows))

    def count_by_thread(self, thread_id: int) -> int:
        return self.session.query(Message).filter(Message.thread_id == thread_id).count()
