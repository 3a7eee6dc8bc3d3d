"""
SQLAlchemy database models for codex-relay.

These models hold the durable mapping between Codex projects/sessions and
chat channels/threads, plus an audit trail of relayed messages.
"""

import enum
from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class ThreadStatus(str, enum.Enum):
    """Lifecycle state of a mapped thread."""

    ACTIVE = "active"  # Session running or waiting for input
    COMPLETED = "completed"  # Last turn finished
    ERROR = "error"  # Last interactive turn failed


class MessageDirection(str, enum.Enum):
    """Which way a relayed message travelled."""

    USER_TO_AGENT = "user_to_agent"
    AGENT_TO_CHAT = "agent_to_chat"


class Project(Base):
    """A Codex working directory mapped to one chat channel."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    project_path: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    project_name: Mapped[str] = mapped_column(String(255), nullable=False)
    model: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    approval_mode: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    # Relationships
    threads: Mapped[list["Thread"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, path={self.project_path!r})>"


class Thread(Base):
    """A chat thread, linked to at most one Codex session."""

    __tablename__ = "threads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_thread_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False
    )
    agent_session_id: Mapped[Optional[str]] = mapped_column(
        String(128), unique=True, nullable=True
    )
    project_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    thread_name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ThreadStatus.ACTIVE.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'completed', 'error')", name="ck_threads_status"
        ),
    )

    # Relationships
    project: Mapped["Project"] = relationship(back_populates="threads")
    messages: Mapped[list["Message"]] = relationship(
        back_populates="thread",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Thread(id={self.id}, chat_thread_id={self.chat_thread_id!r}, "
            f"session={self.agent_session_id!r})>"
        )


class Message(Base):
    """Audit record of one relayed message."""

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    thread_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("threads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chat_message_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    direction: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    event_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "direction IN ('user_to_agent', 'agent_to_chat')",
            name="ck_messages_direction",
        ),
    )

    # Relationships
    thread: Mapped["Thread"] = relationship(back_populates="messages")

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, direction={self.direction!r})>"
