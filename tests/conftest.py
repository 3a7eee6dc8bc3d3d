"""
Pytest configuration and fixtures for codex-relay tests.

Provides a fresh SQLite mapping store per test, the in-memory chat platform,
a scripted agent runtime, and builders for Codex session log files.
"""

import json
from pathlib import Path
from typing import Any, Generator, Optional

import pytest

from codexrelay.agent.base import AgentEvent
from codexrelay.chat.simulator import SimulatedChatPlatform
from codexrelay.config import Settings
from codexrelay.db.connection import Database
from codexrelay.store import MappingStore


class Records:
    """JSONL line builders for Codex session logs."""

    TIMESTAMP = "2026-01-15T10:30:00.000Z"

    @staticmethod
    def dump(data: dict[str, Any]) -> str:
        return json.dumps(data, ensure_ascii=False)

    @classmethod
    def meta(cls, session_id: str, cwd: str, timestamp: Optional[str] = None) -> str:
        return cls.dump(
            {
                "timestamp": timestamp or cls.TIMESTAMP,
                "type": "session_meta",
                "payload": {
                    "id": session_id,
                    "cwd": cwd,
                    "timestamp": timestamp or cls.TIMESTAMP,
                    "originator": "codex_cli_rs",
                    "cli_version": "0.63.0",
                    "model_provider": "openai",
                },
            }
        )

    @classmethod
    def turn_context(cls, model: str = "gpt-5-codex") -> str:
        return cls.dump(
            {
                "timestamp": cls.TIMESTAMP,
                "type": "turn_context",
                "payload": {"cwd": "/tmp", "model": model},
            }
        )

    @classmethod
    def user(cls, text: str) -> str:
        return cls.dump(
            {
                "timestamp": cls.TIMESTAMP,
                "type": "response_item",
                "payload": {
                    "type": "message",
                    "role": "user",
                    "content": [{"type": "input_text", "text": text}],
                },
            }
        )

    @classmethod
    def developer(cls, text: str) -> str:
        return cls.dump(
            {
                "timestamp": cls.TIMESTAMP,
                "type": "response_item",
                "payload": {
                    "type": "message",
                    "role": "developer",
                    "content": [{"type": "input_text", "text": text}],
                },
            }
        )

    @classmethod
    def assistant(cls, text: str) -> str:
        return cls.dump(
            {
                "timestamp": cls.TIMESTAMP,
                "type": "response_item",
                "payload": {
                    "type": "message",
                    "role": "assistant",
                    "content": [{"type": "output_text", "text": text}],
                },
            }
        )

    @classmethod
    def reasoning(cls, text: str) -> str:
        return cls.dump(
            {
                "timestamp": cls.TIMESTAMP,
                "type": "response_item",
                "payload": {
                    "type": "reasoning",
                    "summary": [{"type": "summary_text", "text": text}],
                },
            }
        )

    @classmethod
    def event(cls, event_type: str, message: Optional[str] = None) -> str:
        payload: dict[str, Any] = {"type": event_type}
        if message is not None:
            payload["message"] = message
        return cls.dump(
            {"timestamp": cls.TIMESTAMP, "type": "event_msg", "payload": payload}
        )


class SessionLog:
    """A session log file on disk that tests append to."""

    def __init__(self, path: Path, session_id: str, cwd: str):
        self.path = path
        self.session_id = session_id
        self.cwd = cwd

    def append(self, *lines: str) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            for line in lines:
                f.write(line + "\n")

    def append_raw(self, data: bytes) -> None:
        with self.path.open("ab") as f:
            f.write(data)


class FakeAgentThread:
    """Scripted agent thread: yields the given event dicts for every turn."""

    def __init__(
        self,
        events: list[dict[str, Any]],
        thread_id: Optional[str] = None,
        error: Optional[Exception] = None,
        gate: Optional[Any] = None,
    ):
        self.id = thread_id
        self.events = events
        self.error = error
        self.gate = gate
        self.prompts: list[str] = []

    async def run_streamed(self, prompt: str):
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        for data in self.events:
            event = AgentEvent(type=data["type"], data=data)
            if event.type == "thread.started" and event.thread_id:
                self.id = event.thread_id
            yield event
        if self.error is not None:
            raise self.error


class FakeAgentRuntime:
    """AgentRuntime returning FakeAgentThreads driven by `script`."""

    def __init__(self) -> None:
        self.script: list[dict[str, Any]] = []
        self.error: Optional[Exception] = None
        self.gate: Optional[Any] = None
        self.opened: list[dict[str, Any]] = []
        self.threads: list[FakeAgentThread] = []

    def open_thread(
        self,
        working_directory: str,
        thread_id: Optional[str] = None,
        model: Optional[str] = None,
        approval_mode: Optional[str] = None,
    ) -> FakeAgentThread:
        self.opened.append(
            {
                "working_directory": working_directory,
                "thread_id": thread_id,
                "model": model,
                "approval_mode": approval_mode,
            }
        )
        thread = FakeAgentThread(
            self.script, thread_id=thread_id, error=self.error, gate=self.gate
        )
        self.threads.append(thread)
        return thread


@pytest.fixture
def records() -> type[Records]:
    return Records


@pytest.fixture
def sessions_dir(tmp_path: Path) -> Path:
    path = tmp_path / "codex" / "sessions"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work" / "my-project"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def make_session(sessions_dir: Path):
    """
    Factory writing a session log (meta + turn context) under sessions_dir.

    Files are laid out like the Codex CLI does:
    YYYY/MM/DD/rollout-YYYY-MM-DDTHH-MM-SS-<id>.jsonl
    """

    def _make(
        session_id: str,
        cwd: str,
        timestamp: str = Records.TIMESTAMP,
        model: Optional[str] = "gpt-5-codex",
        root: Optional[Path] = None,
    ) -> SessionLog:
        day_dir = (root or sessions_dir) / timestamp[0:4] / timestamp[5:7] / timestamp[8:10]
        day_dir.mkdir(parents=True, exist_ok=True)
        stamp = timestamp[:19].replace(":", "-")
        path = day_dir / f"rollout-{stamp}-{session_id}.jsonl"
        log = SessionLog(path, session_id, str(cwd))
        log.append(Records.meta(session_id, str(cwd), timestamp))
        if model:
            log.append(Records.turn_context(model))
        return log

    return _make


@pytest.fixture
def settings(tmp_path: Path, sessions_dir: Path) -> Settings:
    """Settings isolated under tmp_path with fast timers."""
    return Settings(
        codex_home=str(tmp_path / "codex"),
        database_path=str(tmp_path / "state" / "codex-relay.db"),
        watch_debounce_seconds=0.01,
        watch_poll_interval=0.05,
        replay_batch_delay=0.0,
        log_file_enabled=False,
    )


@pytest.fixture
def database(tmp_path: Path) -> Generator[Database, None, None]:
    """Create a fresh SQLite mapping store for a test."""
    db = Database(f"sqlite:///{tmp_path / 'relay.db'}")
    db.init()
    yield db
    db.dispose()


@pytest.fixture
def store(database: Database) -> MappingStore:
    return MappingStore(database)


@pytest.fixture
def chat() -> SimulatedChatPlatform:
    return SimulatedChatPlatform()


@pytest.fixture
def runtime() -> FakeAgentRuntime:
    return FakeAgentRuntime()
