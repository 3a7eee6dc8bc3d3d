"""
Tests for the session directory watcher.

The watchdog observer is not started here; filesystem events are fed to
the watcher directly so tests are deterministic.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import Mock

from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from codexrelay.watch import SessionFileHandler, SessionWatcher


class Recorder:
    """Collects watcher callbacks."""

    def __init__(self) -> None:
        self.events: list[tuple] = []

    async def on_new_session(self, session) -> None:
        self.events.append(("new", session.id))

    async def on_session_update(self, session, lines) -> None:
        self.events.append(("update", session.id, list(lines)))

    @property
    def updates(self) -> list[tuple]:
        return [e for e in self.events if e[0] == "update"]


def _watcher(sessions_dir: Path, recorder: Recorder, **kwargs) -> SessionWatcher:
    kwargs.setdefault("debounce_seconds", 0.01)
    kwargs.setdefault("poll_interval", 10.0)
    return SessionWatcher(
        sessions_dir, recorder.on_new_session, recorder.on_session_update, **kwargs
    )


class TestSessionFileHandler:
    """Tests for forwarding watchdog events to the loop."""

    def test_forwards_jsonl_events(self):
        loop = Mock()
        callback = Mock()
        handler = SessionFileHandler(loop, callback)

        handler.on_created(FileCreatedEvent("/s/a.jsonl"))
        handler.on_modified(FileModifiedEvent("/s/b.jsonl"))
        handler.on_moved(FileMovedEvent("/s/tmp", "/s/c.jsonl"))

        forwarded = [c.args for c in loop.call_soon_threadsafe.call_args_list]
        assert forwarded == [
            (callback, Path("/s/a.jsonl")),
            (callback, Path("/s/b.jsonl")),
            (callback, Path("/s/c.jsonl")),
        ]

    def test_ignores_directories_and_other_files(self):
        loop = Mock()
        handler = SessionFileHandler(loop, Mock())

        handler.on_created(DirCreatedEvent("/s/2026"))
        handler.on_modified(FileModifiedEvent("/s/notes.txt"))

        loop.call_soon_threadsafe.assert_not_called()

    def test_closed_loop_does_not_raise(self):
        loop = Mock()
        loop.call_soon_threadsafe.side_effect = RuntimeError("Event loop is closed")
        handler = SessionFileHandler(loop, Mock())

        handler.on_modified(FileModifiedEvent("/s/a.jsonl"))


class TestSessionWatcher:
    """Tests for SessionWatcher."""

    def test_new_file_announced_then_replayed(self, sessions_dir, make_session, records):
        recorder = Recorder()
        log = make_session("sess-1", "/home/dev/proj")
        log.append(records.user("hello"))

        async def scenario():
            watcher = _watcher(sessions_dir, recorder)
            watcher.on_file_event(log.path)
            await asyncio.sleep(0.1)
            await watcher.wait_for_handlers()
            watcher.stop()

        asyncio.run(scenario())

        assert recorder.events[0] == ("new", "sess-1")
        assert len(recorder.updates) == 1
        lines = recorder.updates[0][2]
        assert len(lines) == 3
        assert lines[-1] == records.user("hello")

    def test_seen_file_reports_only_appended_lines(
        self, sessions_dir, make_session, records
    ):
        recorder = Recorder()
        log = make_session("sess-1", "/home/dev/proj")
        log.append(records.user("old"))

        async def scenario():
            watcher = _watcher(sessions_dir, recorder)
            watcher.mark_seen(log.path)
            log.append(records.assistant("new"))
            watcher.on_file_event(log.path)
            await asyncio.sleep(0.1)
            await watcher.wait_for_handlers()
            watcher.stop()

        asyncio.run(scenario())

        assert recorder.events == [("update", "sess-1", [records.assistant("new")])]

    def test_events_are_debounced(self, sessions_dir, make_session, records):
        recorder = Recorder()
        log = make_session("sess-1", "/home/dev/proj")

        async def scenario():
            watcher = _watcher(sessions_dir, recorder, debounce_seconds=0.05)
            watcher.mark_seen(log.path)
            for i in range(3):
                log.append(records.user(f"msg {i}"))
                watcher.on_file_event(log.path)
                await asyncio.sleep(0.01)
            await asyncio.sleep(0.2)
            await watcher.wait_for_handlers()
            watcher.stop()

        asyncio.run(scenario())

        assert len(recorder.updates) == 1
        assert len(recorder.updates[0][2]) == 3

    def test_poll_picks_up_appends_without_events(
        self, sessions_dir, make_session, records
    ):
        recorder = Recorder()
        log = make_session("sess-1", "/home/dev/proj")

        async def scenario():
            watcher = _watcher(sessions_dir, recorder, poll_interval=0.03)
            watcher.mark_seen(log.path)
            log.append(records.user("first"))
            watcher.on_file_event(log.path)
            await asyncio.sleep(0.05)
            log.append(records.user("second"))
            await asyncio.sleep(0.2)
            await watcher.wait_for_handlers()
            watcher.stop()

        asyncio.run(scenario())

        delivered = [line for update in recorder.updates for line in update[2]]
        assert delivered == [records.user("first"), records.user("second")]

    def test_polling_stops_after_idle_window(self, sessions_dir, make_session, records):
        recorder = Recorder()
        log = make_session("sess-1", "/home/dev/proj")
        start = datetime(2026, 1, 15, 10, 0, tzinfo=UTC)
        now = [start]

        async def scenario():
            watcher = _watcher(
                sessions_dir,
                recorder,
                poll_window_seconds=60,
                clock=lambda: now[0],
            )
            watcher.on_file_event(log.path)
            await asyncio.sleep(0.05)
            assert str(log.path) in watcher._polls

            now[0] = start + timedelta(seconds=61)
            watcher.process_update(log.path)
            assert str(log.path) not in watcher._polls

            await watcher.wait_for_handlers()
            watcher.stop()

        asyncio.run(scenario())

    def test_deleted_file_stops_polling(self, sessions_dir, make_session):
        recorder = Recorder()
        log = make_session("sess-1", "/home/dev/proj")

        async def scenario():
            watcher = _watcher(sessions_dir, recorder, poll_interval=0.03)
            watcher.on_file_event(log.path)
            await asyncio.sleep(0.05)
            assert str(log.path) in watcher._polls

            log.path.unlink()
            await asyncio.sleep(0.1)
            state = (
                watcher.cursor_for(log.path),
                str(log.path) in watcher._polls,
                str(log.path) in watcher._sessions,
            )
            await watcher.wait_for_handlers()
            watcher.stop()
            return state

        assert asyncio.run(scenario()) == (None, False, False)

    def test_file_without_meta_retried_later(self, sessions_dir, records):
        recorder = Recorder()
        path = sessions_dir / "rollout-pending.jsonl"
        path.write_text("")

        async def scenario():
            watcher = _watcher(sessions_dir, recorder)
            watcher.on_file_event(path)
            await asyncio.sleep(0.05)
            assert watcher.cursor_for(path) is None

            path.write_text(records.meta("late", "/home/dev/proj") + "\n")
            watcher.on_file_event(path)
            await asyncio.sleep(0.05)
            await watcher.wait_for_handlers()
            watcher.stop()

        asyncio.run(scenario())

        assert recorder.events[0] == ("new", "late")

    def test_handler_failure_is_logged(self, sessions_dir, make_session, caplog):
        log = make_session("sess-1", "/home/dev/proj")

        async def failing_new(session):
            raise RuntimeError("boom")

        async def on_update(session, lines):
            return None

        async def scenario():
            watcher = SessionWatcher(
                sessions_dir, failing_new, on_update, debounce_seconds=0.01
            )
            watcher.on_file_event(log.path)
            await asyncio.sleep(0.05)
            await watcher.wait_for_handlers()
            watcher.stop()

        with caplog.at_level(logging.ERROR, logger="codexrelay.watch"):
            asyncio.run(scenario())

        assert "Session handler failed" in caplog.text

    def test_start_with_missing_directory(self, tmp_path):
        recorder = Recorder()

        async def scenario():
            watcher = _watcher(tmp_path / "missing", recorder)
            return watcher.start(), watcher.is_running

        assert asyncio.run(scenario()) == (False, False)

    def test_start_and_stop(self, sessions_dir):
        recorder = Recorder()

        async def scenario():
            watcher = _watcher(sessions_dir, recorder)
            started = watcher.start()
            running = watcher.is_running
            watcher.stop()
            return started, running, watcher.is_running

        assert asyncio.run(scenario()) == (True, True, False)
