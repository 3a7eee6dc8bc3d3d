"""
Session directory watcher.

Monitors the Codex sessions directory for new and growing .jsonl logs and
hands complete lines to the sync layer. Filesystem events arrive on the
watchdog observer thread and are marshalled onto the asyncio loop; all
per-file state (cursors, debounce timers, poll timers) lives on the loop.
"""

import asyncio
import logging
import platform
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler

# PollingObserver on macOS avoids fsevents crashes on rapid start/stop
if platform.system() == "Darwin":  # macOS
    from watchdog.observers.polling import PollingObserver as Observer
else:
    from watchdog.observers import Observer

from codexrelay.parsers.codex import CodexSession, parse_session_meta
from codexrelay.tail import TailCursor, read_new_lines

logger = logging.getLogger(__name__)

NewSessionHandler = Callable[[CodexSession], Awaitable[Any]]
SessionUpdateHandler = Callable[[CodexSession, list[str]], Awaitable[Any]]


class SessionFileHandler(FileSystemEventHandler):
    """
    Watchdog event handler forwarding .jsonl events to the event loop.

    Runs on the observer thread; only touches the loop through
    call_soon_threadsafe.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        callback: Callable[[Path], None],
    ):
        super().__init__()
        self.loop = loop
        self.callback = callback

    def _forward(self, path: str) -> None:
        if not path.endswith(".jsonl"):
            return
        try:
            self.loop.call_soon_threadsafe(self.callback, Path(path))
        except RuntimeError:
            # Loop already closed during shutdown
            logger.debug(f"Dropping file event for {path}: event loop closed")

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file creation events."""
        if not event.is_directory:
            self._forward(str(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle file modification events."""
        if not event.is_directory:
            self._forward(str(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle file move/rename events (the destination is what we tail)."""
        if not event.is_directory:
            self._forward(str(event.dest_path))


class SessionWatcher:
    """
    Tails every session log under a directory.

    Files marked seen at startup only report data appended afterwards. A
    file first observed while running is replayed from offset 0: its
    session is announced with on_new_session, then its lines are delivered
    with on_session_update.
    """

    def __init__(
        self,
        sessions_dir: Path,
        on_new_session: NewSessionHandler,
        on_session_update: SessionUpdateHandler,
        debounce_seconds: float = 1.5,
        poll_interval: float = 3.0,
        poll_window_seconds: float = 6 * 60 * 60,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.sessions_dir = Path(sessions_dir).expanduser()
        self.on_new_session = on_new_session
        self.on_session_update = on_session_update
        self.debounce_seconds = debounce_seconds
        self.poll_interval = poll_interval
        self.poll_window_seconds = poll_window_seconds
        self._clock = clock or (lambda: datetime.now(UTC))

        self._cursors: dict[str, TailCursor] = {}
        self._sessions: dict[str, CodexSession] = {}
        self._debounce: dict[str, asyncio.TimerHandle] = {}
        self._polls: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._observer: Optional[Any] = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def cursor_for(self, file_path: Path) -> Optional[TailCursor]:
        return self._cursors.get(str(file_path))

    def mark_seen(self, file_path: Path) -> None:
        """Only process data appended to this file from now on."""
        key = str(file_path)
        try:
            size = Path(file_path).stat().st_size
        except OSError:
            size = 0
        self._cursors[key] = TailCursor(offset=size)

    def start(self) -> bool:
        """
        Start watching. Must be called from a running event loop.

        Returns:
            False (and logs a warning) if the sessions directory does not exist
        """
        self._loop = asyncio.get_running_loop()

        if not self.sessions_dir.is_dir():
            logger.warning(
                f"Codex sessions directory not found, watcher not started: "
                f"{self.sessions_dir}"
            )
            return False

        handler = SessionFileHandler(self._loop, self.on_file_event)
        observer = Observer()
        observer.schedule(handler, str(self.sessions_dir), recursive=True)
        observer.start()
        self._observer = observer

        logger.info(f"Session watcher started: {self.sessions_dir}")
        return True

    def stop(self) -> None:
        """Stop the observer and cancel every pending timer."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

        for handle in list(self._debounce.values()) + list(self._polls.values()):
            handle.cancel()
        self._debounce.clear()
        self._polls.clear()
        self._cursors.clear()
        self._sessions.clear()

        logger.info("Session watcher stopped")

    async def wait_for_handlers(self) -> None:
        """Wait until every dispatched handler call has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def on_file_event(self, file_path: Path) -> None:
        """
        Debounce a filesystem event for file_path.

        Each event re-arms the timer so the file is read once the writer
        has been quiet for debounce_seconds.
        """
        key = str(file_path)
        existing = self._debounce.pop(key, None)
        if existing is not None:
            existing.cancel()

        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        self._debounce[key] = loop.call_later(
            self.debounce_seconds, self._run_debounced, Path(file_path)
        )

    def _run_debounced(self, file_path: Path) -> None:
        self._debounce.pop(str(file_path), None)
        try:
            self.process_file(file_path)
        except Exception:
            logger.exception(f"Failed to process session file {file_path}")

    def process_file(self, file_path: Path) -> None:
        """Handle a (debounced) change to file_path."""
        if not file_path.exists():
            self.forget(file_path)
            return

        key = str(file_path)
        if key not in self._cursors:
            session = parse_session_meta(file_path)
            if session is None:
                # Meta line not written yet; the next event or poll retries
                logger.debug(f"Session meta not readable yet: {file_path.name}")
                return

            self._cursors[key] = TailCursor(offset=0)
            self._sessions[key] = session
            logger.info(
                f"New Codex session detected: {session.id[:12]} ({session.cwd})"
            )
            self._dispatch(self.on_new_session(session), f"new session {session.id}")

        self.process_update(file_path)

    def process_update(self, file_path: Path) -> None:
        """Read appended lines, deliver them and keep polling the file."""
        key = str(file_path)
        cursor = self._cursors.get(key)
        if cursor is None:
            return
        if not file_path.exists():
            self.forget(file_path)
            return

        lines = read_new_lines(file_path, cursor)
        now = self._clock()

        if lines:
            cursor.last_event_at = now
            session = self._session_for(file_path)
            if session is None:
                logger.warning(
                    f"Dropping {len(lines)} lines from {file_path.name}: "
                    f"session meta unreadable"
                )
            else:
                logger.debug(
                    f"Session file updated: {session.id[:12]} ({len(lines)} new lines)"
                )
                self._dispatch(
                    self.on_session_update(session, lines),
                    f"session update {session.id}",
                )
        elif cursor.last_event_at is None:
            cursor.last_event_at = now

        self._schedule_poll(file_path, cursor, now)

    def forget(self, file_path: Path) -> None:
        """Drop all state kept for a deleted session file."""
        key = str(file_path)
        for handles in (self._polls, self._debounce):
            handle = handles.pop(key, None)
            if handle is not None:
                handle.cancel()
        if self._cursors.pop(key, None) is not None:
            logger.debug(f"Session file gone, stopped polling: {file_path.name}")
        self._sessions.pop(key, None)

    def _session_for(self, file_path: Path) -> Optional[CodexSession]:
        key = str(file_path)
        session = self._sessions.get(key)
        if session is None:
            session = parse_session_meta(file_path)
            if session is not None:
                self._sessions[key] = session
        return session

    def _schedule_poll(
        self, file_path: Path, cursor: TailCursor, now: datetime
    ) -> None:
        key = str(file_path)
        existing = self._polls.pop(key, None)
        if existing is not None:
            existing.cancel()

        if cursor.last_event_at is not None:
            idle = (now - cursor.last_event_at).total_seconds()
            if idle >= self.poll_window_seconds:
                logger.debug(f"Stopped polling idle session file {file_path.name}")
                return

        if self._loop is None:
            return
        self._polls[key] = self._loop.call_later(
            self.poll_interval, self._run_poll, file_path
        )

    def _run_poll(self, file_path: Path) -> None:
        self._polls.pop(str(file_path), None)
        try:
            self.process_update(file_path)
        except Exception:
            logger.exception(f"Failed to poll session file {file_path}")

    def _dispatch(self, coro: Coroutine[Any, Any, Any], description: str) -> None:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(
                    f"Session handler failed ({description}): {exc}",
                    exc_info=exc,
                )

        task.add_done_callback(_done)
