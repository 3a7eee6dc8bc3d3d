"""
Single-instance process lock.

The lock is a JSON sidecar file ({pid, token, startedAt, cwd}) created with
O_CREAT | O_EXCL next to the mapping store. A stale lock (malformed, or owned
by a dead pid) is removed and acquisition retried; a live owner makes
acquisition fail with ProcessAlreadyRunningError.
"""

import json
import logging
import os
import secrets
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Optional

from codexrelay.exceptions import ProcessAlreadyRunningError

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 20
DEFAULT_RETRY_DELAY = 0.1


@dataclass
class LockMetadata:
    pid: int
    token: str


def parse_lock_metadata(raw: str) -> Optional[LockMetadata]:
    """
    Parse lock file content.

    Accepts the JSON format written by acquire_process_lock and, for older
    lock files, a bare pid. Returns None for anything else.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict):
        pid = data.get("pid")
        token = data.get("token")
        if (
            isinstance(pid, int)
            and not isinstance(pid, bool)
            and pid > 0
            and isinstance(token, str)
            and token
        ):
            return LockMetadata(pid=pid, token=token)

    try:
        pid = int(raw.strip())
    except ValueError:
        return None
    if pid > 0:
        return LockMetadata(pid=pid, token="")
    return None


def read_lock_metadata(lock_path: Path) -> Optional[LockMetadata]:
    try:
        raw = lock_path.read_text(encoding="utf-8")
    except OSError:
        return None
    return parse_lock_metadata(raw)


def is_process_alive(pid: int) -> bool:
    """Check whether a pid exists (sends signal 0)."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    except OSError:
        return False
    return True


def remove_lock_if_stale(lock_path: Path) -> Optional[LockMetadata]:
    """
    Remove the lock file if it is malformed or its owner is gone.

    Returns:
        The live owner's metadata, or None if the lock was removed
    """
    lock = read_lock_metadata(lock_path)
    if lock is None or not is_process_alive(lock.pid):
        logger.info(f"Removing stale process lock: {lock_path}")
        lock_path.unlink(missing_ok=True)
        return None
    return lock


class ProcessLock:
    """Handle for an acquired lock. Release is idempotent."""

    def __init__(self, lock_path: Path, token: str, pid: int):
        self.lock_path = lock_path
        self.token = token
        self.pid = pid
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """Delete the lock file, but only if it still belongs to this handle."""
        if self._released:
            return
        self._released = True

        current = read_lock_metadata(self.lock_path)
        if current and current.pid == self.pid and current.token == self.token:
            try:
                self.lock_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Failed to remove process lock {self.lock_path}: {e}")

    def __enter__(self) -> "ProcessLock":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


def acquire_process_lock(
    lock_path: Path,
    retries: int = DEFAULT_RETRIES,
    retry_delay: float = DEFAULT_RETRY_DELAY,
) -> ProcessLock:
    """
    Acquire the single-instance lock.

    Args:
        lock_path: Lock file location
        retries: Extra attempts while another process holds the lock
        retry_delay: Seconds between attempts

    Returns:
        ProcessLock handle

    Raises:
        ProcessAlreadyRunningError: If a live process keeps holding the lock
    """
    lock_path = Path(lock_path).resolve()
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    pid = os.getpid()
    token = f"{pid}-{int(time.time() * 1000)}-{secrets.token_hex(6)}"
    attempt = 0

    while True:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            owner = remove_lock_if_stale(lock_path)
            if owner is None:
                # Stale lock removed; retrying does not count as an attempt
                continue
            if attempt >= retries:
                raise ProcessAlreadyRunningError(lock_path, owner.pid)
            attempt += 1
            time.sleep(retry_delay)
            continue

        metadata = {
            "pid": pid,
            "token": token,
            "startedAt": datetime.now(UTC).isoformat(),
            "cwd": os.getcwd(),
        }
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(metadata, f)
        except Exception:
            lock_path.unlink(missing_ok=True)
            raise

        logger.debug(f"Acquired process lock {lock_path}")
        return ProcessLock(lock_path, token, pid)
