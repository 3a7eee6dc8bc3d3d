"""
codex-relay Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables (and an optional .env file).
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for codex-relay.

    Follows XDG Base Directory Specification:
    - Uses $XDG_STATE_HOME/codex-relay if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/codex-relay if not set
    - Returns relative path ./.codex-relay if HOME not available (dev/testing)

    Returns:
        str: Path to state directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "codex-relay")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "codex-relay")

    # Fallback for development/testing environments without HOME
    return "./.codex-relay"


def get_codex_home() -> str:
    """Return the Codex home directory ($CODEX_HOME or ~/.codex)."""
    codex_home = os.getenv("CODEX_HOME")
    if codex_home:
        return codex_home
    return str(Path("~/.codex").expanduser())


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Session logs
    codex_home: str = get_codex_home()
    sessions_dir: str = ""  # Defaults to <codex_home>/sessions
    archived_sessions_dir: str = ""  # Defaults to <codex_home>/archived_sessions
    sync_archived: bool = False  # Include archived sessions in scans

    # Mapping store
    database_path: str = ""  # Defaults to <state dir>/codex-relay.db
    lock_path: str = ""  # Defaults to <database_path>.lock

    # Agent runtime
    codex_bin: str = "codex"
    default_model: str = "o4-mini"
    approval_mode: str = "on-failure"  # never | on-request | on-failure | untrusted
    sandbox_mode: str = "workspace-write"  # read-only | workspace-write | danger-full-access
    verbose_level: int = 1  # 0 = quiet, 1 = normal, 2 = detailed

    # Chat platform ("simulator" or "module.path:factory")
    chat_platform: str = "simulator"
    chat_message_limit: int = 2000

    # Watcher
    watch_debounce_seconds: float = 1.5  # Wait time after file event before reading
    watch_poll_interval: float = 3.0  # Follow-up poll interval after an update
    watch_poll_window_seconds: float = 6 * 60 * 60  # Stop polling after this much inactivity

    # Sync
    max_buffered_session_lines: int = 2000  # Per-session cap while a thread is unmapped
    echo_ttl_seconds: float = 8.0  # Interactive echo suppression window
    replay_batch_size: int = 5  # Messages sent between replay pauses
    replay_batch_delay: float = 1.0  # Pause between replay batches (seconds)

    # Application
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # XDG-compliant log directory (defaults to XDG state dir if empty)
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True  # Enable console (stdout/stderr) logging
    log_file_enabled: bool = False  # Enable file-based logging
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5  # Keep 5 backup files

    @property
    def sessions_directory(self) -> Path:
        """Directory holding live session logs."""
        if self.sessions_dir:
            return Path(self.sessions_dir).expanduser()
        return Path(self.codex_home).expanduser() / "sessions"

    @property
    def archived_sessions_directory(self) -> Path:
        """Directory holding archived session logs."""
        if self.archived_sessions_dir:
            return Path(self.archived_sessions_dir).expanduser()
        return Path(self.codex_home).expanduser() / "archived_sessions"

    @property
    def database_file(self) -> Path:
        """Get the mapping store path, using the XDG state dir if not specified."""
        if self.database_path:
            return Path(self.database_path).expanduser()
        return Path(get_xdg_state_dir()) / "codex-relay.db"

    @property
    def database_url(self) -> str:
        """SQLAlchemy URL for the mapping store."""
        return f"sqlite:///{self.database_file}"

    @property
    def lock_file(self) -> Path:
        """Single-instance lock file beside the mapping store."""
        if self.lock_path:
            return Path(self.lock_path).expanduser()
        database_file = self.database_file
        return database_file.with_name(database_file.name + ".lock")

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir()) / "logs"


# Global settings instance
settings = Settings()
