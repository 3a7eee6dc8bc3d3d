"""
Project path helpers.

A project is identified by the canonical form of its working directory, so
every flow (watcher, bulk sync, manual setup) must go through
canonicalize_project_path before touching the mapping store.
"""

import os
import re
from pathlib import Path

_SLUG_INVALID = re.compile(r"[^a-z0-9-]")


def canonicalize_project_path(path: str | os.PathLike[str]) -> str:
    """
    Normalize a project directory reference to one stable key.

    Relative references are made absolute and symlinks are resolved. If the
    path cannot be resolved yet (missing, permission denied, symlink loop)
    the normalized absolute form is returned instead.

    Examples:
        >>> canonicalize_project_path("/a/b/../b")
        '/a/b'
    """
    absolute = os.path.abspath(os.fspath(path))
    try:
        return os.path.realpath(absolute, strict=True)
    except (OSError, RuntimeError):
        return absolute


def project_name_for(project_path: str) -> str:
    """Human-readable project name (the directory basename)."""
    basename = Path(project_path).name
    if basename and basename not in {".", "/", ".."}:
        return basename
    return "project"


def channel_slug(name: str) -> str:
    """Chat channel name for a project: lowercase, [a-z0-9-] only."""
    return _SLUG_INVALID.sub("-", name.lower())
