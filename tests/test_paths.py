"""
Tests for project path canonicalization and naming.
"""

import os

from codexrelay.utils.paths import (
    canonicalize_project_path,
    channel_slug,
    project_name_for,
)


class TestCanonicalizeProjectPath:
    """Tests for canonicalize_project_path."""

    def test_relative_path_made_absolute(self, tmp_path, monkeypatch):
        """Relative references resolve against the working directory."""
        (tmp_path / "proj").mkdir()
        monkeypatch.chdir(tmp_path)

        assert canonicalize_project_path("proj") == os.path.realpath(tmp_path / "proj")

    def test_symlink_resolved(self, tmp_path):
        """A symlinked directory and its target share one key."""
        real = tmp_path / "real"
        real.mkdir()
        link = tmp_path / "link"
        link.symlink_to(real)

        assert canonicalize_project_path(link) == canonicalize_project_path(real)
        assert canonicalize_project_path(link) == os.path.realpath(real)

    def test_trailing_slash_and_dot_segments(self, tmp_path):
        """Different spellings of the same directory collapse."""
        real = tmp_path / "a" / "b"
        real.mkdir(parents=True)
        expected = os.path.realpath(real)

        assert canonicalize_project_path(f"{real}/") == expected
        assert canonicalize_project_path(f"{real}/../b/.") == expected

    def test_missing_path_falls_back_to_absolute(self, tmp_path):
        """Unresolvable paths return the normalized absolute form."""
        missing = f"{tmp_path}/missing/../gone"

        assert canonicalize_project_path(missing) == os.path.abspath(missing)

    def test_idempotent(self, tmp_path):
        once = canonicalize_project_path(tmp_path)

        assert canonicalize_project_path(once) == once


class TestNaming:
    """Tests for project names and channel slugs."""

    def test_project_name_is_basename(self):
        assert project_name_for("/home/dev/my-project") == "my-project"

    def test_project_name_for_root(self):
        assert project_name_for("/") == "project"

    def test_channel_slug(self):
        assert channel_slug("My Project_v2") == "my-project-v2"
        assert channel_slug("api.server") == "api-server"
