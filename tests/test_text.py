"""
Tests for text helpers.
"""

from codexrelay.utils.text import normalize_text, split_message, truncate


class TestSplitMessage:
    """Tests for split_message."""

    def test_short_text_unchanged(self):
        assert split_message("hello", 10) == ["hello"]

    def test_prefers_newline(self):
        text = "a" * 50 + "\n" + "b" * 50

        assert split_message(text, 60) == ["a" * 50, "b" * 50]

    def test_falls_back_to_space(self):
        text = "word " * 30

        chunks = split_message(text, 40)

        assert all(len(chunk) <= 40 for chunk in chunks)
        assert "".join(chunks).replace(" ", "") == text.replace(" ", "")

    def test_hard_cut_without_separators(self):
        assert split_message("x" * 130, 50) == ["x" * 50, "x" * 50, "x" * 30]


class TestTruncate:
    def test_short_text_kept(self):
        assert truncate("abc", 10) == "abc"

    def test_long_text_marked(self):
        assert truncate("abcdefghij", 6) == "abc..."


class TestNormalizeText:
    def test_line_endings_and_whitespace(self):
        assert normalize_text("\r\n  hi\r\nthere \r") == "hi\nthere"

    def test_blank_is_none(self):
        assert normalize_text("   \n ") is None
