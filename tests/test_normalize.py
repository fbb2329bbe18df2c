"""Tests for whitespace-insensitive content comparison."""

import pytest

from zsh_sync.normalize import is_significantly_different, strip_whitespace


def test_strip_whitespace_removes_all_ascii_whitespace() -> None:
    assert strip_whitespace(b"  alias ll='ls -la'\n\t\r\x0b\x0c") == b"aliasll='ls-la'"


@pytest.mark.parametrize(
    ("a", "b"),
    [
        (b"alias ll='ls -la'\n", b"alias ll='ls -la'\n"),
        (b"alias ll='ls -la'", b"alias ll='ls -la'\n\n"),
        (b"if true; then\n  echo hi\nfi\n", b"if true; then\n    echo hi\nfi"),
        (b"export A=1\r\n", b"export A=1\n"),
        (b"", b"   \n\t"),
    ],
)
def test_whitespace_only_differences_are_insignificant(a: bytes, b: bytes) -> None:
    assert not is_significantly_different(a, b)


@pytest.mark.parametrize(
    ("a", "b"),
    [
        (b"alias ll='ls -la'\n", b"alias ll='ls -lah'\n"),
        (b"", b"x"),
        (b"export PATH=/bin\n", b"# export PATH=/bin\n"),
    ],
)
def test_content_differences_are_significant(a: bytes, b: bytes) -> None:
    assert is_significantly_different(a, b)
    assert is_significantly_different(b, a)


def test_whitespace_removal_can_join_tokens() -> None:
    """Comparison ignores token boundaries: 'a b' and 'ab' normalize alike."""
    assert not is_significantly_different(b"a b", b"ab")
