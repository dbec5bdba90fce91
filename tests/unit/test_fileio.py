"""Tests for fileio.py: atomic writes and path confinement."""

from __future__ import annotations

import stat
from pathlib import Path

import pytest

import jot.fileio
from jot.fileio import confine_path, write_atomic


# ------------------------------------------------------------------
# confine_path
# ------------------------------------------------------------------


def test_confine_relative_path(tmp_path: Path) -> None:
    assert confine_path("out/result.txt", tmp_path) == (tmp_path / "out" / "result.txt").resolve()


def test_confine_rejects_traversal(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Path traversal"):
        confine_path("../../etc/passwd", tmp_path)


def test_confine_allows_absolute(tmp_path: Path) -> None:
    target = tmp_path.parent / "elsewhere.txt"
    assert confine_path(str(target), tmp_path) == target.resolve()


# ------------------------------------------------------------------
# write_atomic
# ------------------------------------------------------------------


def test_write_atomic_creates_parents(tmp_path: Path) -> None:
    path = tmp_path / "a" / "b" / "file.txt"
    write_atomic(path, "hello\n")
    assert path.read_text(encoding="utf-8") == "hello\n"


def test_write_atomic_replaces_and_keeps_mode(tmp_path: Path) -> None:
    path = tmp_path / "doc.md"
    path.write_text("old", encoding="utf-8")
    path.chmod(0o640)

    write_atomic(path, "new")

    assert path.read_text(encoding="utf-8") == "new"
    assert stat.S_IMODE(path.stat().st_mode) == 0o640


def test_write_atomic_keeps_newlines_verbatim(tmp_path: Path) -> None:
    path = tmp_path / "doc.md"
    write_atomic(path, "a\r\nb\n")
    assert path.read_bytes() == b"a\r\nb\n"


def test_write_atomic_failure_keeps_original(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "doc.md"
    path.write_text("original", encoding="utf-8")

    def boom(src, dst):
        raise OSError("rename failed")

    monkeypatch.setattr(jot.fileio.os, "replace", boom)
    with pytest.raises(OSError, match="rename failed"):
        write_atomic(path, "new")

    assert path.read_text(encoding="utf-8") == "original"
    assert [p.name for p in tmp_path.iterdir()] == ["doc.md"]
