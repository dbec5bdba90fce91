"""Tests for workspace.py."""

from __future__ import annotations

from pathlib import Path

import pytest

from jot.workspace import JOT_DIR_NAME, WorkspaceNotFound, find_workspace, init_workspace


def test_init_creates_jot_dir_and_config(tmp_path: Path) -> None:
    workspace, created = init_workspace(tmp_path)
    assert created is True
    assert workspace.root == tmp_path.resolve()
    assert (tmp_path / JOT_DIR_NAME).is_dir()
    assert "default_timeout" in (tmp_path / JOT_DIR_NAME / "config.yaml").read_text(encoding="utf-8")


def test_init_twice_keeps_existing_config(tmp_path: Path) -> None:
    init_workspace(tmp_path)
    config = tmp_path / JOT_DIR_NAME / "config.yaml"
    config.write_text("eval:\n  default_timeout: 5s\n", encoding="utf-8")

    _, created = init_workspace(tmp_path)

    assert created is False
    assert config.read_text(encoding="utf-8") == "eval:\n  default_timeout: 5s\n"


def test_find_workspace_walks_up(tmp_path: Path) -> None:
    init_workspace(tmp_path)
    doc = tmp_path / "notes" / "deep" / "doc.md"
    doc.parent.mkdir(parents=True)
    doc.write_text("# doc\n", encoding="utf-8")

    assert find_workspace(doc).root == tmp_path.resolve()
    assert find_workspace(doc.parent).root == tmp_path.resolve()


def test_nearest_workspace_wins(tmp_path: Path) -> None:
    init_workspace(tmp_path)
    inner = tmp_path / "inner"
    init_workspace(inner)
    assert find_workspace(inner / "doc.md").root == inner.resolve()


def test_find_workspace_missing(tmp_path: Path) -> None:
    lonely = tmp_path / "lonely"
    lonely.mkdir()
    with pytest.raises(WorkspaceNotFound, match="No jot workspace"):
        find_workspace(lonely)
