"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

import jot.config
from jot.workspace import Workspace, init_workspace


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path_factory, monkeypatch):
    """Keep the user's ~/.jot/config.yaml and JOT_EVAL_* variables out of tests."""
    missing = tmp_path_factory.mktemp("home") / ".jot" / "config.yaml"
    monkeypatch.setattr(jot.config, "_GLOBAL_CONFIG_PATH", missing)
    monkeypatch.delenv("JOT_EVAL_TIMEOUT", raising=False)
    monkeypatch.delenv("JOT_EVAL_DEFAULT_MODE", raising=False)


@pytest.fixture
def workspace(tmp_path) -> Workspace:
    """Initialized workspace rooted at tmp_path."""
    ws, _ = init_workspace(tmp_path)
    return ws


@pytest.fixture
def write_doc(workspace) -> Callable[..., Path]:
    """Write a markdown document inside the workspace and return its path."""

    def _write(content: str, name: str = "notes.md") -> Path:
        path = workspace.root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write
