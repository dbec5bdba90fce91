"""Workspace discovery.

A workspace is any directory holding a ``.jot/`` directory. Approval
records and the workspace config live there:

    <root>/
      .jot/
        config.yaml
        eval_permissions
        eval_document_permissions
      notes/setup.md

Documents find their workspace by walking up from their own directory.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from jot.config import default_config_text

JOT_DIR_NAME = ".jot"


class WorkspaceNotFound(Exception):
    """No ``.jot/`` directory above the starting path."""

    def __init__(self, start: Path) -> None:
        self.start = start
        super().__init__(f"No jot workspace found at or above '{start}'")


@dataclass(frozen=True)
class Workspace:
    root: Path

    @property
    def jot_dir(self) -> Path:
        return self.root / JOT_DIR_NAME


def find_workspace(start: Path) -> Workspace:
    """Nearest workspace containing *start* (a file or a directory).

    Raises:
        WorkspaceNotFound: if no ancestor has a ``.jot/`` directory.
    """
    start = Path(start).expanduser().resolve()
    here = start if start.is_dir() else start.parent
    for candidate in (here, *here.parents):
        if (candidate / JOT_DIR_NAME).is_dir():
            return Workspace(root=candidate)
    raise WorkspaceNotFound(start)


def init_workspace(directory: Path) -> tuple[Workspace, bool]:
    """Create ``.jot/`` (and a starter config.yaml) in *directory*.

    Existing files are left untouched.

    Returns:
        The workspace and True if ``.jot/`` was newly created.
    """
    root = Path(directory).expanduser().resolve()
    workspace = Workspace(root=root)
    created = not workspace.jot_dir.is_dir()
    workspace.jot_dir.mkdir(parents=True, exist_ok=True)

    config_path = workspace.jot_dir / "config.yaml"
    if not config_path.exists():
        config_path.write_text(default_config_text(), encoding="utf-8")

    return workspace, created
