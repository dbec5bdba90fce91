"""jot init: create a workspace.

Creates:
  .jot/                 workspace marker + approval records
  .jot/config.yaml      starter config (eval defaults, commented security rules)

Running it again is safe: existing files are left as they are.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from jot.workspace import init_workspace

console = Console()

_DEFAULT_DIR = Path(".")


def init_cmd(
    directory: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_DIR,
) -> None:
    """Initialize a jot workspace (.jot/ directory)."""
    try:
        workspace, created = init_workspace(directory)
    except OSError as exc:
        console.print(
            f"[red]Error:[/] Could not create .jot/ in '{escape(str(directory))}': {escape(str(exc))}\n"
            "  Check that the directory is writable."
        )
        raise typer.Exit(1)

    if not created:
        console.print(f"[yellow]⚠[/]  {escape(str(workspace.jot_dir))} already exists; nothing to do.")
        raise typer.Exit(0)

    console.print(f"  [green]✓[/] {escape(str(workspace.jot_dir))}")
    console.print(f"  [green]✓[/] {escape(str(workspace.jot_dir / 'config.yaml'))}")
    console.print(f"\n[bold green]✓ Workspace initialized at {escape(str(workspace.root))}.[/]")
    console.print("\nNext steps:")
    console.print('  1. Mark a code block with  <eval name="hello" />  on the line above it')
    console.print("  2. jot eval list notes.md              (see blocks and their status)")
    console.print("  3. jot eval approve notes.md hello     (review and approve)")
    console.print("  4. jot eval run notes.md hello         (run and write the result back)")
