"""jot evaluator CLI commands.

Commands:
  jot evaluator list   show built-in interpreters and jot-eval-* executables on PATH
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from jot.cli.errors import err_config
from jot.config import ConfigError, load_config
from jot.eval.resolver import EvaluatorResolver, ExternalProcess
from jot.workspace import WorkspaceNotFound, find_workspace

console = Console()

evaluator_app = typer.Typer(
    name="evaluator",
    help="Inspect the interpreters available to eval blocks.",
    add_completion=False,
)


def _resolver() -> EvaluatorResolver:
    """Resolver using the evaluator prefix of the workspace around the current directory."""
    try:
        jot_dir = find_workspace(Path.cwd()).jot_dir
    except WorkspaceNotFound:
        jot_dir = None
    try:
        cfg = load_config(jot_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    return EvaluatorResolver(prefix=cfg.eval.evaluator_prefix)


@evaluator_app.command("list")
def evaluator_list_cmd(
    json_output: Annotated[bool, typer.Option("--json", help="Print machine-readable JSON.")] = False,
) -> None:
    """List evaluators in lookup order: PATH executables override built-ins."""
    resolver = _resolver()
    evaluators = resolver.list_evaluators()

    if json_output:
        typer.echo(
            json.dumps(
                {
                    "operation": "evaluator_list",
                    "prefix": resolver.prefix,
                    "evaluators": [
                        {
                            "language": e.language,
                            "type": e.kind,
                            "command": e.command,
                            "path": e.path if isinstance(e, ExternalProcess) else None,
                            "available": resolver.is_available(e),
                        }
                        for e in evaluators
                    ],
                },
                indent=2,
            )
        )
        return

    table = Table(title="Evaluators", show_header=True, header_style="bold")
    table.add_column("Language", style="bold")
    table.add_column("Type")
    table.add_column("Command")
    table.add_column("Status")

    for e in evaluators:
        status = "[green]✓ available[/]" if resolver.is_available(e) else "[yellow]✗ not installed[/]"
        table.add_row(escape(e.language), e.kind, escape(e.command), status)

    console.print(table)
    console.print(
        f"\n  Add a language: put an executable named {escape(resolver.prefix)}<language> on your PATH.\n"
        "  It receives the block on stdin and JOT_EVAL_* variables in its environment."
    )
