"""jot CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from jot.cli.eval import eval_app
from jot.cli.evaluator import evaluator_app
from jot.cli.init import init_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("jot")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"jot {_installed_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    """jot.* loggers go to stderr through rich; DEBUG with --verbose, else WARNING."""
    logger = logging.getLogger("jot")
    for existing in [h for h in logger.handlers if isinstance(h, RichHandler)]:
        logger.removeHandler(existing)

    handler = RichHandler(console=Console(stderr=True), show_path=False, show_time=verbose)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


app = typer.Typer(
    name="jot",
    help=(
        "jot: evaluable code blocks for markdown notes.\n\n"
        "  jot eval list     Show a note's blocks and their approval status.\n"
        "  jot eval approve  Review and approve a block.\n"
        "  jot eval run      Run approved blocks and write results into the note."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging on stderr."),
    ] = False,
) -> None:
    """jot: evaluable code blocks for markdown notes."""
    _configure_logging(verbose)


app.command("init")(init_cmd)
app.add_typer(eval_app, name="eval")
app.add_typer(evaluator_app, name="evaluator")


@app.command("version")
def version_cmd() -> None:
    """Show the installed jot version."""
    typer.echo(f"jot {_installed_version()}")


if __name__ == "__main__":
    app()
