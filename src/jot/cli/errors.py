"""jot rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from jot.cli.errors import err_no_workspace
    console.print(err_no_workspace("notes/setup.md"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from jot.eval.errors import EvaluatorNotFound, ExecutionError, ExecutionTimeout


def err_no_workspace(path: str) -> str:
    """No .jot/ directory at or above *path*."""
    return (
        f"[red]Error:[/] No jot workspace found for '{escape(path)}'.\n"
        "  Run:  jot init  in the directory that holds your notes."
    )


def err_file_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] File not found: '{escape(path)}'\n"
        "  Check the path and try again."
    )


def err_file_unreadable(path: str, reason: str) -> str:
    """Document exists but cannot be read as UTF-8 text."""
    return (
        f"[red]Error:[/] Cannot read '{escape(path)}': {escape(reason)}\n"
        "  Notes must be UTF-8 text. Check the encoding and re-save the file as UTF-8."
    )


def err_block_not_found(name: str, path: str, available: list[str]) -> str:
    """No evaluable block called *name* in the document."""
    names = ", ".join(available) if available else "(none)"
    return (
        f"[red]Error:[/] No evaluable block named '{escape(name)}' in '{escape(path)}'.\n"
        f"  Named blocks: {escape(names)}\n"
        f"  Run:  jot eval list {escape(path)}"
    )


def err_approval_required(name: str, path: str, reason: str = "") -> str:
    """Block has no valid approval (missing, stale or declined)."""
    detail = f" ({escape(reason)})" if reason else ""
    return (
        f"[red]Error:[/] Code block '{escape(name)}' requires approval{detail}.\n"
        "  Review the code, then run:\n"
        f"    jot eval approve {escape(path)} {escape(name)}"
    )


def err_evaluator_not_found(exc: EvaluatorNotFound) -> str:
    return f"[red]Error:[/] {escape(str(exc))}"


def err_execution(name: str, path: str, exc: ExecutionError) -> str:
    """Interpreter failed or timed out. Output is still recorded with the result."""
    hint = f"  Fix the block, then rerun:  jot eval run {escape(path)} {escape(name)}"
    if isinstance(exc, ExecutionTimeout):
        hint = '  Raise the limit with timeout="..." on the <eval /> directive.'
    return f"[red]Error:[/] Block '{escape(name)}': {escape(str(exc))}\n{hint}"


def err_unnamed_block(line: int, path: str) -> str:
    return (
        f"[red]Error:[/] The eval block at line {line} of '{escape(path)}' has no name.\n"
        '  Add name="..." to its <eval /> directive.'
    )


def err_invalid_mode(value: str) -> str:
    return (
        f"[red]Error:[/] Invalid approval mode '{escape(value)}'.\n"
        "  Use one of:  --mode hash | --mode prompt | --mode always"
    )


def err_json_needs_yes(command: str) -> str:
    return (
        f"[red]Error:[/] {command} --json cannot ask for confirmation.\n"
        f"  Add --yes:  {command} ... --yes --json"
    )


def err_run_target() -> str:
    return (
        "[red]Error:[/] Say which blocks to run.\n"
        "  Run one block:   jot eval run FILE NAME\n"
        "  Run every block: jot eval run FILE --all"
    )


def err_persistence(message: str) -> str:
    return (
        f"[red]Error:[/] {escape(message)}\n"
        "  Check permissions on the workspace's .jot/ directory."
    )


def err_config(message: str) -> str:
    return (
        f"[red]Error:[/] Invalid configuration: {escape(message)}\n"
        "  Fix .jot/config.yaml (or ~/.jot/config.yaml) and try again."
    )


def warn_corrupt_approvals() -> str:
    return (
        "[yellow]⚠[/] An approval file in .jot/ could not be parsed; every block is treated as unapproved.\n"
        "  Fix or delete .jot/eval_permissions / .jot/eval_document_permissions, then approve again."
    )
