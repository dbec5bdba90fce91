"""jot eval CLI commands.

Commands:
  jot eval list FILE                 show evaluable blocks with approval status
  jot eval run FILE [NAME] [--all]   run approved blocks and write results back
  jot eval approve FILE NAME         approve one block (after review)
  jot eval approve-document FILE     approve every block in a document
  jot eval revoke FILE NAME          remove a block approval
  jot eval revoke-document FILE      remove a document approval
  jot eval approvals                 list every stored approval in the workspace

Every command accepts --json. Commands that would ask for confirmation
require --yes together with --json.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from jot.cli.errors import (
    err_approval_required,
    err_block_not_found,
    err_config,
    err_evaluator_not_found,
    err_execution,
    err_file_not_found,
    err_file_unreadable,
    err_invalid_mode,
    err_json_needs_yes,
    err_no_workspace,
    err_persistence,
    err_run_target,
    err_unnamed_block,
    warn_corrupt_approvals,
)
from jot.config import ConfigError, JotConfig, load_config
from jot.eval.approvals import ApprovalStore, ConfirmFn, SecurityPolicy
from jot.eval.engine import EvalEngine
from jot.eval.errors import (
    ApprovalRequired,
    BlockNotFoundError,
    DirectiveError,
    EvaluatorNotFound,
    ExecutionError,
    ExecutionTimeout,
    InvalidParameterError,
    PersistenceError,
)
from jot.eval.models import ApprovalMode, ApprovalState, CodeBlock, EvalResult
from jot.eval.parser import parse_results
from jot.eval.resolver import EvaluatorResolver
from jot.workspace import Workspace, WorkspaceNotFound, find_workspace

console = Console()

eval_app = typer.Typer(
    name="eval",
    help="Run, approve and inspect evaluable code blocks in markdown notes.",
    add_completion=False,
)

_STATE_LABELS: dict[ApprovalState, str] = {
    ApprovalState.APPROVED: "[green]✓ approved[/]",
    ApprovalState.DOCUMENT: "[green]✓ document[/]",
    ApprovalState.POLICY: "[green]✓ policy[/]",
    ApprovalState.PROMPT: "[yellow]? prompt[/]",
    ApprovalState.STALE: "[red]✗ stale[/]",
    ApprovalState.MISSING: "[yellow]✗ not approved[/]",
}


# ---------------------------------------------------------------------------
# Output envelope
# ---------------------------------------------------------------------------


@dataclass
class _Call:
    """One CLI invocation: how to report success and failure."""

    command: str
    operation: str
    json_output: bool = False
    started: float = field(default_factory=time.monotonic)

    def envelope(
        self,
        payload: dict[str, Any],
        summary: dict[str, Any],
        success: bool,
        error: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        data: dict[str, Any] = {"operation": self.operation, **payload, "summary": summary}
        data["metadata"] = {
            "success": success,
            "command": self.command,
            "execution_time_ms": int((time.monotonic() - self.started) * 1000),
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        if error is not None:
            data["error"] = error
        return data

    def emit(
        self,
        payload: dict[str, Any],
        summary: dict[str, Any],
        success: bool = True,
        error: dict[str, str] | None = None,
    ) -> None:
        typer.echo(json.dumps(self.envelope(payload, summary, success, error), indent=2))

    def fail(self, markup: str, message: str, code: str) -> NoReturn:
        if self.json_output:
            self.emit({}, {}, success=False, error={"message": message, "code": code})
        else:
            console.print(markup)
        raise typer.Exit(1)


def _error_code(exc: Exception) -> str:
    if isinstance(exc, ApprovalRequired):
        return "APPROVAL_REQUIRED"
    if isinstance(exc, EvaluatorNotFound):
        return "EVALUATOR_NOT_FOUND"
    if isinstance(exc, ExecutionTimeout):
        return "EXECUTION_TIMEOUT"
    if isinstance(exc, ExecutionError):
        return "EXECUTION_FAILED"
    if isinstance(exc, InvalidParameterError):
        return "INVALID_PARAMETER"
    if isinstance(exc, DirectiveError):
        return "INVALID_DIRECTIVE"
    return "EVAL_ERROR"


# ---------------------------------------------------------------------------
# Setup helpers
# ---------------------------------------------------------------------------


def _parse_mode(call: _Call, mode: str | None) -> ApprovalMode | None:
    if mode is None:
        return None
    try:
        return ApprovalMode.parse(mode)
    except ValueError as exc:
        call.fail(err_invalid_mode(mode), str(exc), "INVALID_ARGUMENT")


def _find_workspace(call: _Call, start: Path) -> Workspace:
    try:
        return find_workspace(start)
    except WorkspaceNotFound as exc:
        call.fail(err_no_workspace(str(start)), str(exc), "WORKSPACE_NOT_FOUND")


def _load_config(call: _Call, workspace: Workspace) -> JotConfig:
    try:
        return load_config(workspace.jot_dir)
    except ConfigError as exc:
        call.fail(err_config(str(exc)), str(exc), "CONFIG_ERROR")


def _open_store(
    call: _Call, workspace: Workspace, cfg: JotConfig, confirm: ConfirmFn | None = None
) -> ApprovalStore:
    try:
        store = ApprovalStore(
            workspace.jot_dir,
            policy=SecurityPolicy(cfg.security, workspace.root, default_mode=cfg.eval.default_mode),
            confirm=confirm,
        )
    except PersistenceError as exc:
        call.fail(err_persistence(str(exc)), str(exc), "PERSISTENCE_ERROR")
    if store.corrupt and not call.json_output:
        console.print(warn_corrupt_approvals())
    return store


def _open_engine(call: _Call, file: Path, confirm: ConfirmFn | None = None) -> EvalEngine:
    if not file.is_file():
        call.fail(err_file_not_found(str(file)), f"File not found: {file}", "FILE_NOT_FOUND")
    try:
        file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        call.fail(err_file_unreadable(str(file), str(exc)), f"Cannot read {file}: {exc}", "FILE_NOT_READABLE")
    workspace = _find_workspace(call, file)
    cfg = _load_config(call, workspace)
    store = _open_store(call, workspace, cfg, confirm)
    resolver = EvaluatorResolver(prefix=cfg.eval.evaluator_prefix)
    return EvalEngine(store, resolver, default_timeout=cfg.eval.timeout_seconds)


def _show_block(block: CodeBlock, subtitle: str = "") -> None:
    title = (
        f"{escape(block.name or 'unnamed')} · {escape(block.language or 'text')}"
        f" · lines {block.start_line}-{block.end_line}"
    )
    console.print(
        Panel(
            Syntax(block.source, block.language or "text", line_numbers=False),
            title=title,
            subtitle=escape(subtitle) if subtitle else None,
        )
    )


def _confirm_run(file_path: str, block: CodeBlock, reason: str) -> bool:
    _show_block(block, reason)
    return typer.confirm(f"Run block '{block.name}'?", default=False)


def _block_dict(block: CodeBlock) -> dict[str, Any]:
    return {
        "name": block.name,
        "language": block.language,
        "start_line": block.start_line,
        "end_line": block.end_line,
        "hash": block.content_hash,
    }


def _result_dict(result: EvalResult) -> dict[str, Any]:
    error = None
    if result.error is not None:
        error = {"message": str(result.error), "code": _error_code(result.error)}
    return {
        "name": result.block.name,
        "language": result.block.language,
        "start_line": result.block.start_line,
        "success": result.ok,
        "executed": result.executed,
        "output": result.output,
        "duration_ms": int(result.duration * 1000),
        "error": error,
    }


# ---------------------------------------------------------------------------
# jot eval list
# ---------------------------------------------------------------------------


@eval_app.command("list")
def eval_list_cmd(
    file: Annotated[Path, typer.Argument(help="Markdown document to inspect.")],
    json_output: Annotated[bool, typer.Option("--json", help="Print machine-readable JSON.")] = False,
) -> None:
    """List evaluable blocks and their approval status."""
    call = _Call("jot eval list", "eval_list", json_output)
    engine = _open_engine(call, file)
    statuses = engine.list_blocks(file)
    runnable = sum(1 for s in statuses if s.state is not None and s.state.runnable)

    if json_output:
        blocks = []
        for s in statuses:
            entry = _block_dict(s.block)
            entry["status"] = s.state.value if s.state else "unnamed"
            entry["mode"] = s.mode.value if s.mode else None
            blocks.append(entry)
        call.emit(
            {"file": str(file.resolve()), "blocks": blocks},
            {"total": len(statuses), "runnable": runnable},
        )
        return

    if not statuses:
        console.print(f"[yellow]No evaluable blocks in {escape(str(file))}.[/]")
        console.print('  Mark a block with  <eval name="..." />  on the line above its fence.')
        raise typer.Exit(0)

    table = Table(title=f"Eval blocks: {escape(str(file))}", show_header=True, header_style="bold")
    table.add_column("Name", style="bold")
    table.add_column("Language")
    table.add_column("Lines")
    table.add_column("Status")
    table.add_column("Mode")

    for s in statuses:
        status = _STATE_LABELS[s.state] if s.state else "[red]✗ unnamed[/]"
        table.add_row(
            escape(s.name or "-"),
            escape(s.language or "-"),
            f"{s.block.start_line}-{s.block.end_line}",
            status,
            s.mode.value if s.mode else "",
        )

    console.print(table)
    console.print(f"\n  {runnable}/{len(statuses)} runnable")


# ---------------------------------------------------------------------------
# jot eval run
# ---------------------------------------------------------------------------


def _print_result(result: EvalResult, file: Path) -> None:
    block = result.block
    name = block.name or f"line {block.start_line}"
    exc = result.error

    if exc is None:
        console.print(f"[green]✓[/] {escape(name)}  [dim]({result.duration:.2f}s)[/]")
        spec = parse_results(block.directive.get("results") if block.directive else "")
        if result.output and not spec.inserts:
            console.print(escape(result.output.rstrip("\n")), highlight=False)
        return

    if isinstance(exc, ApprovalRequired):
        console.print(err_approval_required(exc.name, str(file), exc.reason))
    elif isinstance(exc, DirectiveError) and not block.name:
        console.print(err_unnamed_block(block.start_line, str(file)))
    elif isinstance(exc, EvaluatorNotFound):
        console.print(err_evaluator_not_found(exc))
    elif isinstance(exc, ExecutionError):
        console.print(err_execution(name, str(file), exc))
    else:
        console.print(f"[red]Error:[/] Block '{escape(name)}': {escape(str(exc))}")


@eval_app.command("run")
def eval_run_cmd(
    file: Annotated[Path, typer.Argument(help="Markdown document holding the blocks.")],
    name: Annotated[Optional[str], typer.Argument(help="Name of the block to run.")] = None,
    all_blocks: Annotated[bool, typer.Option("--all", help="Run every evaluable block.")] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Print machine-readable JSON.")] = False,
) -> None:
    """Run approved blocks and write their results into the document."""
    call = _Call("jot eval run", "eval_run", json_output)
    if (name is None) != all_blocks:
        call.fail(err_run_target(), "Give either a block name or --all", "INVALID_ARGUMENT")

    engine = _open_engine(call, file, confirm=None if json_output else _confirm_run)
    try:
        report = engine.run(file, name)
    except BlockNotFoundError as exc:
        call.fail(err_block_not_found(exc.name, str(file), exc.available), str(exc), "BLOCK_NOT_FOUND")
    except OSError as exc:
        call.fail(err_persistence(f"Failed to update {file}: {exc}"), str(exc), "IO_ERROR")

    succeeded = sum(1 for r in report.results if r.ok)
    failed = len(report.results) - succeeded

    if json_output:
        first_error = next((r.error for r in report.results if r.error is not None), None)
        call.emit(
            {"file": report.file_path, "results": [_result_dict(r) for r in report.results]},
            {
                "total": len(report.results),
                "succeeded": succeeded,
                "failed": failed,
                "patched": report.patched,
            },
            success=report.ok,
            error=(
                {"message": str(first_error), "code": _error_code(first_error)}
                if first_error is not None
                else None
            ),
        )
    else:
        for result in report.results:
            _print_result(result, file)
        if report.patched:
            console.print(f"\n[green]✓[/] Updated {escape(str(file))}")
        console.print(f"  {succeeded}/{len(report.results)} blocks succeeded")

    if not report.ok:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# jot eval approve / approve-document
# ---------------------------------------------------------------------------


@eval_app.command("approve")
def eval_approve_cmd(
    file: Annotated[Path, typer.Argument(help="Markdown document holding the block.")],
    name: Annotated[str, typer.Argument(help="Name of the block to approve.")],
    mode: Annotated[
        Optional[str],
        typer.Option("--mode", "-m", help="Approval mode: hash, prompt or always."),
    ] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Print machine-readable JSON.")] = False,
) -> None:
    """Approve the current content of one code block."""
    call = _Call("jot eval approve", "eval_approve", json_output)
    if json_output and not yes:
        call.fail(err_json_needs_yes("jot eval approve"), "--json requires --yes", "INVALID_ARGUMENT")
    approval_mode = _parse_mode(call, mode)

    engine = _open_engine(call, file)
    try:
        block = engine.find_block(file, name)
    except BlockNotFoundError as exc:
        call.fail(err_block_not_found(exc.name, str(file), exc.available), str(exc), "BLOCK_NOT_FOUND")
    except DirectiveError as exc:
        call.fail(f"[red]Error:[/] {escape(str(exc))}", str(exc), "INVALID_DIRECTIVE")

    key = str(file.resolve())
    effective = approval_mode or engine.store.default_mode(key)

    if not yes:
        _show_block(block)
        if not typer.confirm(f"Approve block '{name}' ({effective.value} mode)?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    try:
        record = engine.store.approve_block(key, block, effective)
    except PersistenceError as exc:
        call.fail(err_persistence(str(exc)), str(exc), "PERSISTENCE_ERROR")

    if json_output:
        call.emit({"file": key, "approval": record.to_dict()}, {"approved": 1})
        return
    console.print(f"[green]✓[/] Approved: {escape(name)}  ({record.mode.value} mode, hash {record.hash[:12]})")


@eval_app.command("approve-document")
def eval_approve_document_cmd(
    file: Annotated[Path, typer.Argument(help="Markdown document to approve.")],
    mode: Annotated[
        Optional[str],
        typer.Option("--mode", "-m", help="Approval mode: hash, prompt or always."),
    ] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Print machine-readable JSON.")] = False,
) -> None:
    """Approve every evaluable block in a document at once."""
    call = _Call("jot eval approve-document", "eval_approve_document", json_output)
    if json_output and not yes:
        call.fail(
            err_json_needs_yes("jot eval approve-document"), "--json requires --yes", "INVALID_ARGUMENT"
        )
    approval_mode = _parse_mode(call, mode)

    engine = _open_engine(call, file)
    key = str(file.resolve())
    effective = approval_mode or engine.store.default_mode(key)

    if not yes:
        blocks = engine.blocks(file)
        for block in blocks:
            _show_block(block)
        console.print(f"{len(blocks)} evaluable block(s) in {escape(str(file))}")
        if not typer.confirm(f"Approve the whole document ({effective.value} mode)?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    try:
        record, block_records = engine.approve_document(file, effective)
    except PersistenceError as exc:
        call.fail(err_persistence(str(exc)), str(exc), "PERSISTENCE_ERROR")

    if json_output:
        call.emit(
            {
                "file": key,
                "approval": record.to_dict(),
                "block_approvals": [r.to_dict() for r in block_records],
            },
            {"approved_blocks": len(block_records)},
        )
        return
    console.print(f"[green]✓[/] Approved document: {escape(str(file))}  ({record.mode.value} mode)")
    if block_records:
        console.print(f"  {len(block_records)} block(s) pinned to their current content")


# ---------------------------------------------------------------------------
# jot eval revoke / revoke-document
# ---------------------------------------------------------------------------


@eval_app.command("revoke")
def eval_revoke_cmd(
    file: Annotated[Path, typer.Argument(help="Markdown document holding the block.")],
    name: Annotated[str, typer.Argument(help="Name of the block.")],
    json_output: Annotated[bool, typer.Option("--json", help="Print machine-readable JSON.")] = False,
) -> None:
    """Remove the approval for one code block."""
    call = _Call("jot eval revoke", "eval_revoke", json_output)
    engine = _open_engine(call, file)
    try:
        removed = engine.revoke_block(file, name)
    except PersistenceError as exc:
        call.fail(err_persistence(str(exc)), str(exc), "PERSISTENCE_ERROR")

    if json_output:
        call.emit({"file": str(file.resolve()), "block": name}, {"revoked": int(removed)})
        return
    if removed:
        console.print(f"[green]✓[/] Revoked approval for block '{escape(name)}'")
    else:
        console.print(f"[yellow]No approval found[/] for block '{escape(name)}' in {escape(str(file))}")


@eval_app.command("revoke-document")
def eval_revoke_document_cmd(
    file: Annotated[Path, typer.Argument(help="Markdown document.")],
    json_output: Annotated[bool, typer.Option("--json", help="Print machine-readable JSON.")] = False,
) -> None:
    """Remove the document-level approval (block approvals are kept)."""
    call = _Call("jot eval revoke-document", "eval_revoke_document", json_output)
    engine = _open_engine(call, file)
    try:
        removed = engine.revoke_document(file)
    except PersistenceError as exc:
        call.fail(err_persistence(str(exc)), str(exc), "PERSISTENCE_ERROR")

    if json_output:
        call.emit({"file": str(file.resolve())}, {"revoked": int(removed)})
        return
    if removed:
        console.print(f"[green]✓[/] Revoked document approval for {escape(str(file))}")
    else:
        console.print(f"[yellow]No document approval found[/] for {escape(str(file))}")


# ---------------------------------------------------------------------------
# jot eval approvals
# ---------------------------------------------------------------------------


@eval_app.command("approvals")
def eval_approvals_cmd(
    workspace_dir: Annotated[
        Path,
        typer.Option("--workspace", "-w", help="Directory inside the workspace (default: current)."),
    ] = Path("."),
    json_output: Annotated[bool, typer.Option("--json", help="Print machine-readable JSON.")] = False,
) -> None:
    """List every block and document approval in the workspace."""
    call = _Call("jot eval approvals", "eval_approvals", json_output)
    workspace = _find_workspace(call, workspace_dir)
    store = _open_store(call, workspace, _load_config(call, workspace))
    blocks, documents = store.list_approvals()

    if json_output:
        call.emit(
            {
                "workspace": str(workspace.root),
                "blocks": [r.to_dict() for r in blocks],
                "documents": [r.to_dict() for r in documents],
            },
            {"blocks": len(blocks), "documents": len(documents)},
        )
        return

    if not blocks and not documents:
        console.print("[yellow]No approvals stored.[/]")
        console.print("  Run:  jot eval approve FILE NAME")
        raise typer.Exit(0)

    if blocks:
        table = Table(title="Block approvals", show_header=True, header_style="bold")
        table.add_column("File")
        table.add_column("Block", style="bold")
        table.add_column("Mode")
        table.add_column("Hash")
        table.add_column("Approved at")
        for r in blocks:
            table.add_row(
                escape(_display_path(r.file_path, workspace)),
                escape(r.block_name),
                r.mode.value,
                r.hash[:12],
                r.approved_at,
            )
        console.print(table)

    if documents:
        table = Table(title="Document approvals", show_header=True, header_style="bold")
        table.add_column("File")
        table.add_column("Mode")
        table.add_column("Approved at")
        for d in documents:
            table.add_row(escape(_display_path(d.file_path, workspace)), d.mode.value, d.approved_at)
        console.print(table)


def _display_path(file_path: str, workspace: Workspace) -> str:
    try:
        return Path(file_path).relative_to(workspace.root).as_posix()
    except ValueError:
        return file_path
