"""Eval engine: scan → approve → resolve → execute → patch for one document.

The engine holds no state beyond its collaborators. Build one per
invocation with the workspace's ApprovalStore and hand it document paths.

Usage:
    store = ApprovalStore(workspace.jot_dir, policy=policy, confirm=ask)
    engine = EvalEngine(store, EvaluatorResolver(), default_timeout=30.0)
    report = engine.run(Path("notes/setup.md"), name="hello")
    if not report.ok:
        ...
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from jot.eval.approvals import ApprovalRecord, ApprovalStore, DocumentApprovalRecord
from jot.eval.errors import (
    ApprovalRequired,
    ApprovalStale,
    BlockNotFoundError,
    DirectiveError,
    EvalError,
    ExecutionError,
)
from jot.eval.executor import execute, resolve_working_dir
from jot.eval.models import ApprovalMode, ApprovalState, CodeBlock, EvalResult
from jot.eval.patcher import patch
from jot.eval.resolver import EvaluatorResolver
from jot.eval.scanner import evaluable_blocks, scan
from jot.fileio import write_atomic

logger = logging.getLogger(__name__)


@dataclass
class BlockStatus:
    """One evaluable block and where it stands with the approval store."""

    block: CodeBlock
    state: ApprovalState | None  # None for blocks without a name
    mode: ApprovalMode | None = None  # mode of the stored block record, if any

    @property
    def name(self) -> str:
        return self.block.name

    @property
    def language(self) -> str:
        return self.block.language


@dataclass
class RunReport:
    """Everything one ``run`` did to a document."""

    file_path: str
    results: list[EvalResult] = field(default_factory=list)
    patched: bool = False

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def executed(self) -> list[EvalResult]:
        return [r for r in self.results if r.executed]


def _document_key(path: Path) -> str:
    return str(Path(path).resolve())


def _read_document(path: Path) -> tuple[str, str]:
    key = _document_key(path)
    return key, Path(key).read_text(encoding="utf-8")


class EvalEngine:
    """Runs and approves the eval blocks of markdown documents."""

    def __init__(
        self,
        store: ApprovalStore,
        resolver: EvaluatorResolver | None = None,
        default_timeout: float | None = 30.0,
    ) -> None:
        """
        Args:
            store: Approval records for the workspace the documents live in.
            resolver: Evaluator lookup; a fresh PATH-backed resolver by default.
            default_timeout: Seconds per block when the directive sets no
                ``timeout``. None or 0 disables the limit.
        """
        self.store = store
        self.resolver = resolver or EvaluatorResolver()
        self.default_timeout = default_timeout

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def blocks(self, path: Path) -> list[CodeBlock]:
        """Evaluable blocks of the document at *path*, in document order."""
        _, text = _read_document(path)
        return evaluable_blocks(scan(text))

    def find_block(self, path: Path, name: str) -> CodeBlock:
        """The evaluable block called *name*.

        Raises:
            BlockNotFoundError: no such block.
            DirectiveError: more than one block uses the name.
        """
        key = _document_key(path)
        blocks = self.blocks(path)
        matches = [b for b in blocks if b.name == name]
        if not matches:
            raise BlockNotFoundError(name, key, [b.name for b in blocks if b.name])
        if len(matches) > 1:
            lines = ", ".join(str(b.start_line) for b in matches)
            raise DirectiveError(f"Block name '{name}' is used more than once in {key} (lines {lines})")
        return matches[0]

    def list_blocks(self, path: Path) -> list[BlockStatus]:
        """Approval status of every evaluable block, without prompting."""
        key = _document_key(path)
        statuses: list[BlockStatus] = []
        for block in self.blocks(path):
            if not block.name:
                statuses.append(BlockStatus(block=block, state=None))
                continue
            record = self.store.get_block_record(key, block.name)
            statuses.append(
                BlockStatus(
                    block=block,
                    state=self.store.status(key, block),
                    mode=record.mode if record else None,
                )
            )
        return statuses

    def list_approvals(self) -> tuple[list[ApprovalRecord], list[DocumentApprovalRecord]]:
        return self.store.list_approvals()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, path: Path, name: str | None = None) -> RunReport:
        """Evaluate the named block (or every evaluable block) and patch the results in.

        Errors that belong to one block (unapproved, no evaluator, bad
        parameters, non-zero exit, timeout) are recorded on its result and
        the remaining blocks still run. Only executed results are written
        back; the document is rewritten once, and only if it changed.

        Raises:
            BlockNotFoundError: *name* given but no block carries it.
            OSError: the document cannot be read or written.
        """
        key, text = _read_document(path)
        blocks = evaluable_blocks(scan(text))

        if name is not None:
            selected = [b for b in blocks if b.name == name]
            if not selected:
                raise BlockNotFoundError(name, key, [b.name for b in blocks if b.name])
        else:
            selected = blocks

        document_dir = Path(key).parent
        report = RunReport(file_path=key)
        for block in selected:
            report.results.append(self._evaluate(key, block, document_dir))

        executed = report.executed
        if executed:
            patched = patch(text, executed, Path(key))
            if patched != text:
                write_atomic(Path(key), patched)
                report.patched = True
                logger.info("Updated %s with %d result(s)", key, len(executed))

        return report

    def _evaluate(self, file_path: str, block: CodeBlock, document_dir: Path) -> EvalResult:
        result = EvalResult(block=block)
        try:
            self._authorize(file_path, block)
            handle = self.resolver.resolve(block.runtime)
            working_dir = resolve_working_dir(block.directive.params, document_dir)
        except EvalError as exc:
            logger.info("Skipping block '%s': %s", block.name or block.start_line, exc)
            result.error = exc
            return result

        started = time.monotonic()
        try:
            result.output = execute(
                handle,
                block.source,
                block.directive.params,
                working_dir,
                default_timeout=self.default_timeout,
            )
        except ExecutionError as exc:
            result.output = exc.output
            result.error = exc
        except EvalError as exc:
            result.error = exc
            return result
        finally:
            result.duration = time.monotonic() - started

        result.executed = True
        return result

    def _authorize(self, file_path: str, block: CodeBlock) -> None:
        state = self.store.status(file_path, block)
        if self.store.check_approval(file_path, block):
            return
        if state is ApprovalState.STALE:
            raise ApprovalStale(block.name, file_path)
        if state is ApprovalState.PROMPT:
            reason = "confirmation declined" if self.store.confirm else "prompt mode needs an interactive terminal"
            raise ApprovalRequired(block.name, file_path, reason)
        raise ApprovalRequired(block.name, file_path)

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    def approve_block(self, path: Path, name: str, mode: ApprovalMode | None = None) -> ApprovalRecord:
        """Approve the current content of block *name*.

        *mode* defaults to the security policy's mode for the document.
        """
        key = _document_key(path)
        block = self.find_block(path, name)
        return self.store.approve_block(key, block, mode or self.store.default_mode(key))

    def revoke_block(self, path: Path, name: str) -> bool:
        return self.store.revoke_block(_document_key(path), name)

    def approve_document(
        self, path: Path, mode: ApprovalMode | None = None
    ) -> tuple[DocumentApprovalRecord, list[ApprovalRecord]]:
        """Approve the whole document.

        In ``hash`` mode every named block also gets a hash record, so the
        approval covers exactly the content present now.

        Returns:
            The document record and any block records written with it.
        """
        key = _document_key(path)
        mode = ApprovalMode(mode or self.store.default_mode(key))
        block_records: list[ApprovalRecord] = []
        if mode is ApprovalMode.HASH:
            for block in self.blocks(path):
                if block.name:
                    block_records.append(self.store.approve_block(key, block, ApprovalMode.HASH))
        return self.store.approve_document(key, mode), block_records

    def revoke_document(self, path: Path) -> bool:
        return self.store.revoke_document(_document_key(path))
