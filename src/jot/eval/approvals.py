"""Approval store: hash-verified grants for running code blocks.

Two JSON files in the workspace's ``.jot/`` directory hold the records:

  eval_permissions            per-block:  [{hash, mode, file_path, block_name, approved_at}]
  eval_document_permissions   per-file:    [{file_path, mode, approved_at}]

Both files are read once when the store is built and rewritten wholesale
(temp file → rename) on every mutation. A missing file is an empty record
set. An unreadable file (I/O error) raises PersistenceError. A file that
reads but does not parse is treated as empty and the store fails closed:
nothing it covers is approved, and mutations refuse to overwrite it.

Validation rules (check_approval):
  - document record in ``always`` mode        → approved
  - block record in ``hash`` mode             → approved while the hash matches
  - block record in ``prompt`` mode           → ask ``confirm`` every time
  - block record in ``always`` mode           → approved
  - document record in ``prompt`` mode        → ask ``confirm`` for blocks
                                                without a valid block record
  - security rule with require_approval=False → approved
"""

from __future__ import annotations

import fnmatch
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from jot.eval.errors import DirectiveError, PersistenceError
from jot.eval.models import ApprovalMode, ApprovalState, CodeBlock
from jot.fileio import write_atomic

logger = logging.getLogger(__name__)

BLOCK_APPROVALS_FILE = "eval_permissions"
DOCUMENT_APPROVALS_FILE = "eval_document_permissions"

# (file_path, block, reason) -> True to run the block this time
ConfirmFn = Callable[[str, CodeBlock, str], bool]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValueError(f"record field '{key}' must be a string")
    return value


@dataclass
class ApprovalRecord:
    hash: str
    mode: ApprovalMode
    file_path: str
    block_name: str
    approved_at: str

    @property
    def key(self) -> str:
        return f"{self.file_path}:{self.block_name}"

    def to_dict(self) -> dict[str, str]:
        data = asdict(self)
        data["mode"] = self.mode.value
        return data

    @classmethod
    def from_dict(cls, data: Any) -> ApprovalRecord:
        if not isinstance(data, dict):
            raise ValueError("approval record must be an object")
        return cls(
            hash=_require_str(data, "hash"),
            mode=ApprovalMode.parse(_require_str(data, "mode")),
            file_path=_require_str(data, "file_path"),
            block_name=_require_str(data, "block_name"),
            approved_at=str(data.get("approved_at", "")),
        )


@dataclass
class DocumentApprovalRecord:
    file_path: str
    mode: ApprovalMode
    approved_at: str

    def to_dict(self) -> dict[str, str]:
        data = asdict(self)
        data["mode"] = self.mode.value
        return data

    @classmethod
    def from_dict(cls, data: Any) -> DocumentApprovalRecord:
        if not isinstance(data, dict):
            raise ValueError("document approval record must be an object")
        return cls(
            file_path=_require_str(data, "file_path"),
            mode=ApprovalMode.parse(_require_str(data, "mode")),
            approved_at=str(data.get("approved_at", "")),
        )


# ---------------------------------------------------------------------------
# Path security policy
# ---------------------------------------------------------------------------


@dataclass
class SecurityRule:
    """One path rule (config.yaml: security[]).

    Attributes:
        path: Glob matched against the absolute document path and the path
            relative to the workspace root.
        require_approval: When False, blocks under this path run unapproved.
        default_mode: Approval mode used when ``--mode`` is not given. None
            falls back to the policy-wide mode (config eval.default_mode).
    """

    path: str = "*"
    require_approval: bool = True
    default_mode: ApprovalMode | None = None


class SecurityPolicy:
    """Picks the most specific (longest) matching rule for a document."""

    def __init__(
        self,
        rules: list[SecurityRule] | None = None,
        root: Path | None = None,
        default_mode: ApprovalMode = ApprovalMode.HASH,
    ) -> None:
        self.rules = list(rules or [])
        self.root = root.resolve() if root is not None else None
        self.default_mode = ApprovalMode(default_mode)
        self.fallback = SecurityRule(default_mode=self.default_mode)

    def rule_for(self, file_path: str) -> SecurityRule:
        candidates = [file_path]
        if self.root is not None:
            try:
                candidates.append(Path(file_path).relative_to(self.root).as_posix())
            except ValueError:
                pass

        best: SecurityRule | None = None
        for rule in self.rules:
            if any(fnmatch.fnmatch(c, rule.path) for c in candidates):
                if best is None or len(rule.path) > len(best.path):
                    best = rule
        return best or self.fallback

    def mode_for(self, file_path: str) -> ApprovalMode:
        """Approval mode for new approvals of *file_path*."""
        return self.rule_for(file_path).default_mode or self.default_mode


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ApprovalStore:
    """Owns both approval record collections and their files.

    Build one per invocation and pass it to whatever needs approvals.
    """

    def __init__(
        self,
        jot_dir: Path,
        *,
        policy: SecurityPolicy | None = None,
        confirm: ConfirmFn | None = None,
    ) -> None:
        """Load both record files from *jot_dir*.

        Args:
            jot_dir: The workspace's private data directory (``.jot``).
            policy: Path rules; default requires approval everywhere.
            confirm: Interactive confirmation for prompt mode. None means
                non-interactive: prompt-mode approvals never pass.

        Raises:
            PersistenceError: if a record file exists but cannot be read.
        """
        self.jot_dir = Path(jot_dir)
        self.policy = policy or SecurityPolicy()
        self.confirm = confirm
        self.block_path = self.jot_dir / BLOCK_APPROVALS_FILE
        self.document_path = self.jot_dir / DOCUMENT_APPROVALS_FILE

        self._blocks: dict[str, ApprovalRecord] = {}
        self._documents: dict[str, DocumentApprovalRecord] = {}
        self._corrupt: set[Path] = set()

        for record in self._load(self.block_path, ApprovalRecord.from_dict):
            self._blocks[record.key] = record
        for record in self._load(self.document_path, DocumentApprovalRecord.from_dict):
            self._documents[record.file_path] = record

    # -- loading / saving ---------------------------------------------------

    def _load(self, path: Path, parse: Callable[[Any], Any]) -> list[Any]:
        if not path.exists():
            return []
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Failed to read approvals from {path}: {exc}") from exc

        if not text.strip():
            return []
        try:
            data = json.loads(text)
            if data is None:
                return []
            if not isinstance(data, list):
                raise ValueError("expected a JSON array of records")
            return [parse(item) for item in data]
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError too
            logger.warning("Approval file %s is corrupt (%s); treating all blocks as unapproved", path, exc)
            self._corrupt.add(path)
            return []

    def _save(self, path: Path, records: list[dict[str, str]]) -> None:
        if path in self._corrupt:
            raise PersistenceError(
                f"Refusing to overwrite unreadable approval file {path}. "
                "Fix or remove it, then approve again."
            )
        payload = json.dumps(records, indent=2) + "\n"
        try:
            write_atomic(path, payload)
        except OSError as exc:
            raise PersistenceError(f"Failed to write approvals to {path}: {exc}") from exc
        logger.debug("Wrote %d record(s) to %s", len(records), path)

    def _save_blocks(self, blocks: dict[str, ApprovalRecord]) -> None:
        ordered = sorted(blocks.values(), key=lambda r: (r.file_path, r.block_name))
        self._save(self.block_path, [r.to_dict() for r in ordered])

    def _save_documents(self, documents: dict[str, DocumentApprovalRecord]) -> None:
        ordered = sorted(documents.values(), key=lambda r: r.file_path)
        self._save(self.document_path, [r.to_dict() for r in ordered])

    @property
    def corrupt(self) -> bool:
        return bool(self._corrupt)

    # -- queries -------------------------------------------------------------

    @staticmethod
    def _block_name(block: CodeBlock) -> str:
        if block.directive is None or not block.name:
            raise DirectiveError(
                f"Code block at line {block.start_line} has no name; "
                'add name="..." to its <eval /> directive'
            )
        return block.name

    def get_block_record(self, file_path: str, block_name: str) -> ApprovalRecord | None:
        return self._blocks.get(f"{file_path}:{block_name}")

    def get_document_record(self, file_path: str) -> DocumentApprovalRecord | None:
        return self._documents.get(file_path)

    def status(self, file_path: str, block: CodeBlock) -> ApprovalState:
        """Approval state of *block* without prompting.

        Raises:
            DirectiveError: if the block has no name.
        """
        name = self._block_name(block)

        if self._corrupt:
            return ApprovalState.MISSING

        document = self._documents.get(file_path)
        if document is not None and document.mode is ApprovalMode.ALWAYS:
            return ApprovalState.DOCUMENT

        if not self.policy.rule_for(file_path).require_approval:
            return ApprovalState.POLICY

        record = self._blocks.get(f"{file_path}:{name}")
        state = ApprovalState.MISSING
        if record is not None:
            if record.mode is ApprovalMode.ALWAYS:
                state = ApprovalState.APPROVED
            elif record.mode is ApprovalMode.PROMPT:
                state = ApprovalState.PROMPT
            elif record.hash == block.content_hash:
                state = ApprovalState.APPROVED
            else:
                state = ApprovalState.STALE

        if document is not None and document.mode is ApprovalMode.PROMPT and not state.runnable:
            return ApprovalState.PROMPT
        return state

    def check_approval(self, file_path: str, block: CodeBlock) -> bool:
        """True if *block* in *file_path* may run now.

        Prompt-mode approvals call ``confirm`` on every check; a stored hash
        alone never satisfies them.

        Raises:
            DirectiveError: if the block has no name.
        """
        state = self.status(file_path, block)
        if state.runnable:
            return True
        if state is ApprovalState.PROMPT:
            if self.confirm is None:
                logger.debug("Block '%s' needs confirmation but no prompt is available", block.name)
                return False
            record = self._blocks.get(f"{file_path}:{block.name}")
            reason = "prompt mode"
            if record is not None and record.hash != block.content_hash:
                reason = "prompt mode, content changed since approval"
            return bool(self.confirm(file_path, block, reason))
        return False

    def list_approvals(self) -> tuple[list[ApprovalRecord], list[DocumentApprovalRecord]]:
        """All block records and document records, sorted by path."""
        blocks = sorted(self._blocks.values(), key=lambda r: (r.file_path, r.block_name))
        documents = sorted(self._documents.values(), key=lambda r: r.file_path)
        return blocks, documents

    def default_mode(self, file_path: str) -> ApprovalMode:
        return self.policy.mode_for(file_path)

    # -- mutations -----------------------------------------------------------

    def approve_block(self, file_path: str, block: CodeBlock, mode: ApprovalMode) -> ApprovalRecord:
        """Store (or overwrite) the approval for *block* and persist it.

        Raises:
            DirectiveError: if the block has no name.
            PersistenceError: if the record file cannot be written.
        """
        name = self._block_name(block)
        record = ApprovalRecord(
            hash=block.content_hash,
            mode=ApprovalMode(mode),
            file_path=file_path,
            block_name=name,
            approved_at=_now(),
        )
        blocks = dict(self._blocks)
        blocks[record.key] = record
        self._save_blocks(blocks)
        self._blocks = blocks
        logger.info("Approved block '%s' in %s (%s mode)", name, file_path, record.mode.value)
        return record

    def revoke_block(self, file_path: str, block_name: str) -> bool:
        """Remove a block approval. Returns False if there was none."""
        key = f"{file_path}:{block_name}"
        if key not in self._blocks:
            return False
        blocks = dict(self._blocks)
        del blocks[key]
        self._save_blocks(blocks)
        self._blocks = blocks
        logger.info("Revoked block '%s' in %s", block_name, file_path)
        return True

    def approve_document(self, file_path: str, mode: ApprovalMode) -> DocumentApprovalRecord:
        """Store (or overwrite) the document approval for *file_path*."""
        record = DocumentApprovalRecord(file_path=file_path, mode=ApprovalMode(mode), approved_at=_now())
        documents = dict(self._documents)
        documents[file_path] = record
        self._save_documents(documents)
        self._documents = documents
        logger.info("Approved document %s (%s mode)", file_path, record.mode.value)
        return record

    def revoke_document(self, file_path: str) -> bool:
        """Remove a document approval. Returns False if there was none."""
        if file_path not in self._documents:
            return False
        documents = dict(self._documents)
        del documents[file_path]
        self._save_documents(documents)
        self._documents = documents
        logger.info("Revoked document %s", file_path)
        return True
