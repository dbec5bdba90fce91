"""Tests for eval/approvals.py: records, modes, persistence, security rules."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from jot.eval.approvals import (
    BLOCK_APPROVALS_FILE,
    DOCUMENT_APPROVALS_FILE,
    ApprovalStore,
    SecurityPolicy,
    SecurityRule,
)
from jot.eval.errors import DirectiveError, PersistenceError
from jot.eval.models import ApprovalMode, ApprovalState, CodeBlock, EvalDirective

DOC = "/notes/setup.md"


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _block(name: str = "hello", source: str = 'echo "Hello, jot!"') -> CodeBlock:
    return CodeBlock(
        start_line=2,
        end_line=4,
        language="bash",
        source_lines=source.split("\n"),
        directive=EvalDirective({"name": name}) if name else EvalDirective({}),
    )


@pytest.fixture
def jot_dir(tmp_path: Path) -> Path:
    d = tmp_path / ".jot"
    d.mkdir()
    return d


# ------------------------------------------------------------------
# hash mode
# ------------------------------------------------------------------


def test_unapproved_block_is_missing(jot_dir: Path) -> None:
    store = ApprovalStore(jot_dir)
    assert store.status(DOC, _block()) is ApprovalState.MISSING
    assert store.check_approval(DOC, _block()) is False


def test_hash_approval_then_edit_is_stale(jot_dir: Path) -> None:
    store = ApprovalStore(jot_dir)
    store.approve_block(DOC, _block(), ApprovalMode.HASH)
    assert store.check_approval(DOC, _block()) is True

    edited = _block(source='echo "Hello, world!"')
    assert store.status(DOC, edited) is ApprovalState.STALE
    assert store.check_approval(DOC, edited) is False


def test_reapprove_after_edit(jot_dir: Path) -> None:
    store = ApprovalStore(jot_dir)
    store.approve_block(DOC, _block(), ApprovalMode.HASH)
    edited = _block(source="echo changed")
    store.approve_block(DOC, edited, ApprovalMode.HASH)
    assert store.check_approval(DOC, edited) is True
    assert len(store.list_approvals()[0]) == 1


def test_approval_is_per_file(jot_dir: Path) -> None:
    store = ApprovalStore(jot_dir)
    store.approve_block(DOC, _block(), ApprovalMode.HASH)
    assert store.check_approval("/notes/other.md", _block()) is False


def test_unnamed_block_raises(jot_dir: Path) -> None:
    store = ApprovalStore(jot_dir)
    with pytest.raises(DirectiveError, match="name"):
        store.approve_block(DOC, _block(name=""), ApprovalMode.HASH)
    with pytest.raises(DirectiveError):
        store.check_approval(DOC, _block(name=""))


# ------------------------------------------------------------------
# always / prompt modes
# ------------------------------------------------------------------


def test_always_mode_ignores_content(jot_dir: Path) -> None:
    store = ApprovalStore(jot_dir)
    store.approve_block(DOC, _block(), ApprovalMode.ALWAYS)
    assert store.check_approval(DOC, _block(source="rm -rf /tmp/x")) is True


def test_prompt_mode_without_confirm_is_denied(jot_dir: Path) -> None:
    store = ApprovalStore(jot_dir)
    store.approve_block(DOC, _block(), ApprovalMode.PROMPT)
    assert store.status(DOC, _block()) is ApprovalState.PROMPT
    assert store.check_approval(DOC, _block()) is False


def test_prompt_mode_asks_every_time(jot_dir: Path) -> None:
    calls: list[str] = []

    def confirm(file_path: str, block: CodeBlock, reason: str) -> bool:
        calls.append(reason)
        return True

    store = ApprovalStore(jot_dir, confirm=confirm)
    store.approve_block(DOC, _block(), ApprovalMode.PROMPT)
    assert store.check_approval(DOC, _block()) is True
    assert store.check_approval(DOC, _block()) is True
    assert calls == ["prompt mode", "prompt mode"]


def test_prompt_mode_reports_changed_content(jot_dir: Path) -> None:
    reasons: list[str] = []
    store = ApprovalStore(jot_dir, confirm=lambda f, b, r: reasons.append(r) or False)
    store.approve_block(DOC, _block(), ApprovalMode.PROMPT)
    assert store.check_approval(DOC, _block(source="echo new")) is False
    assert "content changed" in reasons[0]


# ------------------------------------------------------------------
# document approvals
# ------------------------------------------------------------------


def test_document_always_covers_every_block(jot_dir: Path) -> None:
    store = ApprovalStore(jot_dir)
    store.approve_document(DOC, ApprovalMode.ALWAYS)
    assert store.status(DOC, _block("a")) is ApprovalState.DOCUMENT
    assert store.check_approval(DOC, _block("b", "echo anything")) is True


def test_document_hash_defers_to_block_records(jot_dir: Path) -> None:
    store = ApprovalStore(jot_dir)
    store.approve_document(DOC, ApprovalMode.HASH)
    assert store.check_approval(DOC, _block()) is False
    store.approve_block(DOC, _block(), ApprovalMode.HASH)
    assert store.check_approval(DOC, _block()) is True


def test_document_prompt_asks_for_unapproved_blocks(jot_dir: Path) -> None:
    asked: list[str] = []
    store = ApprovalStore(jot_dir, confirm=lambda f, b, r: asked.append(b.name) or True)
    store.approve_document(DOC, ApprovalMode.PROMPT)
    store.approve_block(DOC, _block("pinned"), ApprovalMode.HASH)

    assert store.check_approval(DOC, _block("pinned")) is True
    assert store.check_approval(DOC, _block("loose")) is True
    assert asked == ["loose"]


def test_revoke_document(jot_dir: Path) -> None:
    store = ApprovalStore(jot_dir)
    store.approve_document(DOC, ApprovalMode.ALWAYS)
    assert store.revoke_document(DOC) is True
    assert store.revoke_document(DOC) is False
    assert store.check_approval(DOC, _block()) is False


def test_revoke_block(jot_dir: Path) -> None:
    store = ApprovalStore(jot_dir)
    store.approve_block(DOC, _block(), ApprovalMode.HASH)
    assert store.revoke_block(DOC, "hello") is True
    assert store.revoke_block(DOC, "hello") is False
    assert store.check_approval(DOC, _block()) is False


# ------------------------------------------------------------------
# persistence
# ------------------------------------------------------------------


def test_records_survive_reload(jot_dir: Path) -> None:
    ApprovalStore(jot_dir).approve_block(DOC, _block(), ApprovalMode.HASH)
    ApprovalStore(jot_dir).approve_document(DOC, ApprovalMode.PROMPT)

    reloaded = ApprovalStore(jot_dir)
    record = reloaded.get_block_record(DOC, "hello")
    assert record is not None
    assert record.hash == _block().content_hash
    assert record.mode is ApprovalMode.HASH
    assert reloaded.get_document_record(DOC).mode is ApprovalMode.PROMPT


def test_record_file_format(jot_dir: Path) -> None:
    ApprovalStore(jot_dir).approve_block(DOC, _block(), ApprovalMode.HASH)
    data = json.loads((jot_dir / BLOCK_APPROVALS_FILE).read_text(encoding="utf-8"))
    assert data == [
        {
            "hash": _block().content_hash,
            "mode": "hash",
            "file_path": DOC,
            "block_name": "hello",
            "approved_at": data[0]["approved_at"],
        }
    ]
    assert data[0]["approved_at"].endswith("+00:00")


def test_no_temp_files_left_behind(jot_dir: Path) -> None:
    store = ApprovalStore(jot_dir)
    store.approve_block(DOC, _block(), ApprovalMode.HASH)
    store.approve_document(DOC, ApprovalMode.ALWAYS)
    assert sorted(p.name for p in jot_dir.iterdir()) == [BLOCK_APPROVALS_FILE, DOCUMENT_APPROVALS_FILE]


def test_empty_file_is_empty_store(jot_dir: Path) -> None:
    (jot_dir / BLOCK_APPROVALS_FILE).write_text("", encoding="utf-8")
    store = ApprovalStore(jot_dir)
    assert store.corrupt is False
    assert store.list_approvals() == ([], [])


def test_corrupt_file_fails_closed(jot_dir: Path) -> None:
    ApprovalStore(jot_dir).approve_block(DOC, _block(), ApprovalMode.ALWAYS)
    ApprovalStore(jot_dir).approve_document(DOC, ApprovalMode.ALWAYS)
    (jot_dir / BLOCK_APPROVALS_FILE).write_text("{not json", encoding="utf-8")

    store = ApprovalStore(jot_dir)
    assert store.corrupt is True
    # The intact document record does not rescue anything either.
    assert store.check_approval(DOC, _block()) is False


def test_corrupt_file_is_not_overwritten(jot_dir: Path) -> None:
    path = jot_dir / BLOCK_APPROVALS_FILE
    path.write_text('[{"hash": 1}]', encoding="utf-8")

    store = ApprovalStore(jot_dir)
    with pytest.raises(PersistenceError, match="Refusing"):
        store.approve_block(DOC, _block(), ApprovalMode.HASH)
    assert path.read_text(encoding="utf-8") == '[{"hash": 1}]'


def test_failed_write_leaves_memory_unchanged(jot_dir: Path, monkeypatch) -> None:
    store = ApprovalStore(jot_dir)

    def boom(path: Path, content: str) -> None:
        raise OSError("disk full")

    monkeypatch.setattr("jot.eval.approvals.write_atomic", boom)
    with pytest.raises(PersistenceError, match="disk full"):
        store.approve_block(DOC, _block(), ApprovalMode.HASH)
    assert store.get_block_record(DOC, "hello") is None


# ------------------------------------------------------------------
# security policy
# ------------------------------------------------------------------


def test_policy_longest_match_wins(tmp_path: Path) -> None:
    base = tmp_path.resolve()
    policy = SecurityPolicy(
        [
            SecurityRule(path="*", require_approval=True),
            SecurityRule(path="scratch/*", require_approval=False),
            SecurityRule(path="scratch/keep/*", require_approval=True, default_mode=ApprovalMode.PROMPT),
        ],
        root=base,
    )
    assert policy.rule_for(str(base / "scratch" / "a.md")).require_approval is False
    rule = policy.rule_for(str(base / "scratch" / "keep" / "b.md"))
    assert rule.require_approval is True
    assert rule.default_mode is ApprovalMode.PROMPT


def test_policy_without_approval_requirement(jot_dir: Path, tmp_path: Path) -> None:
    policy = SecurityPolicy([SecurityRule(path="*/scratch/*", require_approval=False)])
    store = ApprovalStore(jot_dir, policy=policy)
    doc = str(tmp_path / "scratch" / "try.md")
    assert store.status(doc, _block()) is ApprovalState.POLICY
    assert store.check_approval(doc, _block()) is True
    assert store.check_approval(DOC, _block()) is False


def test_default_mode_from_policy(jot_dir: Path) -> None:
    policy = SecurityPolicy([SecurityRule(path="/runbooks/*", default_mode=ApprovalMode.PROMPT)])
    store = ApprovalStore(jot_dir, policy=policy)
    assert store.default_mode("/runbooks/deploy.md") is ApprovalMode.PROMPT
    assert store.default_mode(DOC) is ApprovalMode.HASH


def test_rule_without_mode_uses_policy_default(jot_dir: Path) -> None:
    policy = SecurityPolicy(
        [SecurityRule(path="/scratch/*", require_approval=True)],
        default_mode=ApprovalMode.ALWAYS,
    )
    store = ApprovalStore(jot_dir, policy=policy)
    assert store.default_mode("/scratch/a.md") is ApprovalMode.ALWAYS
    assert store.default_mode(DOC) is ApprovalMode.ALWAYS
    assert policy.rule_for(DOC).default_mode is ApprovalMode.ALWAYS
