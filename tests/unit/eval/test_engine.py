"""Tests for eval/engine.py: end-to-end scan → approve → execute → patch."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

from jot.eval.approvals import ApprovalStore, SecurityPolicy, SecurityRule
from jot.eval.engine import EvalEngine
from jot.eval.errors import (
    ApprovalRequired,
    ApprovalStale,
    BlockNotFoundError,
    DirectiveError,
    EvaluatorNotFound,
    ExecutionError,
    ExecutionFailure,
    ExecutionTimeout,
)
from jot.eval.models import ApprovalMode, ApprovalState
from jot.eval.resolver import EvaluatorResolver

pytestmark = pytest.mark.skipif(shutil.which("bash") is None, reason="bash not installed")

HELLO = '# Demo\n\n<eval name="hello" />\n```bash\necho "Hello, jot!"\n```\n'


def _engine(workspace, **store_kwargs) -> EvalEngine:
    return EvalEngine(ApprovalStore(workspace.jot_dir, **store_kwargs), default_timeout=10.0)


# ------------------------------------------------------------------
# run
# ------------------------------------------------------------------


def test_approved_block_runs_and_patches(workspace, write_doc) -> None:
    doc = write_doc(HELLO)
    engine = _engine(workspace)
    engine.approve_block(doc, "hello")

    report = engine.run(doc, "hello")

    assert report.ok
    assert report.patched
    assert report.results[0].output == "Hello, jot!\n"
    assert doc.read_text(encoding="utf-8") == HELLO + "\n```\nHello, jot!\n```\n"


def test_second_run_is_a_no_op(workspace, write_doc) -> None:
    doc = write_doc(HELLO)
    engine = _engine(workspace)
    engine.approve_block(doc, "hello")
    engine.run(doc, "hello")
    first = doc.read_text(encoding="utf-8")

    report = engine.run(doc, "hello")

    assert report.ok
    assert report.patched is False
    assert doc.read_text(encoding="utf-8") == first


def test_unapproved_block_is_not_executed(workspace, write_doc, tmp_path: Path) -> None:
    marker = tmp_path / "ran"
    doc = write_doc(f'<eval name="x" />\n```bash\ntouch {marker}\n```\n')

    report = _engine(workspace).run(doc, "x")

    assert not report.ok
    assert isinstance(report.results[0].error, ApprovalRequired)
    assert report.results[0].executed is False
    assert not marker.exists()
    assert report.patched is False


def test_edited_block_is_stale(workspace, write_doc) -> None:
    doc = write_doc(HELLO)
    engine = _engine(workspace)
    engine.approve_block(doc, "hello")
    edited = HELLO.replace("Hello, jot!", "Hello, world!")
    write_doc(edited)

    report = engine.run(doc, "hello")

    assert isinstance(report.results[0].error, ApprovalStale)
    assert "content changed" in str(report.results[0].error)
    assert doc.read_text(encoding="utf-8") == edited


def test_unknown_evaluator_leaves_document_untouched(workspace, write_doc) -> None:
    text = '<eval name="ghost" shell="nonexistent-lang" />\n```text\nanything\n```\n'
    doc = write_doc(text)
    engine = _engine(workspace)
    engine.approve_block(doc, "ghost")

    report = engine.run(doc, "ghost")

    assert isinstance(report.results[0].error, EvaluatorNotFound)
    assert doc.read_text(encoding="utf-8") == text


def test_failure_output_is_recorded(workspace, write_doc) -> None:
    doc = write_doc('<eval name="bad" />\n```bash\necho oops\nexit 2\n```\n')
    engine = _engine(workspace)
    engine.approve_block(doc, "bad")

    report = engine.run(doc, "bad")

    result = report.results[0]
    assert isinstance(result.error, ExecutionFailure)
    assert result.executed
    assert "Error: bash exited with code 2\noops" in doc.read_text(encoding="utf-8")


def test_timeout_is_reported(workspace, write_doc) -> None:
    doc = write_doc('<eval name="slow" timeout="200ms" />\n```bash\nsleep 5\n```\n')
    engine = _engine(workspace)
    engine.approve_block(doc, "slow")

    report = engine.run(doc, "slow")

    assert isinstance(report.results[0].error, ExecutionTimeout)
    assert "timed out" in doc.read_text(encoding="utf-8")


def test_run_all_continues_past_failures(workspace, write_doc) -> None:
    doc = write_doc(
        '<eval name="unapproved" />\n```bash\necho no\n```\n\n'
        "<eval />\n```bash\necho unnamed\n```\n\n"
        '<eval name="ok" />\n```bash\necho yes\n```\n'
    )
    engine = _engine(workspace)
    engine.approve_block(doc, "ok")

    report = engine.run(doc)

    errors = [type(r.error) for r in report.results]
    assert errors == [ApprovalRequired, DirectiveError, type(None)]
    text = doc.read_text(encoding="utf-8")
    assert text.endswith('<eval name="ok" />\n```bash\necho yes\n```\n\n```\nyes\n```\n')
    assert "```\nno\n```" not in text


def test_evaluator_that_cannot_start_fails_only_its_block(workspace, write_doc, tmp_path: Path) -> None:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    junk = bin_dir / "jot-eval-junk"
    junk.write_bytes(b"\x7fgarbage, not a program\x00")
    junk.chmod(0o755)
    doc = write_doc(
        '<eval name="a" />\n```bash\necho first\n```\n\n'
        '<eval name="b" />\n```junk\nanything\n```\n'
    )
    resolver = EvaluatorResolver(search_path=f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    engine = EvalEngine(ApprovalStore(workspace.jot_dir), resolver, default_timeout=10.0)
    engine.approve_block(doc, "a")
    engine.approve_block(doc, "b")

    report = engine.run(doc)

    assert report.results[0].ok
    assert isinstance(report.results[1].error, ExecutionError)
    assert report.patched
    text = doc.read_text(encoding="utf-8")
    assert "```\nfirst\n```" in text
    assert "could not start jot-eval-junk" in text


def test_run_unknown_name_raises(workspace, write_doc) -> None:
    doc = write_doc(HELLO)
    with pytest.raises(BlockNotFoundError) as excinfo:
        _engine(workspace).run(doc, "missing")
    assert excinfo.value.available == ["hello"]


def test_cwd_and_env_parameters(workspace, write_doc) -> None:
    (workspace.root / "sub").mkdir()
    doc = write_doc('<eval name="where" cwd="sub" env="WHO=jot" />\n```bash\necho "$WHO in $(basename "$PWD")"\n```\n')
    engine = _engine(workspace)
    engine.approve_block(doc, "where")

    report = engine.run(doc, "where")

    assert report.results[0].output == "jot in sub\n"


def test_prompt_mode_uses_confirm(workspace, write_doc) -> None:
    doc = write_doc(HELLO)
    answers = iter([False, True])
    engine = _engine(workspace, confirm=lambda f, b, r: next(answers))
    engine.approve_block(doc, "hello", ApprovalMode.PROMPT)

    declined = engine.run(doc, "hello")
    assert isinstance(declined.results[0].error, ApprovalRequired)
    assert "declined" in str(declined.results[0].error)

    accepted = engine.run(doc, "hello")
    assert accepted.ok


def test_policy_without_approval_runs(workspace, write_doc) -> None:
    doc = write_doc(HELLO, name="scratch/try.md")
    policy = SecurityPolicy([SecurityRule(path="scratch/*", require_approval=False)], workspace.root)
    engine = _engine(workspace, policy=policy)

    assert engine.run(doc, "hello").ok


# ------------------------------------------------------------------
# approvals
# ------------------------------------------------------------------


def test_document_always_approval_runs_everything(workspace, write_doc) -> None:
    doc = write_doc(HELLO + '\n<eval name="two" />\n```bash\necho 2\n```\n')
    engine = _engine(workspace)
    record, block_records = engine.approve_document(doc, ApprovalMode.ALWAYS)

    assert record.mode is ApprovalMode.ALWAYS
    assert block_records == []
    assert engine.run(doc).ok


def test_document_hash_approval_pins_blocks(workspace, write_doc) -> None:
    doc = write_doc(HELLO + '\n<eval name="two" />\n```bash\necho 2\n```\n')
    engine = _engine(workspace)
    _, block_records = engine.approve_document(doc)

    assert sorted(r.block_name for r in block_records) == ["hello", "two"]
    assert engine.run(doc).ok

    write_doc(doc.read_text(encoding="utf-8").replace("echo 2", "echo 3"))
    report = engine.run(doc, "two")
    assert isinstance(report.results[0].error, ApprovalStale)


def test_list_blocks_reports_states(workspace, write_doc) -> None:
    doc = write_doc(HELLO + '\n<eval name="two" />\n```bash\necho 2\n```\n\n<eval />\n```bash\necho\n```\n')
    engine = _engine(workspace)
    engine.approve_block(doc, "hello", ApprovalMode.ALWAYS)

    statuses = engine.list_blocks(doc)

    assert [(s.name, s.state) for s in statuses] == [
        ("hello", ApprovalState.APPROVED),
        ("two", ApprovalState.MISSING),
        ("", None),
    ]
    assert statuses[0].mode is ApprovalMode.ALWAYS


def test_approve_duplicate_name_is_rejected(workspace, write_doc) -> None:
    doc = write_doc(HELLO + "\n" + HELLO)
    with pytest.raises(DirectiveError, match="more than once"):
        _engine(workspace).approve_block(doc, "hello")


def test_approve_uses_policy_default_mode(workspace, write_doc) -> None:
    doc = write_doc(HELLO, name="runbooks/deploy.md")
    policy = SecurityPolicy([SecurityRule(path="runbooks/*", default_mode=ApprovalMode.PROMPT)], workspace.root)
    record = _engine(workspace, policy=policy).approve_block(doc, "hello")
    assert record.mode is ApprovalMode.PROMPT


def test_revoke(workspace, write_doc) -> None:
    doc = write_doc(HELLO)
    engine = _engine(workspace)
    engine.approve_block(doc, "hello")
    engine.approve_document(doc, ApprovalMode.ALWAYS)

    assert engine.revoke_document(doc) is True
    assert engine.revoke_block(doc, "hello") is True
    assert engine.list_approvals() == ([], [])
    assert not engine.run(doc, "hello").ok
