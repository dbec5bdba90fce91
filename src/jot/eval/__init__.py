"""jot eval engine: approved execution of fenced code blocks in markdown notes."""

from jot.eval.approvals import ApprovalStore, SecurityPolicy, SecurityRule
from jot.eval.engine import BlockStatus, EvalEngine, RunReport
from jot.eval.models import ApprovalMode, ApprovalState, CodeBlock, EvalDirective, EvalResult
from jot.eval.resolver import EvaluatorResolver
from jot.eval.scanner import scan, scan_file

__all__ = [
    "ApprovalMode",
    "ApprovalState",
    "ApprovalStore",
    "BlockStatus",
    "CodeBlock",
    "EvalDirective",
    "EvalEngine",
    "EvalResult",
    "EvaluatorResolver",
    "RunReport",
    "SecurityPolicy",
    "SecurityRule",
    "scan",
    "scan_file",
]
