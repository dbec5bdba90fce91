"""Domain models for the eval engine."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import Enum


class ApprovalMode(str, Enum):
    """How a stored approval is validated at execution time."""

    HASH = "hash"
    PROMPT = "prompt"
    ALWAYS = "always"

    @classmethod
    def parse(cls, value: str) -> ApprovalMode:
        """Return the mode named *value* (case-insensitive).

        Raises:
            ValueError: if *value* is not one of hash, prompt, always.
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid approval mode '{value}' (must be hash, prompt, or always)"
            ) from None


class ApprovalState(str, Enum):
    """Approval status of one block, as shown by ``jot eval list``."""

    APPROVED = "approved"
    DOCUMENT = "document"  # covered by a document-level `always` approval
    POLICY = "policy"  # security policy does not require approval
    PROMPT = "prompt"  # needs interactive confirmation at run time
    STALE = "stale"  # hash record exists but the block changed
    MISSING = "missing"

    @property
    def runnable(self) -> bool:
        return self in (ApprovalState.APPROVED, ApprovalState.DOCUMENT, ApprovalState.POLICY)


@dataclass
class EvalDirective:
    """Parameters from an ``<eval key="value" />`` marker."""

    params: dict[str, str] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.params.get("name", "")

    def get(self, key: str, default: str = "") -> str:
        return self.params.get(key, default)


@dataclass
class CodeBlock:
    """A fenced code block. Line numbers are 1-based and include the fences."""

    start_line: int
    end_line: int
    language: str
    source_lines: list[str] = field(default_factory=list)
    directive: EvalDirective | None = None
    info: str = ""
    directive_line: int | None = None

    @property
    def name(self) -> str:
        return self.directive.name if self.directive else ""

    @property
    def runtime(self) -> str:
        """Language handed to the resolver: ``shell`` overrides the fence language."""
        shell = self.directive.get("shell").strip() if self.directive else ""
        return shell or self.language

    @property
    def evaluable(self) -> bool:
        return self.directive is not None

    @property
    def source(self) -> str:
        return "\n".join(self.source_lines)

    @property
    def content_hash(self) -> str:
        """SHA-256 hex digest of the block body."""
        return hashlib.sha256(self.source.encode("utf-8")).hexdigest()


@dataclass
class EvalResult:
    """Outcome of evaluating one block during a single run."""

    block: CodeBlock
    output: str = ""
    error: Exception | None = None
    executed: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ResultSpec:
    """Placement and format parsed from a directive's ``results`` value."""

    placement: str = "replace"  # replace | append | prepend | none | silent
    format: str = "code"  # code | table | list | raw | file | html | verbatim

    @property
    def inserts(self) -> bool:
        return self.placement not in ("none", "silent")
