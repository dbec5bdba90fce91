"""Block scanner: markdown text → ordered fenced code blocks.

Single forward pass. A directive attaches to the next opening fence when
only blank lines or single-line HTML comments sit between them; any other
content discards it. Fences inside code blocks are never directives.
Unterminated fences at end of document are dropped.
"""

from __future__ import annotations

import logging
from pathlib import Path

from jot.eval.models import CodeBlock, EvalDirective
from jot.eval.parser import is_comment_line, is_directive_line, parse_directive

logger = logging.getLogger(__name__)

FENCE = "```"


def split_lines(text: str) -> list[str]:
    """Split on "\n" only; a trailing newline does not start an extra line.

    Other Unicode line boundaries (U+2028, form feed, ...) stay inside their
    line, so patched documents keep them verbatim.
    """
    if not text:
        return []
    lines = text.split("\n")
    if text.endswith("\n"):
        lines.pop()
    return lines


def is_fence(line: str) -> bool:
    return line.strip().startswith(FENCE)


def fence_info(line: str) -> str:
    """Return the info string of an opening fence (text after the backticks)."""
    return line.strip().lstrip("`").strip()


def scan(text: str) -> list[CodeBlock]:
    """Parse *text* and return every fenced code block in document order."""
    blocks: list[CodeBlock] = []
    current: CodeBlock | None = None
    pending: EvalDirective | None = None
    pending_line: int | None = None

    for lineno, line in enumerate(split_lines(text), start=1):
        if current is not None:
            if is_fence(line):
                current.end_line = lineno
                blocks.append(current)
                current = None
            else:
                current.source_lines.append(line.rstrip("\r"))
            continue

        if is_fence(line):
            info = fence_info(line)
            current = CodeBlock(
                start_line=lineno,
                end_line=lineno,
                language=info.split()[0] if info else "",
                info=info,
                directive=pending,
                directive_line=pending_line if pending is not None else None,
            )
            pending, pending_line = None, None
            continue

        stripped = line.strip()
        if is_directive_line(stripped):
            directive = parse_directive(stripped)
            if directive is None:
                logger.warning("Ignoring malformed eval directive on line %d: %s", lineno, stripped)
            elif pending is not None:
                logger.debug("Directive on line %s has no code block; discarded", pending_line)
            pending = directive
            pending_line = lineno if directive is not None else None
        elif not stripped or is_comment_line(stripped):
            continue
        else:
            if pending is not None:
                logger.debug("Directive on line %s is not followed by a code block", pending_line)
            pending, pending_line = None, None

    if current is not None:
        logger.debug("Unterminated code block starting on line %d ignored", current.start_line)

    return blocks


def scan_file(path: Path) -> list[CodeBlock]:
    """Read *path* (UTF-8) and scan it.

    Raises:
        OSError: if the file cannot be read.
    """
    return scan(path.read_text(encoding="utf-8"))


def evaluable_blocks(blocks: list[CodeBlock]) -> list[CodeBlock]:
    """Blocks that carry an eval directive."""
    return [b for b in blocks if b.directive is not None]
