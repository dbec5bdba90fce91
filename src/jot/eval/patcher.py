"""Result patcher: write captured output back into the markdown document.

For each result the patcher:
  1. Verifies the block is still where the scan saw it: opening and closing
     fences in place and its directive above the opening fence with only
     blank or comment lines between (matched by name; unnamed directives
     match by proximity).
  2. Formats the output per the ``results`` format token.
  3. Splices it after the closing fence per the placement token, treating
     whatever result-shaped content already follows the fence as the
     previous result region.
  4. Leaves exactly one blank line around the inserted region.

``replace`` is idempotent: patching twice with the same results yields the
same text. Results are applied bottom-up so earlier line numbers stay valid.

Result-shaped content (the "result region"):
  - a fence whose info string is empty or ``html``
  - markdown table rows
  - an ``[Output File](...)`` or ``![Output](...)`` link line
  - a raw region between ``<!-- results -->`` and ``<!-- /results -->``
  - bullet rows, only when the directive asks for ``list`` output
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from jot.eval.errors import EvalError
from jot.eval.models import CodeBlock, EvalResult, ResultSpec
from jot.eval.parser import is_comment_line, is_directive_line, parse_directive, parse_results
from jot.eval.scanner import fence_info, is_fence, split_lines
from jot.fileio import confine_path, write_atomic

logger = logging.getLogger(__name__)

RAW_OPEN = "<!-- results -->"
RAW_CLOSE = "<!-- /results -->"

IMAGE_EXTENSIONS: frozenset[str] = frozenset([".png", ".jpg", ".jpeg", ".gif", ".svg"])

_LINK_RE = re.compile(r"^!?\[Output(?: File)?\]\([^)]*\)$")


class ResultFormatError(EvalError):
    """Captured output could not be formatted (e.g. a ``file`` target is not allowed)."""


# ------------------------------------------------------------------
# Formatting
# ------------------------------------------------------------------


def format_code(output: str) -> str:
    body = output.rstrip("\n")
    return f"```\n{body}\n```"


def format_html(output: str) -> str:
    body = output.rstrip("\n")
    return f"```html\n{body}\n```"


def _split_cells(line: str) -> list[str]:
    if "\t" in line:
        cells = line.split("\t")
    elif "," in line:
        cells = line.split(",")
    elif "|" in line:
        cells = line.strip("|").split("|")
    else:
        cells = [line]
    return [c.strip() for c in cells]


def format_table(output: str) -> str:
    """Markdown table; the delimiter (tab, comma, pipe) is sniffed per line.

    The first non-empty line becomes the header row.
    """
    rows: list[str] = []
    for line in output.strip().splitlines():
        line = line.strip()
        if not line:
            continue
        cells = _split_cells(line)
        rows.append("| " + " | ".join(cells) + " |")
        if len(rows) == 1:
            rows.append("|" + " --- |" * len(cells))
    return "\n".join(rows)


def format_list(output: str) -> str:
    return "\n".join(f"- {line.strip()}" for line in output.strip().splitlines() if line.strip())


def format_raw(output: str, verbatim: bool = False) -> str:
    body = output.rstrip("\n") if verbatim else output.strip("\n")
    return f"{RAW_OPEN}\n{body}\n{RAW_CLOSE}"


def format_file(output: str, params: dict[str, str], document_path: Path | None) -> str:
    """Write *output* next to the document and return a markdown link to it.

    Raises:
        ResultFormatError: no document path, a path outside the document
            directory, or a write failure.
    """
    if document_path is None:
        raise ResultFormatError('results="file" needs the document path')

    base = document_path.parent
    target = params.get("file") or f"{document_path.stem}_{params.get('name') or 'output'}.txt"
    try:
        out_path = confine_path(target, base)
        write_atomic(out_path, output)
    except (ValueError, OSError) as exc:
        raise ResultFormatError(f"Failed to write output file '{target}': {exc}") from exc

    rel = Path(os.path.relpath(out_path, base.resolve())).as_posix()
    if out_path.suffix.lower() in IMAGE_EXTENSIONS:
        return f"![Output]({rel})"
    return f"[Output File]({rel})"


def format_result(result: EvalResult, spec: ResultSpec, document_path: Path | None = None) -> str:
    """Render *result* for insertion. Empty string means nothing to insert."""
    if not result.output and result.error is None:
        return ""

    output = result.output
    if result.error is not None:
        output = f"Error: {result.error}\n{output}"

    params = result.block.directive.params if result.block.directive else {}
    fmt = spec.format
    if fmt == "table":
        return format_table(output)
    if fmt == "list":
        return format_list(output)
    if fmt == "raw":
        return format_raw(output)
    if fmt == "verbatim":
        return format_raw(output, verbatim=True)
    if fmt == "html":
        return format_html(output)
    if fmt == "file":
        return format_file(output, params, document_path)
    return format_code(output)


# ------------------------------------------------------------------
# Locating blocks and result regions
# ------------------------------------------------------------------


def _locate_anchor(lines: list[str], block: CodeBlock) -> int | None:
    """Index of the block's closing fence, or None if the block moved."""
    start, end = block.start_line - 1, block.end_line - 1
    if start < 0 or end >= len(lines) or not is_fence(lines[start]) or not is_fence(lines[end]):
        return None

    for i in range(start - 1, -1, -1):
        stripped = lines[i].strip()
        if is_directive_line(stripped):
            directive = parse_directive(stripped)
            if directive is None:
                return None
            if block.name and directive.name != block.name:
                return None
            return end
        if stripped and not is_comment_line(stripped):
            return None
    return None


def _is_table_line(line: str) -> bool:
    if not line:
        return False
    return "|" in line and (line.startswith("|") or line.endswith("|") or line.count("|") >= 2)


def _unit_end(lines: list[str], j: int, fmt: str) -> int | None:
    """End (exclusive) of the result-shaped unit starting at *j*, or None."""
    stripped = lines[j].strip()

    if is_fence(stripped):
        if fence_info(stripped) not in ("", "html"):
            return None
        for k in range(j + 1, len(lines)):
            if is_fence(lines[k]):
                return k + 1
        return None

    if stripped == RAW_OPEN:
        for k in range(j + 1, len(lines)):
            if lines[k].strip() == RAW_CLOSE:
                return k + 1
        return None

    if _is_table_line(stripped):
        k = j
        while k < len(lines) and _is_table_line(lines[k].strip()):
            k += 1
        return k

    if _LINK_RE.match(stripped):
        return j + 1

    if fmt == "list" and stripped.startswith("- "):
        k = j
        while k < len(lines) and lines[k].strip().startswith("- "):
            k += 1
        return k

    return None


def _result_region(lines: list[str], anchor: int, fmt: str) -> tuple[int, int] | None:
    """(start, end) of the existing result region after *anchor*, if any."""
    first: int | None = None
    last = anchor + 1
    j = anchor + 1
    while j < len(lines):
        if not lines[j].strip():
            j += 1
            continue
        k = _unit_end(lines, j, fmt)
        if k is None:
            break
        if first is None:
            first = j
        last = j = k
    if first is None:
        return None
    return first, last


def _splice(lines: list[str], anchor: int, spec: ResultSpec, new_lines: list[str]) -> list[str]:
    region = _result_region(lines, anchor, spec.format)
    if region is None:
        existing: list[str] = []
        tail = lines[anchor + 1:]
    else:
        existing = lines[region[0]:region[1]]
        tail = lines[region[1]:]

    while tail and not tail[0].strip():
        tail = tail[1:]

    if spec.placement == "append" and existing:
        body = existing + [""] + new_lines
    elif spec.placement == "prepend" and existing:
        body = new_lines + [""] + existing
    else:
        body = new_lines

    out = lines[: anchor + 1] + [""] + body
    if tail:
        out += [""] + tail
    return out


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------


def patch(text: str, results: list[EvalResult], document_path: Path | None = None) -> str:
    """Return *text* with each result inserted after its code block.

    Results with ``results`` placement ``none``/``silent`` and results with
    no output and no error are skipped. A result whose output cannot be
    formatted gets a *ResultFormatError* as its ``error`` (if it had none)
    and is skipped; the others are still applied.

    Args:
        text: Document text the results' line numbers refer to.
        results: Evaluation results, in any order.
        document_path: Location of the document (needed for ``file`` output).
    """
    planned: list[tuple[CodeBlock, ResultSpec, list[str]]] = []
    for result in results:
        block = result.block
        if block.directive is None:
            continue
        spec = parse_results(block.directive.get("results"))
        if not spec.inserts:
            continue
        try:
            formatted = format_result(result, spec, document_path)
        except ResultFormatError as exc:
            logger.warning("Block '%s': %s", block.name, exc)
            if result.error is None:
                result.error = exc
            continue
        if formatted:
            planned.append((block, spec, formatted.split("\n")))

    lines = split_lines(text)
    for block, spec, new_lines in sorted(planned, key=lambda p: p[0].start_line, reverse=True):
        anchor = _locate_anchor(lines, block)
        if anchor is None:
            logger.warning(
                "Could not find block '%s' (line %d) in the document; result not inserted",
                block.name or "unnamed",
                block.start_line,
            )
            continue
        lines = _splice(lines, anchor, spec, new_lines)

    patched = "\n".join(lines)
    if text.endswith("\n") and lines:
        patched += "\n"
    return patched
