"""Eval directive and parameter parsing.

A directive is an HTML-style self-closing element on its own line:

    <eval name="hello" shell="bash" timeout="10s" results="table append" />

Parsing is best-effort: a malformed directive (unbalanced quotes, missing
``/>``) yields ``None`` so the caller can skip it without failing the scan.

Usage:
    directive = parse_directive('<eval name="x" />')
    spec = parse_results(directive.get("results"))
    seconds = parse_duration("1m30s")
"""

from __future__ import annotations

import re
import shlex

from jot.eval.errors import InvalidParameterError
from jot.eval.models import EvalDirective, ResultSpec

_DIRECTIVE_RE = re.compile(r"^<eval(?:\s+(?P<attrs>.*?))?\s*/>$", re.DOTALL)
_ATTR_RE = re.compile(r"""([A-Za-z0-9_-]+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_COMMENT_RE = re.compile(r"^<!--.*-->$")

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

PLACEMENTS: tuple[str, ...] = ("replace", "append", "prepend", "none", "silent")
FORMATS: tuple[str, ...] = ("code", "table", "list", "raw", "file", "html", "verbatim")

RECOGNIZED_KEYS: frozenset[str] = frozenset(
    ["name", "shell", "timeout", "cwd", "env", "args", "results", "file"]
)


def is_directive_line(line: str) -> bool:
    """True if *line* looks like an eval directive (well-formed or not)."""
    line = line.strip()
    return line.startswith("<eval") and (len(line) == 5 or not line[5].isalnum())


def is_comment_line(line: str) -> bool:
    """True for a single-line HTML comment (``<!-- ... -->``)."""
    return bool(_COMMENT_RE.match(line.strip()))


def parse_directive(line: str) -> EvalDirective | None:
    """Parse a directive line into an *EvalDirective*.

    Returns None when the line is not a complete, well-formed directive.
    Unknown keys are kept; duplicate keys keep the last value.
    """
    match = _DIRECTIVE_RE.match(line.strip())
    if not match:
        return None

    attrs = match.group("attrs") or ""
    params: dict[str, str] = {}
    for m in _ATTR_RE.finditer(attrs):
        params[m.group(1)] = m.group(2) if m.group(2) is not None else m.group(3)

    # Anything left over after removing key="value" pairs means broken quoting.
    if _ATTR_RE.sub("", attrs).strip():
        return None

    return EvalDirective(params=params)


def parse_results(value: str | None) -> ResultSpec:
    """Parse a ``results`` parameter into placement + format.

    Tokens are space-separated and order-independent; the first placement
    token and the first format token win. Unknown tokens (``output``,
    ``value``) are ignored.
    """
    placement = "replace"
    fmt = "code"
    seen_placement = seen_format = False
    for token in (value or "").split():
        token = token.lower()
        if token in PLACEMENTS and not seen_placement:
            placement, seen_placement = token, True
        elif token in FORMATS and not seen_format:
            fmt, seen_format = token, True
    return ResultSpec(placement=placement, format=fmt)


def parse_env(value: str) -> dict[str, str]:
    """Parse comma-separated ``KEY=VALUE`` pairs. Pairs without '=' are skipped."""
    env: dict[str, str] = {}
    for pair in value.split(","):
        pair = pair.strip()
        if not pair or "=" not in pair:
            continue
        key, _, val = pair.partition("=")
        key = key.strip()
        if key:
            env[key] = val.strip()
    return env


def parse_args(value: str) -> list[str]:
    """Tokenize an ``args`` string, honouring single and double quotes.

    Raises:
        InvalidParameterError: on unbalanced quotes.
    """
    try:
        return shlex.split(value)
    except ValueError as exc:
        raise InvalidParameterError("args", value, str(exc)) from exc


def parse_duration(value: str) -> float:
    """Parse a Go-style duration string (``200ms``, ``1m30s``) into seconds.

    Raises:
        InvalidParameterError: if *value* is not a valid duration.
    """
    text = value.strip()
    if text in ("0", "+0"):
        return 0.0
    if text.startswith("+"):
        text = text[1:]
    if not text or text.startswith("-"):
        raise InvalidParameterError("timeout", value, "expected a positive duration like 10s or 200ms")

    total = 0.0
    pos = 0
    while pos < len(text):
        m = _DURATION_PART_RE.match(text, pos)
        if not m:
            raise InvalidParameterError(
                "timeout", value, "expected a duration like 10s, 200ms or 1m30s"
            )
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    return total
