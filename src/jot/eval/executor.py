"""Run one code block through a resolved evaluator.

The block source is written to the interpreter's stdin (no temp files).
stdout and stderr are captured together. The child gets its own process
group so a timeout kills everything it spawned, not just the interpreter.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from pathlib import Path

from jot.eval.errors import (
    EvaluatorNotFound,
    ExecutionError,
    ExecutionFailure,
    ExecutionTimeout,
    InvalidParameterError,
)
from jot.eval.parser import parse_args, parse_duration, parse_env
from jot.eval.resolver import EvaluatorHandle, ExternalProcess

logger = logging.getLogger(__name__)

_POSIX = os.name == "posix"


def build_environment(
    handle: EvaluatorHandle,
    source: str,
    params: dict[str, str],
    working_dir: Path,
) -> dict[str, str]:
    """Inherited environment + ``env`` pairs (+ JOT_EVAL_* context for external evaluators)."""
    env = dict(os.environ)
    extra = parse_env(params.get("env", ""))
    env.update(extra)

    if isinstance(handle, ExternalProcess):
        env["JOT_EVAL_CODE"] = source
        env["JOT_EVAL_LANG"] = handle.language
        env["JOT_EVAL_CWD"] = str(working_dir)
        if params.get("name"):
            env["JOT_EVAL_BLOCK_NAME"] = params["name"]
        if params.get("timeout"):
            env["JOT_EVAL_TIMEOUT"] = params["timeout"]
        if params.get("args"):
            env["JOT_EVAL_ARGS"] = params["args"]
        for key, value in extra.items():
            env[f"JOT_EVAL_ENV_{key}"] = value

    return env


def resolve_working_dir(params: dict[str, str], document_dir: Path) -> Path:
    """``cwd`` parameter resolved against the document directory (default).

    Raises:
        InvalidParameterError: if the directory does not exist.
    """
    cwd = params.get("cwd", "").strip()
    path = document_dir if not cwd else (document_dir / Path(cwd).expanduser())
    path = path.resolve()
    if not path.is_dir():
        raise InvalidParameterError("cwd", cwd or str(document_dir), "directory does not exist")
    return path


def _kill(proc: subprocess.Popen[str]) -> None:
    if _POSIX:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    proc.kill()


def execute(
    handle: EvaluatorHandle,
    source: str,
    params: dict[str, str],
    working_dir: Path,
    default_timeout: float | None = None,
) -> str:
    """Run *source* with *handle* and return the combined output.

    Args:
        handle: Evaluator returned by ``EvaluatorResolver.resolve``.
        source: Block body, fed to stdin.
        params: Directive parameters (``timeout``, ``env``, ``args`` are used here).
        working_dir: Directory the interpreter runs in.
        default_timeout: Seconds used when ``timeout`` is absent; None or 0 = no limit.

    Raises:
        InvalidParameterError: bad ``timeout`` or ``args``.
        EvaluatorNotFound: the interpreter binary vanished before spawn.
        ExecutionError: the OS refused to start the interpreter.
        ExecutionTimeout: deadline expired (partial output attached).
        ExecutionFailure: non-zero exit (output attached).
    """
    timeout = default_timeout
    if params.get("timeout"):
        timeout = parse_duration(params["timeout"])
    if not timeout:
        timeout = None

    argv = handle.argv(parse_args(params.get("args", "")))
    env = build_environment(handle, source, params, working_dir)

    logger.debug("Running %s in %s (timeout=%s)", argv, working_dir, timeout)
    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            cwd=working_dir,
            env=env,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=_POSIX,
        )
    except FileNotFoundError as exc:
        raise EvaluatorNotFound(handle.language, argv[0], f"could not start '{argv[0]}': {exc}") from exc
    except OSError as exc:
        # e.g. ENOEXEC for a script without a shebang, EACCES on cwd
        raise ExecutionError(f"could not start {handle.command}: {exc.strerror or exc}") from exc

    try:
        output, _ = proc.communicate(input=source, timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill(proc)
        output, _ = proc.communicate()
        logger.debug("%s killed after %.3fs", handle.command, time.monotonic() - started)
        raise ExecutionTimeout(handle.command, timeout or 0.0, output or "")

    logger.debug("%s exited %d after %.3fs", handle.command, proc.returncode, time.monotonic() - started)
    if proc.returncode != 0:
        raise ExecutionFailure(handle.command, proc.returncode, output or "")
    return output or ""
