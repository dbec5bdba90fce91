"""Exception taxonomy for the eval engine.

Every error carries enough context for the CLI to tell the user what went
wrong and which command fixes it (see ``jot.cli.errors``).
"""

from __future__ import annotations


class EvalError(Exception):
    """Base class for all eval engine errors."""


class DirectiveError(EvalError):
    """An eval directive is unusable, e.g. it has no ``name``."""


class BlockNotFoundError(EvalError):
    """No evaluable block with the requested name exists in the document."""

    def __init__(self, name: str, file_path: str, available: list[str] | None = None) -> None:
        self.name = name
        self.file_path = file_path
        self.available = available or []
        super().__init__(f"No evaluable block named '{name}' found in {file_path}")


class ApprovalRequired(EvalError):
    """The block has never been approved (or prompt confirmation was declined)."""

    def __init__(self, name: str, file_path: str, reason: str = "") -> None:
        self.name = name
        self.file_path = file_path
        self.reason = reason
        message = f"Code block '{name}' requires approval"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ApprovalStale(ApprovalRequired):
    """A hash-mode approval exists but the block content has changed since."""

    def __init__(self, name: str, file_path: str) -> None:
        super().__init__(name, file_path, reason="content changed since approval")


class EvaluatorNotFound(EvalError):
    """Neither an external nor a built-in evaluator handles the language."""

    def __init__(self, language: str, external_name: str, detail: str = "") -> None:
        self.language = language
        self.external_name = external_name
        self.detail = detail
        display = language[:1].upper() + language[1:]
        builtin_line = detail or "not available"
        super().__init__(
            f"No evaluator found for '{language}'\n"
            "Tried:\n"
            f"  1. PATH evaluator: {external_name} (not found)\n"
            f"  2. Built-in evaluator: {language} ({builtin_line})\n"
            f"To add {display} support:\n"
            f"  - Create an executable named {external_name} in your PATH\n"
            "  - Check available evaluators: jot evaluator list"
        )


class InvalidParameterError(EvalError):
    """A directive parameter (timeout, args, cwd, ...) has an invalid value."""

    def __init__(self, key: str, value: str, reason: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Invalid {key} '{value}': {reason}")


class ExecutionError(EvalError):
    """The interpreter ran but did not finish cleanly. Output is preserved."""

    def __init__(self, message: str, output: str = "") -> None:
        self.output = output
        super().__init__(message)


class ExecutionFailure(ExecutionError):
    """The interpreter exited with a non-zero status."""

    def __init__(self, command: str, returncode: int, output: str = "") -> None:
        self.command = command
        self.returncode = returncode
        super().__init__(f"{command} exited with code {returncode}", output)


class ExecutionTimeout(ExecutionError):
    """The execution deadline expired and the process was terminated."""

    def __init__(self, command: str, timeout: float, output: str = "") -> None:
        self.command = command
        self.timeout = timeout
        super().__init__(f"{command} timed out after {timeout:g}s", output)


class PersistenceError(EvalError):
    """The approval store could not read or write its record files."""
