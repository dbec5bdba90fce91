"""Evaluator resolution: language → how to run it.

Lookup order is fixed:
  1. ``jot-eval-<language>`` executable on PATH (user extension point)
  2. Built-in interpreter table (python3, bash, node, go)

The first hit is cached per language for the lifetime of the resolver.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from jot.eval.errors import EvaluatorNotFound

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "jot-eval-"

# language alias → (interpreter, fixed args)
BUILTIN_INTERPRETERS: dict[str, tuple[str, tuple[str, ...]]] = {
    "python": ("python3", ()),
    "python3": ("python3", ()),
    "bash": ("bash", ()),
    "sh": ("bash", ()),
    "javascript": ("node", ()),
    "node": ("node", ()),
    "go": ("go", ("run", "-")),
}

# Languages shown by ``jot evaluator list`` (one per interpreter).
BUILTIN_LANGUAGES: tuple[str, ...] = ("python3", "bash", "javascript", "go")


@dataclass(frozen=True)
class ExternalProcess:
    """A ``jot-eval-<language>`` executable found on PATH."""

    language: str
    path: str

    kind = "path"

    @property
    def command(self) -> str:
        return Path(self.path).name

    def argv(self, extra: list[str] | None = None) -> list[str]:
        return [self.path, *(extra or [])]


@dataclass(frozen=True)
class BuiltinInterpreter:
    """An interpreter from the built-in table."""

    language: str
    executable: str
    args: tuple[str, ...] = field(default_factory=tuple)

    kind = "built-in"

    @property
    def command(self) -> str:
        return " ".join([self.executable, *self.args])

    def argv(self, extra: list[str] | None = None) -> list[str]:
        return [self.executable, *self.args, *(extra or [])]


EvaluatorHandle = ExternalProcess | BuiltinInterpreter


class EvaluatorResolver:
    """Finds and caches the evaluator for each language."""

    def __init__(self, prefix: str = DEFAULT_PREFIX, search_path: str | None = None) -> None:
        """
        Args:
            prefix: Name prefix for external evaluators.
            search_path: PATH string to search; None uses the process PATH.
        """
        self.prefix = prefix
        self.search_path = search_path
        self._cache: dict[str, EvaluatorHandle] = {}

    def external_name(self, language: str) -> str:
        return f"{self.prefix}{language}"

    def _which(self, name: str) -> str | None:
        path = self.search_path if self.search_path is not None else os.environ.get("PATH", "")
        return shutil.which(name, path=path)

    def resolve(self, language: str) -> EvaluatorHandle:
        """Return the evaluator for *language*.

        Raises:
            EvaluatorNotFound: listing both lookup attempts.
        """
        if language in self._cache:
            return self._cache[language]

        external = self.external_name(language) if language else self.prefix
        handle: EvaluatorHandle | None = None
        detail = ""

        found = self._which(external) if language else None
        if found:
            handle = ExternalProcess(language=language, path=found)
        elif language in BUILTIN_INTERPRETERS:
            executable, args = BUILTIN_INTERPRETERS[language]
            if self._which(executable):
                handle = BuiltinInterpreter(language=language, executable=executable, args=args)
            else:
                detail = f"interpreter '{executable}' not found on PATH"

        if handle is None:
            raise EvaluatorNotFound(language or "(none)", external, detail)

        logger.debug("Resolved '%s' to %s evaluator %s", language, handle.kind, handle.command)
        self._cache[language] = handle
        return handle

    def is_available(self, handle: EvaluatorHandle) -> bool:
        """True if the handle's executable can be found right now."""
        if isinstance(handle, ExternalProcess):
            return os.access(handle.path, os.X_OK)
        return self._which(handle.executable) is not None

    def list_evaluators(self) -> list[EvaluatorHandle]:
        """Built-in evaluators followed by every external evaluator on PATH."""
        evaluators: list[EvaluatorHandle] = []
        for language in BUILTIN_LANGUAGES:
            executable, args = BUILTIN_INTERPRETERS[language]
            evaluators.append(BuiltinInterpreter(language=language, executable=executable, args=args))
        evaluators.extend(self._discover_external())
        return evaluators

    def _discover_external(self) -> list[ExternalProcess]:
        path = self.search_path if self.search_path is not None else os.environ.get("PATH", "")
        seen: set[str] = set()
        found: list[ExternalProcess] = []
        for directory in path.split(os.pathsep):
            if not directory:
                continue
            try:
                entries = sorted(Path(directory).iterdir())
            except OSError:
                continue
            for entry in entries:
                name = entry.name
                if not name.startswith(self.prefix) or entry.is_dir():
                    continue
                language = name[len(self.prefix):]
                if not language or language in seen:
                    continue
                if os.access(entry, os.X_OK):
                    seen.add(language)
                    found.append(ExternalProcess(language=language, path=str(entry)))
        return found
