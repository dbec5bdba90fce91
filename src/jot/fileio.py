"""File helpers shared by the approval store and the result patcher.

Responsibilities:
  1. Write files atomically (temp file in the same directory → rename), so a
     crash never leaves a truncated document or approval record file.
  2. Confine relative output paths (``results="file"``) to a base directory.
     Path traversal (../../etc/passwd) → hard fail.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


# ------------------------------------------------------------------
# Path validation (path traversal prevention)
# ------------------------------------------------------------------


def confine_path(output: str, allowed_base: Path) -> Path:
    """Normalize *output* and make sure relative paths stay under *allowed_base*.

    - Absolute paths are accepted as-is (the note author chose the location).
    - Relative paths are resolved against *allowed_base*; escaping it raises.

    Raises:
        ValueError: If a relative path escapes the allowed base directory.
    """
    path = Path(output)

    if path.is_absolute():
        return path.resolve()

    allowed_base = allowed_base.resolve()
    resolved = (allowed_base / path).resolve()

    try:
        resolved.relative_to(allowed_base)
    except ValueError:
        raise ValueError(
            f"Output path '{output}' resolves outside the allowed directory "
            f"('{allowed_base}'). Path traversal is not permitted."
        )

    return resolved


# ------------------------------------------------------------------
# Atomic write
# ------------------------------------------------------------------


def write_atomic(path: Path, content: str) -> None:
    """Write *content* to *path* atomically (temp → rename).

    Creates parent directories if needed. Existing file permissions are kept.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    mode = None
    if path.exists():
        mode = path.stat().st_mode & 0o777

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
