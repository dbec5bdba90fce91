"""jot configuration loader.

Priority (high → low):
  1. CLI flags           (handled at the call site, not in this module)
  2. Environment variables  (JOT_EVAL_TIMEOUT, JOT_EVAL_DEFAULT_MODE)
  3. Workspace .jot/config.yaml
  4. Global ~/.jot/config.yaml
  5. Hardcoded defaults

Example .jot/config.yaml:

    eval:
      default_timeout: 30s
      default_mode: hash
    security:
      - path: "*/scratch/*"
        require_approval: false
      - path: "*/runbooks/*"
        default_mode: prompt

All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from jot.eval.approvals import SecurityRule
from jot.eval.errors import InvalidParameterError
from jot.eval.models import ApprovalMode
from jot.eval.parser import parse_duration

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_PATH: Path = Path.home() / ".jot" / "config.yaml"
_WORKSPACE_CONFIG_NAME: str = "config.yaml"

_KNOWN_SECTIONS: frozenset[str] = frozenset(["eval", "security"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EvalCfg:
    """Execution defaults (config.yaml: eval:)."""

    default_timeout: str = "30s"
    default_mode: ApprovalMode = ApprovalMode.HASH
    evaluator_prefix: str = "jot-eval-"

    @property
    def timeout_seconds(self) -> float:
        return parse_duration(self.default_timeout)


@dataclass
class JotConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    eval: EvalCfg = field(default_factory=EvalCfg)
    security: list[SecurityRule] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _parse_mode(value: Any, where: str) -> ApprovalMode:
    try:
        return ApprovalMode.parse(str(value))
    except ValueError as exc:
        raise ConfigError(f"{where}: {exc}") from None


def _validate_timeout(value: str, where: str) -> str:
    try:
        parse_duration(value)
    except InvalidParameterError as exc:
        raise ConfigError(f"{where}: {exc}") from None
    return value


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")
    return data


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> JotConfig:
    """Build a *JotConfig* from a merged raw YAML dict."""
    cfg = JotConfig()

    if "eval" in data:
        e = data["eval"] or {}
        if not isinstance(e, dict):
            raise ConfigError("eval must be a mapping of {default_timeout, default_mode, evaluator_prefix}")
        cfg.eval = EvalCfg(
            default_timeout=_validate_timeout(
                str(e.get("default_timeout", cfg.eval.default_timeout)), "eval.default_timeout"
            ),
            default_mode=_parse_mode(e.get("default_mode", cfg.eval.default_mode.value), "eval.default_mode"),
            evaluator_prefix=str(e.get("evaluator_prefix", cfg.eval.evaluator_prefix)),
        )

    if "security" in data:
        raw_rules = data["security"] or []
        if not isinstance(raw_rules, list):
            raise ConfigError("security must be a list of {path, require_approval, default_mode} rules")
        rules: list[SecurityRule] = []
        for i, r in enumerate(raw_rules):
            if not isinstance(r, dict) or "path" not in r:
                raise ConfigError(f"security[{i}] must be a mapping with a 'path' key")
            require_approval = r.get("require_approval", True)
            if not isinstance(require_approval, bool):
                raise ConfigError(
                    f"security[{i}].require_approval must be true or false, got {require_approval!r}"
                )
            mode = r.get("default_mode")
            rules.append(
                SecurityRule(
                    path=str(r["path"]),
                    require_approval=require_approval,
                    default_mode=None if mode is None else _parse_mode(mode, f"security[{i}].default_mode"),
                )
            )
        cfg.security = rules

    return cfg


def _apply_env_overrides(cfg: JotConfig) -> JotConfig:
    """Apply JOT_* environment variable overrides."""
    if timeout := os.environ.get("JOT_EVAL_TIMEOUT"):
        cfg.eval.default_timeout = _validate_timeout(timeout, "JOT_EVAL_TIMEOUT")
    if mode := os.environ.get("JOT_EVAL_DEFAULT_MODE"):
        cfg.eval.default_mode = _parse_mode(mode, "JOT_EVAL_DEFAULT_MODE")
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    jot_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> JotConfig:
    """Load and return a merged *JotConfig*.

    Applies layers in order: global → workspace → env vars.

    Args:
        jot_dir: The workspace's ``.jot`` directory. None skips the workspace layer.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If any layer holds an invalid value.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    if jot_dir is not None:
        workspace_path = jot_dir / _WORKSPACE_CONFIG_NAME
        if workspace_path.exists():
            raw_ws = _read_yaml(workspace_path)
            _warn_unknown_keys(raw_ws, workspace_path)
            merged = _deep_merge(merged, raw_ws)

    cfg = _cfg_from_dict(merged)
    return _apply_env_overrides(cfg)


def default_config_text() -> str:
    """Commented starter config written by ``jot init``."""
    return (
        "# jot workspace configuration.\n"
        "eval:\n"
        "  default_timeout: 30s\n"
        "  default_mode: hash\n"
        "\n"
        "# Path rules for code-block approval (longest matching glob wins):\n"
        "# security:\n"
        "#   - path: \"*/scratch/*\"\n"
        "#     require_approval: false\n"
    )
