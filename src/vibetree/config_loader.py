"""Layered configuration for vibetree.

Layers, lowest priority first:

    built-in defaults
    ~/.vibetree/config.toml          (user; a broken file is skipped with a warning)
    <project>/.vibetree/config.toml  (first one found walking up; a broken file is fatal)
    VIBETREE_* environment variables

The merged mapping is validated once by ``VibetreeConfig``.
"""

from __future__ import annotations

import os
import sys
import threading
import warnings
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import ValidationError

from .config_schema import VibetreeConfig


CONFIG_FILENAME = "config.toml"
USER_CONFIG_DIR = ".vibetree"
PROJECT_CONFIG_DIR = ".vibetree"

ConfigKey = Tuple[list[str], str]

# Environment variable -> (section path, key)
ENV_MAPPING: Dict[str, ConfigKey] = {
    "VIBETREE_BASE_BRANCH": (["scan"], "base_branch"),
    "VIBETREE_GIT_TIMEOUT": (["scan"], "git_timeout"),
    "VIBETREE_GH_TIMEOUT": (["scan"], "gh_timeout"),
    "VIBETREE_PR_LIMIT": (["scan"], "pr_limit"),
    "VIBETREE_INCLUDE_PRS": (["scan"], "include_pull_requests"),
    "VIBETREE_HEARTBEAT_WINDOW": (["scan"], "heartbeat_window"),
    "VIBETREE_MAX_ANCESTRY_CANDIDATES": (["scan"], "max_ancestry_candidates"),
    "VIBETREE_MERGE_DESIGN_EDGES": (["scan"], "merge_design_edges"),
    "VIBETREE_LOG_LEVEL": (["logging"], "level"),
    "VIBETREE_LOG_DIR": (["logging"], "dir"),
    "VIBETREE_LOG_MAX_BYTES": (["logging"], "max_bytes"),
    "VIBETREE_LOG_BACKUP_COUNT": (["logging"], "backup_count"),
    "VIBETREE_LOG_DISABLE_FILE": (["logging"], "disable_file"),
}

# Comma-separated values that become lists
_LIST_ENV_MAPPING: Dict[str, ConfigKey] = {
    "VIBETREE_NAMING_PATTERNS": (["lint"], "naming_patterns"),
}


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


def _get_user_config_dir() -> Path:
    return Path.home() / USER_CONFIG_DIR


def _get_project_config_dir(project_path: Optional[Path] = None) -> Optional[Path]:
    """Nearest ``.vibetree/`` at or above ``project_path`` (default: cwd).

    ``~/.vibetree`` holds the user config and never counts as a project dir.
    """
    start = Path(project_path).resolve() if project_path is not None else Path.cwd()
    user_dir = _get_user_config_dir()
    for directory in (start, *start.parents):
        candidate = directory / PROJECT_CONFIG_DIR
        if candidate != user_dir and candidate.is_dir():
            return candidate
    return None


def _load_toml(path: Path) -> Dict[str, Any]:
    """Parse one TOML file, raising ``ConfigError`` on any failure."""
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}")
    try:
        return tomllib.loads(raw.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursive dict merge; ``override`` wins and lists are replaced whole."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _env_to_config_key(env_var: str) -> ConfigKey:
    """Config location for an environment variable, e.g.

    VIBETREE_GIT_TIMEOUT -> (["scan"], "git_timeout")
    VIBETREE_NAMING_PATTERNS -> (["lint"], "naming_patterns")
    """
    return ENV_MAPPING.get(env_var) or _LIST_ENV_MAPPING.get(env_var) or ([], env_var)


def _env_values() -> Iterator[Tuple[str, Any]]:
    for env_var in ENV_MAPPING:
        value = os.getenv(env_var)
        if value is not None:
            yield env_var, value
    for env_var in _LIST_ENV_MAPPING:
        value = os.getenv(env_var)
        if value is not None:
            yield env_var, [part.strip() for part in value.split(",") if part.strip()]


def _apply_env_overlay(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay ``VIBETREE_*`` variables. Strings are coerced later by pydantic."""
    overlay: Dict[str, Any] = {}
    for env_var, value in _env_values():
        sections, key = _env_to_config_key(env_var)
        target = overlay
        for section in sections:
            target = target.setdefault(section, {})
        target[key] = value
    return _deep_merge(config_dict, overlay)


def _file_layers(project_path: Optional[Path]) -> Iterator[Tuple[Path, bool]]:
    """Config files in priority order as ``(path, required_valid)``."""
    yield _get_user_config_dir() / CONFIG_FILENAME, False
    project_dir = _get_project_config_dir(project_path)
    if project_dir is not None:
        yield project_dir / CONFIG_FILENAME, True


def load_config(project_path: Optional[Path] = None, skip_env: bool = False) -> VibetreeConfig:
    """Load, merge and validate configuration.

    Raises:
        ConfigError: If the project config or the merged result is invalid
    """
    merged: Dict[str, Any] = {}
    for path, required_valid in _file_layers(project_path):
        if not path.exists():
            continue
        try:
            layer = _load_toml(path)
        except ConfigError as e:
            if required_valid:
                raise ConfigError(f"Invalid project config: {e}")
            warnings.warn(f"Skipping invalid user config at {path}: {e}", UserWarning)
            continue
        merged = _deep_merge(merged, layer)

    if not skip_env:
        merged = _apply_env_overlay(merged)

    try:
        return VibetreeConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")


def get_config_paths(project_path: Optional[Path] = None) -> Dict[str, Optional[Path]]:
    """Where each config layer lives (``project_config`` is None without a project dir)."""
    project_dir = _get_project_config_dir(project_path)
    return {
        "user_config": _get_user_config_dir() / CONFIG_FILENAME,
        "project_config": project_dir / CONFIG_FILENAME if project_dir is not None else None,
    }


# One cached config per process, keyed by resolved project path
_cache_lock = threading.Lock()
_cache: Dict[str, Any] = {"key": None, "config": None}


def get_config(project_path: Optional[Path] = None, force_reload: bool = False) -> VibetreeConfig:
    """Cached ``load_config``; reloads when the project path changes."""
    key = Path(project_path).resolve() if project_path else None
    with _cache_lock:
        if force_reload or _cache["config"] is None or _cache["key"] != key:
            _cache["config"] = load_config(project_path)
            _cache["key"] = key
        return _cache["config"]


def clear_config_cache() -> None:
    with _cache_lock:
        _cache["key"] = None
        _cache["config"] = None
