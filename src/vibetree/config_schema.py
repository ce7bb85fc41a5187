"""Configuration schema for vibetree.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import re
import warnings
from pathlib import Path
from typing import List, Literal

from pydantic import BaseModel, Field, field_validator


class ScanConfig(BaseModel):
    """Settings for fact collection and ancestry inference."""

    base_branch: str = Field(
        default="",
        description="Base branch name (empty = detect from origin/HEAD, gh, or common names)",
    )
    git_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds before a single git command is killed",
    )
    gh_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds before a single gh command is killed",
    )
    pr_limit: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum number of pull requests fetched per scan",
    )
    include_pull_requests: bool = Field(
        default=True,
        description="Query the code-hosting CLI for pull requests",
    )
    heartbeat_window: float = Field(
        default=30.0,
        gt=0,
        description="Seconds a liveness marker stays fresh",
    )
    heartbeat_path: str = Field(
        default=".vibetree/heartbeat.json",
        description="Liveness marker path, relative to each worktree",
    )
    max_ancestry_candidates: int = Field(
        default=0,
        ge=0,
        description="Cap on commit-graph candidates per branch (0 = unlimited)",
    )
    merge_design_edges: bool = Field(
        default=True,
        description="Add design-tree edges to the snapshot as designed edges",
    )

    @field_validator("heartbeat_path")
    @classmethod
    def validate_heartbeat_path(cls, v: str) -> str:
        """Liveness markers must stay inside the worktree."""
        path = Path(v)
        if path.is_absolute() or ".." in path.parts:
            raise ValueError(f"heartbeat_path must be relative to the worktree: {v}")
        return v


class LintConfig(BaseModel):
    """Topology linter settings."""

    naming_patterns: List[str] = Field(
        default_factory=list,
        description="Branch naming regular expressions (empty = naming rule disabled)",
    )

    @field_validator("naming_patterns")
    @classmethod
    def warn_invalid_patterns(cls, v: List[str]) -> List[str]:
        """Warn about patterns that will be skipped by the linter."""
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                warnings.warn(
                    f"Naming pattern {pattern!r} is not a valid regular expression and will be ignored: {e}",
                    UserWarning,
                )
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.vibetree/logs)",
    )
    max_bytes: int = Field(
        default=10485760,  # 10MB
        ge=0,
        description="Maximum log file size in bytes",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("dir")
    @classmethod
    def validate_log_dir(cls, v: str) -> str:
        """Warn if log directory doesn't exist (will be created on use)."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Log path exists but is not a directory: {v}",
                    UserWarning,
                )
        return v


class VibetreeConfig(BaseModel):
    """Root configuration model."""

    version: int = Field(
        default=1,
        ge=1,
        description="Config schema version",
    )

    scan: ScanConfig = Field(default_factory=ScanConfig)
    lint: LintConfig = Field(default_factory=LintConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "VibetreeConfig":
        """Create config with all defaults."""
        return cls()
