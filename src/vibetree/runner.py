"""External command boundary.

Everything the scan learns about a repository goes through a
``CommandRunner``. A failed command is reported as ``None``; callers turn
that into their neutral default on the spot.
"""

from __future__ import annotations

import os
import re
import subprocess
import time
from pathlib import Path
from typing import Optional, Protocol, Sequence, runtime_checkable

from git import Git
from git.exc import GitCommandError, GitCommandNotFound

from .observability import log_debug


DEFAULT_GIT_TIMEOUT = 10.0
DEFAULT_GH_TIMEOUT = 30.0

# Read-only scans never prompt and never take optional locks
_GIT_ENV = {"GIT_TERMINAL_PROMPT": "0", "GIT_OPTIONAL_LOCKS": "0"}
_GH_ENV = {"GH_PROMPT_DISABLED": "1", "NO_COLOR": "1"}

# Ref names are interpolated into rev ranges; reject anything git would not
# accept as a branch name or could read as an option.
_REF_VALIDATION_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^-"), "starts with hyphen"),
    (re.compile(r"\.\."), "contains consecutive dots"),
    (re.compile(r"@\{"), "contains reflog syntax"),
    (re.compile(r"[\x00-\x20\x7f~^:?*\[\\]"), "contains invalid characters"),
]


@runtime_checkable
class CommandRunner(Protocol):
    """Runs git and gh for the scan. ``None`` means the command failed."""

    def git(self, args: Sequence[str], cwd: Optional[Path] = None) -> Optional[str]:
        ...

    def gh(self, args: Sequence[str], cwd: Optional[Path] = None) -> Optional[str]:
        ...


def is_safe_ref(name: str) -> bool:
    """Return True when ``name`` can be used inside a rev range."""
    if not name:
        return False
    for pattern, reason in _REF_VALIDATION_RULES:
        if pattern.search(name):
            log_debug(f"[RUNNER] Rejecting ref {name!r}: {reason}")
            return False
    return True


class GitCliRunner:
    """Runs the real ``git`` and ``gh`` executables with bounded timeouts."""

    def __init__(
        self,
        repo_path: Path,
        *,
        git_timeout: float = DEFAULT_GIT_TIMEOUT,
        gh_timeout: float = DEFAULT_GH_TIMEOUT,
    ):
        self.repo_path = Path(repo_path)
        self.git_timeout = git_timeout
        self.gh_timeout = gh_timeout

    def git(self, args: Sequence[str], cwd: Optional[Path] = None) -> Optional[str]:
        workdir = Path(cwd) if cwd is not None else self.repo_path
        cmd = " ".join(args)
        log_debug(f"[RUNNER] git {cmd} (cwd={workdir})")
        # GitPython silently runs in the process cwd when workdir is missing
        if not workdir.is_dir():
            log_debug(f"[RUNNER] git {cmd} skipped: {workdir} is not a directory")
            return None
        start = time.perf_counter()
        try:
            output = Git(str(workdir)).execute(
                [Git.GIT_PYTHON_GIT_EXECUTABLE or "git", *args],
                kill_after_timeout=self.git_timeout,
                env=_GIT_ENV,
                strip_newline_in_stdout=False,
            )
        except GitCommandNotFound as e:
            log_debug(f"[RUNNER] git unavailable for {cmd}: {e}")
            return None
        except GitCommandError as e:
            log_debug(
                f"[RUNNER] git {cmd} failed",
                status=e.status,
                stderr=str(e.stderr).strip()[:200],
            )
            return None
        except OSError as e:
            log_debug(f"[RUNNER] git {cmd} could not start: {e}")
            return None
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        log_debug(f"[RUNNER] git {cmd} done", elapsed_ms=round(elapsed_ms, 2))
        return output if isinstance(output, str) else output.decode("utf-8", "replace")

    def gh(self, args: Sequence[str], cwd: Optional[Path] = None) -> Optional[str]:
        workdir = Path(cwd) if cwd is not None else self.repo_path
        cmd = " ".join(args)
        log_debug(f"[RUNNER] gh {cmd} (cwd={workdir})")
        if not workdir.is_dir():
            log_debug(f"[RUNNER] gh {cmd} skipped: {workdir} is not a directory")
            return None
        env = os.environ.copy()
        env.update(_GH_ENV)
        try:
            result = subprocess.run(
                ["gh", *args],
                cwd=str(workdir),
                capture_output=True,
                text=True,
                timeout=self.gh_timeout,
                env=env,
            )
        except subprocess.TimeoutExpired:
            log_debug(f"[RUNNER] gh {cmd} timed out after {self.gh_timeout}s")
            return None
        except OSError as e:
            log_debug(f"[RUNNER] gh {cmd} could not start: {e}")
            return None
        if result.returncode != 0:
            log_debug(
                f"[RUNNER] gh {cmd} failed",
                status=result.returncode,
                stderr=(result.stderr or "").strip()[:200],
            )
            return None
        return result.stdout
