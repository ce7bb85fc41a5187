from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

import pytest
from git import Actor, Repo


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(src))
    # Keep test runs out of ~/.vibetree/logs
    os.environ.setdefault("VIBETREE_LOG_DISABLE_FILE", "1")


AUTHOR = Actor("Test", "test@example.com")


class RepoBuilder:
    """Builds small git histories with predictable commit dates."""

    def __init__(self, path: Path):
        self.path = path
        path.mkdir(parents=True, exist_ok=True)
        self.repo = Repo.init(path)
        # Name the unborn branch before the first commit so no "master" is left behind
        self.repo.git.symbolic_ref("HEAD", "refs/heads/main")
        with self.repo.config_writer() as config:
            config.set_value("user", "name", AUTHOR.name)
            config.set_value("user", "email", AUTHOR.email)
        self._tick = 0

    def commit(self, message: str, filename: Optional[str] = None) -> str:
        """Commit a one-line change on the current branch; returns the sha."""
        self._tick += 1
        filename = filename or f"file_{self._tick}.txt"
        (self.path / filename).write_text(f"{message}\n")
        self.repo.index.add([filename])
        date = f"2024-01-01T00:{self._tick // 60:02d}:{self._tick % 60:02d} +0000"
        commit = self.repo.index.commit(
            message,
            author=AUTHOR,
            committer=AUTHOR,
            author_date=date,
            commit_date=date,
        )
        return commit.hexsha

    def commits(self, count: int, prefix: str = "change") -> None:
        for i in range(count):
            self.commit(f"{prefix} {i + 1}")

    def branch(self, name: str, start: str = "HEAD") -> "RepoBuilder":
        self.repo.git.branch(name, start)
        return self

    def checkout(self, name: str) -> "RepoBuilder":
        self.repo.git.checkout(name)
        return self

    def worktree(self, path: Path, branch: str) -> Path:
        self.repo.git.worktree("add", str(path), branch)
        return path


@pytest.fixture
def repo_builder(tmp_path: Path) -> RepoBuilder:
    """A repository on ``main`` with one initial commit."""
    builder = RepoBuilder(tmp_path / "repo")
    builder.commit("Initial commit", "README.md")
    return builder
