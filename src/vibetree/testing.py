"""Testing utilities.

Provides a canned-output ``CommandRunner`` so the heuristics can be
exercised without a real repository.

Usage:
    from vibetree.testing import FixtureRunner

    runner = FixtureRunner()
    runner.add_git(["rev-list", "--count", "main..feature"], "3\\n")
    runner.add_git(["status", "--porcelain"], " M app.py\\n", cwd="/work/wt")

    assert runner.git(["rev-list", "--count", "main..feature"]) == "3\\n"
    assert runner.calls[0] == ("git", ("rev-list", "--count", "main..feature"), None)
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

PathLike = Union[str, Path]
_Key = Tuple[str, Tuple[str, ...], Optional[str]]


class FixtureRunner:
    """``CommandRunner`` answering from a table of canned outputs.

    Outputs registered without a ``cwd`` match any working directory.
    Unknown commands, and commands registered with ``None``, fail.
    """

    def __init__(self) -> None:
        self._outputs: Dict[_Key, Optional[str]] = {}
        self.calls: List[_Key] = []

    def add_git(self, args: Sequence[str], output: Optional[str], cwd: Optional[PathLike] = None) -> "FixtureRunner":
        self._outputs[("git", tuple(args), _norm(cwd))] = output
        return self

    def add_gh(self, args: Sequence[str], output: Optional[str], cwd: Optional[PathLike] = None) -> "FixtureRunner":
        self._outputs[("gh", tuple(args), _norm(cwd))] = output
        return self

    def git(self, args: Sequence[str], cwd: Optional[Path] = None) -> Optional[str]:
        return self._lookup("git", args, cwd)

    def gh(self, args: Sequence[str], cwd: Optional[Path] = None) -> Optional[str]:
        return self._lookup("gh", args, cwd)

    def calls_for(self, tool: str) -> List[Tuple[str, ...]]:
        return [args for t, args, _ in self.calls if t == tool]

    def _lookup(self, tool: str, args: Sequence[str], cwd: Optional[PathLike]) -> Optional[str]:
        key = (tool, tuple(args), _norm(cwd))
        self.calls.append(key)
        if key in self._outputs:
            return self._outputs[key]
        return self._outputs.get((tool, tuple(args), None))


def _norm(cwd: Optional[PathLike]) -> Optional[str]:
    return str(cwd) if cwd is not None else None
