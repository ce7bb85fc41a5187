"""Snapshot data model.

Every object here is built fresh on each scan and discarded once the caller
has consumed the resulting snapshot.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Confidence(str, Enum):
    """How an inferred parent edge was derived."""

    HIGH = "high"  # Naming convention
    MEDIUM = "medium"  # Closest ancestor in commit history
    LOW = "low"  # Fallback to the base branch


class PullRequestState(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    MERGED = "MERGED"


class ChecksState(str, Enum):
    """Rolled-up CI status of a pull request."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    PENDING = "PENDING"


class Severity(str, Enum):
    WARN = "warn"
    ERROR = "error"


class WarningCode(str, Enum):
    BEHIND_PARENT = "BEHIND_PARENT"
    DIRTY = "DIRTY"
    CI_FAIL = "CI_FAIL"
    BRANCH_NAMING_VIOLATION = "BRANCH_NAMING_VIOLATION"
    TREE_DIVERGENCE = "TREE_DIVERGENCE"


@dataclass(frozen=True)
class BranchFact:
    """One local branch and its last commit."""

    name: str
    commit_hash: str
    last_commit_at: str


@dataclass
class WorktreeFact:
    """One worktree as reported by ``git worktree list``.

    ``branch`` is None for a detached HEAD. ``is_active`` is only ever set
    from a fresh liveness marker.
    """

    path: str
    branch: Optional[str]
    commit_hash: str = ""
    dirty: bool = False
    is_active: bool = False
    active_agent: Optional[str] = None


@dataclass
class PullRequestFact:
    number: int
    title: str
    state: PullRequestState
    url: str
    head_branch: str
    is_draft: bool = False
    labels: List[str] = field(default_factory=list)
    assignees: List[str] = field(default_factory=list)
    review_decision: Optional[str] = None
    checks_state: Optional[ChecksState] = None
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0


@dataclass(frozen=True)
class ParentInference:
    """Result of ancestry inference for one branch."""

    parent: str
    confidence: Confidence


@dataclass(frozen=True)
class Edge:
    parent: str
    child: str
    confidence: Confidence
    is_designed: bool = False

    @property
    def pair(self) -> tuple[str, str]:
        return (self.parent, self.child)


@dataclass(frozen=True)
class AheadBehind:
    ahead: int
    behind: int


@dataclass
class TopologyNode:
    branch_name: str
    last_commit_at: str
    badges: List[str] = field(default_factory=list)
    pr: Optional[PullRequestFact] = None
    worktree: Optional[WorktreeFact] = None
    ahead_behind: Optional[AheadBehind] = None
    remote_ahead_behind: Optional[AheadBehind] = None


@dataclass(frozen=True)
class LintWarning:
    """One violated lint rule instance."""

    severity: Severity
    code: WarningCode
    message: str
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def branch(self) -> Optional[str]:
        return self.meta.get("branch")


@dataclass
class TopologySnapshot:
    """Point-in-time output of one scan."""

    base_branch: str
    nodes: List[TopologyNode] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    warnings: List[LintWarning] = field(default_factory=list)
    worktrees: List[WorktreeFact] = field(default_factory=list)

    def node(self, branch_name: str) -> Optional[TopologyNode]:
        return next((n for n in self.nodes if n.branch_name == branch_name), None)

    def to_dict(self) -> dict:
        return _plain(asdict(self))

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)


@dataclass(frozen=True)
class RestartBrief:
    worktree_path: str
    cd_command: str
    restart_prompt_md: str

    def to_dict(self) -> dict:
        return asdict(self)


def _plain(value: Any) -> Any:
    """Replace enum members with their values so the dict is JSON-ready."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value
