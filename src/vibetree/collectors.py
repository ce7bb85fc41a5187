"""Fact collectors: branches, worktrees, and pull requests.

Each collector is best-effort. A failing external command is logged and
turns into an empty list; it never aborts the scan.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from .models import (
    BranchFact,
    ChecksState,
    PullRequestFact,
    PullRequestState,
    WorktreeFact,
)
from .observability import log_debug, log_warning
from .runner import CommandRunner


HEARTBEAT_RELATIVE_PATH = Path(".vibetree") / "heartbeat.json"
HEARTBEAT_WINDOW_SECONDS = 30.0
DEFAULT_PR_LIMIT = 50

BRANCH_FORMAT = "%(refname:short)|%(objectname:short)|%(committerdate:iso8601)"
PR_FIELDS = (
    "number,title,state,url,headRefName,isDraft,labels,assignees,"
    "reviewDecision,statusCheckRollup,additions,deletions,changedFiles"
)

# Tried in order when neither origin/HEAD nor gh names the default branch
FALLBACK_BASE_BRANCHES = ("develop", "main", "master")

_FAILING_CHECKS = {"FAILURE", "ERROR", "TIMED_OUT", "CANCELLED", "ACTION_REQUIRED", "STARTUP_FAILURE"}
_PASSING_CHECKS = {"SUCCESS", "NEUTRAL", "SKIPPED"}


# ---------------------------------------------------------------------------
# Branches
# ---------------------------------------------------------------------------


def collect_branches(runner: CommandRunner) -> List[BranchFact]:
    """List local branches, most recently committed first."""
    output = runner.git(
        ["for-each-ref", "--sort=-committerdate", f"--format={BRANCH_FORMAT}", "refs/heads/"]
    )
    if output is None:
        log_warning("[COLLECT] Branch enumeration failed; continuing with no branches")
        return []

    branches = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        # Branch names may contain '|', the hash and date never do
        parts = line.rsplit("|", 2)
        if len(parts) != 3 or not parts[0]:
            log_debug(f"[COLLECT] Skipping malformed branch line: {line!r}")
            continue
        name, commit_hash, last_commit_at = parts
        branches.append(BranchFact(name=name, commit_hash=commit_hash, last_commit_at=last_commit_at))
    return branches


def detect_base_branch(runner: CommandRunner, branch_names: Sequence[str]) -> str:
    """Work out the repository's default integration branch.

    Order: origin/HEAD, the code-hosting default branch, then the first of
    develop/main/master that exists, then the first branch, then "main".
    """
    known = set(branch_names)

    output = runner.git(["symbolic-ref", "refs/remotes/origin/HEAD"])
    if output:
        ref = output.strip()
        prefix = "refs/remotes/origin/"
        if ref.startswith(prefix) and ref[len(prefix):] in known:
            return ref[len(prefix):]

    output = runner.gh(["repo", "view", "--json", "defaultBranchRef", "--jq", ".defaultBranchRef.name"])
    if output and output.strip() in known:
        return output.strip()

    for name in FALLBACK_BASE_BRANCHES:
        if name in known:
            return name

    return branch_names[0] if branch_names else "main"


# ---------------------------------------------------------------------------
# Worktrees
# ---------------------------------------------------------------------------


def parse_worktree_porcelain(output: str) -> List[WorktreeFact]:
    """Parse ``git worktree list --porcelain`` into facts (dirty not yet probed)."""
    worktrees: List[WorktreeFact] = []
    current: Optional[WorktreeFact] = None
    bare = False

    def _flush() -> None:
        if current is not None and not bare:
            worktrees.append(current)

    for line in output.splitlines():
        if line.startswith("worktree "):
            _flush()
            current = WorktreeFact(path=line[len("worktree "):], branch=None)
            bare = False
        elif current is None:
            continue
        elif line.startswith("HEAD "):
            current.commit_hash = line[len("HEAD "):]
        elif line.startswith("branch "):
            ref = line[len("branch "):]
            current.branch = ref[len("refs/heads/"):] if ref.startswith("refs/heads/") else ref
        elif line == "bare":
            bare = True
    _flush()
    return worktrees


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # Millisecond epochs are what JavaScript writers produce
        seconds = value / 1000.0 if value > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def read_heartbeat(
    marker_path: Path,
    window: float = HEARTBEAT_WINDOW_SECONDS,
    now: Optional[datetime] = None,
) -> Tuple[bool, Optional[str]]:
    """Read a liveness marker. Returns ``(is_active, agent)``.

    A missing, unreadable, or stale marker means "not active".
    """
    if not marker_path.is_file():
        return False, None
    try:
        data = json.loads(marker_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log_debug(f"[COLLECT] Ignoring unreadable heartbeat {marker_path}: {e}")
        return False, None
    if not isinstance(data, dict):
        return False, None

    updated_at = _parse_timestamp(data.get("updatedAt"))
    if updated_at is None:
        log_debug(f"[COLLECT] Heartbeat {marker_path} has no usable updatedAt")
        return False, None

    now = now or datetime.now(timezone.utc)
    if (now - updated_at).total_seconds() >= window:
        return False, None
    agent = data.get("agent")
    return True, str(agent) if agent is not None else None


def collect_worktrees(
    runner: CommandRunner,
    *,
    heartbeat_window: float = HEARTBEAT_WINDOW_SECONDS,
    heartbeat_path: Path = HEARTBEAT_RELATIVE_PATH,
    now: Optional[datetime] = None,
) -> List[WorktreeFact]:
    """List worktrees with their dirty and liveness flags.

    Each worktree is probed on its own; a failed probe only leaves that
    worktree's ``dirty`` flag false.
    """
    output = runner.git(["worktree", "list", "--porcelain"])
    if output is None:
        log_warning("[COLLECT] Worktree enumeration failed; continuing with no worktrees")
        return []

    worktrees = parse_worktree_porcelain(output)
    for wt in worktrees:
        status = runner.git(["status", "--porcelain"], cwd=Path(wt.path))
        if status is None:
            log_debug(f"[COLLECT] Dirty probe failed for {wt.path}; treating as clean")
            wt.dirty = False
        else:
            wt.dirty = bool(status.strip())

        wt.is_active, wt.active_agent = read_heartbeat(
            Path(wt.path) / heartbeat_path, window=heartbeat_window, now=now
        )
    return worktrees


# ---------------------------------------------------------------------------
# Pull requests
# ---------------------------------------------------------------------------


def rollup_checks(entries: Optional[Iterable[dict]]) -> Optional[ChecksState]:
    """Reduce a status check rollup to one state. Any failure wins."""
    entries = [e for e in (entries or []) if isinstance(e, dict)]
    if not entries:
        return None
    pending = False
    for entry in entries:
        outcome = str(entry.get("conclusion") or entry.get("state") or "").upper()
        if outcome in _FAILING_CHECKS:
            return ChecksState.FAILURE
        if outcome not in _PASSING_CHECKS:
            pending = True
    return ChecksState.PENDING if pending else ChecksState.SUCCESS


def _parse_pull_request(raw: dict) -> Optional[PullRequestFact]:
    try:
        state = PullRequestState(str(raw.get("state", "")).upper())
    except ValueError:
        log_debug(f"[COLLECT] Skipping PR with unknown state: {raw.get('state')!r}")
        return None
    try:
        return PullRequestFact(
            number=int(raw["number"]),
            title=str(raw.get("title") or ""),
            state=state,
            url=str(raw.get("url") or ""),
            head_branch=str(raw["headRefName"]),
            is_draft=bool(raw.get("isDraft", False)),
            labels=[l["name"] for l in raw.get("labels") or [] if isinstance(l, dict) and "name" in l],
            assignees=[a["login"] for a in raw.get("assignees") or [] if isinstance(a, dict) and "login" in a],
            review_decision=raw.get("reviewDecision") or None,
            checks_state=rollup_checks(raw.get("statusCheckRollup")),
            additions=int(raw.get("additions") or 0),
            deletions=int(raw.get("deletions") or 0),
            changed_files=int(raw.get("changedFiles") or 0),
        )
    except (KeyError, TypeError, ValueError) as e:
        log_debug(f"[COLLECT] Skipping malformed PR record: {e}")
        return None


def collect_pull_requests(runner: CommandRunner, limit: int = DEFAULT_PR_LIMIT) -> List[PullRequestFact]:
    """List recent pull requests of every state from the code-hosting CLI."""
    output = runner.gh(["pr", "list", "--state", "all", "--json", PR_FIELDS, "--limit", str(limit)])
    if output is None:
        log_warning("[COLLECT] Pull request listing failed; continuing with no pull requests")
        return []
    try:
        records = json.loads(output)
    except ValueError as e:
        log_warning(f"[COLLECT] Pull request listing was not JSON: {e}")
        return []
    if not isinstance(records, list):
        log_warning("[COLLECT] Pull request listing was not a list")
        return []

    prs = []
    for raw in records:
        if isinstance(raw, dict):
            pr = _parse_pull_request(raw)
            if pr is not None:
                prs.append(pr)
    return prs


def select_pull_request(prs: Sequence[PullRequestFact], branch: str) -> Optional[PullRequestFact]:
    """Pick the one PR shown for a branch: the open one, else the most recent."""
    matching = [pr for pr in prs if pr.head_branch == branch]
    if not matching:
        return None
    return next((pr for pr in matching if pr.state == PullRequestState.OPEN), matching[0])
