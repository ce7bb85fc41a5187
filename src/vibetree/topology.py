"""Assemble collected facts and inferred parents into a node/edge graph."""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from .ancestry import infer_parent
from .collectors import select_pull_request
from .design import DesignTree
from .models import (
    BranchFact,
    ChecksState,
    Confidence,
    Edge,
    PullRequestFact,
    PullRequestState,
    TopologyNode,
    WorktreeFact,
)
from .runner import CommandRunner


_PR_STATE_BADGES = {
    PullRequestState.OPEN: "pr",
    PullRequestState.MERGED: "pr-merged",
    PullRequestState.CLOSED: "pr-closed",
}
_CHECK_BADGES = {
    ChecksState.FAILURE: "ci-fail",
    ChecksState.SUCCESS: "ci-pass",
    ChecksState.PENDING: "ci-pending",
}
_REVIEW_BADGES = {
    "APPROVED": "approved",
    "CHANGES_REQUESTED": "changes-requested",
}


def compute_badges(worktree: Optional[WorktreeFact], pr: Optional[PullRequestFact]) -> List[str]:
    """Display badges for one branch, in a fixed order."""
    badges: List[str] = []
    if worktree is not None:
        if worktree.dirty:
            badges.append("dirty")
        if worktree.is_active:
            badges.append("active")
    if pr is not None:
        badges.append(_PR_STATE_BADGES[pr.state])
        if pr.is_draft:
            badges.append("draft")
        if pr.checks_state in _CHECK_BADGES:
            badges.append(_CHECK_BADGES[pr.checks_state])
        if pr.review_decision in _REVIEW_BADGES:
            badges.append(_REVIEW_BADGES[pr.review_decision])
    return badges


def build_topology(
    branches: Sequence[BranchFact],
    worktrees: Sequence[WorktreeFact],
    prs: Sequence[PullRequestFact],
    base_branch: str,
    runner: Optional[CommandRunner] = None,
    max_ancestry_candidates: int = 0,
) -> Tuple[List[TopologyNode], List[Edge]]:
    """One node per branch and one inferred edge per non-base branch."""
    nodes: List[TopologyNode] = []
    edges: List[Edge] = []
    branch_names = [b.name for b in branches]

    for branch in branches:
        worktree = next((w for w in worktrees if w.branch == branch.name), None)
        pr = select_pull_request(prs, branch.name)
        nodes.append(
            TopologyNode(
                branch_name=branch.name,
                last_commit_at=branch.last_commit_at,
                badges=compute_badges(worktree, pr),
                pr=pr,
                worktree=worktree,
            )
        )

        if branch.name == base_branch:
            continue
        inference = infer_parent(
            branch.name,
            branch_names,
            base_branch,
            runner=runner,
            max_candidates=max_ancestry_candidates,
        )
        edges.append(Edge(parent=inference.parent, child=branch.name, confidence=inference.confidence))

    return nodes, edges


def merge_design_edges(
    edges: Sequence[Edge],
    design_tree: Optional[DesignTree],
    branch_names: Sequence[str],
) -> List[Edge]:
    """Add design-tree edges for existing branches as designed edges.

    Pairs already present among the inferred edges are not repeated.
    Design edges are tagged high confidence: the user asserted them.
    """
    merged = list(edges)
    if design_tree is None:
        return merged

    known = set(branch_names)
    seen = {edge.pair for edge in merged}
    for design_edge in design_tree.edges:
        pair = (design_edge.parent, design_edge.child)
        if design_edge.child not in known or pair in seen:
            continue
        merged.append(
            Edge(
                parent=design_edge.parent,
                child=design_edge.child,
                confidence=Confidence.HIGH,
                is_designed=True,
            )
        )
        seen.add(pair)
    return merged
