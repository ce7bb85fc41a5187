"""Ahead/behind counts against the parent branch and the upstream ref."""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from .models import AheadBehind, Edge, TopologyNode
from .observability import log_debug
from .runner import CommandRunner, is_safe_ref


def parent_map(edges: Sequence[Edge]) -> Dict[str, str]:
    """child -> parent; a designed edge overrides an inferred one."""
    parents: Dict[str, str] = {}
    designed = set()
    for edge in edges:
        if edge.child in designed:
            continue
        parents[edge.child] = edge.parent
        if edge.is_designed:
            designed.add(edge.child)
    return parents


def left_right_count(runner: CommandRunner, left: str, right: str) -> Optional[AheadBehind]:
    """Compare ``left...right``; left-only commits are "behind", right-only "ahead"."""
    output = runner.git(["rev-list", "--left-right", "--count", f"{left}...{right}"])
    if output is None:
        return None
    parts = output.split()
    if len(parts) != 2:
        log_debug(f"[DIVERGENCE] Unexpected rev-list output for {left}...{right}: {output!r}")
        return None
    try:
        behind, ahead = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    return AheadBehind(ahead=ahead, behind=behind)


def apply_parent_divergence(
    nodes: Sequence[TopologyNode],
    edges: Sequence[Edge],
    runner: CommandRunner,
    base_branch: str,
) -> None:
    """Set ``ahead_behind`` on every non-base node whose comparison succeeds."""
    parents = parent_map(edges)
    for node in nodes:
        if node.branch_name == base_branch:
            continue
        parent = parents.get(node.branch_name, base_branch)
        if not (is_safe_ref(parent) and is_safe_ref(node.branch_name)):
            continue
        result = left_right_count(runner, parent, node.branch_name)
        if result is None:
            log_debug(f"[DIVERGENCE] Skipping {node.branch_name}: comparison with {parent} failed")
            continue
        node.ahead_behind = result


def apply_remote_divergence(nodes: Sequence[TopologyNode], runner: CommandRunner) -> None:
    """Set ``remote_ahead_behind`` where an upstream exists and differs."""
    for node in nodes:
        if not is_safe_ref(node.branch_name):
            continue
        upstream = runner.git(["rev-parse", "--abbrev-ref", f"{node.branch_name}@{{upstream}}"])
        if not upstream or not upstream.strip():
            continue
        result = left_right_count(runner, upstream.strip(), node.branch_name)
        if result is None:
            continue
        if result.ahead > 0 or result.behind > 0:
            node.remote_ahead_behind = result
