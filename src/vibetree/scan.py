"""Scan pipeline: collect -> infer -> build -> diverge -> lint.

One call is one sequential, point-in-time run. Nothing is cached between
runs; concurrent scans of one repository do not share state.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

from .collectors import (
    collect_branches,
    collect_pull_requests,
    collect_worktrees,
    detect_base_branch,
)
from .config_schema import VibetreeConfig
from .design import BranchNamingRule, DesignTree
from .divergence import apply_parent_divergence, apply_remote_divergence
from .lint import lint_topology
from .models import RestartBrief, TopologySnapshot
from .observability import log_action, timeit
from .restart import build_restart_brief, pick_restart_worktree
from .runner import CommandRunner, GitCliRunner
from .topology import build_topology, merge_design_edges


def resolve_naming_rule(
    naming_rule: Optional[BranchNamingRule], config: VibetreeConfig
) -> Optional[BranchNamingRule]:
    """Explicit rule first, then the configured patterns."""
    if naming_rule is not None:
        return naming_rule
    if config.lint.naming_patterns:
        return BranchNamingRule(patterns=list(config.lint.naming_patterns))
    return None


def run_scan(
    repo_path: Path,
    *,
    runner: Optional[CommandRunner] = None,
    base_branch: Optional[str] = None,
    design_tree: Optional[DesignTree] = None,
    naming_rule: Optional[BranchNamingRule] = None,
    config: Optional[VibetreeConfig] = None,
    now: Optional[datetime] = None,
) -> TopologySnapshot:
    """Scan a repository and return its topology snapshot.

    Base branch precedence: ``base_branch``, the design tree's base, the
    configured ``scan.base_branch``, then detection.
    """
    config = config or VibetreeConfig.default()
    scan_cfg = config.scan
    repo_path = Path(repo_path)
    if runner is None:
        runner = GitCliRunner(repo_path, git_timeout=scan_cfg.git_timeout, gh_timeout=scan_cfg.gh_timeout)

    with timeit("scan", repo=str(repo_path)) as info:
        with timeit("scan.collect"):
            branches = collect_branches(runner)
            worktrees = collect_worktrees(
                runner,
                heartbeat_window=scan_cfg.heartbeat_window,
                heartbeat_path=Path(scan_cfg.heartbeat_path),
                now=now,
            )
            prs = collect_pull_requests(runner, limit=scan_cfg.pr_limit) if scan_cfg.include_pull_requests else []

        branch_names = [b.name for b in branches]
        base = (
            base_branch
            or (design_tree.base_branch if design_tree is not None else None)
            or scan_cfg.base_branch
            or detect_base_branch(runner, branch_names)
        )

        with timeit("scan.build", branches=len(branches)):
            nodes, edges = build_topology(
                branches,
                worktrees,
                prs,
                base,
                runner=runner,
                max_ancestry_candidates=scan_cfg.max_ancestry_candidates,
            )
            if scan_cfg.merge_design_edges:
                edges = merge_design_edges(edges, design_tree, branch_names)

        with timeit("scan.divergence"):
            apply_parent_divergence(nodes, edges, runner, base)
            apply_remote_divergence(nodes, runner)

        with timeit("scan.lint"):
            warnings = lint_topology(
                nodes,
                edges,
                base,
                naming_rule=resolve_naming_rule(naming_rule, config),
                design_tree=design_tree,
            )

        info.update(
            base_branch=base,
            nodes=len(nodes),
            edges=len(edges),
            warnings=len(warnings),
            worktrees=len(worktrees),
            prs=len(prs),
        )

    return TopologySnapshot(
        base_branch=base,
        nodes=nodes,
        edges=edges,
        warnings=warnings,
        worktrees=list(worktrees),
    )


def build_restart_for(
    snapshot: TopologySnapshot,
    worktree_path: Optional[Path] = None,
    naming_rule: Optional[BranchNamingRule] = None,
) -> Optional[RestartBrief]:
    """Restart brief for ``worktree_path``, or for the first worktree on a branch."""
    if worktree_path is not None:
        wanted = Path(worktree_path).resolve()
        worktree = next(
            (wt for wt in snapshot.worktrees if Path(wt.path).resolve() == wanted),
            None,
        )
    else:
        worktree = pick_restart_worktree(snapshot.worktrees)

    if worktree is None:
        log_action("restart", outcome="no_worktree", worktree=str(worktree_path or ""))
        return None
    return build_restart_brief(worktree, snapshot.nodes, snapshot.warnings, naming_rule)
