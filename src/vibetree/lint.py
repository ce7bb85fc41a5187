"""Rule-based topology linter.

Per-node rules run in a fixed order, then the design tree is reconciled
against the inferred edges. Rules are independent of one another.
"""

from __future__ import annotations

import re
from typing import Callable, List, Optional, Sequence

from .design import BranchNamingRule, DesignTree
from .models import ChecksState, Edge, LintWarning, Severity, TopologyNode, WarningCode


BEHIND_ERROR_THRESHOLD = 5

NodeRule = Callable[[TopologyNode], Optional[LintWarning]]


def behind_parent_severity(behind: int) -> Optional[Severity]:
    """0 -> no warning, 1-4 -> warn, 5 or more -> error."""
    if behind >= BEHIND_ERROR_THRESHOLD:
        return Severity.ERROR
    if behind >= 1:
        return Severity.WARN
    return None


def check_behind_parent(node: TopologyNode) -> Optional[LintWarning]:
    if node.ahead_behind is None:
        return None
    behind = node.ahead_behind.behind
    severity = behind_parent_severity(behind)
    if severity is None:
        return None
    return LintWarning(
        severity=severity,
        code=WarningCode.BEHIND_PARENT,
        message=f"Branch {node.branch_name} is {behind} commits behind",
        meta={"branch": node.branch_name, "behind": behind},
    )


def check_dirty(node: TopologyNode) -> Optional[LintWarning]:
    if node.worktree is None or not node.worktree.dirty:
        return None
    return LintWarning(
        severity=Severity.WARN,
        code=WarningCode.DIRTY,
        message=f"Worktree for {node.branch_name} has uncommitted changes",
        meta={"branch": node.branch_name, "worktree": node.worktree.path},
    )


def check_ci_fail(node: TopologyNode) -> Optional[LintWarning]:
    if node.pr is None or node.pr.checks_state != ChecksState.FAILURE:
        return None
    return LintWarning(
        severity=Severity.ERROR,
        code=WarningCode.CI_FAIL,
        message=f"CI failed for PR #{node.pr.number} ({node.branch_name})",
        meta={"branch": node.branch_name, "pr_number": node.pr.number},
    )


def naming_rule_check(patterns: Sequence[re.Pattern[str]], base_branch: str) -> NodeRule:
    """Build the naming rule; with no usable patterns it never fires."""

    def check_branch_naming(node: TopologyNode) -> Optional[LintWarning]:
        if not patterns or node.branch_name == base_branch:
            return None
        if any(pattern.search(node.branch_name) for pattern in patterns):
            return None
        return LintWarning(
            severity=Severity.WARN,
            code=WarningCode.BRANCH_NAMING_VIOLATION,
            message=f"Branch {node.branch_name} does not follow naming convention",
            meta={"branch": node.branch_name},
        )

    return check_branch_naming


def reconcile_design_tree(design_tree: Optional[DesignTree], edges: Sequence[Edge]) -> List[LintWarning]:
    """Flag design edges that git does not show.

    Only inferred edges count as git's view; designed edges merged into the
    snapshot would otherwise hide the drift.
    """
    if design_tree is None:
        return []
    actual = {edge.pair for edge in edges if not edge.is_designed}
    warnings = []
    for parent, child in design_tree.pairs():
        if (parent, child) in actual:
            continue
        warnings.append(
            LintWarning(
                severity=Severity.WARN,
                code=WarningCode.TREE_DIVERGENCE,
                message=f"Design tree has {parent} -> {child} but git doesn't match",
                meta={"parent": parent, "child": child, "type": "missing_in_git"},
            )
        )
    return warnings


def lint_topology(
    nodes: Sequence[TopologyNode],
    edges: Sequence[Edge],
    base_branch: str,
    naming_rule: Optional[BranchNamingRule] = None,
    design_tree: Optional[DesignTree] = None,
) -> List[LintWarning]:
    """Evaluate every rule and return the warnings in evaluation order."""
    patterns = naming_rule.compiled() if naming_rule is not None else []
    rules: List[NodeRule] = [
        check_behind_parent,
        check_dirty,
        check_ci_fail,
        naming_rule_check(patterns, base_branch),
    ]

    warnings: List[LintWarning] = []
    for node in nodes:
        for rule in rules:
            warning = rule(node)
            if warning is not None:
                warnings.append(warning)

    warnings.extend(reconcile_design_tree(design_tree, edges))
    return warnings
