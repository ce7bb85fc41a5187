from __future__ import annotations

from typing import List, Optional, Sequence

from .design import BranchNamingRule
from .models import LintWarning, RestartBrief, TopologyNode, WorktreeFact


MAX_NEXT_STEPS = 3

RESTART_TEMPLATE = """# Restart Prompt

## Project Rules
### Branch Naming
- Patterns: {{PATTERNS}}

## Current State
- Branch: `{{BRANCH}}`
- Worktree: `{{WORKTREE}}`
- Dirty: {{DIRTY}}
{{BEHIND}}

## Warnings
{{WARNINGS}}

## Next Steps
{{NEXT_STEPS}}

---
*Paste this prompt into your coding agent to continue your session.*
"""


def _fill_template(src: str, mapping: dict[str, str]) -> str:
    """Replace '{{KEY}}' placeholders."""
    out = src
    for k, v in mapping.items():
        out = out.replace(f"{{{{{k}}}}}", v)
    return out


def cd_command(path: str) -> str:
    escaped = path.replace("\\", "\\\\").replace('"', '\\"')
    return f'cd "{escaped}"'


def pick_restart_worktree(worktrees: Sequence[WorktreeFact]) -> Optional[WorktreeFact]:
    """First worktree that is on a branch; detached ones have nothing to resume."""
    return next((wt for wt in worktrees if wt.branch), None)


def build_restart_brief(
    worktree: WorktreeFact,
    nodes: Sequence[TopologyNode],
    warnings: Sequence[LintWarning],
    naming_rule: Optional[BranchNamingRule] = None,
) -> RestartBrief:
    """Render the resume brief for one worktree."""
    node = next((n for n in nodes if n.branch_name == worktree.branch), None)
    branch_warnings: List[LintWarning] = [w for w in warnings if w.branch == worktree.branch]

    if naming_rule is not None and naming_rule.patterns:
        patterns = ", ".join(f"`{p}`" for p in naming_rule.patterns)
    else:
        patterns = "N/A"

    if node is not None and node.ahead_behind is not None:
        behind = f"- Behind: {node.ahead_behind.behind} commits"
    else:
        behind = ""

    if branch_warnings:
        warning_lines = "\n".join(f"- [{w.severity.value.upper()}] {w.message}" for w in branch_warnings)
        next_steps = "\n".join(
            f"{i}. Address: {w.message}" for i, w in enumerate(branch_warnings[:MAX_NEXT_STEPS], start=1)
        )
    else:
        warning_lines = "No warnings"
        next_steps = "1. Continue working on your current task"

    prompt = _fill_template(
        RESTART_TEMPLATE,
        {
            "PATTERNS": patterns,
            "BRANCH": worktree.branch or "",
            "WORKTREE": worktree.path,
            "DIRTY": "Yes (uncommitted changes)" if worktree.dirty else "No",
            "BEHIND": behind,
            "WARNINGS": warning_lines,
            "NEXT_STEPS": next_steps,
        },
    )
    return RestartBrief(
        worktree_path=worktree.path,
        cd_command=cd_command(worktree.path),
        restart_prompt_md=prompt,
    )
