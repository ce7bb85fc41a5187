#!/usr/bin/env python3
"""vibetree CLI - scan a repository's branch topology from the command line."""
from __future__ import annotations

import argparse
import sys
from typing import TYPE_CHECKING, Dict, List, Optional

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"vibetree requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)

if TYPE_CHECKING:
    from .models import TopologySnapshot


def _add_input_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--repo", help="Path to the repository (default: current directory)")
    p.add_argument("--base", help="Base branch (default: design tree, config, or detected)")
    p.add_argument("--design-tree", help="Design tree JSON file")
    p.add_argument("--naming-rule", help="Naming rule JSON file ({\"patterns\": [...]})")
    p.add_argument("--pattern", action="append", default=[], help="Branch naming regex (repeatable)")
    p.add_argument("--no-prs", action="store_true", help="Skip pull request lookup")


def _format_counts(ahead_behind) -> str:
    if ahead_behind is None:
        return ""
    return f"+{ahead_behind.ahead}/-{ahead_behind.behind}"


def render_tree(snapshot: "TopologySnapshot") -> str:
    """Render the snapshot as an indented tree followed by its warnings."""
    from .divergence import parent_map

    parents = parent_map(snapshot.edges)
    confidence: Dict[str, str] = {}
    for edge in snapshot.edges:
        if parents.get(edge.child) == edge.parent:
            confidence[edge.child] = "designed" if edge.is_designed else edge.confidence.value

    children: Dict[str, List[str]] = {}
    for node in snapshot.nodes:
        parent = parents.get(node.branch_name)
        if parent is not None:
            children.setdefault(parent, []).append(node.branch_name)

    nodes = {n.branch_name: n for n in snapshot.nodes}
    lines: List[str] = []
    seen = set()

    def _walk(name: str, depth: int) -> None:
        if name in seen:
            return
        seen.add(name)
        node = nodes.get(name)
        parts = ["  " * depth + ("└─ " if depth else "") + name]
        if node is not None:
            if node.badges:
                parts.append(f"[{', '.join(node.badges)}]")
            counts = _format_counts(node.ahead_behind)
            if counts:
                parts.append(counts)
            if node.remote_ahead_behind is not None:
                parts.append(f"remote {_format_counts(node.remote_ahead_behind)}")
        if name in confidence:
            parts.append(f"({confidence[name]})")
        lines.append("  ".join(parts))
        for child in children.get(name, []):
            _walk(child, depth + 1)

    _walk(snapshot.base_branch, 0)
    unattached = [n.branch_name for n in snapshot.nodes if n.branch_name not in seen]
    if unattached:
        lines.append("")
        lines.append("Unattached:")
        for name in unattached:
            _walk(name, 1)

    lines.append("")
    if snapshot.warnings:
        lines.append(f"Warnings ({len(snapshot.warnings)}):")
        for w in snapshot.warnings:
            lines.append(f"  [{w.severity.value.upper()}] {w.code.value}: {w.message}")
    else:
        lines.append("No warnings")
    return "\n".join(lines)


def _describe_sources(paths) -> str:
    lines = ["Config sources (lowest priority first):", ""]
    for name, path in paths.items():
        if path is None:
            lines.append(f"  - {name}: (no .vibetree directory found)")
        else:
            state = "✓" if path.exists() else "✗"
            suffix = "" if path.exists() else " (not found)"
            lines.append(f"  {state} {name}: {path}{suffix}")
    lines.append("")
    lines.append("VIBETREE_* environment variables override both files.")
    return "\n".join(lines)


def _config_as_toml(resolved: dict) -> str:
    import tomlkit

    doc = tomlkit.document()
    doc.add(tomlkit.comment(" vibetree configuration (resolved)"))
    for section, values in resolved.items():
        if not isinstance(values, dict):
            doc.add(section, values)
            continue
        table = tomlkit.table()
        table.update(values)
        doc.add(tomlkit.nl())
        doc.add(section, table)
    return tomlkit.dumps(doc)


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(
        prog="vibetree",
        description="Branch topology inference and drift linting for git repositories",
    )

    sub = ap.add_subparsers(dest="cmd")

    p_scan = sub.add_parser("scan", help="Scan branches, worktrees and PRs into a topology snapshot")
    _add_input_args(p_scan)
    p_scan.add_argument("--json", dest="as_json", action="store_true", help="Output as JSON")

    p_restart = sub.add_parser("restart", help="Print a restart brief for a worktree")
    _add_input_args(p_restart)
    p_restart.add_argument("--worktree", help="Worktree path (default: first worktree on a branch)")
    p_restart.add_argument("--json", dest="as_json", action="store_true", help="Output as JSON")

    p_parent = sub.add_parser("parent", help="Show the inferred parent of a branch")
    p_parent.add_argument("branch", help="Branch name")
    p_parent.add_argument("--repo", help="Path to the repository (default: current directory)")
    p_parent.add_argument("--base", help="Base branch (default: config or detected)")

    p_config = sub.add_parser("config", help="Configuration management")
    config_sub = p_config.add_subparsers(dest="config_cmd")

    p_config_show = config_sub.add_parser("show", help="Show resolved configuration")
    p_config_show.add_argument("--project-path", help="Project directory for config discovery")
    p_config_show.add_argument("--json", dest="as_json", action="store_true", help="Output as JSON")
    p_config_show.add_argument("--sources", action="store_true", help="Show config source files")

    p_config_validate = config_sub.add_parser("validate", help="Validate configuration files")
    p_config_validate.add_argument("--project-path", help="Project directory for config discovery")

    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(0)

    from pathlib import Path
    from .config_loader import ConfigError, load_config
    from .observability import configure_from_config

    if args.cmd == "config":
        if not args.config_cmd:
            print("Usage: vibetree config {show|validate}")
            sys.exit(0)

        project_path = Path(args.project_path) if args.project_path else None
        if args.config_cmd == "show" and args.sources:
            from .config_loader import get_config_paths

            print(_describe_sources(get_config_paths(project_path)))
            sys.exit(0)

        try:
            config = load_config(project_path)
        except ConfigError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(1)

        if args.config_cmd == "validate":
            print("✅ Configuration is valid")
        elif args.as_json:
            import json as json_module

            print(json_module.dumps(config.model_dump(), indent=2))
        else:
            print(_config_as_toml(config.model_dump()))
        sys.exit(0)

    repo_path = Path(args.repo).resolve() if args.repo else Path.cwd()
    try:
        config = load_config(repo_path)
    except ConfigError as e:
        print(f"❌ Config error: {e}", file=sys.stderr)
        sys.exit(1)
    configure_from_config(config.logging)

    if args.cmd == "parent":
        from .ancestry import infer_parent
        from .collectors import collect_branches, detect_base_branch
        from .runner import GitCliRunner

        runner = GitCliRunner(repo_path, git_timeout=config.scan.git_timeout, gh_timeout=config.scan.gh_timeout)
        names = [b.name for b in collect_branches(runner)]
        if args.branch not in names:
            print(f"❌ Branch not found: {args.branch}", file=sys.stderr)
            sys.exit(1)
        base = args.base or config.scan.base_branch or detect_base_branch(runner, names)
        if args.branch == base:
            print(f"{args.branch} is the base branch")
            sys.exit(0)
        result = infer_parent(
            args.branch, names, base, runner=runner, max_candidates=config.scan.max_ancestry_candidates
        )
        print(f"{result.parent} -> {args.branch} ({result.confidence.value})")
        sys.exit(0)

    if args.cmd in ("scan", "restart"):
        import json as json_module
        from .design import BranchNamingRule, DesignInputError, load_design_tree, load_naming_rule
        from .scan import build_restart_for, run_scan

        if args.no_prs:
            config = config.model_copy(
                update={"scan": config.scan.model_copy(update={"include_pull_requests": False})}
            )

        try:
            design_tree = load_design_tree(Path(args.design_tree)) if args.design_tree else None
            naming_rule: Optional[BranchNamingRule] = (
                load_naming_rule(Path(args.naming_rule)) if args.naming_rule else None
            )
        except DesignInputError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(1)
        if args.pattern:
            existing = naming_rule.patterns if naming_rule is not None else []
            naming_rule = BranchNamingRule(patterns=[*existing, *args.pattern])

        snapshot = run_scan(
            repo_path,
            base_branch=args.base,
            design_tree=design_tree,
            naming_rule=naming_rule,
            config=config,
        )

        if args.cmd == "scan":
            if args.as_json:
                print(snapshot.to_json(indent=2))
            else:
                print(render_tree(snapshot))
            sys.exit(0)

        from .scan import resolve_naming_rule

        worktree = Path(args.worktree) if args.worktree else None
        brief = build_restart_for(snapshot, worktree, resolve_naming_rule(naming_rule, config))
        if brief is None:
            print("❌ No matching worktree on a branch", file=sys.stderr)
            sys.exit(1)
        if args.as_json:
            print(json_module.dumps(brief.to_dict(), indent=2))
        else:
            print(brief.cd_command)
            print()
            print(brief.restart_prompt_md)
        sys.exit(0)

    print(f"vibetree {args.cmd}: unknown command", file=sys.stderr)
    sys.exit(1)


if __name__ == "__main__":
    main()
