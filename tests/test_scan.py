"""End-to-end scan tests against real repositories and canned command output."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from vibetree.collectors import BRANCH_FORMAT, PR_FIELDS
from vibetree.config_schema import LintConfig, ScanConfig, VibetreeConfig
from vibetree.design import BranchNamingRule, DesignTree
from vibetree.models import AheadBehind, Confidence, Edge, Severity, WarningCode
from vibetree.scan import build_restart_for, resolve_naming_rule, run_scan
from vibetree.testing import FixtureRunner


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def offline_config() -> VibetreeConfig:
    """Defaults with pull request lookup turned off (no gh in tests)."""
    return VibetreeConfig(scan=ScanConfig(include_pull_requests=False))


def _codes(snapshot):
    return [w.code for w in snapshot.warnings]


# ============================================================================
# Real repositories
# ============================================================================


@pytest.fixture
def login_worktree(repo_builder, tmp_path):
    """main plus feature/login two commits ahead, checked out dirty in its own worktree."""
    b = repo_builder
    b.branch("feature/login").checkout("feature/login")
    b.commits(2, "login")
    b.checkout("main")
    wt = b.worktree(tmp_path / "login", "feature/login")
    (wt / "scratch.txt").write_text("work in progress\n")
    return wt


class TestScenarios:
    def test_dirty_feature_branch(self, repo_builder, login_worktree, offline_config):
        snapshot = run_scan(repo_builder.path, base_branch="main", config=offline_config, now=NOW)

        assert snapshot.base_branch == "main"
        assert [e.pair for e in snapshot.edges] == [("main", "feature/login")]
        # No naming parent exists, so the edge comes from the fallback tier
        assert snapshot.edges[0].confidence == Confidence.LOW
        assert _codes(snapshot) == [WarningCode.DIRTY]
        assert snapshot.warnings[0].branch == "feature/login"

        node = snapshot.node("feature/login")
        assert node.ahead_behind == AheadBehind(ahead=2, behind=0)
        assert node.badges == ["dirty"]
        assert node.worktree is not None
        assert snapshot.node("main").ahead_behind is None

    def test_feature_branch_under_named_parent_is_high(self, repo_builder, offline_config):
        b = repo_builder
        b.branch("feature").checkout("feature")
        b.commit("feature base")
        b.branch("feature-login").checkout("feature-login")
        b.commits(2, "login")
        b.checkout("main")

        snapshot = run_scan(b.path, base_branch="main", config=offline_config, now=NOW)

        edges = {e.child: e for e in snapshot.edges}
        assert edges["feature-login"] == Edge("feature", "feature-login", Confidence.HIGH)
        assert snapshot.node("feature-login").ahead_behind == AheadBehind(ahead=2, behind=0)
        assert WarningCode.BEHIND_PARENT not in _codes(snapshot)

    def test_hotfix_far_behind(self, repo_builder, offline_config):
        b = repo_builder
        b.branch("hotfix-1").checkout("hotfix-1")
        b.commit("fix")
        b.checkout("main")
        b.commits(6, "main")

        snapshot = run_scan(b.path, base_branch="main", config=offline_config, now=NOW)

        behind = [w for w in snapshot.warnings if w.code == WarningCode.BEHIND_PARENT]
        assert len(behind) == 1
        assert behind[0].severity == Severity.ERROR
        assert behind[0].meta["behind"] == 6
        assert behind[0].branch == "hotfix-1"

    def test_naming_violation(self, repo_builder):
        b = repo_builder
        b.branch("feature/x")
        b.branch("random-name")
        config = VibetreeConfig(
            scan=ScanConfig(include_pull_requests=False),
            lint=LintConfig(naming_patterns=["^feature/"]),
        )

        snapshot = run_scan(b.path, base_branch="main", config=config, now=NOW)

        naming = [w for w in snapshot.warnings if w.code == WarningCode.BRANCH_NAMING_VIOLATION]
        assert [w.branch for w in naming] == ["random-name"]

    def test_design_edge_missing_in_git(self, repo_builder, offline_config):
        tree = DesignTree(edges=[{"parent": "main", "child": "task/a"}])

        snapshot = run_scan(repo_builder.path, design_tree=tree, config=offline_config, now=NOW)

        divergence = [w for w in snapshot.warnings if w.code == WarningCode.TREE_DIVERGENCE]
        assert len(divergence) == 1
        assert divergence[0].meta["type"] == "missing_in_git"
        assert divergence[0].meta["child"] == "task/a"
        # Design edges are only merged for branches that exist
        assert snapshot.edges == []


class TestScanBehaviour:
    def test_repeated_scans_are_identical(self, repo_builder, login_worktree, offline_config):
        first = run_scan(repo_builder.path, base_branch="main", config=offline_config, now=NOW)
        second = run_scan(repo_builder.path, base_branch="main", config=offline_config, now=NOW)
        assert first.to_json() == second.to_json()

    def test_snapshot_is_json_ready(self, repo_builder, login_worktree, offline_config):
        data = json.loads(run_scan(repo_builder.path, base_branch="main", config=offline_config).to_json())
        assert data["base_branch"] == "main"
        assert data["edges"][0]["confidence"] == "low"
        assert data["warnings"][0]["code"] == "DIRTY"
        assert {wt["branch"] for wt in data["worktrees"]} == {"main", "feature/login"}

    def test_empty_directory_degrades_to_empty_snapshot(self, tmp_path, offline_config):
        snapshot = run_scan(tmp_path, base_branch="main", config=offline_config)
        assert snapshot.nodes == []
        assert snapshot.edges == []
        assert snapshot.warnings == []

    def test_designed_parent_drives_divergence(self, repo_builder, offline_config):
        b = repo_builder
        b.branch("task-a").checkout("task-a")
        b.commits(2, "a")
        b.checkout("main")
        b.branch("task-b").checkout("task-b")
        b.commit("b")
        b.checkout("main")
        tree = DesignTree(edges=[{"parent": "task-a", "child": "task-b"}])

        snapshot = run_scan(b.path, base_branch="main", design_tree=tree, config=offline_config)

        assert Edge("task-a", "task-b", Confidence.HIGH, is_designed=True) in snapshot.edges
        assert snapshot.node("task-b").ahead_behind == AheadBehind(ahead=1, behind=2)
        codes = _codes(snapshot)
        assert WarningCode.BEHIND_PARENT in codes
        # git still shows task-b off main, so the design drift is reported too
        assert WarningCode.TREE_DIVERGENCE in codes

    def test_design_edges_not_merged_when_disabled(self, repo_builder):
        repo_builder.branch("task-a")
        repo_builder.branch("task-b")
        tree = DesignTree(edges=[{"parent": "task-a", "child": "task-b"}])
        config = VibetreeConfig(scan=ScanConfig(include_pull_requests=False, merge_design_edges=False))

        snapshot = run_scan(repo_builder.path, base_branch="main", design_tree=tree, config=config)

        assert not any(e.is_designed for e in snapshot.edges)

    @pytest.mark.parametrize("configured", ["master", ""])
    def test_stored_design_tree_on_master_repo(self, repo_builder, configured):
        b = repo_builder
        b.repo.git.branch("-m", "main", "master")
        b.branch("feature-x").checkout("feature-x")
        b.commit("x")
        b.checkout("master")
        tree = DesignTree.model_validate(
            {"specJson": json.dumps({"nodes": [], "edges": [{"parent": "master", "child": "feature-x"}]})}
        )
        config = VibetreeConfig(scan=ScanConfig(include_pull_requests=False, base_branch=configured))

        snapshot = run_scan(b.path, design_tree=tree, config=config, now=NOW)

        assert snapshot.base_branch == "master"
        assert [e.pair for e in snapshot.edges] == [("master", "feature-x")]
        assert snapshot.node("feature-x").ahead_behind == AheadBehind(ahead=1, behind=0)
        assert not [w for w in snapshot.warnings if w.code == WarningCode.TREE_DIVERGENCE]


class TestRestartFor:
    def test_brief_for_named_worktree(self, repo_builder, login_worktree, offline_config):
        snapshot = run_scan(repo_builder.path, base_branch="main", config=offline_config, now=NOW)

        brief = build_restart_for(snapshot, login_worktree)

        assert brief is not None
        assert "- Branch: `feature/login`" in brief.restart_prompt_md
        assert "- Dirty: Yes (uncommitted changes)" in brief.restart_prompt_md
        assert "1. Address: Worktree for feature/login has uncommitted changes" in brief.restart_prompt_md
        assert brief.cd_command.startswith('cd "')

    def test_default_is_first_worktree_on_a_branch(self, repo_builder, login_worktree, offline_config):
        snapshot = run_scan(repo_builder.path, base_branch="main", config=offline_config, now=NOW)
        brief = build_restart_for(snapshot)
        assert "- Branch: `main`" in brief.restart_prompt_md

    def test_unknown_worktree(self, repo_builder, tmp_path, offline_config):
        snapshot = run_scan(repo_builder.path, base_branch="main", config=offline_config)
        assert build_restart_for(snapshot, tmp_path / "elsewhere") is None


# ============================================================================
# Canned command output
# ============================================================================


def _canned_runner() -> FixtureRunner:
    runner = FixtureRunner()
    runner.add_git(
        ["for-each-ref", "--sort=-committerdate", f"--format={BRANCH_FORMAT}", "refs/heads/"],
        "feature/login|bbb|2024-01-02 00:00:00 +0000\nmain|aaa|2024-01-01 00:00:00 +0000\n",
    )
    runner.add_git(
        ["worktree", "list", "--porcelain"],
        "worktree /work/repo\nHEAD aaa\nbranch refs/heads/main\n",
    )
    runner.add_git(["status", "--porcelain"], "", cwd="/work/repo")
    runner.add_gh(
        ["pr", "list", "--state", "all", "--json", PR_FIELDS, "--limit", "50"],
        json.dumps(
            [
                {
                    "number": 42,
                    "title": "Login",
                    "state": "OPEN",
                    "url": "https://example.test/pr/42",
                    "headRefName": "feature/login",
                    "statusCheckRollup": [{"conclusion": "SUCCESS"}, {"conclusion": "FAILURE"}],
                }
            ]
        ),
    )
    runner.add_git(["rev-list", "--left-right", "--count", "main...feature/login"], "0\t2\n")
    return runner


class TestCannedScan:
    def test_pull_request_ci_failure(self):
        snapshot = run_scan("/work/repo", runner=_canned_runner(), now=NOW)

        # No origin/HEAD and no gh default: falls back to "main"
        assert snapshot.base_branch == "main"
        node = snapshot.node("feature/login")
        assert node.pr.number == 42
        assert node.badges == ["pr", "ci-fail"]
        assert node.ahead_behind == AheadBehind(ahead=2, behind=0)
        assert _codes(snapshot) == [WarningCode.CI_FAIL]
        assert snapshot.warnings[0].meta["pr_number"] == 42

    def test_pull_requests_skipped_when_disabled(self, offline_config):
        runner = _canned_runner()
        snapshot = run_scan("/work/repo", runner=runner, base_branch="main", config=offline_config)

        assert snapshot.node("feature/login").pr is None
        assert runner.calls_for("gh") == []

    def test_base_branch_precedence(self):
        config = VibetreeConfig(scan=ScanConfig(base_branch="trunk"))
        tree = DesignTree(baseBranch="develop")

        assert run_scan("/w", runner=FixtureRunner(), config=config).base_branch == "trunk"
        assert run_scan("/w", runner=FixtureRunner(), design_tree=tree, config=config).base_branch == "develop"
        assert (
            run_scan("/w", runner=FixtureRunner(), base_branch="main", design_tree=tree, config=config).base_branch
            == "main"
        )
        unset = DesignTree(edges=[{"parent": "trunk", "child": "x"}])
        assert run_scan("/w", runner=FixtureRunner(), design_tree=unset, config=config).base_branch == "trunk"

    def test_collector_failures_never_raise(self):
        snapshot = run_scan("/nowhere", runner=FixtureRunner())
        assert snapshot.base_branch == "main"
        assert snapshot.nodes == [] and snapshot.edges == [] and snapshot.warnings == []


def test_resolve_naming_rule_precedence():
    config = VibetreeConfig(lint=LintConfig(naming_patterns=["^cfg/"]))
    explicit = BranchNamingRule(patterns=["^arg/"])

    assert resolve_naming_rule(explicit, config) is explicit
    assert resolve_naming_rule(None, config).patterns == ["^cfg/"]
    assert resolve_naming_rule(None, VibetreeConfig()) is None
