"""Parent branch inference.

Three tiers, strongest evidence first:

1. Naming convention (high): ``feature/login-form`` is a child of
   ``feature/login`` because it starts with ``feature/login-``. Longest
   candidate wins.
2. Commit graph (medium): among branches whose tip is an ancestor of the
   target, the one reachable in the fewest commits. The base branch takes
   part as the baseline and only a non-base winner counts.
3. Fallback (low): the base branch.

Ties that survive the length/distance comparison go to the lexically
smallest candidate so results do not depend on enumeration order.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence

from .models import Confidence, ParentInference
from .observability import log_debug
from .runner import CommandRunner, is_safe_ref


def match_by_naming(branch: str, branch_names: Sequence[str], base_branch: str) -> Optional[str]:
    """Return the longest branch name that ``branch`` extends with '/' or '-'."""
    best: Optional[str] = None
    for candidate in sorted(set(branch_names)):
        if candidate in (branch, base_branch):
            continue
        if not (branch.startswith(candidate + "/") or branch.startswith(candidate + "-")):
            continue
        if best is None or len(candidate) > len(best):
            best = candidate
    return best


def resolve_parent(
    branch: str,
    branch_names: Sequence[str],
    base_branch: str,
    distances: Optional[Mapping[str, int]] = None,
    base_distance: Optional[int] = None,
) -> ParentInference:
    """Decide a parent from naming and precomputed commit distances.

    ``distances`` maps each candidate whose tip is an ancestor of ``branch``
    to the number of commits in ``candidate..branch``. ``base_distance`` is
    the ``base..branch`` count, or None when it could not be measured.
    """
    named = match_by_naming(branch, branch_names, base_branch)
    if named is not None:
        return ParentInference(parent=named, confidence=Confidence.HIGH)

    if distances:
        closest = base_branch
        min_distance = base_distance if base_distance is not None else None
        for candidate in sorted(distances):
            if candidate in (branch, base_branch):
                continue
            distance = distances[candidate]
            if distance <= 0:
                continue
            if min_distance is None or distance < min_distance:
                closest, min_distance = candidate, distance
        if closest != base_branch:
            return ParentInference(parent=closest, confidence=Confidence.MEDIUM)

    return ParentInference(parent=base_branch, confidence=Confidence.LOW)


def _count(runner: CommandRunner, rev_range: str) -> Optional[int]:
    output = runner.git(["rev-list", "--count", rev_range])
    if output is None:
        return None
    try:
        return int(output.strip())
    except ValueError:
        log_debug(f"[ANCESTRY] Unexpected rev-list output for {rev_range}: {output!r}")
        return None


def _is_ancestor(runner: CommandRunner, candidate: str, branch: str) -> bool:
    """True when candidate's tip equals merge-base(candidate, branch)."""
    merge_base = runner.git(["merge-base", candidate, branch])
    if not merge_base:
        return False
    tip = runner.git(["rev-parse", candidate])
    if not tip:
        return False
    return merge_base.strip() == tip.strip()


def measure_ancestor_distances(
    runner: CommandRunner,
    branch: str,
    branch_names: Sequence[str],
    base_branch: str,
    max_candidates: int = 0,
) -> tuple[Optional[int], Dict[str, int]]:
    """Measure ``base..branch`` and ``candidate..branch`` for ancestor candidates.

    Costs up to three git calls per candidate. ``max_candidates`` (0 means
    no cap) keeps only the first candidates in ``branch_names`` order.

    Returns ``(base_distance, distances)``.
    """
    if not is_safe_ref(branch):
        return None, {}

    base_distance = _count(runner, f"{base_branch}..{branch}") if is_safe_ref(base_branch) else None

    candidates = [c for c in dict.fromkeys(branch_names) if c not in (branch, base_branch)]
    if max_candidates > 0:
        candidates = candidates[:max_candidates]

    distances: Dict[str, int] = {}
    for candidate in candidates:
        if not is_safe_ref(candidate):
            continue
        if not _is_ancestor(runner, candidate, branch):
            continue
        distance = _count(runner, f"{candidate}..{branch}")
        if distance is not None:
            distances[candidate] = distance
    return base_distance, distances


def infer_parent(
    branch: str,
    branch_names: Sequence[str],
    base_branch: str,
    runner: Optional[CommandRunner] = None,
    max_candidates: int = 0,
) -> ParentInference:
    """Infer the most likely parent of ``branch``.

    Without a runner only the naming tier and the fallback are available.
    """
    named = match_by_naming(branch, branch_names, base_branch)
    if named is not None:
        return ParentInference(parent=named, confidence=Confidence.HIGH)
    if runner is None:
        return ParentInference(parent=base_branch, confidence=Confidence.LOW)

    base_distance, distances = measure_ancestor_distances(
        runner, branch, branch_names, base_branch, max_candidates=max_candidates
    )
    result = resolve_parent(branch, branch_names, base_branch, distances, base_distance)
    log_debug(
        f"[ANCESTRY] {branch} -> {result.parent}",
        confidence=result.confidence.value,
        base_distance=base_distance,
        ancestors=len(distances),
    )
    return result
