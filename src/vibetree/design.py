"""Caller-supplied inputs: the design tree and the branch naming rule.

Both are read-only to the scan. They normally come from the surrounding
product's storage; the loaders here read the same JSON shapes from disk.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator


class DesignInputError(Exception):
    """A design tree or naming rule file could not be read or validated."""

    pass


class DesignEdge(BaseModel):
    """One intended parent -> child relation."""

    model_config = ConfigDict(frozen=True)

    parent: str = Field(min_length=1)
    child: str = Field(min_length=1)

    @model_validator(mode="after")
    def _no_self_loop(self) -> "DesignEdge":
        if self.parent == self.child:
            raise ValueError(f"Design edge cannot point {self.parent!r} at itself")
        return self


class DesignNode(BaseModel):
    """Planning detail for a branch in the design tree."""

    model_config = ConfigDict(populate_by_name=True)

    branch_name: str = Field(alias="branchName", min_length=1)
    description: Optional[str] = None
    intended_issue: Optional[int] = Field(default=None, alias="intendedIssue")
    intended_pr: Optional[int] = Field(default=None, alias="intendedPr")


class DesignTree(BaseModel):
    """The user's declared branch hierarchy."""

    model_config = ConfigDict(populate_by_name=True)

    base_branch: Optional[str] = Field(default=None, alias="baseBranch", min_length=1)
    nodes: List[DesignNode] = Field(default_factory=list)
    edges: List[DesignEdge] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _unwrap_stored_record(cls, data):
        # Stored records wrap nodes/edges in "specJson" next to "baseBranch"
        if isinstance(data, dict) and "specJson" in data:
            payload = data["specJson"]
            if isinstance(payload, str):
                payload = json.loads(payload)
            merged = {k: v for k, v in data.items() if k != "specJson"}
            merged.update(payload or {})
            return merged
        return data

    def pairs(self) -> List[tuple[str, str]]:
        return [(edge.parent, edge.child) for edge in self.edges]


class BranchNamingRule(BaseModel):
    """Regular expressions a non-base branch name must match at least one of."""

    patterns: List[str] = Field(default_factory=list)

    def compiled(self) -> List[re.Pattern[str]]:
        """Compile the patterns, skipping any that are not valid expressions."""
        compiled = []
        for pattern in self.patterns:
            try:
                compiled.append(re.compile(pattern))
            except re.error:
                continue
        return compiled


def _read_json(path: Path, what: str) -> object:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise DesignInputError(f"{what} file not found: {path}")
    except (OSError, json.JSONDecodeError) as e:
        raise DesignInputError(f"Could not read {what} from {path}: {e}")


def load_design_tree(path: Path) -> DesignTree:
    """Load a design tree from a JSON file."""
    data = _read_json(path, "Design tree")
    try:
        return DesignTree.model_validate(data)
    except (ValidationError, json.JSONDecodeError) as e:
        raise DesignInputError(f"Invalid design tree in {path}:\n{e}")


def load_naming_rule(path: Path) -> BranchNamingRule:
    """Load a naming rule from a JSON file (``{"patterns": [...]}`` or a bare list)."""
    data = _read_json(path, "Naming rule")
    if isinstance(data, list):
        data = {"patterns": data}
    try:
        return BranchNamingRule.model_validate(data)
    except ValidationError as e:
        raise DesignInputError(f"Invalid naming rule in {path}:\n{e}")
