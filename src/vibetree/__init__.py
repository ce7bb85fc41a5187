"""vibetree: branch topology inference and drift linting for git repositories."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("vibetree")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .ancestry import infer_parent  # noqa: F401
from .design import BranchNamingRule, DesignTree  # noqa: F401
from .models import Confidence, Edge, LintWarning, TopologySnapshot  # noqa: F401
from .scan import build_restart_for, run_scan  # noqa: F401

__all__ = [
    "BranchNamingRule",
    "Confidence",
    "DesignTree",
    "Edge",
    "LintWarning",
    "TopologySnapshot",
    "build_restart_for",
    "infer_parent",
    "run_scan",
    "__version__",
]
