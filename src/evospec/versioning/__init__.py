"""Version bookkeeping: semantic-version evolution and git integration."""

from .evolution import (
    BumpKind,
    VersionEntry,
    VersionTransition,
    apply_evolution,
    build_entry,
    bump_version,
    parse_version,
    plan_transition,
    read_current_version,
    read_history,
)
from .git import GitRepo, is_git_available

__all__ = [
    "BumpKind",
    "VersionEntry",
    "VersionTransition",
    "apply_evolution",
    "build_entry",
    "bump_version",
    "parse_version",
    "plan_transition",
    "read_current_version",
    "read_history",
    "GitRepo",
    "is_git_available",
]
