"""Version evolution manager.

Pure logic: computes the next semantic version and produces the updated
document (new current version + one appended history entry) in a single
step, so a document can never leave here with a rewritten body and a stale
ledger, or the other way round.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from ..errors import ConfigurationError, ExtractionError

SEMVER_RE = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)$")


class BumpKind(str, Enum):
    """Semantic-version increment applied on a successful evolution."""
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    NONE = "none"


class VersionTransition(BaseModel):
    """``previous → new`` for one evolution run."""

    model_config = ConfigDict(frozen=True)

    previous: str
    new: str
    bump: BumpKind

    @property
    def changed(self) -> bool:
        return self.previous != self.new


class VersionEntry(BaseModel):
    """One record in the document's append-only history ledger."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    version: str
    based_on: Optional[str] = Field(default=None, alias="basedOn")
    changes: list[dict[str, Any]] = Field(default_factory=list)
    migrations: list[dict[str, Any]] = Field(default_factory=list)
    notes: str = ""

    def to_document(self) -> dict[str, Any]:
        """Serialise with the document's key names (``basedOn``)."""
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# Version arithmetic
# ---------------------------------------------------------------------------

def parse_version(version: Any) -> tuple[int, int, int]:
    """Parse ``MAJOR.MINOR.PATCH`` (optionally ``v``-prefixed)."""
    if version is None or not str(version).strip():
        raise ConfigurationError("The document has no current version")
    m = SEMVER_RE.match(str(version).strip())
    if not m:
        raise ConfigurationError(
            f"Malformed current version {version!r}; expected MAJOR.MINOR.PATCH"
        )
    return int(m.group(1)), int(m.group(2)), int(m.group(3))


def bump_version(version: str, kind: BumpKind | str | None) -> str:
    """Return the version that follows *version* under *kind*.

    ``None`` behaves like ``BumpKind.NONE``.
    """
    major, minor, patch = parse_version(version)
    kind = BumpKind(kind) if kind is not None else BumpKind.NONE
    if kind == BumpKind.MAJOR:
        return f"{major + 1}.0.0"
    if kind == BumpKind.MINOR:
        return f"{major}.{minor + 1}.0"
    if kind == BumpKind.PATCH:
        return f"{major}.{minor}.{patch + 1}"
    return f"{major}.{minor}.{patch}"


# ---------------------------------------------------------------------------
# Reading the current document
# ---------------------------------------------------------------------------

def _load_mapping(text: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Current document is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError("Current document is not a YAML mapping")
    return data


def read_current_version(text: str) -> str:
    """Return the document's current version, normalised to ``X.Y.Z``.

    Reads ``project.versioning.current`` and falls back to the last history
    entry's version.
    """
    data = _load_mapping(text)
    project = data.get("project") if isinstance(data.get("project"), dict) else {}
    versioning = project.get("versioning") if isinstance(project.get("versioning"), dict) else {}
    current = versioning.get("current")
    if current is None:
        history = read_history(text)
        if history and isinstance(history[-1], dict):
            current = history[-1].get("version")
    major, minor, patch = parse_version(current)
    return f"{major}.{minor}.{patch}"


def read_history(text: str) -> list[Any]:
    """Return the document's history ledger (empty if absent)."""
    history = _load_mapping(text).get("history")
    if history is None:
        return []
    if not isinstance(history, list):
        raise ConfigurationError("The document's 'history' block is not a list")
    return history


def plan_transition(text: str, bump: BumpKind | str | None) -> VersionTransition:
    """Compute the version transition for evolving *text*."""
    previous = read_current_version(text)
    kind = BumpKind(bump) if bump is not None else BumpKind.NONE
    return VersionTransition(previous=previous, new=bump_version(previous, kind), bump=kind)


def build_entry(
    transition: VersionTransition,
    change: str,
    notes: str = "",
) -> VersionEntry:
    """History entry recording *change* under the transition's new version."""
    change = change.strip()
    return VersionEntry(
        version=transition.new,
        basedOn=transition.previous,
        changes=[{"description": change}] if change else [],
        migrations=[],
        notes=notes,
    )


# ---------------------------------------------------------------------------
# Applying an evolution to a candidate
# ---------------------------------------------------------------------------

def apply_evolution(
    candidate: dict[str, Any],
    original_history: list[Any],
    transition: VersionTransition,
    entry: VersionEntry,
) -> str:
    """Produce the complete evolved document as YAML text.

    The ledger is rebuilt from *original_history* plus *entry*, whatever the
    model wrote there, so earlier entries are never mutated and exactly one
    entry is added.
    """
    project = candidate.get("project")
    if not isinstance(project, dict):
        raise ExtractionError("Candidate document has no 'project' mapping")

    doc = dict(candidate)
    project = dict(project)
    versioning = project.get("versioning")
    versioning = dict(versioning) if isinstance(versioning, dict) else {"strategy": "semver"}
    versioning["current"] = transition.new
    project["versioning"] = versioning
    doc["project"] = project
    doc["history"] = [*original_history, entry.to_document()]
    return dump_document(doc)


def dump_document(doc: dict[str, Any]) -> str:
    return yaml.safe_dump(doc, sort_keys=False, allow_unicode=True, width=100)
