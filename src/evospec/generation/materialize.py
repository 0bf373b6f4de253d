"""Persist a generated document, then commit and tag it on a best-effort basis.

Writing the file is the only required outcome and its failure propagates.
Every git stage failure is downgraded to a warning; the written file is
never rolled back.  A stage is skipped once a stage it depends on failed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from ..config import VersioningSettings
from ..errors import GitError
from .base import VCSAdapter

logger = logging.getLogger("evospec.generation.materialize")


class MaterializeResult(BaseModel):
    path: str
    commit: Optional[str] = None
    tag: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)


def _warn(result: MaterializeResult, message: str) -> None:
    logger.warning(message)
    result.warnings.append(message)


def write_document(text: str, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text if text.endswith("\n") else text + "\n", encoding="utf-8")
    logger.info("Wrote %s", path)
    return path


def materialize(
    text: str,
    path: Path | str,
    *,
    vcs: VCSAdapter | None,
    versioning: VersioningSettings,
    commit_message: str,
    tag_name: str | None = None,
    tag_message: str = "",
) -> MaterializeResult:
    """Write *text* to *path*, then stage → commit → tag (conditionally)."""
    target = write_document(text, Path(path))
    result = MaterializeResult(path=str(target))

    if vcs is None or not versioning.auto_commit:
        return result
    if not vcs.is_available():
        logger.debug("git is not available; skipping commit")
        return result
    if not vcs.is_repo():
        logger.debug("%s is not inside a git repository; skipping commit", target)
        return result

    try:
        vcs.add(target)
    except GitError as exc:
        _warn(result, f"git add failed: {exc}")
        return result

    try:
        result.commit = vcs.commit(commit_message)
    except GitError as exc:
        _warn(result, f"git commit failed: {exc}")
        return result

    if versioning.auto_tag and tag_name:
        try:
            vcs.tag(tag_name, tag_message or commit_message)
            result.tag = tag_name
        except GitError as exc:
            _warn(result, f"git tag {tag_name} failed: {exc}")

    return result


def release_tag(versioning: VersioningSettings, previous: str | None, new: str | None) -> str | None:
    """Tag name for a version transition, or None when the version did not move."""
    if not new or new == previous:
        return None
    return f"{versioning.tag_prefix}{new}"
