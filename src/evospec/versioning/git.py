"""Git adapter for availability, init, add, commit and tag via ``subprocess``."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path

from ..errors import GitError

logger = logging.getLogger("evospec.versioning.git")

_TIMEOUT = 60


def is_git_available() -> bool:
    """True if a ``git`` executable is on PATH and runs."""
    if shutil.which("git") is None:
        return False
    try:
        subprocess.run(
            ["git", "--version"],
            check=True, capture_output=True, text=True, timeout=_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError):
        return False
    return True


class GitRepo:
    """Low-level git operations against one working tree."""

    def __init__(self, cwd: Path | str) -> None:
        self.cwd = Path(cwd)

    def is_available(self) -> bool:
        return is_git_available()

    def is_repo(self) -> bool:
        try:
            out = self._run_git(["git", "rev-parse", "--is-inside-work-tree"])
        except GitError:
            return False
        return out.strip() == "true"

    def init(self) -> None:
        self._run_git(["git", "init"])
        logger.info("Initialised git repository in %s", self.cwd)

    def add(self, path: Path | str) -> None:
        self._run_git(["git", "add", "--", str(path)])

    def commit(self, message: str) -> str:
        """Commit the index and return the new commit hash."""
        self._run_git(["git", "commit", "-m", message])
        commit_id = self._run_git(["git", "rev-parse", "HEAD"]).strip()
        logger.info("Committed %s: %s", commit_id[:7], message)
        return commit_id

    def tag(self, name: str, message: str) -> None:
        """Create an annotated tag on HEAD."""
        self._run_git(["git", "tag", "-a", name, "-m", message])
        logger.info("Tagged %s", name)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _run_git(self, cmd: list[str]) -> str:
        logger.debug("Running %s in %s", " ".join(cmd), self.cwd)
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(self.cwd),
                check=True, capture_output=True, text=True, timeout=_TIMEOUT,
            )
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or exc.stdout or "").strip()
            raise GitError(f"{' '.join(cmd[:2])} failed: {stderr}", stderr=stderr) from exc
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise GitError(f"{' '.join(cmd[:2])} failed: {exc}") from exc
        return proc.stdout
