"""Project initialisation: directory, git, config, spec, README, first tag.

Steps report progress through ``on_step(step, status, message)`` where
``status`` is one of ``start``, ``done``, ``skip`` or ``error``.  Only
failing to write the spec file makes initialisation fail; git problems and
generation failures become warnings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from ..config import CONFIG_DIRNAME, CONFIG_FILENAME, EvoSpecConfig, project_config_yaml
from ..errors import ConfigurationError, GitError, ProviderError
from ..generation.base import AttemptCallback, GenerationRequest, ModelAdapter, ValidationErrorCallback
from ..generation.engine import generate_spec
from ..versioning.evolution import read_current_version
from ..versioning.git import GitRepo
from .templates import GITIGNORE, generate_readme, generate_template, spec_filename

logger = logging.getLogger("evospec.project")

StepCallback = Callable[[str, str, Optional[str]], None]

INITIAL_COMMIT_MESSAGE = "Initial EvoSpec specification"


@dataclass
class InitOptions:
    """Inputs for :func:`init_project`."""
    project_name: str | None = None
    description: str | None = None
    provider: str | None = None
    model: str | None = None
    no_generate: bool = False
    no_readme: bool = False
    base_dir: Path = field(default_factory=Path.cwd)
    on_step: Optional[StepCallback] = None
    on_generation_attempt: Optional[AttemptCallback] = None
    on_generation_error: Optional[ValidationErrorCallback] = None


@dataclass
class InitResult:
    success: bool = False
    project_dir: str = ""
    spec_file: str = ""
    version: str = "1.0.0"
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class ProjectInitializer:
    """Runs the initialisation steps in order."""

    def __init__(
        self,
        options: InitOptions,
        config: EvoSpecConfig,
        *,
        adapter: ModelAdapter | None = None,
        git: GitRepo | None = None,
    ) -> None:
        self.options = options
        self.config = config
        self._adapter = adapter
        self._git = git

    def _step(self, step: str, status: str, message: str | None = None) -> None:
        logger.debug("init step %s: %s %s", step, status, message or "")
        if self.options.on_step is not None:
            self.options.on_step(step, status, message)

    async def run(self) -> InitResult:
        opts = self.options
        name = opts.project_name or Path(opts.base_dir).resolve().name
        project_dir = Path(opts.base_dir) / opts.project_name if opts.project_name else Path(opts.base_dir)
        result = InitResult(project_dir=str(project_dir.resolve()))

        # ── directory ─────────────────────────────────────────────────
        try:
            project_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            result.errors.append(f"Could not create {project_dir}: {exc}")
            self._step("directory", "error", str(exc))
            return result
        self._step("directory", "done" if opts.project_name else "skip",
                   None if opts.project_name else "using current directory")

        spec_path = project_dir / spec_filename(name)
        result.spec_file = str(spec_path.resolve())
        if spec_path.exists():
            result.errors.append(f"Spec file already exists: {spec_path}")
            return result

        # ── git init ──────────────────────────────────────────────────
        git = self._git or GitRepo(project_dir)
        has_git = git.is_available()
        if not has_git:
            result.warnings.append("git not found; skipping version control")
            self._step("git", "skip", "git not available")
        elif git.is_repo():
            self._step("git", "skip", "already a repository")
        else:
            try:
                git.init()
                self._step("git", "done")
            except GitError as exc:
                has_git = False
                result.warnings.append(f"git init failed: {exc}")
                self._step("git", "error", str(exc))

        # ── config + .gitignore ───────────────────────────────────────
        config_path = project_dir / CONFIG_DIRNAME / CONFIG_FILENAME
        if config_path.exists():
            self._step("config", "skip", "already exists")
        else:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            config_path.write_text(project_config_yaml(self.config), encoding="utf-8")
            self._step("config", "done")

        gitignore = project_dir / ".gitignore"
        if gitignore.exists():
            self._step("gitignore", "skip", "already exists")
        else:
            gitignore.write_text(GITIGNORE, encoding="utf-8")
            self._step("gitignore", "done")

        # ── spec content ──────────────────────────────────────────────
        spec_text = await self._spec_content(name, result)
        try:
            result.version = read_current_version(spec_text)
        except ConfigurationError:
            result.version = "1.0.0"

        try:
            spec_path.write_text(spec_text, encoding="utf-8")
        except OSError as exc:
            result.errors.append(f"Could not write {spec_path}: {exc}")
            self._step("spec", "error", str(exc))
            return result
        self._step("spec", "done")

        # ── README ────────────────────────────────────────────────────
        readme = project_dir / "README.md"
        if opts.no_readme:
            self._step("readme", "skip", "--no-readme")
        elif readme.exists():
            self._step("readme", "skip", "already exists")
        else:
            readme.write_text(generate_readme(name, spec_path.name, opts.description), encoding="utf-8")
            self._step("readme", "done")

        # ── commit + tag ──────────────────────────────────────────────
        if has_git:
            self._commit_and_tag(git, result)

        result.success = True
        return result

    async def _spec_content(self, name: str, result: InitResult) -> str:
        opts = self.options
        if not opts.description or opts.no_generate:
            self._step("generate", "skip", "using minimal template")
            return generate_template(name)

        self._step("generate", "start")
        request = GenerationRequest(
            description=opts.description,
            provider=opts.provider,
            model=opts.model,
            max_retries=self.config.generation.max_retries,
        )
        try:
            gen = await generate_spec(
                self.config,
                request,
                adapter=self._adapter,
                on_attempt=opts.on_generation_attempt,
                on_validation_error=opts.on_generation_error,
            )
        except (ProviderError, ConfigurationError) as exc:
            result.warnings.append(f"Generation failed ({exc}); created minimal template instead")
            self._step("generate", "error", str(exc))
            return generate_template(name)

        if gen.success and gen.yaml:
            self._step("generate", "done")
            return gen.yaml
        result.warnings.append(
            f"Generation failed validation after {gen.attempts} attempt(s); "
            "created minimal template instead"
        )
        self._step("generate", "error", "validation failed")
        return generate_template(name)

    def _commit_and_tag(self, git: GitRepo, result: InitResult) -> None:
        try:
            git.add(".")
            git.commit(INITIAL_COMMIT_MESSAGE)
            self._step("commit", "done")
        except GitError as exc:
            result.warnings.append(f"Initial commit failed: {exc}")
            self._step("commit", "error", str(exc))
            return

        if not self.config.versioning.auto_tag:
            self._step("tag", "skip", "autoTag disabled")
            return
        tag = f"{self.config.versioning.tag_prefix}{result.version}"
        try:
            git.tag(tag, f"Version {result.version}")
            self._step("tag", "done", tag)
        except GitError as exc:
            result.warnings.append(f"Tag {tag} failed: {exc}")
            self._step("tag", "error", str(exc))


async def init_project(
    options: InitOptions,
    config: EvoSpecConfig,
    *,
    adapter: ModelAdapter | None = None,
    git: GitRepo | None = None,
) -> InitResult:
    """Create a new EvoSpec project.  See :class:`ProjectInitializer`."""
    return await ProjectInitializer(options, config, adapter=adapter, git=git).run()
