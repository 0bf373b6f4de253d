"""evospec CLI — validate, generate and evolve EvoSpec specifications.

Usage:
    evospec validate app.evospec.yaml --phase 1-3 --strict
    evospec generate "A library lending system" -o library.evospec.yaml
    evospec evolve -c "Add overdue fines" --bump minor
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Sequence

import click
from rich.console import Console
from rich.markup import escape

from . import __version__
from .config import EvoSpecConfig, find_spec_file, load_config, save_api_key
from .errors import ConfigurationError, EvoSpecError
from .generation.base import EvolutionRequest, GenerationRequest
from .generation.engine import evolve_spec, generate_spec
from .generation.materialize import materialize, release_tag
from .llm.providers import SUPPORTED_PROVIDERS, api_key_env_var, normalize_provider, requires_api_key
from .project.scaffold import InitOptions, init_project
from .project.templates import generate_template
from .validator import ValidationError, ValidationPhase, ValidationResult, parse_phases, validate_yaml
from .versioning.evolution import BumpKind
from .versioning.git import GitRepo

console = Console()
err_console = Console(stderr=True)

_STEP_NAMES: dict[str, str] = {
    "directory": "Created directory",
    "git": "Initialized Git repository",
    "config": "Created .evospec/config.yaml",
    "gitignore": "Created .gitignore",
    "generate": "Generating specification",
    "spec": "Created spec file",
    "readme": "Created README.md",
    "commit": "Created initial commit",
    "tag": "Created version tag",
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------

def _print_finding(error: ValidationError) -> None:
    color, icon = ("red", "✗") if error.is_hard else ("yellow", "⚠")
    console.print(f"  [{color}]{icon}[/{color}] \\[{error.code}] {escape(error.message)}", highlight=False)
    if error.location:
        console.print(f"    [dim]at: {escape(error.location)}[/dim]", highlight=False)
    if error.suggestion:
        console.print(f"    [cyan]fix: {escape(error.suggestion)}[/cyan]", highlight=False)


def print_validation_result(result: ValidationResult, quiet: bool = False) -> None:
    if not quiet:
        console.print()
        for phase in range(1, result.phase + 1):
            title = ValidationPhase(phase).title
            errors = result.errors_for_phase(phase)
            warnings = result.warnings_for_phase(phase)
            if errors:
                console.print(f"[red]✗ Phase {phase}: {title} validation failed[/red]")
            elif warnings:
                console.print(f"[yellow]⚠ Phase {phase}: {title} validation passed with warnings[/yellow]")
            else:
                console.print(f"[green]✓ Phase {phase}: {title} validation passed[/green]")
        console.print()

    if result.errors:
        console.print("[bold red]Errors:[/bold red]")
        for error in result.errors:
            _print_finding(error)
        console.print()

    if result.warnings:
        console.print("[bold yellow]Warnings:[/bold yellow]")
        for warning in result.warnings:
            _print_finding(warning)
        console.print()

    if result.ok:
        if result.warnings:
            console.print(f"[green]Validation passed with {len(result.warnings)} warning(s)[/green]")
        else:
            console.print("[green]Validation successful![/green]")
    else:
        console.print(f"[red]Validation failed with {len(result.errors)} error(s)[/red]")


def _print_run_errors(errors: Sequence[ValidationError] | None) -> None:
    if not errors:
        return
    err_console.print("\n[red]Validation errors:[/red]")
    for error in errors:
        err_console.print(f"[red]  • \\[{error.code}] {escape(error.message)}[/red]", highlight=False)
        if error.location:
            err_console.print(f"[dim]    at: {escape(error.location)}[/dim]", highlight=False)


def _read_file(path: str) -> str:
    file_path = Path(path).resolve()
    if not file_path.is_file():
        err_console.print(f"[red]Error: File not found: {file_path}[/red]")
        raise SystemExit(1)
    return file_path.read_text(encoding="utf-8")


def ensure_api_key(config: EvoSpecConfig, provider: str | None) -> tuple[EvoSpecConfig, bool]:
    """Prompt for a missing API key and save it globally.

    Returns ``(config, cancelled)``.
    """
    name = normalize_provider(provider or config.llm.provider)
    if not requires_api_key(name) or config.api_key_for(name):
        return config, False

    console.print(f"[yellow]No API key configured for {name}.[/yellow]")
    console.print(f"[dim]You can also set {api_key_env_var(name)}.[/dim]")
    key = click.prompt(f"{name} API key", hide_input=True, default="", show_default=False).strip()
    if not key:
        return config, True
    path = save_api_key(name, key)
    console.print(f"[green]✓[/green] Saved API key to {path}")
    return config.with_api_key(name, key), False


def _load_config_or_exit() -> EvoSpecConfig:
    try:
        return load_config()
    except ConfigurationError as exc:
        err_console.print(f"[red]Error: {escape(str(exc))}[/red]")
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@click.group()
@click.version_option(version=__version__, prog_name="evospec")
def main():
    """evospec — CLI for EvoSpec DSL validation and tooling."""
    pass


@main.command()
@click.argument("file", type=click.Path())
@click.option("-p", "--phase", "phase_spec", default="1-6",
              help="Validate specific phases (e.g. 1-3 or 1,2,3).")
@click.option("-s", "--strict", is_flag=True, default=False, help="Treat soft errors as hard errors.")
@click.option("-f", "--format", "fmt", type=click.Choice(["text", "json"]), default="text",
              help="Output format.")
@click.option("-q", "--quiet", is_flag=True, default=False, help="Only output errors.")
def validate(file: str, phase_spec: str, strict: bool, fmt: str, quiet: bool):
    """Validate an EvoSpec specification file."""
    content = _read_file(file)
    try:
        phases = parse_phases(phase_spec)
    except ValueError:
        raise click.BadParameter(f"invalid phase selector '{phase_spec}'", param_hint="--phase")

    result = validate_yaml(content, phases=phases, strict=strict)
    if fmt == "json":
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        print_validation_result(result, quiet)
    raise SystemExit(0 if result.ok else 1)


@main.command()
@click.argument("file", type=click.Path())
@click.option("-f", "--format", "fmt", type=click.Choice(["text", "json"]), default="text",
              help="Output format.")
def check(file: str, fmt: str):
    """Quick validation (phases 1-3 only)."""
    content = _read_file(file)
    result = validate_yaml(content, phases=[1, 2, 3])
    if fmt == "json":
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        print_validation_result(result, False)
    raise SystemExit(0 if result.ok else 1)


@main.command()
@click.argument("name", default="myapp")
@click.option("-o", "--output", "output", type=click.Path(), default=None, help="Output file path.")
def new(name: str, output: str | None):
    """Create a new EvoSpec specification file from the minimal template."""
    file_name = output or f"{name}.evospec.yaml"
    file_path = Path(file_name).resolve()
    if file_path.exists():
        err_console.print(f"[red]Error: File already exists: {file_path}[/red]")
        raise SystemExit(1)

    file_path.write_text(generate_template(name), encoding="utf-8")
    console.print(f"[green]✓ Created {file_name}[/green]")
    console.print()
    console.print("Next steps:")
    console.print(f"  1. Edit {file_name} to define your system")
    console.print(f"  2. Run [cyan]evospec validate {file_name}[/cyan] to validate")


@main.command()
@click.argument("project_name", required=False)
@click.option("-d", "--description", default=None, help="System description for LLM generation.")
@click.option("-p", "--provider", type=click.Choice(SUPPORTED_PROVIDERS, case_sensitive=False),
              default=None, help="LLM provider.")
@click.option("-m", "--model", default=None, help="Model identifier.")
@click.option("--generate/--no-generate", default=True, help="Generate the spec with the LLM.")
@click.option("--readme/--no-readme", default=True, help="Create README.md.")
@click.option("-y", "--yes", is_flag=True, default=False, help="Skip confirmation prompts.")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Verbose logging.")
def init(
    project_name: str | None,
    description: str | None,
    provider: str | None,
    model: str | None,
    generate: bool,
    readme: bool,
    yes: bool,
    verbose: bool,
):
    """Create a new EvoSpec project."""
    _setup_logging(verbose)

    if not yes:
        console.print()
        console.print("[bold]EvoSpec Project Initialization[/bold]")
        console.print()
        console.print(f"Project name:     [cyan]{project_name or '(current directory)'}[/cyan]")
        console.print(f"Directory:        [cyan]{f'./{project_name}/' if project_name else './'}[/cyan]")
        if description:
            console.print(f"Description:      [cyan]{description}[/cyan]")
        console.print()
        if not click.confirm("Proceed?", default=True):
            console.print("[yellow]Cancelled.[/yellow]")
            raise SystemExit(0)

    config = _load_config_or_exit()
    if description and generate:
        config, cancelled = ensure_api_key(config, provider)
        if cancelled:
            console.print("[yellow]Continuing without LLM generation...[/yellow]")
            generate = False

    console.print("[bold]Creating project...[/bold]")
    status = console.status("Generating specification...")

    def on_step(step: str, state: str, message: str | None) -> None:
        label = _STEP_NAMES.get(step, step)
        if step == "generate" and state == "start":
            status.start()
            return
        if step == "generate" and state in ("done", "error"):
            status.stop()
        if state == "done":
            suffix = f" [dim]({message})[/dim]" if message else ""
            console.print(f"  [green]✓[/green] {label}{suffix}")
        elif state == "skip":
            suffix = f" [dim]({message})[/dim]" if message else ""
            console.print(f"  [yellow]○[/yellow] {label}{suffix}")
        elif state == "error":
            console.print(f"  [red]✗[/red] {label} [dim]({message or 'failed'})[/dim]")

    options = InitOptions(
        project_name=project_name,
        description=description,
        provider=provider,
        model=model,
        no_generate=not generate,
        no_readme=not readme,
        on_step=on_step,
        on_generation_attempt=lambda n, total: status.update(
            f"Generating specification... (attempt {n}/{total})"
        ),
        on_generation_error=lambda n, errors: status.update(
            f"Retrying generation... (attempt {n + 1})"
        ),
    )
    result = asyncio.run(init_project(options, config))

    console.print()
    for warning in result.warnings:
        console.print(f"[yellow]⚠ {escape(warning)}[/yellow]")
    if result.warnings:
        console.print()

    if not result.success:
        console.print("[bold red]Project initialization failed:[/bold red]")
        for error in result.errors:
            console.print(f"[red]  • {error}[/red]")
        raise SystemExit(1)

    spec_name = Path(result.spec_file).name
    console.print(f"[bold green]Done! Project created at {result.project_dir}[/bold green]")
    console.print()
    console.print("Next steps:")
    if project_name:
        console.print(f"  [cyan]cd {project_name}[/cyan]")
    console.print(f"  [cyan]evospec validate {spec_name}[/cyan]")
    console.print(f"  [cyan]evospec evolve {spec_name} -c \"Add feature\"[/cyan]")


@main.command()
@click.argument("description")
@click.option("-o", "--output", type=click.Path(), default=None, help="Output file path (default: stdout).")
@click.option("-p", "--provider", type=click.Choice(SUPPORTED_PROVIDERS, case_sensitive=False),
              default=None, help="LLM provider.")
@click.option("-m", "--model", default=None, help="Model identifier.")
@click.option("--max-retries", type=click.IntRange(min=1), default=None,
              help="Max validation retry attempts (default: from config, 3).")
@click.option("--temperature", type=click.FloatRange(0.0, 2.0), default=None, help="Model temperature.")
@click.option("-s", "--strict", is_flag=True, default=False, help="Soft validation errors block success.")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Show generation progress and retries.")
def generate(
    description: str,
    output: str | None,
    provider: str | None,
    model: str | None,
    max_retries: int | None,
    temperature: float | None,
    strict: bool,
    verbose: bool,
):
    """Generate a new EvoSpec specification from a description."""
    _setup_logging(verbose)
    config = _load_config_or_exit()
    config, cancelled = ensure_api_key(config, provider)
    if cancelled:
        err_console.print("[red]API key required for generation.[/red]")
        raise SystemExit(1)

    request = GenerationRequest(
        description=description,
        provider=provider,
        model=model,
        max_retries=max_retries or config.generation.max_retries,
        temperature=temperature,
        strict=strict,
    )

    status = console.status("Generating specification...", spinner="dots")
    if verbose:
        status.start()
    try:
        result = asyncio.run(generate_spec(
            config,
            request,
            on_attempt=lambda n, total: status.update(f"Generating specification... (attempt {n}/{total})"),
            on_validation_error=lambda n, errors: status.update(f"Validation failed, retrying... (attempt {n + 1})"),
        ))
    except EvoSpecError as exc:
        status.stop()
        err_console.print(f"[red]Error: {escape(str(exc))}[/red]")
        raise SystemExit(1)
    status.stop()

    if not result.success:
        err_console.print("[red]Generation failed after maximum retries[/red]")
        _print_run_errors(result.errors)
        raise SystemExit(1)

    if output:
        try:
            Path(output).write_text(result.yaml or "", encoding="utf-8")
        except OSError as exc:
            err_console.print(f"[red]Error: Could not write {escape(output)}: {escape(str(exc))}[/red]")
            raise SystemExit(1)
        console.print(f"[green]✓ Generated specification saved to {output}[/green]")
        console.print(f"[dim]  Attempts: {result.attempts}[/dim]")
    else:
        click.echo(result.yaml)


@main.command()
@click.argument("spec_file", required=False, type=click.Path())
@click.option("-c", "--change", required=True, help="Change description.")
@click.option("-o", "--output", type=click.Path(), default=None, help="Output file (default: overwrite input).")
@click.option("--bump", type=click.Choice([b.value for b in BumpKind]), default=BumpKind.MINOR.value,
              help="Version bump (default: minor).")
@click.option("--no-bump", is_flag=True, default=False, help="Don't bump the version.")
@click.option("--notes", default="", help="Notes recorded in the history entry.")
@click.option("-p", "--provider", type=click.Choice(SUPPORTED_PROVIDERS, case_sensitive=False),
              default=None, help="LLM provider.")
@click.option("-m", "--model", default=None, help="Model identifier.")
@click.option("--max-retries", type=click.IntRange(min=1), default=None,
              help="Max validation retry attempts (default: from config, 3).")
@click.option("-s", "--strict", is_flag=True, default=False, help="Soft validation errors block success.")
@click.option("--dry-run", is_flag=True, default=False, help="Show changes without writing.")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Show generation progress.")
def evolve(
    spec_file: str | None,
    change: str,
    output: str | None,
    bump: str,
    no_bump: bool,
    notes: str,
    provider: str | None,
    model: str | None,
    max_retries: int | None,
    strict: bool,
    dry_run: bool,
    verbose: bool,
):
    """Evolve an existing specification based on a change request."""
    _setup_logging(verbose)

    spec_path = Path(spec_file).resolve() if spec_file else find_spec_file()
    if spec_path is None:
        err_console.print("[red]Error: No spec file specified and none found in current directory[/red]")
        err_console.print("[dim]Run from a project directory or specify the spec file path[/dim]")
        raise SystemExit(1)
    current = _read_file(str(spec_path))

    config = _load_config_or_exit()
    config, cancelled = ensure_api_key(config, provider)
    if cancelled:
        err_console.print("[red]API key required for evolution.[/red]")
        raise SystemExit(1)

    request = EvolutionRequest(
        spec=current,
        change=change,
        bump=BumpKind.NONE if no_bump else BumpKind(bump),
        notes=notes,
        provider=provider,
        model=model,
        max_retries=max_retries or config.generation.max_retries,
        strict=strict,
    )

    status = console.status("Evolving specification...", spinner="dots")
    if verbose:
        status.start()
    try:
        result = asyncio.run(evolve_spec(
            config,
            request,
            on_attempt=lambda n, total: status.update(f"Evolving specification... (attempt {n}/{total})"),
            on_validation_error=lambda n, errors: status.update(f"Validation failed, retrying... (attempt {n + 1})"),
        ))
    except EvoSpecError as exc:
        status.stop()
        err_console.print(f"[red]Error: {escape(str(exc))}[/red]")
        raise SystemExit(1)
    status.stop()

    if not result.success:
        err_console.print("[red]Evolution failed after maximum retries[/red]")
        _print_run_errors(result.errors)
        raise SystemExit(1)

    if dry_run:
        console.print("[yellow]Dry run - changes not saved[/yellow]")
        console.print()
        console.print(f"[dim]Version: {result.previous_version} → {result.new_version}[/dim]")
        console.print()
        click.echo(result.yaml)
        return

    output_path = Path(output).resolve() if output else spec_path
    try:
        written = materialize(
            result.yaml or "",
            output_path,
            vcs=GitRepo(Path.cwd()),
            versioning=config.versioning,
            commit_message=f"Evolve spec: {change}",
            tag_name=release_tag(config.versioning, result.previous_version, result.new_version),
            tag_message=change,
        )
    except OSError as exc:
        err_console.print(f"[red]Error: Could not write {escape(str(output_path))}: {escape(str(exc))}[/red]")
        raise SystemExit(1)

    console.print("[green]✓ Specification evolved successfully[/green]")
    console.print(f"[dim]  Version: {result.previous_version} → {result.new_version}[/dim]")
    console.print(f"[dim]  Attempts: {result.attempts}[/dim]")
    console.print(f"[dim]  Output: {written.path}[/dim]")
    if written.commit:
        console.print(f"[dim]  Commit: {written.commit[:7]}[/dim]")
    if written.tag:
        console.print(f"[dim]  Tag: {written.tag}[/dim]")
    for warning in written.warnings:
        console.print(f"[yellow]  Git: {escape(warning)}[/yellow]")


if __name__ == "__main__":
    main()
