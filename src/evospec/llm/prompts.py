"""Prompt construction for generation and evolution runs.

Prompts are plain ``(system, user)`` string pairs.  The repair section is
appended only from the second attempt on, and carries nothing but the
previous attempt's hard errors.
"""

from __future__ import annotations

from typing import Sequence

from ..validator.models import ValidationError

SYSTEM_PROMPT = """\
You are an expert software architect who writes EvoSpec DSL v1 documents.

An EvoSpec document is YAML with these top-level blocks:
  spec: evospec/v1
  project:    id, name, versioning {strategy: semver, current: "MAJOR.MINOR.PATCH"}
  structure:  root: NodeRef(<id of the System node>)
  domain:     nodes: a list of {kind, id, meta {title, description}, spec, children, contracts}
  history:    a list of {version, basedOn, changes, migrations, notes}

Rules:
- Node kinds: System, Module, Entity, ValueObject, Aggregate, Enum, Service,
  Endpoint, Command, Query, Event, Workflow, Policy, Actor, Integration, Contract.
- Node ids are unique, dotted and lower-case (e.g. entity.order).
- Every reference is written NodeRef(<id>) and must point at an existing node.
- Entity fields live under spec.fields as name: {type, required}.
- Contracts are {invariant: "<expression>", level: hard|soft}.

Respond with the complete YAML document only, inside a single ```yaml fenced block.
"""

FEEDBACK_HEADER = (
    "Your previous attempt failed validation. Fix every error below and "
    "return the complete corrected document."
)


def format_feedback(errors: Sequence[ValidationError]) -> str:
    """Render hard errors as a repair section; soft findings are dropped."""
    hard = [e for e in errors if e.is_hard]
    if not hard:
        return ""
    lines = [FEEDBACK_HEADER, ""]
    for err in hard:
        line = f"- [{err.code}] {err.message}"
        if err.location:
            line += f" (at: {err.location})"
        lines.append(line)
    return "\n".join(lines)


def _with_feedback(base: str, prior_errors: Sequence[ValidationError]) -> str:
    feedback = format_feedback(prior_errors)
    if not feedback:
        return base
    return f"{base}\n\n{feedback}"


def build_generation_prompt(
    description: str,
    prior_errors: Sequence[ValidationError] = (),
) -> tuple[str, str]:
    """Prompt for first-time creation of a document."""
    base = (
        "Create a complete EvoSpec specification for the following system.\n\n"
        f"System description:\n{description.strip()}\n\n"
        "Start versioning at 1.0.0 with a single history entry "
        "(version \"1.0.0\", basedOn: null, notes: \"Initial version\")."
    )
    return SYSTEM_PROMPT, _with_feedback(base, prior_errors)


def build_evolution_prompt(
    current_spec: str,
    change: str,
    prior_errors: Sequence[ValidationError] = (),
) -> tuple[str, str]:
    """Prompt for rewriting an existing document to apply *change*."""
    base = (
        "Here is the current EvoSpec specification:\n\n"
        f"```yaml\n{current_spec.strip()}\n```\n\n"
        f"Apply this change request:\n{change.strip() or '(no functional change)'}\n\n"
        "Return the full updated document. Keep every node that the change "
        "does not touch. Do not edit the history block or "
        "project.versioning.current; they are maintained automatically."
    )
    return SYSTEM_PROMPT, _with_feedback(base, prior_errors)
