"""Phase-gated EvoSpec document validator.

Phases run in ascending order.  Each phase returns its findings; the run
stops after the first phase that produced a blocking finding, because later
phases assume the earlier ones hold (there is no point checking references
in a document that has no node list).

Usage::

    from evospec.validator import validate_yaml

    result = validate_yaml(text, phases=[1, 2, 3], strict=True)
    if not result.ok:
        for err in result.errors:
            print(err.code, err.message)
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Iterable, Iterator

import yaml

from .models import (
    ALL_PHASES,
    ErrorLevel,
    ValidationError,
    ValidationPhase,
    ValidationResult,
)

logger = logging.getLogger("evospec.validator")

NODE_REF_RE = re.compile(r"NodeRef\(\s*([^)\s]+)\s*\)")
SEMVER_RE = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)$")

REQUIRED_BLOCKS = ("spec", "project", "domain", "history")

KNOWN_KINDS = frozenset({
    "System", "Module", "Entity", "ValueObject", "Aggregate", "Enum",
    "Service", "Endpoint", "Command", "Query", "Event", "Workflow",
    "Policy", "Actor", "Integration", "Contract",
})

KNOWN_FIELD_TYPES = frozenset({
    "string", "text", "int", "integer", "float", "number", "decimal",
    "bool", "boolean", "uuid", "date", "datetime", "time", "timestamp",
    "duration", "email", "url", "json", "enum", "list", "array", "map",
    "object", "binary", "money",
})


# ---------------------------------------------------------------------------
# Document helpers
# ---------------------------------------------------------------------------

def _finding(
    code: str,
    message: str,
    phase: ValidationPhase,
    *,
    level: ErrorLevel = ErrorLevel.HARD,
    location: str | None = None,
    suggestion: str | None = None,
) -> ValidationError:
    return ValidationError(
        code=code,
        message=message,
        phase=int(phase),
        level=level,
        location=location,
        suggestion=suggestion,
    )


def _nodes(doc: dict[str, Any]) -> Iterator[tuple[int, dict[str, Any]]]:
    domain = doc.get("domain")
    if not isinstance(domain, dict):
        return
    nodes = domain.get("nodes")
    if not isinstance(nodes, list):
        return
    for i, node in enumerate(nodes):
        if isinstance(node, dict):
            yield i, node


def _node_contracts(node: dict[str, Any]) -> list[Any]:
    contracts: list[Any] = []
    for holder in (node, node.get("spec")):
        if isinstance(holder, dict) and isinstance(holder.get("contracts"), list):
            contracts.extend(holder["contracts"])
    return contracts


def _node_fields(node: dict[str, Any]) -> dict[str, Any] | None:
    spec = node.get("spec")
    if isinstance(spec, dict) and isinstance(spec.get("fields"), dict):
        return spec["fields"]
    return None


def _walk_strings(value: Any, path: str) -> Iterator[tuple[str, str]]:
    """Yield ``(path, string)`` for every string scalar under *value*."""
    if isinstance(value, str):
        yield path, value
    elif isinstance(value, dict):
        for key, child in value.items():
            yield from _walk_strings(child, f"{path}.{key}" if path else str(key))
    elif isinstance(value, list):
        for i, child in enumerate(value):
            yield from _walk_strings(child, f"{path}[{i}]")


def _semver(value: Any) -> tuple[int, int, int] | None:
    if value is None:
        return None
    m = SEMVER_RE.match(str(value).strip())
    if not m:
        return None
    return int(m.group(1)), int(m.group(2)), int(m.group(3))


# ---------------------------------------------------------------------------
# Phase 1: Structural
# ---------------------------------------------------------------------------

def _check_structural(doc: dict[str, Any]) -> list[ValidationError]:
    phase = ValidationPhase.STRUCTURAL
    found: list[ValidationError] = []

    for block in REQUIRED_BLOCKS:
        if block not in doc:
            found.append(_finding(
                "E102", f"Missing required top-level block '{block}'", phase,
                location=block,
            ))

    spec_tag = doc.get("spec")
    if spec_tag is not None and not str(spec_tag).startswith("evospec/"):
        found.append(_finding(
            "E103", f"Unrecognised spec tag '{spec_tag}'", phase,
            level=ErrorLevel.SOFT, location="spec",
            suggestion="Use 'spec: evospec/v1'",
        ))

    project = doc.get("project")
    if "project" in doc:
        if not isinstance(project, dict):
            found.append(_finding("E104", "'project' must be a mapping", phase, location="project"))
        else:
            for key in ("id", "name"):
                if not project.get(key):
                    found.append(_finding(
                        "E104", f"project.{key} is required", phase,
                        location=f"project.{key}",
                    ))

    domain = doc.get("domain")
    if "domain" in doc:
        if not isinstance(domain, dict) or not isinstance(domain.get("nodes"), list):
            found.append(_finding(
                "E105", "domain.nodes must be a list of nodes", phase,
                location="domain.nodes",
            ))
        else:
            for i, node in enumerate(domain["nodes"]):
                loc = f"domain.nodes[{i}]"
                if not isinstance(node, dict):
                    found.append(_finding("E106", "Node must be a mapping", phase, location=loc))
                    continue
                if not node.get("id"):
                    found.append(_finding("E107", "Node is missing 'id'", phase, location=f"{loc}.id"))
                kind = node.get("kind")
                if not kind:
                    found.append(_finding("E107", "Node is missing 'kind'", phase, location=f"{loc}.kind"))
                elif kind not in KNOWN_KINDS:
                    found.append(_finding(
                        "E108", f"Unknown node kind '{kind}'", phase,
                        level=ErrorLevel.SOFT, location=f"{loc}.kind",
                        suggestion=f"Known kinds: {', '.join(sorted(KNOWN_KINDS))}",
                    ))

    if "history" in doc and not isinstance(doc.get("history"), list):
        found.append(_finding("E109", "'history' must be a list of version entries", phase, location="history"))

    return found


# ---------------------------------------------------------------------------
# Phase 2: Referential
# ---------------------------------------------------------------------------

def _check_referential(doc: dict[str, Any]) -> list[ValidationError]:
    phase = ValidationPhase.REFERENTIAL
    found: list[ValidationError] = []

    ids: set[str] = set()
    for i, node in _nodes(doc):
        node_id = str(node.get("id", ""))
        if node_id in ids:
            found.append(_finding(
                "E201", f"Duplicate node id '{node_id}'", phase,
                location=f"domain.nodes[{i}].id",
            ))
        ids.add(node_id)

    for path, text in _walk_strings(doc, ""):
        for target in NODE_REF_RE.findall(text):
            if target not in ids:
                found.append(_finding(
                    "E202", f"NodeRef({target}) does not resolve to any node", phase,
                    location=path,
                    suggestion=f"Define a node with id '{target}' or fix the reference",
                ))
    return found


# ---------------------------------------------------------------------------
# Phase 3: Semantic
# ---------------------------------------------------------------------------

def _check_semantic(doc: dict[str, Any]) -> list[ValidationError]:
    phase = ValidationPhase.SEMANTIC
    found: list[ValidationError] = []

    for i, node in _nodes(doc):
        loc = f"domain.nodes[{i}]"
        meta = node.get("meta")
        if not isinstance(meta, dict) or not meta.get("title"):
            found.append(_finding(
                "E301", f"Node '{node.get('id')}' has no meta.title", phase,
                level=ErrorLevel.SOFT, location=f"{loc}.meta.title",
            ))

        fields = _node_fields(node) or {}
        for name, field_def in fields.items():
            floc = f"{loc}.spec.fields.{name}"
            if not isinstance(field_def, dict) or not field_def.get("type"):
                found.append(_finding("E302", f"Field '{name}' has no type", phase, location=floc))
                continue
            ftype = str(field_def["type"])
            base = re.split(r"[<\[(]", ftype, maxsplit=1)[0].strip().lower()
            if ftype.startswith("NodeRef(") or base in KNOWN_FIELD_TYPES:
                continue
            found.append(_finding(
                "E303", f"Field '{name}' has unknown type '{ftype}'", phase,
                level=ErrorLevel.SOFT, location=f"{floc}.type",
            ))

        for j, contract in enumerate(_node_contracts(node)):
            cloc = f"{loc}.contracts[{j}]"
            if not isinstance(contract, dict):
                found.append(_finding("E304", "Contract must be a mapping", phase, location=cloc))
                continue
            level = contract.get("level")
            if level not in ("hard", "soft"):
                found.append(_finding(
                    "E304", f"Contract level must be 'hard' or 'soft', got {level!r}", phase,
                    location=f"{cloc}.level",
                ))
    return found


# ---------------------------------------------------------------------------
# Phase 4: Evolution
# ---------------------------------------------------------------------------

def _check_evolution(doc: dict[str, Any]) -> list[ValidationError]:
    phase = ValidationPhase.EVOLUTION
    found: list[ValidationError] = []

    project = doc.get("project") if isinstance(doc.get("project"), dict) else {}
    versioning = project.get("versioning") if isinstance(project.get("versioning"), dict) else {}
    current = versioning.get("current")
    if _semver(current) is None:
        found.append(_finding(
            "E401", f"project.versioning.current must be a semantic version, got {current!r}",
            phase, location="project.versioning.current",
            suggestion="Use MAJOR.MINOR.PATCH, e.g. \"1.0.0\"",
        ))

    history = doc.get("history") if isinstance(doc.get("history"), list) else []
    if not history:
        found.append(_finding("E406", "history must contain at least one entry", phase, location="history"))
        return found

    previous: str | None = None
    for i, entry in enumerate(history):
        loc = f"history[{i}]"
        if not isinstance(entry, dict) or _semver(entry.get("version")) is None:
            found.append(_finding(
                "E402", "History entry needs a semantic 'version'", phase,
                location=f"{loc}.version",
            ))
            previous = None
            continue
        version = str(entry["version"])
        based_on = entry.get("basedOn")
        if previous is None and i == 0:
            if based_on is not None:
                found.append(_finding(
                    "E404", "The first history entry must have basedOn: null", phase,
                    location=f"{loc}.basedOn",
                ))
        elif previous is not None:
            if _semver(version) < _semver(previous):
                found.append(_finding(
                    "E403", f"Version {version} goes backwards from {previous}", phase,
                    location=f"{loc}.version",
                ))
            if _semver(based_on) != _semver(previous):
                found.append(_finding(
                    "E404", f"basedOn should be '{previous}', got {based_on!r}", phase,
                    location=f"{loc}.basedOn",
                ))
        for key in ("changes", "migrations"):
            if key in entry and not isinstance(entry[key], list):
                found.append(_finding("E407", f"'{key}' must be a list", phase, location=f"{loc}.{key}"))
        previous = version

    last = history[-1]
    if isinstance(last, dict) and _semver(current) is not None and _semver(last.get("version")) is not None:
        if _semver(last["version"]) != _semver(current):
            found.append(_finding(
                "E405",
                f"Latest history version {last['version']} does not match current version {current}",
                phase, location="project.versioning.current",
            ))
    return found


# ---------------------------------------------------------------------------
# Phase 5: Generation
# ---------------------------------------------------------------------------

def _check_generation(doc: dict[str, Any]) -> list[ValidationError]:
    phase = ValidationPhase.GENERATION
    found: list[ValidationError] = []
    for i, node in _nodes(doc):
        if node.get("kind") == "Entity" and not _node_fields(node):
            found.append(_finding(
                "E501", f"Entity '{node.get('id')}' declares no fields", phase,
                level=ErrorLevel.SOFT, location=f"domain.nodes[{i}].spec.fields",
            ))
    structure = doc.get("structure")
    if not isinstance(structure, dict) or not structure.get("root"):
        found.append(_finding(
            "E502", "structure.root is not set", phase,
            level=ErrorLevel.SOFT, location="structure.root",
            suggestion="Point structure.root at the System node, e.g. NodeRef(system.root)",
        ))
    return found


# ---------------------------------------------------------------------------
# Phase 6: Verifiability
# ---------------------------------------------------------------------------

def _check_verifiability(doc: dict[str, Any]) -> list[ValidationError]:
    phase = ValidationPhase.VERIFIABILITY
    found: list[ValidationError] = []
    for i, node in _nodes(doc):
        for j, contract in enumerate(_node_contracts(node)):
            if isinstance(contract, dict) and not (contract.get("invariant") or contract.get("rule")):
                found.append(_finding(
                    "E601", "Contract has no checkable invariant or rule", phase,
                    level=ErrorLevel.SOFT, location=f"domain.nodes[{i}].contracts[{j}]",
                ))
    return found


_PHASE_CHECKS: dict[ValidationPhase, Callable[[dict[str, Any]], list[ValidationError]]] = {
    ValidationPhase.STRUCTURAL: _check_structural,
    ValidationPhase.REFERENTIAL: _check_referential,
    ValidationPhase.SEMANTIC: _check_semantic,
    ValidationPhase.EVOLUTION: _check_evolution,
    ValidationPhase.GENERATION: _check_generation,
    ValidationPhase.VERIFIABILITY: _check_verifiability,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

class SpecValidator:
    """Deterministic, side-effect free validator over EvoSpec YAML text."""

    def validate(
        self,
        text: str,
        *,
        phases: Iterable[int] = ALL_PHASES,
        strict: bool = False,
    ) -> ValidationResult:
        selected = sorted({ValidationPhase(int(p)) for p in phases})
        result = ValidationResult(ok=True, phase=0)

        try:
            doc = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            result.errors.append(_finding(
                "E100", f"Invalid YAML: {exc}", ValidationPhase.STRUCTURAL,
            ))
            result.ok = False
            result.phase = int(ValidationPhase.STRUCTURAL)
            return result

        if not isinstance(doc, dict):
            result.errors.append(_finding(
                "E101", "Document root must be a mapping", ValidationPhase.STRUCTURAL,
            ))
            result.ok = False
            result.phase = int(ValidationPhase.STRUCTURAL)
            return result

        for phase in selected:
            result.phase = int(phase)
            blocking = False
            for finding in _PHASE_CHECKS[phase](doc):
                if finding.is_hard or strict:
                    result.errors.append(finding)
                    blocking = True
                else:
                    result.warnings.append(finding)
            if blocking:
                break

        result.ok = not result.errors
        logger.debug(
            "Validated document: ok=%s phase=%d errors=%d warnings=%d",
            result.ok, result.phase, len(result.errors), len(result.warnings),
        )
        return result


_default_validator = SpecValidator()


def validate_yaml(
    content: str,
    *,
    phases: Iterable[int] = ALL_PHASES,
    strict: bool = False,
) -> ValidationResult:
    """Validate YAML text with the built-in rule set."""
    return _default_validator.validate(content, phases=phases, strict=strict)
