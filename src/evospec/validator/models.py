"""Validation result models.

A validator run produces a ``ValidationResult``: blocking findings in
``errors``, advisory ones in ``warnings``.  Strict mode moves soft findings
into ``errors`` so they block as well.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, Field


class ValidationPhase(IntEnum):
    """The six cumulative validation phases, in execution order."""
    STRUCTURAL = 1
    REFERENTIAL = 2
    SEMANTIC = 3
    EVOLUTION = 4
    GENERATION = 5
    VERIFIABILITY = 6

    @property
    def title(self) -> str:
        return self.name.capitalize()


ALL_PHASES: tuple[ValidationPhase, ...] = tuple(ValidationPhase)


class ErrorLevel(str, Enum):
    """Severity of a finding."""
    HARD = "hard"
    SOFT = "soft"


class ValidationError(BaseModel):
    """A single validation finding."""

    code: str                          # e.g. "E201"
    message: str
    phase: int = Field(ge=0, le=6)     # 0 only for synthetic findings
    level: ErrorLevel = ErrorLevel.HARD
    location: Optional[str] = None     # e.g. "domain.nodes[3].id"
    suggestion: Optional[str] = None

    @property
    def is_hard(self) -> bool:
        return self.level == ErrorLevel.HARD


class ValidationResult(BaseModel):
    """Outcome of one validator call."""

    ok: bool = True
    phase: int = 0                     # highest phase attempted
    errors: list[ValidationError] = Field(default_factory=list)
    warnings: list[ValidationError] = Field(default_factory=list)

    def errors_for_phase(self, phase: int) -> list[ValidationError]:
        return [e for e in self.errors if e.phase == phase]

    def warnings_for_phase(self, phase: int) -> list[ValidationError]:
        return [w for w in self.warnings if w.phase == phase]


def parse_phases(spec: str) -> list[ValidationPhase]:
    """Parse a phase selector such as ``"1-3"`` or ``"1,2,5"``.

    Out-of-range numbers are dropped silently; unparseable input raises
    ``ValueError``.
    """
    text = spec.strip()
    if "-" in text:
        start_s, end_s = text.split("-", 1)
        start, end = int(start_s), int(end_s)
        numbers = range(start, end + 1)
    else:
        numbers = [int(part) for part in text.split(",") if part.strip()]
    return [ValidationPhase(n) for n in numbers if 1 <= n <= 6]
