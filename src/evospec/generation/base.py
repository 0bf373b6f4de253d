"""Request/result models and collaborator interfaces for the orchestrators.

Every run takes an immutable request and ends in exactly one
``GenerationResult``.  Collaborators are described as ``Protocol``s so the
engine can be driven by the built-in implementations or by test doubles.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..validator.models import ValidationError, ValidationResult
from ..versioning.evolution import BumpKind

DEFAULT_MAX_RETRIES = 3

AttemptCallback = Callable[[int, int], Any]
ValidationErrorCallback = Callable[[int, Sequence[ValidationError]], Any]


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------

class ModelAdapter(Protocol):
    """Text-completion service.  Raises on provider failure."""

    async def chat(self, system: str, user: str) -> str: ...


class Validator(Protocol):
    def validate(
        self,
        text: str,
        *,
        phases: Iterable[int] = ...,
        strict: bool = ...,
    ) -> ValidationResult: ...


class VCSAdapter(Protocol):
    def is_available(self) -> bool: ...

    def is_repo(self) -> bool: ...

    def add(self, path: Any) -> None: ...

    def commit(self, message: str) -> str: ...

    def tag(self, name: str, message: str) -> None: ...


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class _RunOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: Optional[str] = None       # None → config.llm.provider
    model: Optional[str] = None          # None → config / provider default
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    strict: bool = False
    timeout: Optional[float] = Field(default=None, gt=0)  # seconds per model call


class GenerationRequest(_RunOptions):
    """Create a new document from a natural-language description."""

    description: str


class EvolutionRequest(_RunOptions):
    """Rewrite an existing document to apply a change request."""

    spec: str                            # current document text
    change: str
    bump: BumpKind = BumpKind.MINOR
    notes: str = ""


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class GenerationResult(BaseModel):
    """Terminal value of one orchestration run.

    ``success`` is all-or-nothing: a successful result carries the document
    and no errors; a failed one carries errors and no document.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    yaml: Optional[str] = None
    attempts: int = Field(ge=1)
    errors: Optional[list[ValidationError]] = None
    previous_version: Optional[str] = None
    new_version: Optional[str] = None

    @model_validator(mode="after")
    def _check_consistency(self) -> "GenerationResult":
        if self.success:
            if self.yaml is None or self.errors is not None:
                raise ValueError("a successful result needs yaml and no errors")
        elif self.yaml is not None or not self.errors:
            raise ValueError("a failed result needs errors and no yaml")
        return self

    @classmethod
    def succeeded(cls, yaml: str, attempts: int, **versions: Optional[str]) -> "GenerationResult":
        return cls(success=True, yaml=yaml, attempts=attempts, **versions)

    @classmethod
    def failed(
        cls,
        errors: Sequence[ValidationError],
        attempts: int,
        **versions: Optional[str],
    ) -> "GenerationResult":
        return cls(success=False, errors=list(errors), attempts=attempts, **versions)


class RetryAttempt(BaseModel):
    """Transient state of one loop iteration; never persisted."""

    number: int
    candidate: Optional[str] = None
    validation: Optional[ValidationResult] = None

    @property
    def errors(self) -> list[ValidationError]:
        return list(self.validation.errors) if self.validation else []
