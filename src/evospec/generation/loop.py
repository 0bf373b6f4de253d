"""The generate → validate → repair loop.

One run performs at most ``max_retries`` model calls, strictly in sequence:

1. Build the prompt (base instruction + hard errors of the previous attempt).
2. Call the model.  Any failure here is fatal → ``ProviderError``.
3. Extract the YAML document.  A malformed response becomes a synthetic
   ``E000`` finding and costs one attempt.
4. Optionally finalise the candidate (evolution applies the ledger here).
5. Validate.  ``ok`` ends the run; otherwise the errors feed the next prompt.

On exhaustion only the *last* attempt's errors are reported.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Callable, Optional, Sequence

import yaml

from ..errors import ExtractionError, ProviderError
from ..validator.models import ALL_PHASES, ErrorLevel, ValidationError, ValidationResult
from .base import (
    AttemptCallback,
    GenerationResult,
    ModelAdapter,
    RetryAttempt,
    ValidationErrorCallback,
    Validator,
)

logger = logging.getLogger("evospec.generation.loop")

EXTRACTION_ERROR_CODE = "E000"
UNREPORTED_FAILURE_CODE = "E001"

_YAML_FENCE_RE = re.compile(r"```ya?ml[ \t]*\r?\n(.*?)```", re.DOTALL | re.IGNORECASE)
_ANY_FENCE_RE = re.compile(r"```[^\n`]*\r?\n(.*?)```", re.DOTALL)

PromptBuilder = Callable[[Sequence[ValidationError]], tuple[str, str]]
Finalizer = Callable[[str, dict[str, Any]], str]


def extract_document(response: str) -> tuple[str, dict[str, Any]]:
    """Pull the YAML document out of a model response.

    Prefers a ```yaml fenced block, then any fenced block, then the raw text.
    Returns the document text and its parsed mapping.
    """
    text = (response or "").strip()
    match = _YAML_FENCE_RE.search(text) or _ANY_FENCE_RE.search(text)
    if match:
        text = match.group(1).strip()
    if not text:
        raise ExtractionError("The model returned an empty response")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ExtractionError(f"The model response is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ExtractionError("The model response does not contain a YAML document")
    return text + "\n", data


def extraction_failure(exc: ExtractionError) -> ValidationResult:
    """Synthetic validation result standing in for an unparseable response."""
    return ValidationResult(
        ok=False,
        phase=1,
        errors=[ValidationError(
            code=EXTRACTION_ERROR_CODE,
            message=str(exc),
            phase=1,
            level=ErrorLevel.HARD,
            suggestion="Return the complete document inside a single ```yaml fenced block",
        )],
    )


def unreported_failure(validation: ValidationResult) -> ValidationResult:
    """Give a failed result that carries no errors a hard finding to report."""
    return validation.model_copy(update={
        "errors": [ValidationError(
            code=UNREPORTED_FAILURE_CODE,
            message="Validation failed without reporting any errors",
            phase=min(max(validation.phase, 0), 6),
            level=ErrorLevel.HARD,
            suggestion="Re-check the whole document against the EvoSpec rules",
        )],
    })


class RepairLoop:
    """Drives one bounded generate-validate-repair run."""

    def __init__(
        self,
        *,
        adapter: ModelAdapter,
        validator: Validator,
        max_retries: int,
        strict: bool = False,
        timeout: float | None = None,
        provider_name: str = "",
        on_attempt: Optional[AttemptCallback] = None,
        on_validation_error: Optional[ValidationErrorCallback] = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._adapter = adapter
        self._validator = validator
        self.max_retries = max_retries
        self.strict = strict
        self.timeout = timeout
        self.provider_name = provider_name
        self._on_attempt = on_attempt
        self._on_validation_error = on_validation_error

    async def run(
        self,
        build_prompt: PromptBuilder,
        finalize: Optional[Finalizer] = None,
    ) -> GenerationResult:
        prior_errors: list[ValidationError] = []
        attempt = 1
        while True:
            current = await self._attempt(attempt, build_prompt, finalize, prior_errors)
            if current.validation is not None and current.validation.ok:
                logger.info("Candidate accepted on attempt %d/%d", attempt, self.max_retries)
                return GenerationResult.succeeded(current.candidate or "", attempt)

            prior_errors = current.errors
            logger.info(
                "Attempt %d/%d failed validation with %d error(s)",
                current.number, self.max_retries, len(prior_errors),
            )
            if self._on_validation_error is not None:
                self._on_validation_error(attempt, prior_errors)

            attempt += 1
            if attempt > self.max_retries:
                logger.warning("Retry budget of %d exhausted", self.max_retries)
                return GenerationResult.failed(prior_errors, self.max_retries)

    async def _attempt(
        self,
        attempt: int,
        build_prompt: PromptBuilder,
        finalize: Optional[Finalizer],
        prior_errors: list[ValidationError],
    ) -> RetryAttempt:
        system, user = build_prompt(prior_errors if attempt > 1 else [])
        if self._on_attempt is not None:
            self._on_attempt(attempt, self.max_retries)

        response = await self._complete(system, user, attempt)

        try:
            text, data = extract_document(response)
            if finalize is not None:
                text = finalize(text, data)
        except ExtractionError as exc:
            logger.debug("Extraction failed on attempt %d: %s", attempt, exc)
            return RetryAttempt(number=attempt, validation=extraction_failure(exc))

        validation = self._validator.validate(text, phases=ALL_PHASES, strict=self.strict)
        if not validation.ok and not validation.errors:
            validation = unreported_failure(validation)
        return RetryAttempt(number=attempt, candidate=text, validation=validation)

    async def _complete(self, system: str, user: str, attempt: int) -> str:
        try:
            if self.timeout is not None:
                return await asyncio.wait_for(self._adapter.chat(system, user), self.timeout)
            return await self._adapter.chat(system, user)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Model call failed on attempt %d: %s", attempt, exc)
            raise ProviderError(
                f"Model call failed on attempt {attempt}: {str(exc) or type(exc).__name__}",
                attempt=attempt,
                provider=self.provider_name,
            ) from exc
