"""Exception hierarchy shared by the orchestration engine and its adapters.

Fatal conditions are exceptions.  Validation failures are *not*: they are
absorbed by the repair loop and surface as a failed ``GenerationResult``.
"""

from __future__ import annotations


class EvoSpecError(Exception):
    """Base class for every error raised by evospec."""


class ConfigurationError(EvoSpecError):
    """Broken input or settings that no amount of re-prompting can fix.

    Raised for a malformed current version, a missing description or
    current document, an unknown provider, or a missing API key.
    """


class ProviderError(EvoSpecError):
    """The model provider failed to produce any response.

    Fatal for the whole run.  ``attempt`` records the loop iteration during
    which the failure happened.
    """

    def __init__(self, message: str, *, attempt: int = 0, provider: str = "") -> None:
        super().__init__(message)
        self.attempt = attempt
        self.provider = provider


class ExtractionError(EvoSpecError):
    """The model response did not contain a parseable document."""


class GitError(RuntimeError):
    """A git command failed."""

    def __init__(self, message: str, *, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr
