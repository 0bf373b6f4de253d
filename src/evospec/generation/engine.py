"""Generation and evolution orchestrators.

Both wrap :class:`~evospec.generation.loop.RepairLoop`.  Evolution adds the
version state machine: the transition is computed once up front (a broken
current version is fatal), and every candidate gets the new version and
history entry applied *before* validation, so the validator sees exactly the
document that will be returned.

Usage::

    config = load_config()
    result = await generate_spec(
        config,
        GenerationRequest(description="A library lending system", max_retries=3),
        on_attempt=lambda n, total: print(f"attempt {n}/{total}"),
    )
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..config import EvoSpecConfig
from ..errors import ConfigurationError
from ..llm.prompts import build_evolution_prompt, build_generation_prompt
from ..llm.providers import get_provider, normalize_provider, requires_api_key
from ..validator.validator import SpecValidator
from ..versioning.evolution import (
    apply_evolution,
    build_entry,
    plan_transition,
    read_history,
)
from .base import (
    AttemptCallback,
    EvolutionRequest,
    GenerationRequest,
    GenerationResult,
    ModelAdapter,
    ValidationErrorCallback,
    Validator,
)
from .loop import RepairLoop

logger = logging.getLogger("evospec.generation.engine")


def resolve_adapter(
    config: EvoSpecConfig,
    request: GenerationRequest | EvolutionRequest,
) -> ModelAdapter:
    """Build the model adapter for one run from config + request overrides."""
    provider = normalize_provider(request.provider or config.llm.provider)
    api_key = config.api_key_for(provider)
    if requires_api_key(provider) and not api_key:
        raise ConfigurationError(f"No API key configured for provider '{provider}'")
    temperature = request.temperature if request.temperature is not None else config.llm.temperature
    return get_provider(
        provider,
        api_key=api_key,
        model=request.model or config.llm.model,
        temperature=temperature,
    )


class _Orchestrator:
    def __init__(
        self,
        config: EvoSpecConfig,
        *,
        adapter: ModelAdapter | None = None,
        validator: Validator | None = None,
        on_attempt: Optional[AttemptCallback] = None,
        on_validation_error: Optional[ValidationErrorCallback] = None,
    ) -> None:
        self.config = config
        self._adapter = adapter
        self._validator = validator or SpecValidator()
        self._on_attempt = on_attempt
        self._on_validation_error = on_validation_error

    def _loop(self, request: GenerationRequest | EvolutionRequest) -> RepairLoop:
        adapter = self._adapter or resolve_adapter(self.config, request)
        return RepairLoop(
            adapter=adapter,
            validator=self._validator,
            max_retries=request.max_retries,
            strict=request.strict,
            timeout=request.timeout,
            provider_name=request.provider or self.config.llm.provider,
            on_attempt=self._on_attempt,
            on_validation_error=self._on_validation_error,
        )


class GenerationOrchestrator(_Orchestrator):
    """First-time creation of a document from a description."""

    async def run(self, request: GenerationRequest) -> GenerationResult:
        if not request.description.strip():
            raise ConfigurationError("A system description is required")
        loop = self._loop(request)
        logger.info("Generating specification (max %d attempts)", request.max_retries)
        return await loop.run(
            lambda errors: build_generation_prompt(request.description, errors),
        )


class EvolutionOrchestrator(_Orchestrator):
    """Rewrites an existing document and records the change in its ledger.

    No diff is computed: the model's output is a full replacement and the
    validator is the only correctness gate.
    """

    async def run(self, request: EvolutionRequest) -> GenerationResult:
        if not request.spec.strip():
            raise ConfigurationError("The current specification is empty")

        transition = plan_transition(request.spec, request.bump)
        original_history = read_history(request.spec)
        entry = build_entry(transition, request.change, request.notes)
        logger.info(
            "Evolving specification %s -> %s (max %d attempts)",
            transition.previous, transition.new, request.max_retries,
        )

        def finalize(_text: str, data: dict[str, Any]) -> str:
            return apply_evolution(data, original_history, transition, entry)

        loop = self._loop(request)
        result = await loop.run(
            lambda errors: build_evolution_prompt(request.spec, request.change, errors),
            finalize,
        )
        return result.model_copy(update={
            "previous_version": transition.previous,
            "new_version": transition.new,
        })


async def generate_spec(
    config: EvoSpecConfig,
    request: GenerationRequest,
    *,
    adapter: ModelAdapter | None = None,
    validator: Validator | None = None,
    on_attempt: Optional[AttemptCallback] = None,
    on_validation_error: Optional[ValidationErrorCallback] = None,
) -> GenerationResult:
    """Generate a new specification.  Raises ``ProviderError``/``ConfigurationError``."""
    orchestrator = GenerationOrchestrator(
        config,
        adapter=adapter,
        validator=validator,
        on_attempt=on_attempt,
        on_validation_error=on_validation_error,
    )
    return await orchestrator.run(request)


async def evolve_spec(
    config: EvoSpecConfig,
    request: EvolutionRequest,
    *,
    adapter: ModelAdapter | None = None,
    validator: Validator | None = None,
    on_attempt: Optional[AttemptCallback] = None,
    on_validation_error: Optional[ValidationErrorCallback] = None,
) -> GenerationResult:
    """Evolve an existing specification.  Raises ``ProviderError``/``ConfigurationError``."""
    orchestrator = EvolutionOrchestrator(
        config,
        adapter=adapter,
        validator=validator,
        on_attempt=on_attempt,
        on_validation_error=on_validation_error,
    )
    return await orchestrator.run(request)
