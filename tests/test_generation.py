"""Tests for the repair loop and the generation/evolution orchestrators."""

from __future__ import annotations

import asyncio

import pytest
import yaml

from evospec.config import EvoSpecConfig
from evospec.errors import ConfigurationError, ExtractionError, ProviderError
from evospec.generation import (
    EvolutionRequest,
    GenerationRequest,
    GenerationResult,
    evolve_spec,
    generate_spec,
)
from evospec.generation.engine import resolve_adapter
from evospec.generation.loop import EXTRACTION_ERROR_CODE, UNREPORTED_FAILURE_CODE, extract_document
from evospec.llm.prompts import FEEDBACK_HEADER
from evospec.llm.providers import AsyncOllamaProvider
from evospec.validator.models import ErrorLevel, ValidationError, ValidationResult
from evospec.versioning.evolution import BumpKind

from .conftest import ScriptedAdapter, ScriptedValidator, fenced


def _err(code: str, level: ErrorLevel = ErrorLevel.HARD, phase: int = 3) -> ValidationError:
    return ValidationError(code=code, message=f"problem {code}", phase=phase, level=level)


def _failing(*errors: ValidationError, warnings=()) -> ValidationResult:
    return ValidationResult(ok=False, phase=3, errors=list(errors), warnings=list(warnings))


OK = ValidationResult(ok=True, phase=6)


@pytest.fixture
def config():
    return EvoSpecConfig()


@pytest.fixture
def broken_spec(valid_doc) -> str:
    del valid_doc["domain"]["nodes"][2]["spec"]["fields"]["name"]["type"]
    return yaml.safe_dump(valid_doc, sort_keys=False)


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------

class TestExtractDocument:
    def test_prefers_yaml_fence(self):
        text, data = extract_document("intro\n```text\nnot: this\n```\n```yaml\na: 1\n```")
        assert data == {"a": 1}
        assert text == "a: 1\n"

    def test_falls_back_to_any_fence(self):
        _, data = extract_document("```\nb: 2\n```")
        assert data == {"b": 2}

    def test_raw_text(self):
        _, data = extract_document("c: 3\n")
        assert data == {"c": 3}

    @pytest.mark.parametrize("response", ["", "   ", "just prose", "```yaml\n- a\n- b\n```", "a: [1"])
    def test_unusable_responses(self, response):
        with pytest.raises(ExtractionError):
            extract_document(response)


# ---------------------------------------------------------------------------
# Generation loop
# ---------------------------------------------------------------------------

class TestGeneration:
    @pytest.mark.asyncio
    async def test_clean_first_attempt(self, config, valid_spec):
        adapter = ScriptedAdapter([fenced(valid_spec)])
        result = await generate_spec(config, GenerationRequest(description="A shop"), adapter=adapter)
        assert result.success is True
        assert result.attempts == 1
        assert result.errors is None
        assert yaml.safe_load(result.yaml) == yaml.safe_load(valid_spec)
        assert len(adapter.prompts) == 1
        assert FEEDBACK_HEADER not in adapter.prompts[0]
        assert "A shop" in adapter.prompts[0]

    @pytest.mark.asyncio
    async def test_repairs_on_second_attempt(self, config, valid_spec, broken_spec):
        adapter = ScriptedAdapter([fenced(broken_spec), fenced(valid_spec)])
        result = await generate_spec(config, GenerationRequest(description="A shop"), adapter=adapter)
        assert result.success is True
        assert result.attempts == 2
        assert FEEDBACK_HEADER in adapter.prompts[1]
        assert "[E302]" in adapter.prompts[1]

    @pytest.mark.asyncio
    async def test_only_hard_findings_are_fed_back(self, config, valid_spec):
        hard = [_err("E201"), _err("E202")]
        soft = [_err(c, ErrorLevel.SOFT) for c in ("E301", "E303", "E501")]
        validator = ScriptedValidator([_failing(*hard, warnings=soft), OK])
        adapter = ScriptedAdapter([fenced(valid_spec)])
        await generate_spec(config, GenerationRequest(description="x"), adapter=adapter, validator=validator)
        feedback = adapter.prompts[1]
        assert "[E201]" in feedback and "[E202]" in feedback
        for code in ("E301", "E303", "E501"):
            assert code not in feedback

    @pytest.mark.asyncio
    async def test_escalated_soft_findings_are_not_fed_back(self, config, valid_spec):
        # strict mode places soft findings among the errors
        errors = [_err("E201"), _err("E202"), *(_err(c, ErrorLevel.SOFT) for c in ("E301", "E303", "E501"))]
        validator = ScriptedValidator([_failing(*errors), OK])
        adapter = ScriptedAdapter([fenced(valid_spec)])
        result = await generate_spec(
            config, GenerationRequest(description="x", strict=True), adapter=adapter, validator=validator,
        )
        assert result.success is True
        assert validator.calls[0]["strict"] is True
        assert "[E201]" in adapter.prompts[1]
        assert "E303" not in adapter.prompts[1]

    @pytest.mark.asyncio
    async def test_exhaustion_reports_last_attempt_only(self, config, valid_spec):
        validator = ScriptedValidator([
            _failing(_err("E101", phase=1)),
            _failing(_err("E202", phase=2)),
            _failing(_err("E302"), _err("E304")),
        ])
        adapter = ScriptedAdapter([fenced(valid_spec)])
        result = await generate_spec(
            config, GenerationRequest(description="x", max_retries=3), adapter=adapter, validator=validator,
        )
        assert result.success is False
        assert result.yaml is None
        assert result.attempts == 3
        assert [e.code for e in result.errors] == ["E302", "E304"]
        assert len(adapter.prompts) == 3

    @pytest.mark.asyncio
    async def test_exhaustion_with_real_validator(self, config, broken_spec):
        adapter = ScriptedAdapter([fenced(broken_spec)])
        result = await generate_spec(config, GenerationRequest(description="x", max_retries=3), adapter=adapter)
        assert result.success is False
        assert [e.code for e in result.errors] == ["E302"]
        assert len(adapter.prompts) == 3

    @pytest.mark.asyncio
    async def test_single_attempt_budget(self, config, broken_spec):
        adapter = ScriptedAdapter([fenced(broken_spec)])
        result = await generate_spec(config, GenerationRequest(description="x", max_retries=1), adapter=adapter)
        assert result.attempts == 1
        assert len(adapter.prompts) == 1

    @pytest.mark.asyncio
    async def test_provider_failure_is_fatal(self, config):
        adapter = ScriptedAdapter([RuntimeError("connection reset")])
        with pytest.raises(ProviderError) as exc_info:
            await generate_spec(config, GenerationRequest(description="x", max_retries=5), adapter=adapter)
        assert exc_info.value.attempt == 1
        assert len(adapter.prompts) == 1

    @pytest.mark.asyncio
    async def test_provider_failure_on_later_attempt(self, config, broken_spec):
        adapter = ScriptedAdapter([fenced(broken_spec), RuntimeError("rate limited")])
        with pytest.raises(ProviderError) as exc_info:
            await generate_spec(config, GenerationRequest(description="x", max_retries=5), adapter=adapter)
        assert exc_info.value.attempt == 2

    @pytest.mark.asyncio
    async def test_timeout_is_provider_error(self, config):
        class SlowAdapter:
            async def chat(self, system, user):
                await asyncio.sleep(5)
                return ""

        with pytest.raises(ProviderError):
            await generate_spec(
                config, GenerationRequest(description="x", timeout=0.01), adapter=SlowAdapter(),
            )

    @pytest.mark.asyncio
    async def test_extraction_failure_costs_an_attempt(self, config, valid_spec):
        adapter = ScriptedAdapter(["I cannot help with that.", fenced(valid_spec)])
        result = await generate_spec(config, GenerationRequest(description="x"), adapter=adapter)
        assert result.success is True
        assert result.attempts == 2
        assert f"[{EXTRACTION_ERROR_CODE}]" in adapter.prompts[1]

    @pytest.mark.asyncio
    async def test_extraction_failures_exhaust_budget(self, config):
        adapter = ScriptedAdapter(["nope"])
        result = await generate_spec(config, GenerationRequest(description="x", max_retries=2), adapter=adapter)
        assert result.success is False
        assert [e.code for e in result.errors] == [EXTRACTION_ERROR_CODE]
        assert result.errors[0].level == ErrorLevel.HARD

    @pytest.mark.asyncio
    async def test_failure_without_errors_gets_a_finding(self, config, valid_spec):
        validator = ScriptedValidator([ValidationResult(ok=False, phase=6), OK])
        adapter = ScriptedAdapter([fenced(valid_spec)])
        result = await generate_spec(config, GenerationRequest(description="x"), adapter=adapter, validator=validator)
        assert result.success is True
        assert f"[{UNREPORTED_FAILURE_CODE}]" in adapter.prompts[1]

    @pytest.mark.asyncio
    async def test_exhaustion_without_errors_still_reports(self, config, valid_spec):
        validator = ScriptedValidator([ValidationResult(ok=False, phase=6)])
        adapter = ScriptedAdapter([fenced(valid_spec)])
        result = await generate_spec(
            config, GenerationRequest(description="x", max_retries=1), adapter=adapter, validator=validator,
        )
        assert result.success is False
        assert [e.code for e in result.errors] == [UNREPORTED_FAILURE_CODE]
        assert result.errors[0].phase == 6

    @pytest.mark.asyncio
    async def test_callbacks_fire_in_order(self, config, valid_spec, broken_spec):
        events = []
        adapter = ScriptedAdapter([fenced(broken_spec), fenced(valid_spec)])
        await generate_spec(
            config,
            GenerationRequest(description="x"),
            adapter=adapter,
            on_attempt=lambda n, total: events.append(("attempt", n, total)),
            on_validation_error=lambda n, errs: events.append(("errors", n, [e.code for e in errs])),
        )
        assert events == [("attempt", 1, 3), ("errors", 1, ["E302"]), ("attempt", 2, 3)]

    @pytest.mark.asyncio
    async def test_empty_description(self, config):
        with pytest.raises(ConfigurationError):
            await generate_spec(config, GenerationRequest(description="   "), adapter=ScriptedAdapter([""]))


# ---------------------------------------------------------------------------
# Evolution
# ---------------------------------------------------------------------------

class TestEvolution:
    @pytest.mark.asyncio
    async def test_minor_bump(self, config, valid_spec):
        adapter = ScriptedAdapter([fenced(valid_spec)])
        request = EvolutionRequest(spec=valid_spec, change="Add carts", bump=BumpKind.MINOR)
        result = await evolve_spec(config, request, adapter=adapter)
        assert result.success is True
        assert (result.previous_version, result.new_version) == ("1.0.0", "1.1.0")
        doc = yaml.safe_load(result.yaml)
        assert doc["project"]["versioning"]["current"] == "1.1.0"
        assert doc["history"][-1]["changes"] == [{"description": "Add carts"}]
        assert "Add carts" in adapter.prompts[0]

    @pytest.mark.asyncio
    async def test_no_bump_no_change_keeps_domain(self, config, valid_spec, valid_doc):
        adapter = ScriptedAdapter([fenced(valid_spec)])
        request = EvolutionRequest(spec=valid_spec, change="", bump=BumpKind.NONE)
        result = await evolve_spec(config, request, adapter=adapter)
        assert result.success is True
        doc = yaml.safe_load(result.yaml)
        assert doc["domain"] == valid_doc["domain"]
        assert doc["project"]["versioning"]["current"] == "1.0.0"
        assert len(doc["history"]) == len(valid_doc["history"]) + 1
        assert doc["history"][-1]["changes"] == []
        assert result.new_version == result.previous_version

    @pytest.mark.asyncio
    async def test_model_tampering_with_history_is_overridden(self, config, valid_spec, valid_doc):
        valid_doc["history"].append({"version": "7.0.0", "basedOn": "1.0.0"})
        valid_doc["project"]["versioning"]["current"] = "7.0.0"
        adapter = ScriptedAdapter([fenced(yaml.safe_dump(valid_doc, sort_keys=False))])
        request = EvolutionRequest(spec=valid_spec, change="x", bump=BumpKind.PATCH)
        result = await evolve_spec(config, request, adapter=adapter)
        doc = yaml.safe_load(result.yaml)
        assert [h["version"] for h in doc["history"]] == ["1.0.0", "1.0.1"]

    @pytest.mark.asyncio
    async def test_v_prefixed_ledger_can_be_evolved(self, config, valid_doc):
        valid_doc["project"]["versioning"]["current"] = "v1.0.0"
        valid_doc["history"][0]["version"] = "v1.0.0"
        spec = yaml.safe_dump(valid_doc, sort_keys=False)
        adapter = ScriptedAdapter([fenced(spec)])
        result = await evolve_spec(config, EvolutionRequest(spec=spec, change="Add carts"), adapter=adapter)
        assert result.success is True
        assert result.attempts == 1
        assert (result.previous_version, result.new_version) == ("1.0.0", "1.1.0")
        doc = yaml.safe_load(result.yaml)
        assert [h["version"] for h in doc["history"]] == ["v1.0.0", "1.1.0"]

    @pytest.mark.asyncio
    async def test_malformed_version_fails_before_model_call(self, config, valid_spec):
        adapter = ScriptedAdapter([fenced(valid_spec)])
        broken = valid_spec.replace('current: "1.0.0"', 'current: "one"')
        with pytest.raises(ConfigurationError):
            await evolve_spec(config, EvolutionRequest(spec=broken, change="x"), adapter=adapter)
        assert adapter.prompts == []

    @pytest.mark.asyncio
    async def test_missing_project_block_is_retried(self, config, valid_spec):
        adapter = ScriptedAdapter([fenced("domain:\n  nodes: []\n"), fenced(valid_spec)])
        result = await evolve_spec(config, EvolutionRequest(spec=valid_spec, change="x"), adapter=adapter)
        assert result.success is True
        assert result.attempts == 2
        assert f"[{EXTRACTION_ERROR_CODE}]" in adapter.prompts[1]

    @pytest.mark.asyncio
    async def test_validator_sees_final_document(self, config, valid_spec):
        validator = ScriptedValidator([OK])
        adapter = ScriptedAdapter([fenced(valid_spec)])
        result = await evolve_spec(
            config, EvolutionRequest(spec=valid_spec, change="x", bump=BumpKind.MAJOR),
            adapter=adapter, validator=validator,
        )
        assert validator.calls[0]["text"] == result.yaml
        assert len(validator.calls[0]["phases"]) == 6

    @pytest.mark.asyncio
    async def test_failed_evolution_keeps_versions(self, config, valid_spec):
        adapter = ScriptedAdapter(["garbage"])
        result = await evolve_spec(
            config, EvolutionRequest(spec=valid_spec, change="x", max_retries=2), adapter=adapter,
        )
        assert result.success is False
        assert result.new_version == "1.1.0"

    @pytest.mark.asyncio
    async def test_empty_spec(self, config):
        with pytest.raises(ConfigurationError):
            await evolve_spec(config, EvolutionRequest(spec="", change="x"), adapter=ScriptedAdapter([""]))


# ---------------------------------------------------------------------------
# Result invariant and adapter resolution
# ---------------------------------------------------------------------------

class TestGenerationResult:
    def test_success_requires_yaml(self):
        with pytest.raises(ValueError):
            GenerationResult(success=True, attempts=1)

    def test_success_forbids_errors(self):
        with pytest.raises(ValueError):
            GenerationResult(success=True, yaml="a: 1\n", attempts=1, errors=[_err("E101")])

    def test_failure_requires_errors(self):
        with pytest.raises(ValueError):
            GenerationResult(success=False, attempts=2)

    def test_factories(self):
        assert GenerationResult.succeeded("a: 1\n", 1).success is True
        failed = GenerationResult.failed([_err("E101")], 3, new_version="1.1.0")
        assert failed.success is False and failed.new_version == "1.1.0"


class TestResolveAdapter:
    def test_missing_key_is_configuration_error(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = EvoSpecConfig.model_validate({"llm": {"provider": "openai"}})
        with pytest.raises(ConfigurationError):
            resolve_adapter(config, GenerationRequest(description="x"))

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError):
            resolve_adapter(EvoSpecConfig(), GenerationRequest(description="x", provider="acme"))

    def test_ollama_needs_no_key(self):
        adapter = resolve_adapter(EvoSpecConfig(), GenerationRequest(description="x", provider="ollama"))
        assert isinstance(adapter, AsyncOllamaProvider)
