"""Configuration loading for evospec.

Settings come from two YAML files, the project one winning:

- ``~/.evospec/config.yaml``   (global; holds API keys saved by the CLI)
- ``<project>/.evospec/config.yaml``  (found by walking up from the cwd)

The resolved ``EvoSpecConfig`` is an immutable value handed to the
orchestrators; nothing in the engine reads configuration on its own.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from .errors import ConfigurationError
from .llm.providers import DEFAULT_PROVIDER, DEFAULT_TEMPERATURE, normalize_provider, resolve_api_key

logger = logging.getLogger("evospec.config")

CONFIG_DIRNAME = ".evospec"
CONFIG_FILENAME = "config.yaml"
SPEC_SUFFIX = ".evospec.yaml"
DEFAULT_SPEC_FILENAME = "evospec.yaml"


def global_config_path() -> Path:
    return Path.home() / CONFIG_DIRNAME / CONFIG_FILENAME


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class LLMSettings(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    provider: str = DEFAULT_PROVIDER
    model: Optional[str] = None
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    api_keys: dict[str, str] = Field(default_factory=dict, alias="apiKeys")


class VersioningSettings(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    auto_commit: bool = Field(default=True, alias="autoCommit")
    auto_tag: bool = Field(default=True, alias="autoTag")
    tag_prefix: str = Field(default="v", alias="tagPrefix")


class GenerationSettings(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_retries: int = Field(default=3, ge=1, alias="maxRetries")


class EvoSpecConfig(BaseModel):
    """Fully resolved configuration."""

    model_config = ConfigDict(frozen=True)

    llm: LLMSettings = Field(default_factory=LLMSettings)
    versioning: VersioningSettings = Field(default_factory=VersioningSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)

    def api_key_for(self, provider: str | None = None) -> str | None:
        """Key from the config file, else the provider's environment variable."""
        name = normalize_provider(provider or self.llm.provider)
        return resolve_api_key(name, self.llm.api_keys.get(name))

    def with_api_key(self, provider: str, api_key: str) -> "EvoSpecConfig":
        keys = {**self.llm.api_keys, normalize_provider(provider): api_key}
        llm = self.llm.model_copy(update={"api_keys": keys})
        return self.model_copy(update={"llm": llm})

    def to_yaml_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a YAML mapping")
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def find_project_config(start: Path | None = None) -> Path | None:
    """Walk up from *start* looking for ``.evospec/config.yaml``."""
    here = (start or Path.cwd()).resolve()
    for directory in (here, *here.parents):
        candidate = directory / CONFIG_DIRNAME / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def load_config(
    cwd: Path | None = None,
    *,
    global_path: Path | None = None,
) -> EvoSpecConfig:
    """Load and merge global + project configuration."""
    data: dict[str, Any] = {}
    gpath = global_path or global_config_path()
    if gpath.is_file():
        data = _read_yaml(gpath)
        logger.debug("Loaded global config from %s", gpath)
    project_path = find_project_config(cwd)
    if project_path is not None and project_path != gpath:
        data = _deep_merge(data, _read_yaml(project_path))
        logger.debug("Loaded project config from %s", project_path)
    try:
        return EvoSpecConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def save_api_key(provider: str, api_key: str, *, global_path: Path | None = None) -> Path:
    """Persist an API key in the global config file and return its path."""
    gpath = global_path or global_config_path()
    data = _read_yaml(gpath) if gpath.is_file() else {}
    llm = data.setdefault("llm", {})
    llm.setdefault("apiKeys", {})[normalize_provider(provider)] = api_key
    gpath.parent.mkdir(parents=True, exist_ok=True)
    gpath.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    try:
        gpath.chmod(0o600)
    except OSError:
        logger.warning("Could not restrict permissions on %s", gpath)
    return gpath


def project_config_yaml(config: EvoSpecConfig | None = None) -> str:
    """Project-level config file body (never includes API keys)."""
    cfg = config or EvoSpecConfig()
    data = cfg.to_yaml_dict()
    data["llm"].pop("apiKeys", None)
    return yaml.safe_dump(data, sort_keys=False)


def find_spec_file(start: Path | None = None) -> Path | None:
    """Locate the spec in *start*: ``*.evospec.yaml`` first, then ``evospec.yaml``."""
    here = start or Path.cwd()
    matches = sorted(here.glob(f"*{SPEC_SUFFIX}"))
    if matches:
        return matches[0].resolve()
    fallback = here / DEFAULT_SPEC_FILENAME
    return fallback.resolve() if fallback.is_file() else None
