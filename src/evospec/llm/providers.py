"""Async multi-provider model adapters.

Supports OpenRouter (default), OpenAI, Anthropic (Claude) and Ollama.
Every provider exposes the same ``chat(system, user)`` coroutine so the
orchestration engine can drive any backend without code changes.

Usage::

    from evospec.llm.providers import get_provider

    llm = get_provider("openrouter", api_key="sk-or-...", model="anthropic/claude-sonnet-4")
    text = await llm.chat("You write EvoSpec YAML.", "A todo-list service.")

Providers do **not** retry.  A failed call raises straight to the caller;
the orchestration loop decides what a failure means.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Any

from ..errors import ConfigurationError

logger = logging.getLogger("evospec.llm.providers")

# ── Defaults ──────────────────────────────────────────────────────────────

DEFAULT_PROVIDER = "openrouter"
DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_TOKENS = 8192

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OLLAMA_BASE_URL = "http://localhost:11434/v1"

# Provider → env-var mapping for API keys
_KEY_ENV_VARS: dict[str, str] = {
    "openrouter": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "ollama": "",  # no key needed
}

# Provider → default model
_DEFAULT_MODELS: dict[str, str] = {
    "openrouter": "anthropic/claude-sonnet-4",
    "openai": "gpt-4o",
    "anthropic": "claude-sonnet-4-20250514",
    "ollama": "llama3.1",
}


# ══════════════════════════════════════════════════════════════════════════
# Base class
# ══════════════════════════════════════════════════════════════════════════


class AsyncLLMProvider(ABC):
    """Abstract base for all model adapters."""

    name = "base"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        **kwargs: Any,
    ):
        self.api_key = api_key
        self.model = model or _DEFAULT_MODELS.get(self.name, "")
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.extra = kwargs

    @abstractmethod
    async def chat(self, system: str, user: str) -> str:
        """Async chat completion → plain text."""

    @property
    def provider_name(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} model={self.model!r}>"


# ══════════════════════════════════════════════════════════════════════════
# OpenAI-compatible endpoints (OpenAI, OpenRouter, Ollama)
# ══════════════════════════════════════════════════════════════════════════


class AsyncOpenAIProvider(AsyncLLMProvider):
    """Standard OpenAI API (also used for generic OpenAI-compatible servers)."""

    name = "openai"

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise ImportError(
                f"{self.name} provider requires the 'openai' package. "
                "Install with: pip install openai"
            )
        key = self.api_key or os.environ.get(_KEY_ENV_VARS[self.name], "")
        if not key and not self._key_optional():
            raise ConfigurationError(
                f"No {self.name} API key found. Run `evospec init` or set "
                f"{_KEY_ENV_VARS[self.name]}."
            )
        ctor_kwargs: dict[str, Any] = {"api_key": key or "not-needed"}
        if self.base_url:
            ctor_kwargs["base_url"] = self.base_url
        self._client = AsyncOpenAI(**ctor_kwargs)

    def _key_optional(self) -> bool:
        return bool(self.base_url) and self.name == "openai"

    async def chat(self, system: str, user: str) -> str:
        resp = await self._client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        return resp.choices[0].message.content or ""


class AsyncOpenRouterProvider(AsyncOpenAIProvider):
    """OpenRouter — many vendors behind one OpenAI-compatible endpoint."""

    name = "openrouter"

    def __init__(self, **kwargs: Any):
        kwargs["base_url"] = kwargs.get("base_url") or OPENROUTER_BASE_URL
        super().__init__(**kwargs)


class AsyncOllamaProvider(AsyncOpenAIProvider):
    """Ollama local inference — uses the OpenAI-compatible endpoint.

    By default connects to ``http://localhost:11434/v1``.
    No API key required.
    """

    name = "ollama"

    def __init__(self, **kwargs: Any):
        kwargs["base_url"] = kwargs.get("base_url") or OLLAMA_BASE_URL
        kwargs["api_key"] = kwargs.get("api_key") or "ollama"  # Ollama ignores the key
        super().__init__(**kwargs)

    def _key_optional(self) -> bool:
        return True


# ══════════════════════════════════════════════════════════════════════════
# Anthropic (Claude)
# ══════════════════════════════════════════════════════════════════════════


class AsyncAnthropicProvider(AsyncLLMProvider):
    """Async Anthropic (Claude) provider."""

    name = "anthropic"

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise ImportError(
                "Anthropic provider requires the 'anthropic' package. "
                "Install with: pip install anthropic"
            )
        key = self.api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        if not key:
            raise ConfigurationError(
                "No Anthropic API key found. Run `evospec init` or set ANTHROPIC_API_KEY."
            )
        ctor_kwargs: dict[str, Any] = {"api_key": key}
        if self.base_url:
            ctor_kwargs["base_url"] = self.base_url
        self._client = AsyncAnthropic(**ctor_kwargs)

    async def chat(self, system: str, user: str) -> str:
        resp = await self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=system,
            messages=[{"role": "user", "content": user}],
        )
        # Anthropic returns content blocks
        return "".join(
            block.text for block in resp.content if getattr(block, "type", "") == "text"
        )


# ══════════════════════════════════════════════════════════════════════════
# Factory functions
# ══════════════════════════════════════════════════════════════════════════

_PROVIDERS: dict[str, type[AsyncLLMProvider]] = {
    "openrouter": AsyncOpenRouterProvider,
    "openai": AsyncOpenAIProvider,
    "anthropic": AsyncAnthropicProvider,
    "claude": AsyncAnthropicProvider,
    "ollama": AsyncOllamaProvider,
}

SUPPORTED_PROVIDERS = sorted(set(_PROVIDERS.keys()) - {"claude"})


def get_provider(
    provider: str = DEFAULT_PROVIDER,
    *,
    api_key: str | None = None,
    model: str | None = None,
    base_url: str | None = None,
    temperature: float = DEFAULT_TEMPERATURE,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    **kwargs: Any,
) -> AsyncLLMProvider:
    """Create a model adapter instance.

    Parameters
    ----------
    provider
        Provider name: openrouter, openai, anthropic, ollama.
    api_key
        API key (falls back to provider-specific env var).
    model
        Model name (falls back to provider-specific default).
    base_url
        Custom API endpoint.
    """
    name = normalize_provider(provider)
    cls = _PROVIDERS[name]
    logger.debug("Creating %s provider (model=%s)", name, model or default_model_for(name))
    return cls(
        api_key=api_key,
        model=model,
        base_url=base_url,
        temperature=temperature,
        max_tokens=max_tokens,
        **kwargs,
    )


def normalize_provider(provider: str) -> str:
    """Lower-case and validate a provider name."""
    name = (provider or "").lower().strip()
    if name not in _PROVIDERS:
        raise ConfigurationError(
            f"Unknown provider '{provider}'. "
            f"Supported: {', '.join(SUPPORTED_PROVIDERS)}"
        )
    return "anthropic" if name == "claude" else name


def api_key_env_var(provider: str) -> str:
    """Return the environment variable holding *provider*'s API key ('' if none)."""
    return _KEY_ENV_VARS.get(provider.lower(), "")


def requires_api_key(provider: str) -> bool:
    return bool(api_key_env_var(provider))


def resolve_api_key(provider: str, api_key: str | None = None) -> str | None:
    """Resolve API key from argument or environment variable."""
    if api_key:
        return api_key
    env_var = api_key_env_var(provider)
    if env_var:
        return os.environ.get(env_var)
    return None


def default_model_for(provider: str) -> str:
    """Return the default model name for a given provider."""
    return _DEFAULT_MODELS.get(provider.lower(), _DEFAULT_MODELS[DEFAULT_PROVIDER])
