"""Model adapters and prompt construction.

Supports OpenRouter, OpenAI, Anthropic (Claude) and Ollama (local).
"""

from .providers import (  # noqa: F401
    AsyncLLMProvider,
    get_provider,
    SUPPORTED_PROVIDERS,
    DEFAULT_PROVIDER,
    default_model_for,
    normalize_provider,
    resolve_api_key,
)
