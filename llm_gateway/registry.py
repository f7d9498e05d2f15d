"""
Adapter Registry - obtain an adapter by backend identifier.

Usage:
    # Explicit configuration
    adapter = create_adapter("openai", AdapterConfig.for_backend("openai", api_key="sk-..."))

    # From environment (AI_PROVIDER, OLLAMA_*, OPENAI_*, ...); one shared
    # instance per backend so its health cache is reused
    adapter = get_adapter()
    async for fragment in adapter.generate_stream("Hi"):
        ...
"""

import logging
from typing import Optional

from llm_gateway.adapters import AnthropicAdapter, GeminiAdapter, OllamaAdapter, OpenAIAdapter
from llm_gateway.adapters.base import GenerationAdapter
from llm_gateway.config import DEFAULT_BACKEND, AdapterConfig, get_default_backend, load_adapter_config

logger = logging.getLogger(__name__)

ADAPTERS: dict[str, type] = {
    "ollama": OllamaAdapter,
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "gemini": GeminiAdapter,
}

ALIASES: dict[str, str] = {
    "claude": "anthropic",
    "google": "gemini",
}

_instances: dict[str, GenerationAdapter] = {}


def resolve_backend(backend: str) -> str:
    """
    Map a backend identifier (or alias) to its canonical name.

    Raises:
        ValueError: If the identifier is unknown
    """
    key = backend.strip().lower()
    key = ALIASES.get(key, key)
    if key not in ADAPTERS:
        known = ", ".join(sorted([*ADAPTERS, *ALIASES]))
        raise ValueError(f"Unknown backend: {backend!r} (expected one of: {known})")
    return key


def create_adapter(
    backend: str,
    config: Optional[AdapterConfig] = None,
    **kwargs,
) -> GenerationAdapter:
    """
    Build a new adapter instance.

    Args:
        backend: Backend identifier or alias
        config: Configuration; loaded from the environment when omitted
        **kwargs: Passed to the adapter constructor (e.g. transport)
    """
    name = resolve_backend(backend)
    if config is None:
        config = load_adapter_config(name)
    return ADAPTERS[name](config, **kwargs)


def get_adapter(backend: Optional[str] = None) -> GenerationAdapter:
    """
    Get the shared adapter for a backend, creating it on first use.

    With no backend given, AI_PROVIDER selects one. An unknown AI_PROVIDER
    falls back to the local backend with a warning; an unknown explicit
    backend raises ValueError.
    """
    if backend is None:
        configured = get_default_backend()
        try:
            name = resolve_backend(configured)
        except ValueError:
            logger.warning("Unknown provider: %s, falling back to %s", configured, DEFAULT_BACKEND)
            name = DEFAULT_BACKEND
    else:
        name = resolve_backend(backend)

    adapter = _instances.get(name)
    if adapter is None:
        adapter = create_adapter(name)
        _instances[name] = adapter
        logger.info("Generation adapter ready: %s", name)
    return adapter


def clear_adapters() -> None:
    """
    Drop all shared adapter instances.

    Primarily useful for testing to reset state between tests.
    """
    _instances.clear()
