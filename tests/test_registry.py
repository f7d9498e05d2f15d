"""Tests for llm_gateway.registry."""

import logging

import pytest

from llm_gateway.adapters import AnthropicAdapter, GeminiAdapter, OllamaAdapter, OpenAIAdapter
from llm_gateway.adapters.base import GenerationAdapter
from llm_gateway.registry import clear_adapters, create_adapter, get_adapter, resolve_backend
from tests.conftest import OPENAI_URL, make_config


class TestResolveBackend:
    """Tests for resolve_backend()."""

    @pytest.mark.parametrize("given,expected", [
        ("ollama", "ollama"),
        ("OpenAI", "openai"),
        ("claude", "anthropic"),
        ("google", "gemini"),
    ])
    def test_known(self, given, expected):
        assert resolve_backend(given) == expected

    def test_unknown_raises(self):
        with pytest.raises(ValueError, match="Unknown backend"):
            resolve_backend("mystery")


class TestCreateAdapter:
    """Tests for create_adapter()."""

    @pytest.mark.parametrize("backend,cls", [
        ("ollama", OllamaAdapter),
        ("openai", OpenAIAdapter),
        ("anthropic", AnthropicAdapter),
        ("gemini", GeminiAdapter),
    ])
    def test_every_adapter_satisfies_contract(self, backend, cls, monkeypatch):
        monkeypatch.delenv(f"{backend.upper()}_API_KEY", raising=False)
        adapter = create_adapter(backend)
        assert isinstance(adapter, cls)
        assert isinstance(adapter, GenerationAdapter)

    def test_explicit_config(self):
        config = make_config("openai", OPENAI_URL)
        adapter = create_adapter("openai", config)
        assert adapter.config is config

    def test_config_from_environment(self, monkeypatch):
        monkeypatch.setenv("GEMINI_MODEL", "gemini-2.0-flash")
        adapter = create_adapter("google")
        assert adapter.config.model == "gemini-2.0-flash"

    def test_adapters_do_not_share_health_state(self):
        first = create_adapter("ollama")
        second = create_adapter("ollama")
        first._health.record(True)
        assert second._health.get() is None


class TestGetAdapter:
    """Tests for get_adapter()."""

    def test_shared_instance(self):
        assert get_adapter("openai") is get_adapter("openai")

    def test_clear_adapters(self):
        first = get_adapter("openai")
        clear_adapters()
        assert get_adapter("openai") is not first

    def test_ai_provider_selects_backend(self, monkeypatch):
        monkeypatch.setenv("AI_PROVIDER", "claude")
        assert isinstance(get_adapter(), AnthropicAdapter)

    def test_unknown_ai_provider_falls_back(self, monkeypatch, caplog):
        monkeypatch.setenv("AI_PROVIDER", "mystery")
        with caplog.at_level(logging.WARNING, logger="llm_gateway.registry"):
            adapter = get_adapter()
        assert isinstance(adapter, OllamaAdapter)
        assert "mystery" in caplog.text

    def test_unknown_explicit_backend_raises(self):
        with pytest.raises(ValueError):
            get_adapter("mystery")
