"""
Configuration constants and Pydantic models for llm-gateway.
"""

import logging
import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from llm_gateway.health import DEFAULT_HEALTH_CHECK_TTL_SECONDS

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# DEFAULTS
# ─────────────────────────────────────────────────────────────────────

DEFAULT_BACKEND: str = "ollama"
DEFAULT_TEMPERATURE: float = 0.7
DEFAULT_MAX_TOKENS: int = 2000

# Local models can be slow to answer in one piece.
DEFAULT_REQUEST_TIMEOUT_SECONDS: float = 120.0
# Progressive output keeps a reader waiting longer.
DEFAULT_STREAM_TIMEOUT_SECONDS: float = 180.0

BACKEND_DEFAULTS: dict[str, dict] = {
    "ollama": {
        "env_prefix": "OLLAMA",
        "base_url": "http://localhost:11434",
        "model": "llama3.1:latest",
        "health_timeout_seconds": 3.0,
        "requires_api_key": False,
    },
    "openai": {
        "env_prefix": "OPENAI",
        "base_url": "https://api.openai.com/v1",
        "model": "gpt-4o-mini",
        "health_timeout_seconds": 5.0,
        "requires_api_key": True,
    },
    "anthropic": {
        "env_prefix": "ANTHROPIC",
        "base_url": "https://api.anthropic.com/v1",
        "model": "claude-3-5-haiku-20241022",
        "health_timeout_seconds": 5.0,
        "requires_api_key": True,
    },
    "gemini": {
        "env_prefix": "GEMINI",
        "base_url": "https://generativelanguage.googleapis.com/v1beta",
        "model": "gemini-1.5-flash",
        "health_timeout_seconds": 5.0,
        "requires_api_key": True,
    },
}


# ─────────────────────────────────────────────────────────────────────
# DATA MODELS
# ─────────────────────────────────────────────────────────────────────

class AdapterConfig(BaseModel):
    """Immutable per-backend configuration, supplied at construction."""
    model_config = ConfigDict(frozen=True)

    backend: str
    enabled: bool = True
    api_key: Optional[SecretStr] = None
    base_url: str
    model: str
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=2.0)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, gt=0)
    health_check_ttl_seconds: float = Field(default=DEFAULT_HEALTH_CHECK_TTL_SECONDS, ge=0.0)
    health_timeout_seconds: float = Field(default=5.0, gt=0.0)
    request_timeout_seconds: float = Field(default=DEFAULT_REQUEST_TIMEOUT_SECONDS, gt=0.0)
    stream_timeout_seconds: float = Field(default=DEFAULT_STREAM_TIMEOUT_SECONDS, gt=0.0)

    @property
    def has_api_key(self) -> bool:
        return self.api_key is not None and bool(self.api_key.get_secret_value())

    @property
    def api_key_value(self) -> Optional[str]:
        if not self.has_api_key:
            return None
        return self.api_key.get_secret_value()

    @classmethod
    def for_backend(cls, backend: str, **overrides) -> "AdapterConfig":
        """Build a config from the backend's defaults plus overrides."""
        defaults = BACKEND_DEFAULTS[backend]
        values = {
            "backend": backend,
            "base_url": defaults["base_url"],
            "model": defaults["model"],
            "health_timeout_seconds": defaults["health_timeout_seconds"],
        }
        values.update(overrides)
        return cls(**values)


# ─────────────────────────────────────────────────────────────────────
# ENVIRONMENT LOADING
# ─────────────────────────────────────────────────────────────────────

def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _env_float(environ: Mapping[str, str], key: str, default: float) -> float:
    try:
        return float(environ.get(key, default))
    except ValueError:
        logger.warning("Ignoring invalid %s, using %s", key, default)
        return default


def _env_int(environ: Mapping[str, str], key: str, default: int) -> int:
    try:
        return int(environ.get(key, default))
    except ValueError:
        logger.warning("Ignoring invalid %s, using %s", key, default)
        return default


def load_adapter_config(
    backend: str,
    environ: Optional[Mapping[str, str]] = None,
) -> AdapterConfig:
    """
    Load a backend's configuration from environment variables.

    Reads <PREFIX>_ENABLED, _BASE_URL, _MODEL, _TEMPERATURE, _MAX_TOKENS
    and _API_KEY, where PREFIX is OLLAMA, OPENAI, ANTHROPIC or GEMINI.
    Unparseable numbers fall back to the defaults.

    Raises:
        KeyError: If backend is not a known backend identifier
    """
    environ = os.environ if environ is None else environ
    defaults = BACKEND_DEFAULTS[backend]
    prefix = defaults["env_prefix"]

    api_key = environ.get(f"{prefix}_API_KEY") or None
    return AdapterConfig.for_backend(
        backend,
        enabled=_env_bool(environ.get(f"{prefix}_ENABLED"), True),
        api_key=SecretStr(api_key) if api_key else None,
        base_url=(environ.get(f"{prefix}_BASE_URL") or defaults["base_url"]).rstrip("/"),
        model=environ.get(f"{prefix}_MODEL") or defaults["model"],
        temperature=_env_float(environ, f"{prefix}_TEMPERATURE", DEFAULT_TEMPERATURE),
        max_tokens=_env_int(environ, f"{prefix}_MAX_TOKENS", DEFAULT_MAX_TOKENS),
    )


def get_default_backend(environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Get the configured backend identifier.

    Set AI_PROVIDER in .env (default: ollama).
    """
    environ = os.environ if environ is None else environ
    return (environ.get("AI_PROVIDER") or DEFAULT_BACKEND).strip().lower()
