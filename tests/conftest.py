"""Shared test fixtures for llm-gateway tests."""

import asyncio

import httpx
import pytest
from pydantic import SecretStr

from llm_gateway.config import AdapterConfig
from llm_gateway.registry import clear_adapters


# ─────────────────────────────────────────────────────────────────────
# MOCK DATA
# ─────────────────────────────────────────────────────────────────────

OLLAMA_URL = "http://ollama.test:11434"
OPENAI_URL = "https://openai.test/v1"
ANTHROPIC_URL = "https://anthropic.test/v1"
GEMINI_URL = "https://gemini.test/v1beta"

TEST_API_KEY = "test-key-123"

PROMPT = "What is 2+2?"
SYSTEM = "Be terse."
HISTORY = [{"role": "user", "content": "Hi"}]


# ─────────────────────────────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────────────────────────────

def make_config(backend: str, base_url: str, api_key=TEST_API_KEY, **overrides) -> AdapterConfig:
    """Config pointing at a mocked base URL."""
    if api_key is not None:
        overrides["api_key"] = SecretStr(api_key)
    return AdapterConfig.for_backend(backend, base_url=base_url, **overrides)


class ChunkedStream(httpx.AsyncByteStream):
    """
    Response body delivered in explicit chunks.

    With stall=True the body never finishes after the last chunk, which
    lets tests drive a deadline. `closed` records whether the connection
    was released.
    """

    def __init__(self, chunks: list[bytes], stall: bool = False):
        self.chunks = chunks
        self.stall = stall
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
            await asyncio.sleep(0)
        if self.stall:
            await asyncio.sleep(3600)

    async def aclose(self) -> None:
        self.closed = True


def stream_transport(stream: ChunkedStream, status_code: int = 200) -> httpx.MockTransport:
    """MockTransport answering every request with the given body stream."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, stream=stream)

    return httpx.MockTransport(handler)


async def collect(stream) -> list[str]:
    return [fragment async for fragment in stream]


# ─────────────────────────────────────────────────────────────────────
# FIXTURES
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def _reset_registry():
    clear_adapters()
    yield
    clear_adapters()


@pytest.fixture
def sample_history():
    """Three prior turns, oldest first."""
    return [
        {"role": "user", "content": "first question"},
        {"role": "assistant", "content": "first answer"},
        {"role": "user", "content": "second question"},
    ]
