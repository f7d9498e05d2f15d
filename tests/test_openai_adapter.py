"""Tests for OpenAIAdapter."""

import asyncio
import json

import httpx
import pytest
import respx

from llm_gateway.adapters.openai import OpenAIAdapter
from llm_gateway.errors import (
    ConfigurationError,
    GatewayTimeoutError,
    MalformedResponseError,
    ProtocolError,
)
from tests.conftest import (
    HISTORY,
    OPENAI_URL,
    PROMPT,
    SYSTEM,
    TEST_API_KEY,
    ChunkedStream,
    collect,
    make_config,
    stream_transport,
)


# ─────────────────────────────────────────────────────────────────────
# FIXTURES
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def adapter():
    return OpenAIAdapter(make_config("openai", OPENAI_URL))


def completion(content: str) -> dict:
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


def sse_stream(*contents: str) -> str:
    events = [
        "data: " + json.dumps({"choices": [{"delta": {"content": c}}]}) + "\n\n"
        for c in contents
    ]
    return "".join(events) + "data: [DONE]\n\n"


# ─────────────────────────────────────────────────────────────────────
# REQUEST SHAPE
# ─────────────────────────────────────────────────────────────────────

class TestBuildRequest:
    """Tests for build_request()."""

    def test_flat_shape(self, adapter):
        request = adapter.build_request(PROMPT, HISTORY, SYSTEM, stream=True)
        assert request == {
            "model": "gpt-4o-mini",
            "messages": [
                {"role": "system", "content": SYSTEM},
                {"role": "user", "content": "Hi"},
                {"role": "user", "content": PROMPT},
            ],
            "temperature": 0.7,
            "max_tokens": 2000,
            "stream": True,
        }


# ─────────────────────────────────────────────────────────────────────
# HEALTH
# ─────────────────────────────────────────────────────────────────────

class TestHealth:
    """Tests for check_health() and status()."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_probe_sends_bearer_token(self, adapter):
        route = respx.get(f"{OPENAI_URL}/models").mock(
            return_value=httpx.Response(200, json={"data": []})
        )
        assert await adapter.check_health() is True
        assert route.calls.last.request.headers["Authorization"] == f"Bearer {TEST_API_KEY}"

    @pytest.mark.asyncio
    @respx.mock
    async def test_rejected_key_is_false(self, adapter):
        respx.get(f"{OPENAI_URL}/models").mock(
            return_value=httpx.Response(401, json={"error": {"message": "Invalid API key"}})
        )
        assert await adapter.check_health() is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_cached(self, adapter):
        route = respx.get(f"{OPENAI_URL}/models").mock(
            side_effect=httpx.ConnectError("Connection refused")
        )
        assert await adapter.check_health() is False
        assert await adapter.check_health() is False
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_missing_key_never_probes(self):
        adapter = OpenAIAdapter(make_config("openai", OPENAI_URL, api_key=None))
        route = respx.get(f"{OPENAI_URL}/models")
        assert await adapter.check_health() is False
        assert not route.called

    @pytest.mark.asyncio
    @respx.mock
    async def test_status_omits_credential(self, adapter):
        respx.get(f"{OPENAI_URL}/models").mock(
            return_value=httpx.Response(200, json={"data": []})
        )
        status = await adapter.status()
        assert status.available is True
        assert status.has_api_key is True
        assert TEST_API_KEY not in status.model_dump_json()


# ─────────────────────────────────────────────────────────────────────
# generate()
# ─────────────────────────────────────────────────────────────────────

class TestGenerate:
    """Tests for generate()."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_returns_content(self, adapter):
        route = respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(200, json=completion("4"))
        )
        assert await adapter.generate(PROMPT, HISTORY, SYSTEM) == "4"

        request = route.calls.last.request
        assert request.headers["Authorization"] == f"Bearer {TEST_API_KEY}"
        assert json.loads(request.content)["stream"] is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_unauthorized(self, adapter):
        respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(401, json={"error": {"message": "Invalid API key"}})
        )
        with pytest.raises(ProtocolError) as exc_info:
            await adapter.generate(PROMPT)
        assert exc_info.value.message == "OpenAI API error: 401 - Invalid API key"
        assert TEST_API_KEY not in str(exc_info.value)

    @pytest.mark.asyncio
    @respx.mock
    async def test_echoed_key_redacted(self, adapter):
        respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(
                401, json={"error": {"message": f"Incorrect API key provided: {TEST_API_KEY}"}}
            )
        )
        with pytest.raises(ProtocolError) as exc_info:
            await adapter.generate(PROMPT)
        assert TEST_API_KEY not in exc_info.value.message

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_choices_is_malformed(self, adapter):
        respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(200, json={"choices": []})
        )
        with pytest.raises(MalformedResponseError):
            await adapter.generate(PROMPT)

    @pytest.mark.asyncio
    async def test_missing_key_raises_without_request(self):
        adapter = OpenAIAdapter(make_config("openai", OPENAI_URL, api_key=None))
        with pytest.raises(ConfigurationError, match="API key"):
            await adapter.generate(PROMPT)

    @pytest.mark.asyncio
    async def test_missing_key_stream_raises_on_first_step(self):
        adapter = OpenAIAdapter(make_config("openai", OPENAI_URL, api_key=None))
        with pytest.raises(ConfigurationError):
            await collect(adapter.generate_stream(PROMPT))

    @pytest.mark.asyncio
    async def test_blocking_deadline(self):
        async def slow(request):
            await asyncio.sleep(3600)

        adapter = OpenAIAdapter(
            make_config("openai", OPENAI_URL, request_timeout_seconds=0.1),
            transport=httpx.MockTransport(slow),
        )
        with pytest.raises(GatewayTimeoutError) as exc_info:
            await adapter.generate(PROMPT)
        assert exc_info.value.elapsed_ms >= 50


# ─────────────────────────────────────────────────────────────────────
# generate_stream()
# ─────────────────────────────────────────────────────────────────────

class TestGenerateStream:
    """Tests for generate_stream()."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_yields_fragments(self, adapter):
        route = respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(200, text=sse_stream("The", " capital", " is Paris."))
        )
        assert await collect(adapter.generate_stream(PROMPT)) == ["The", " capital", " is Paris."]
        assert json.loads(route.calls.last.request.content)["stream"] is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_finish_reason_ends_stream(self, adapter):
        body = (
            'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n'
            'data: {"choices":[{"delta":{},"finish_reason":"stop"}]}\n\n'
            'data: {"choices":[{"delta":{"content":"after"}}]}\n\n'
        )
        respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(200, text=body)
        )
        assert await collect(adapter.generate_stream(PROMPT)) == ["Hi"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limited(self, adapter):
        respx.post(f"{OPENAI_URL}/chat/completions").mock(
            return_value=httpx.Response(429, json={"error": {"message": "Rate limit reached"}})
        )
        with pytest.raises(ProtocolError) as exc_info:
            await collect(adapter.generate_stream(PROMPT))
        assert exc_info.value.status_code == 429
        assert "Rate limit reached" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_line_split_across_reads(self):
        body = sse_stream("Hello", " world").encode()
        cut = body.index(b"world")
        stream = ChunkedStream([body[:cut], body[cut:]])
        adapter = OpenAIAdapter(make_config("openai", OPENAI_URL), transport=stream_transport(stream))
        assert await collect(adapter.generate_stream(PROMPT)) == ["Hello", " world"]

    @pytest.mark.asyncio
    async def test_deadline_mid_stream(self):
        first = 'data: {"choices":[{"delta":{"content":"slow"}}]}\n\n'.encode()
        stream = ChunkedStream([first], stall=True)
        adapter = OpenAIAdapter(
            make_config("openai", OPENAI_URL, stream_timeout_seconds=0.2),
            transport=stream_transport(stream),
        )
        received = []
        with pytest.raises(GatewayTimeoutError):
            async for fragment in adapter.generate_stream(PROMPT):
                received.append(fragment)
        assert received == ["slow"]
        assert stream.closed
