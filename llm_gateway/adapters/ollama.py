"""
OllamaAdapter - local model server implementation of GenerationAdapter.

Talks to the Ollama chat API. No credential: the server is assumed to be
on a trusted network. Streaming responses are newline-delimited JSON, one
object per line, with "done": true on the last one.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from typing import AsyncIterator, Iterable, Optional

import httpx

from llm_gateway.adapters._http import (
    elapsed_ms,
    json_body,
    make_client,
    open_stream,
    raise_for_error_status,
)
from llm_gateway.adapters.base import AdapterStatus
from llm_gateway.config import AdapterConfig
from llm_gateway.errors import (
    ConfigurationError,
    GatewayError,
    MalformedResponseError,
    ProtocolError,
    normalize_error,
)
from llm_gateway.health import HealthCheckCache
from llm_gateway.messages import TurnLike, build_flat_messages
from llm_gateway.streaming import decode_ndjson

logger = logging.getLogger(__name__)


def _stream_is_done(payload: dict) -> bool:
    return payload.get("done") is True


class OllamaAdapter:
    """
    Ollama implementation of GenerationAdapter.

    Design decisions:
    - Flat-turn messages: the system instruction is a leading "system" entry
    - Health probe lists installed models (GET /api/tags)
    - In-band {"error": ...} objects are protocol errors, even on a 200
    """

    name = "ollama"
    display_name = "Ollama"

    def __init__(
        self,
        config: Optional[AdapterConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: Backend configuration; defaults to the local server
            transport: Optional httpx transport (tests, proxies)
        """
        self.config = config or AdapterConfig.for_backend(self.name)
        self._transport = transport
        self._health = HealthCheckCache(ttl_seconds=self.config.health_check_ttl_seconds)

        if self.config.enabled:
            logger.info("Ollama adapter initialized (model=%s)", self.config.model)

    # ─────────────────────────────────────────────────────────────────
    # Request building
    # ─────────────────────────────────────────────────────────────────

    def build_request(
        self,
        prompt: str,
        history: Optional[Iterable[TurnLike]] = None,
        system_instruction: Optional[str] = None,
        stream: bool = False,
    ) -> dict:
        return {
            "model": self.config.model,
            "messages": build_flat_messages(prompt, history, system_instruction),
            "stream": stream,
            "options": {
                "temperature": self.config.temperature,
                "num_predict": self.config.max_tokens,
            },
        }

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _ensure_available(self) -> None:
        if not self.config.enabled:
            raise ConfigurationError(self.name, "Ollama is disabled")

    def normalize_error(
        self,
        exc: BaseException,
        started: Optional[float] = None,
    ) -> GatewayError:
        return normalize_error(
            self.name,
            self.display_name,
            exc,
            elapsed_ms=elapsed_ms(started) if started is not None else None,
        )

    # ─────────────────────────────────────────────────────────────────
    # Health and status
    # ─────────────────────────────────────────────────────────────────

    async def check_health(self) -> bool:
        """Probe /api/tags, reusing a fresh cached result."""
        if not self.config.enabled:
            return False

        cached = self._health.get()
        if cached is not None:
            return cached

        timeout = self.config.health_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                async with make_client(timeout, self._transport) as client:
                    response = await client.get(self._url("/api/tags"))
            healthy = response.is_success
        except TimeoutError:
            logger.warning("Ollama health check timeout")
            healthy = False
        except Exception as e:  # noqa: BLE001
            logger.warning("Ollama health check failed: %s", e)
            healthy = False

        return self._health.record(healthy)

    async def list_models(self) -> list[str]:
        """Return the names of the models installed on the server."""
        started = time.perf_counter()
        timeout = self.config.request_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                async with make_client(timeout, self._transport) as client:
                    response = await client.get(self._url("/api/tags"))
                    await raise_for_error_status(response, self.name, self.display_name)
            data = json_body(response, self.name, self.display_name)
        except Exception as e:
            error = self.normalize_error(e, started)
            if error is e:
                raise
            raise error from e

        models = data.get("models") or []
        return [
            m.get("name") or m.get("model")
            for m in models
            if isinstance(m, dict) and (m.get("name") or m.get("model"))
        ]

    async def status(self) -> AdapterStatus:
        available = await self.check_health()
        models = None
        error = None
        if available:
            try:
                models = await self.list_models()
            except GatewayError as e:
                logger.error("Error listing Ollama models: %s", e)
                error = e.message

        return AdapterStatus(
            backend=self.name,
            enabled=self.config.enabled,
            available=available,
            model=self.config.model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            has_api_key=False,
            base_url=self.config.base_url,
            models=models,
            error=error,
        )

    # ─────────────────────────────────────────────────────────────────
    # Generation
    # ─────────────────────────────────────────────────────────────────

    def _raise_inband_error(self, payload: dict) -> None:
        error = payload.get("error")
        if isinstance(error, str) and error:
            raise ProtocolError(self.name, f"Ollama API error: {error}")

    def _extract_reply(self, data: dict) -> str:
        self._raise_inband_error(data)
        message = data.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content:
            raise MalformedResponseError(
                self.name, "Invalid response from Ollama API: missing message.content"
            )
        return content.strip()

    def _stream_text(self, payload: dict) -> Optional[str]:
        self._raise_inband_error(payload)
        message = payload.get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return message["content"]
        return None

    async def generate(
        self,
        prompt: str,
        history: Optional[Iterable[TurnLike]] = None,
        system_instruction: Optional[str] = None,
    ) -> str:
        """Generate a complete response via POST /api/chat."""
        self._ensure_available()

        payload = self.build_request(prompt, history, system_instruction)
        url = self._url("/api/chat")
        logger.debug("Calling Ollama API: %s with model: %s", url, self.config.model)

        started = time.perf_counter()
        timeout = self.config.request_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                async with make_client(timeout, self._transport) as client:
                    response = await client.post(url, json=payload)
                    logger.info("Ollama API call completed in %dms", elapsed_ms(started))
                    await raise_for_error_status(response, self.name, self.display_name)
            content = self._extract_reply(json_body(response, self.name, self.display_name))
        except Exception as e:
            error = self.normalize_error(e, started)
            logger.error("Ollama generation failed after %dms: %s", elapsed_ms(started), error)
            if error is e:
                raise
            raise error from e

        logger.info(
            "Ollama response generated (%d chars) in %dms", len(content), elapsed_ms(started)
        )
        return content

    async def generate_stream(
        self,
        prompt: str,
        history: Optional[Iterable[TurnLike]] = None,
        system_instruction: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """Stream response fragments from POST /api/chat with stream=true."""
        self._ensure_available()

        payload = self.build_request(prompt, history, system_instruction, stream=True)
        url = self._url("/api/chat")
        logger.debug("Starting Ollama streaming: %s with model: %s", url, self.config.model)

        started = time.perf_counter()
        timeout = self.config.stream_timeout_seconds
        deadline = asyncio.get_running_loop().time() + timeout
        fragments = 0
        try:
            async with make_client(timeout, self._transport) as client:
                request = client.build_request("POST", url, json=payload)
                async with open_stream(
                    client, request, deadline, self.name, self.display_name
                ) as response:
                    decoder = decode_ndjson(
                        response.aiter_bytes(),
                        extract_text=self._stream_text,
                        is_done=_stream_is_done,
                        deadline=deadline,
                    )
                    async with aclosing(decoder) as stream:
                        async for fragment in stream:
                            fragments += 1
                            yield fragment
        except Exception as e:
            error = self.normalize_error(e, started)
            logger.error(
                "Ollama streaming failed after %dms (%d fragments): %s",
                elapsed_ms(started), fragments, error,
            )
            if error is e:
                raise
            raise error from e

        logger.info(
            "Ollama streaming finished: %d fragments in %dms", fragments, elapsed_ms(started)
        )
