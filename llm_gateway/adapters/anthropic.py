"""
AnthropicAdapter - Anthropic Messages API implementation of GenerationAdapter.

Key differences from OpenAIAdapter:
- Auth: x-api-key header plus a pinned anthropic-version header
- System instruction travels in the top-level "system" field; the API
  rejects a "system" role inside messages
- Streaming ends on a "message_stop" event rather than a sentinel line
- No free health endpoint: the probe counts tokens for a one-word message
"""

import asyncio
import logging
import time
from contextlib import aclosing
from typing import AsyncIterator, Iterable, Optional

import httpx

from llm_gateway.adapters._http import elapsed_ms, json_body, make_client, open_stream, raise_for_error_status
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
from llm_gateway.messages import TurnLike, build_separated_turns
from llm_gateway.streaming import decode_event_stream

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


def _stream_is_done(payload: dict) -> bool:
    return payload.get("type") == "message_stop"


class AnthropicAdapter:
    """Anthropic (Claude) implementation of GenerationAdapter."""

    name = "anthropic"
    display_name = "Claude"

    def __init__(
        self,
        config: Optional[AdapterConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or AdapterConfig.for_backend(self.name)
        self._transport = transport
        self._health = HealthCheckCache(ttl_seconds=self.config.health_check_ttl_seconds)

        if self.config.enabled and not self.config.has_api_key:
            logger.warning("Claude API key not provided")
        elif self.config.enabled:
            logger.info("Claude adapter initialized (model=%s)", self.config.model)

    def build_request(
        self,
        prompt: str,
        history: Optional[Iterable[TurnLike]] = None,
        system_instruction: Optional[str] = None,
        stream: bool = False,
    ) -> dict:
        request = {
            "model": self.config.model,
            "messages": build_separated_turns(prompt, history),
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        if system_instruction:
            request["system"] = system_instruction
        if stream:
            request["stream"] = True
        return request

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.config.api_key_value or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def _ensure_available(self) -> None:
        if not self.config.enabled:
            raise ConfigurationError(self.name, "Claude is disabled")
        if not self.config.has_api_key:
            raise ConfigurationError(self.name, "Claude API key is not configured")

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
            secret=self.config.api_key_value,
        )

    async def check_health(self) -> bool:
        if not self.config.enabled or not self.config.has_api_key:
            return False

        cached = self._health.get()
        if cached is not None:
            return cached

        probe = {
            "model": self.config.model,
            "messages": [{"role": "user", "content": "test"}],
        }
        timeout = self.config.health_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                async with make_client(timeout, self._transport) as client:
                    response = await client.post(
                        self._url("/messages/count_tokens"), json=probe, headers=self._headers()
                    )
            healthy = response.is_success
        except TimeoutError:
            logger.warning("Claude health check timeout")
            healthy = False
        except Exception as e:  # noqa: BLE001
            logger.warning("Claude health check failed: %s", self.normalize_error(e).message)
            healthy = False

        return self._health.record(healthy)

    async def status(self) -> AdapterStatus:
        return AdapterStatus(
            backend=self.name,
            enabled=self.config.enabled,
            available=await self.check_health(),
            model=self.config.model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            has_api_key=self.config.has_api_key,
        )

    def _extract_reply(self, data: dict) -> str:
        blocks = data.get("content")
        texts = []
        if isinstance(blocks, list):
            texts = [
                block["text"]
                for block in blocks
                if isinstance(block, dict)
                and block.get("type", "text") == "text"
                and isinstance(block.get("text"), str)
            ]
        content = "".join(texts)
        if not content:
            raise MalformedResponseError(
                self.name, "Invalid response from Claude API: missing content[].text"
            )
        return content.strip()

    def _stream_text(self, payload: dict) -> Optional[str]:
        if payload.get("type") == "error":
            error = payload.get("error")
            message = error.get("message") if isinstance(error, dict) else None
            raise ProtocolError(self.name, f"Claude API error: {message or 'stream error'}")
        if payload.get("type") != "content_block_delta":
            return None
        delta = payload.get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("text"), str):
            return delta["text"]
        return None

    async def generate(
        self,
        prompt: str,
        history: Optional[Iterable[TurnLike]] = None,
        system_instruction: Optional[str] = None,
    ) -> str:
        self._ensure_available()

        payload = self.build_request(prompt, history, system_instruction)
        url = self._url("/messages")
        logger.debug("Calling Claude API: %s with model: %s", url, self.config.model)

        started = time.perf_counter()
        timeout = self.config.request_timeout_seconds
        secret = self.config.api_key_value
        try:
            async with asyncio.timeout(timeout):
                async with make_client(timeout, self._transport) as client:
                    response = await client.post(url, json=payload, headers=self._headers())
                    logger.info("Claude API call completed in %dms", elapsed_ms(started))
                    await raise_for_error_status(response, self.name, self.display_name, secret)
            content = self._extract_reply(json_body(response, self.name, self.display_name))
        except Exception as e:
            error = self.normalize_error(e, started)
            logger.error("Claude generation failed after %dms: %s", elapsed_ms(started), error)
            if error is e:
                raise
            raise error from e

        logger.info(
            "Claude response generated (%d chars) in %dms", len(content), elapsed_ms(started)
        )
        return content

    async def generate_stream(
        self,
        prompt: str,
        history: Optional[Iterable[TurnLike]] = None,
        system_instruction: Optional[str] = None,
    ) -> AsyncIterator[str]:
        self._ensure_available()

        payload = self.build_request(prompt, history, system_instruction, stream=True)
        url = self._url("/messages")
        logger.debug("Starting Claude streaming: %s with model: %s", url, self.config.model)

        started = time.perf_counter()
        timeout = self.config.stream_timeout_seconds
        deadline = asyncio.get_running_loop().time() + timeout
        fragments = 0
        try:
            async with make_client(timeout, self._transport) as client:
                request = client.build_request("POST", url, json=payload, headers=self._headers())
                async with open_stream(
                    client, request, deadline, self.name, self.display_name,
                    secret=self.config.api_key_value,
                ) as response:
                    decoder = decode_event_stream(
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
                "Claude streaming failed after %dms (%d fragments): %s",
                elapsed_ms(started), fragments, error,
            )
            if error is e:
                raise
            raise error from e

        logger.info(
            "Claude streaming finished: %d fragments in %dms", fragments, elapsed_ms(started)
        )
