"""
OpenAIAdapter - OpenAI Chat Completions implementation of GenerationAdapter.

Bearer-token auth. Streaming responses are an event stream of
"data: {...}" chunks terminated by "data: [DONE]".
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
from llm_gateway.errors import ConfigurationError, GatewayError, MalformedResponseError, normalize_error
from llm_gateway.health import HealthCheckCache
from llm_gateway.messages import TurnLike, build_flat_messages
from llm_gateway.streaming import decode_event_stream

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def _first_choice(payload: dict) -> dict:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def _delta_text(payload: dict) -> Optional[str]:
    delta = _first_choice(payload).get("delta")
    if isinstance(delta, dict) and isinstance(delta.get("content"), str):
        return delta["content"]
    return None


def _stream_is_done(payload: dict) -> bool:
    return bool(_first_choice(payload).get("finish_reason"))


class OpenAIAdapter:
    """
    OpenAI implementation of GenerationAdapter.

    Cloud API. The health probe lists models (GET /models), which costs
    nothing and proves the key is accepted.
    """

    name = "openai"
    display_name = "OpenAI"

    def __init__(
        self,
        config: Optional[AdapterConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or AdapterConfig.for_backend(self.name)
        self._transport = transport
        self._health = HealthCheckCache(ttl_seconds=self.config.health_check_ttl_seconds)

        if self.config.enabled and not self.config.has_api_key:
            logger.warning("OpenAI API key not provided")
        elif self.config.enabled:
            logger.info("OpenAI adapter initialized (model=%s)", self.config.model)

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
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "stream": stream,
        }

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}{path}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key_value}",
            "Content-Type": "application/json",
        }

    def _ensure_available(self) -> None:
        if not self.config.enabled:
            raise ConfigurationError(self.name, "OpenAI is disabled")
        if not self.config.has_api_key:
            raise ConfigurationError(self.name, "OpenAI API key is not configured")

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

        timeout = self.config.health_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                async with make_client(timeout, self._transport) as client:
                    response = await client.get(self._url("/models"), headers=self._headers())
            healthy = response.is_success
        except TimeoutError:
            logger.warning("OpenAI health check timeout")
            healthy = False
        except Exception as e:  # noqa: BLE001
            logger.warning("OpenAI health check failed: %s", self.normalize_error(e).message)
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
        message = _first_choice(data).get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content:
            raise MalformedResponseError(
                self.name, "Invalid response from OpenAI API: missing choices[0].message.content"
            )
        return content.strip()

    async def generate(
        self,
        prompt: str,
        history: Optional[Iterable[TurnLike]] = None,
        system_instruction: Optional[str] = None,
    ) -> str:
        self._ensure_available()

        payload = self.build_request(prompt, history, system_instruction)
        url = self._url("/chat/completions")
        logger.debug("Calling OpenAI API: %s with model: %s", url, self.config.model)

        started = time.perf_counter()
        timeout = self.config.request_timeout_seconds
        secret = self.config.api_key_value
        try:
            async with asyncio.timeout(timeout):
                async with make_client(timeout, self._transport) as client:
                    response = await client.post(url, json=payload, headers=self._headers())
                    logger.info("OpenAI API call completed in %dms", elapsed_ms(started))
                    await raise_for_error_status(response, self.name, self.display_name, secret)
            content = self._extract_reply(json_body(response, self.name, self.display_name))
        except Exception as e:
            error = self.normalize_error(e, started)
            logger.error("OpenAI generation failed after %dms: %s", elapsed_ms(started), error)
            if error is e:
                raise
            raise error from e

        logger.info(
            "OpenAI response generated (%d chars) in %dms", len(content), elapsed_ms(started)
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
        url = self._url("/chat/completions")
        logger.debug("Starting OpenAI streaming: %s with model: %s", url, self.config.model)

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
                        extract_text=_delta_text,
                        is_done=_stream_is_done,
                        done_sentinel=DONE_SENTINEL,
                        deadline=deadline,
                    )
                    async with aclosing(decoder) as stream:
                        async for fragment in stream:
                            fragments += 1
                            yield fragment
        except Exception as e:
            error = self.normalize_error(e, started)
            logger.error(
                "OpenAI streaming failed after %dms (%d fragments): %s",
                elapsed_ms(started), fragments, error,
            )
            if error is e:
                raise
            raise error from e

        logger.info(
            "OpenAI streaming finished: %d fragments in %dms", fragments, elapsed_ms(started)
        )
