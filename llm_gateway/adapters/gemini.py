"""
GeminiAdapter - Google Generative Language API implementation of GenerationAdapter.

Key differences from the other adapters:
- Auth: API key as the "key" query parameter (kept out of logs and errors)
- Separated-instruction shape: "contents" with roles user/model, and the
  system instruction in a top-level "systemInstruction" field
- Streaming is newline-delimited JSON; generation ends when the first
  candidate carries a finishReason
"""

import asyncio
import logging
import re
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
from llm_gateway.streaming import decode_ndjson

logger = logging.getLogger(__name__)

MODEL_ROLE = "model"

_KEY_PARAM = re.compile(r"([?&]key=)[^&\s\"']+")


class _MaskKeyParam(logging.Filter):
    """Masks the key query parameter in httpx request log lines."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = _KEY_PARAM.sub(r"\1***", message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def _install_httpx_filter() -> None:
    httpx_logger = logging.getLogger("httpx")
    if not any(isinstance(f, _MaskKeyParam) for f in httpx_logger.filters):
        httpx_logger.addFilter(_MaskKeyParam())


# httpx logs every request URL at INFO; the credential rides in that URL.
_install_httpx_filter()


def _parts_turn(role: str, text: str) -> dict:
    return {"role": role, "parts": [{"text": text}]}


def _first_candidate(payload: dict) -> dict:
    candidates = payload.get("candidates")
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
        return candidates[0]
    return {}


def _candidate_text(payload: dict) -> str:
    content = _first_candidate(payload).get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    return "".join(
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    )


def _stream_is_done(payload: dict) -> bool:
    return bool(_first_candidate(payload).get("finishReason"))


class GeminiAdapter:
    """Gemini implementation of GenerationAdapter."""

    name = "gemini"
    display_name = "Gemini"

    def __init__(
        self,
        config: Optional[AdapterConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or AdapterConfig.for_backend(self.name)
        self._transport = transport
        self._health = HealthCheckCache(ttl_seconds=self.config.health_check_ttl_seconds)

        if self.config.enabled and not self.config.has_api_key:
            logger.warning("Gemini API key not provided")
        elif self.config.enabled:
            logger.info("Gemini adapter initialized (model=%s)", self.config.model)

    def build_request(
        self,
        prompt: str,
        history: Optional[Iterable[TurnLike]] = None,
        system_instruction: Optional[str] = None,
        stream: bool = False,
    ) -> dict:
        # Streaming is selected by endpoint, not by a body flag.
        request = {
            "contents": build_separated_turns(
                prompt, history, assistant_role=MODEL_ROLE, format_turn=_parts_turn
            ),
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_tokens,
            },
        }
        if system_instruction:
            request["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        return request

    def _url(self, suffix: str = "") -> str:
        return f"{self.config.base_url.rstrip('/')}/models/{self.config.model}{suffix}"

    def _params(self) -> dict[str, str]:
        return {"key": self.config.api_key_value or ""}

    def _ensure_available(self) -> None:
        if not self.config.enabled:
            raise ConfigurationError(self.name, "Gemini is disabled")
        if not self.config.has_api_key:
            raise ConfigurationError(self.name, "Gemini API key is not configured")

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
                    response = await client.get(self._url(), params=self._params())
            healthy = response.is_success
        except TimeoutError:
            logger.warning("Gemini health check timeout")
            healthy = False
        except Exception as e:  # noqa: BLE001
            logger.warning("Gemini health check failed: %s", self.normalize_error(e).message)
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

    def _raise_inband_error(self, payload: dict) -> None:
        error = payload.get("error")
        if isinstance(error, dict):
            raise ProtocolError(
                self.name,
                f"Gemini API error: {error.get('message') or 'stream error'}",
                status_code=error.get("code") if isinstance(error.get("code"), int) else None,
            )

    def _extract_reply(self, data: dict) -> str:
        content = _candidate_text(data)
        if not content:
            raise MalformedResponseError(
                self.name,
                "Invalid response from Gemini API: missing candidates[0].content.parts[].text",
            )
        return content.strip()

    def _stream_text(self, payload: dict) -> Optional[str]:
        self._raise_inband_error(payload)
        return _candidate_text(payload) or None

    async def generate(
        self,
        prompt: str,
        history: Optional[Iterable[TurnLike]] = None,
        system_instruction: Optional[str] = None,
    ) -> str:
        self._ensure_available()

        payload = self.build_request(prompt, history, system_instruction)
        url = self._url(":generateContent")
        logger.debug("Calling Gemini API: %s", url)

        started = time.perf_counter()
        timeout = self.config.request_timeout_seconds
        secret = self.config.api_key_value
        try:
            async with asyncio.timeout(timeout):
                async with make_client(timeout, self._transport) as client:
                    response = await client.post(url, json=payload, params=self._params())
                    logger.info("Gemini API call completed in %dms", elapsed_ms(started))
                    await raise_for_error_status(response, self.name, self.display_name, secret)
            content = self._extract_reply(json_body(response, self.name, self.display_name))
        except Exception as e:
            error = self.normalize_error(e, started)
            logger.error("Gemini generation failed after %dms: %s", elapsed_ms(started), error)
            if error is e:
                raise
            raise error from e

        logger.info(
            "Gemini response generated (%d chars) in %dms", len(content), elapsed_ms(started)
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
        url = self._url(":streamGenerateContent")
        logger.debug("Starting Gemini streaming: %s", url)

        started = time.perf_counter()
        timeout = self.config.stream_timeout_seconds
        deadline = asyncio.get_running_loop().time() + timeout
        fragments = 0
        try:
            async with make_client(timeout, self._transport) as client:
                request = client.build_request("POST", url, json=payload, params=self._params())
                async with open_stream(
                    client, request, deadline, self.name, self.display_name,
                    secret=self.config.api_key_value,
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
                "Gemini streaming failed after %dms (%d fragments): %s",
                elapsed_ms(started), fragments, error,
            )
            if error is e:
                raise
            raise error from e

        logger.info(
            "Gemini streaming finished: %d fragments in %dms", fragments, elapsed_ms(started)
        )
