"""
HTTP helpers shared by the adapters.

Client construction, status and body checks, and stream lifetime. Logging
and response extraction stay in each adapter.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from llm_gateway.errors import (
    MalformedResponseError,
    ProtocolError,
    extract_error_message,
    redact,
)


def elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def make_client(
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)


async def raise_for_error_status(
    response: httpx.Response,
    backend: str,
    display_name: str,
    secret: Optional[str] = None,
) -> None:
    """Raise ProtocolError with the vendor's own message on a non-2xx status."""
    if response.status_code < 400:
        return
    body = await response.aread()
    message = redact(extract_error_message(body, response.status_code), secret)
    raise ProtocolError(
        backend,
        f"{display_name} API error: {response.status_code} - {message}",
        status_code=response.status_code,
    )


def json_body(response: httpx.Response, backend: str, display_name: str) -> dict:
    """Parse a success body as a JSON object."""
    try:
        data = response.json()
    except ValueError as e:
        raise MalformedResponseError(
            backend, f"Invalid response from {display_name} API: body is not JSON", cause=e
        ) from e
    if not isinstance(data, dict):
        raise MalformedResponseError(
            backend, f"Invalid response from {display_name} API: expected a JSON object"
        )
    return data


@asynccontextmanager
async def open_stream(
    client: httpx.AsyncClient,
    request: httpx.Request,
    deadline: float,
    backend: str,
    display_name: str,
    secret: Optional[str] = None,
) -> AsyncIterator[httpx.Response]:
    """
    Send a streaming request and hold the response open.

    Sending and the error-status check are bounded by the deadline. The
    response is closed on exit, releasing the connection even when the
    consumer stops early.
    """
    async with asyncio.timeout_at(deadline):
        response = await client.send(request, stream=True)
    try:
        async with asyncio.timeout_at(deadline):
            await raise_for_error_status(response, backend, display_name, secret)
        yield response
    finally:
        await response.aclose()
