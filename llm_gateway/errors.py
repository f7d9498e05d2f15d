"""
Error taxonomy for the generation gateway.

Every failure on a generation path reaches the caller as a GatewayError
tagged with the backend that produced it. Messages are human-readable and
never carry a credential.
"""

import json
from typing import Optional

import httpx


class GatewayError(Exception):
    """Backend-tagged, human-readable generation error."""

    def __init__(
        self,
        backend: str,
        message: str,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.backend = backend
        self.message = message
        self.cause = cause


class ConfigurationError(GatewayError):
    """Backend disabled or credential missing. No request was attempted."""
    pass


class GatewayTimeoutError(GatewayError):
    """Deadline exceeded before the backend finished."""

    def __init__(
        self,
        backend: str,
        message: str,
        elapsed_ms: int,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(backend, message, cause)
        self.elapsed_ms = elapsed_ms


class TransportError(GatewayError):
    """Connection, DNS or TLS failure."""
    pass


class ProtocolError(GatewayError):
    """Backend answered with an error status or an in-band error payload."""

    def __init__(
        self,
        backend: str,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(backend, message, cause)
        self.status_code = status_code


class MalformedResponseError(GatewayError):
    """Success status, but the body is missing the fields we need."""
    pass


def redact(text: str, secret: Optional[str]) -> str:
    """Remove every occurrence of a credential from text."""
    if not secret:
        return text
    return text.replace(secret, "***")


def extract_error_message(body: bytes, status_code: int, limit: int = 500) -> str:
    """
    Pull the most specific error message out of an error response body.

    Vendors report errors as {"error": {"message": ...}}, {"error": "..."}
    or {"message": ...}. Anything unparseable falls back to the raw body,
    and an empty body to the bare status.
    """
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        data = None

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if data.get("message"):
            return str(data["message"])

    text = body.decode("utf-8", errors="replace").strip()
    if text:
        return text[:limit]
    return f"HTTP {status_code}"


def normalize_error(
    backend: str,
    display_name: str,
    exc: BaseException,
    elapsed_ms: Optional[int] = None,
    secret: Optional[str] = None,
) -> GatewayError:
    """
    Wrap any exception into a GatewayError for the given backend.

    Idempotent: a GatewayError is returned unchanged, and a message that
    already names the backend keeps its text.
    """
    if isinstance(exc, GatewayError):
        return exc

    detail = redact(str(exc) or type(exc).__name__, secret)

    if isinstance(exc, (TimeoutError, httpx.TimeoutException)):
        elapsed = elapsed_ms if elapsed_ms is not None else 0
        return GatewayTimeoutError(
            backend,
            f"{display_name} request timed out after {elapsed}ms",
            elapsed_ms=elapsed,
            cause=exc,
        )
    if isinstance(exc, httpx.HTTPError):
        return TransportError(
            backend, f"{display_name} connection error: {detail}", cause=exc
        )
    if display_name.lower() in detail.lower():
        return GatewayError(backend, detail, cause=exc)
    return GatewayError(backend, f"{display_name} error: {detail}", cause=exc)
