"""
GenerationAdapter Protocol - defines the contract for generation backends.

This is the WHAT (interface), not the HOW (implementation).
See ollama.py, openai.py, anthropic.py and gemini.py for implementations.
"""

from typing import AsyncIterator, Iterable, Optional, Protocol, runtime_checkable

from pydantic import BaseModel

from llm_gateway.config import AdapterConfig
from llm_gateway.errors import GatewayError
from llm_gateway.messages import TurnLike


class AdapterStatus(BaseModel):
    """Diagnostic snapshot of one adapter. Never includes the credential."""
    backend: str
    enabled: bool
    available: bool
    model: str
    temperature: float
    max_tokens: int
    has_api_key: bool
    base_url: Optional[str] = None
    models: Optional[list[str]] = None
    error: Optional[str] = None


@runtime_checkable
class GenerationAdapter(Protocol):
    """
    Contract for text generation backends.

    Implementations must provide:
    - Liveness (check_health), cached per instance
    - Blocking completion (generate)
    - Streaming completion (generate_stream)
    - Diagnostics (status)
    - Error normalization (normalize_error)

    Adapters share behaviour, not state: each one is a standalone class.
    """

    name: str
    display_name: str
    config: AdapterConfig

    async def check_health(self) -> bool:
        """
        Probe the backend. Never raises.

        Returns:
            False when disabled, missing a credential, unreachable,
            timing out or answering with an error status.
        """
        ...

    async def generate(
        self,
        prompt: str,
        history: Optional[Iterable[TurnLike]] = None,
        system_instruction: Optional[str] = None,
    ) -> str:
        """
        Generate a complete response.

        Args:
            prompt: Current user message
            history: Prior turns, oldest first
            system_instruction: Optional system prompt

        Returns:
            The generated text, trimmed

        Raises:
            GatewayError on configuration, timeout, transport, protocol or
            response-shape failure
            pydantic.ValidationError (a ValueError) when a history item is
            not a turn; a caller error, raised before any request is sent
        """
        ...

    def generate_stream(
        self,
        prompt: str,
        history: Optional[Iterable[TurnLike]] = None,
        system_instruction: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """
        Stream response fragments in arrival order.

        The sequence is finite and not restartable. Wrap it in
        contextlib.aclosing() when it may be abandoned early so the
        connection is released immediately.

        Raises:
            GatewayError, before the first fragment or mid-sequence
            pydantic.ValidationError on a malformed history item, on the
            first iteration step and before any request is sent
        """
        ...

    async def status(self) -> AdapterStatus:
        ...

    def normalize_error(
        self,
        exc: BaseException,
        started: Optional[float] = None,
    ) -> GatewayError:
        ...

    def build_request(
        self,
        prompt: str,
        history: Optional[Iterable[TurnLike]] = None,
        system_instruction: Optional[str] = None,
        stream: bool = False,
    ) -> dict:
        ...
