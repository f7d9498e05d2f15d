"""
Incremental decoders for streamed completions.

Two line-oriented formats are supported:

- Event stream: "data: {...}" lines, with optional non-JSON keep-alive,
  comment and "event:" lines interleaved (OpenAI, Anthropic).
- Newline-delimited JSON: one JSON object per line (Ollama, Gemini).

Both decoders buffer bytes until a full line is available, so a line split
across two network reads decodes the same as one read. A non-empty trailing
line without a newline is parsed at end-of-stream. Unparseable lines are
skipped. Extraction of the text increment and the stop condition are
supplied by the adapter.

Each read is bounded by an optional event-loop deadline; on expiry the read
is cancelled and TimeoutError propagates. The chunk iterator is closed on
every exit path, including a consumer abandoning the sequence early.
"""

import asyncio
import codecs
import json
import logging
from contextlib import aclosing
from typing import Any, AsyncIterable, AsyncIterator, Callable, Optional, Union

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"

Chunk = Union[bytes, str]
TextExtractor = Callable[[dict], Optional[str]]
StopCondition = Callable[[dict], bool]

# Marker returned by a line parser when the backend's sentinel line arrives.
_END = object()


class LineBuffer:
    """Accumulates chunks and hands back complete lines."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: Chunk) -> list[str]:
        """Add a chunk; return the lines it completed (without newlines)."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        return lines

    def flush(self) -> str:
        """Return whatever is left after the last newline and reset."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return tail


async def read_chunks(
    chunks: AsyncIterable[Chunk],
    deadline: Optional[float] = None,
) -> AsyncIterator[Chunk]:
    """
    Re-yield chunks, bounding every read by an event-loop deadline.

    The source iterator is closed when this generator exits, however it
    exits.
    """
    iterator = aiter(chunks)
    try:
        while True:
            async with asyncio.timeout_at(deadline):
                try:
                    chunk = await anext(iterator)
                except StopAsyncIteration:
                    return
            yield chunk
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()


def _parse_json_object(text: str) -> Optional[dict]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Skipping unparseable stream line: %s", text[:50])
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def _event_line_parser(done_sentinel: Optional[str]) -> Callable[[str], Any]:
    def parse(line: str) -> Any:
        line = line.strip()
        if not line.startswith(DATA_PREFIX):
            return None
        data = line[len(DATA_PREFIX):].strip()
        if not data:
            return None
        if done_sentinel is not None and data == done_sentinel:
            return _END
        return _parse_json_object(data)
    return parse


def _ndjson_line_parser(line: str) -> Any:
    line = line.strip()
    if not line:
        return None
    return _parse_json_object(line)


async def _decode_lines(
    chunks: AsyncIterable[Chunk],
    parse_line: Callable[[str], Any],
    extract_text: TextExtractor,
    is_done: StopCondition,
    deadline: Optional[float],
) -> AsyncIterator[str]:
    buffer = LineBuffer()

    def handle(line: str) -> tuple[Optional[str], bool]:
        payload = parse_line(line)
        if payload is None:
            return None, False
        if payload is _END:
            return None, True
        return extract_text(payload), is_done(payload)

    async with aclosing(read_chunks(chunks, deadline)) as reads:
        async for chunk in reads:
            for line in buffer.feed(chunk):
                text, done = handle(line)
                if text:
                    yield text
                if done:
                    return

    tail = buffer.flush()
    if tail.strip():
        text, _ = handle(tail)
        if text:
            yield text


def decode_event_stream(
    chunks: AsyncIterable[Chunk],
    *,
    extract_text: TextExtractor,
    is_done: StopCondition,
    done_sentinel: Optional[str] = None,
    deadline: Optional[float] = None,
) -> AsyncIterator[str]:
    """
    Decode an event stream into text fragments.

    Args:
        chunks: Raw body chunks as they arrive
        extract_text: Returns the text increment of a parsed payload, if any
        is_done: True when a parsed payload signals the end of generation
        done_sentinel: Literal data value that ends the stream (e.g. "[DONE]")
        deadline: Event-loop time after which a pending read times out
    """
    return _decode_lines(
        chunks, _event_line_parser(done_sentinel), extract_text, is_done, deadline
    )


def decode_ndjson(
    chunks: AsyncIterable[Chunk],
    *,
    extract_text: TextExtractor,
    is_done: StopCondition,
    deadline: Optional[float] = None,
) -> AsyncIterator[str]:
    """Decode newline-delimited JSON into text fragments."""
    return _decode_lines(chunks, _ndjson_line_parser, extract_text, is_done, deadline)
