"""Upstream SSE chat stream -> line-delimited JSON delta events."""

from __future__ import annotations

import asyncio
import codecs
import enum
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import Any

from models import DeltaEvent

LOGGER = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"
DATA_PREFIX = "data:"

# Field names carrying the reasoning channel, in the order they are checked.
_REASONING_FIELDS = ("reasoning_content", "reasoning")


class StreamState(enum.Enum):
    STREAMING = "streaming"
    DONE = "done"
    CANCELLED = "cancelled"


class LineBuffer:
    """Accumulates decoded text across reads and hands out complete lines.

    A read may end in the middle of a line or of a multi-byte character; both
    are carried over to the next ``feed``.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: bytes) -> list[str]:
        self._pending += self._decoder.decode(chunk)
        *lines, self._pending = self._pending.split("\n")
        return lines


def parse_event_line(line: str) -> list[DeltaEvent] | None:
    """Turn one upstream line into zero or more events; None marks the sentinel."""
    trimmed = line.strip()
    if not trimmed:
        return []

    payload = trimmed[len(DATA_PREFIX):].strip() if trimmed.startswith(DATA_PREFIX) else trimmed
    if payload == DONE_SENTINEL:
        return None

    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        LOGGER.debug("Skipping malformed stream line: %.80s", payload)
        return []

    delta = _first_delta(data)
    if not delta:
        return []

    events: list[DeltaEvent] = []
    for name in _REASONING_FIELDS:
        reasoning = delta.get(name)
        if isinstance(reasoning, str) and reasoning:
            events.append(DeltaEvent(kind="reasoning", text=reasoning))
            break
    content = delta.get("content")
    if isinstance(content, str) and content:
        events.append(DeltaEvent(kind="text", text=content))
    return events


def _first_delta(data: Any) -> dict[str, Any] | None:
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    return delta if isinstance(delta, dict) else None


async def _read_next(iterator: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


class StreamTranscoder:
    """Relays an upstream byte stream as encoded ``DeltaEvent`` lines.

    Setting ``cancel_event`` abandons the pending upstream read, moves the
    state to CANCELLED and ends the output without a trailing error frame.
    ``on_close`` (typically the upstream response's ``aclose``) runs exactly
    once however the stream ends.
    """

    def __init__(
        self,
        chunks: AsyncIterable[bytes],
        cancel_event: asyncio.Event | None = None,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._chunks = chunks
        self._cancel_event = cancel_event
        self._on_close = on_close
        self._closed = False
        self.state = StreamState.STREAMING

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._encoded()

    async def _encoded(self) -> AsyncIterator[bytes]:
        async for event in self.events():
            yield event.to_line()

    async def events(self) -> AsyncIterator[DeltaEvent]:
        iterator = self._chunks.__aiter__()
        buffer = LineBuffer()
        emitted = 0
        try:
            while self.state is StreamState.STREAMING:
                chunk = await self._next_chunk(iterator)
                if chunk is None:
                    break

                for line in buffer.feed(chunk):
                    parsed = parse_event_line(line)
                    if parsed is None:
                        self.state = StreamState.DONE
                        break
                    for event in parsed:
                        if self._cancel_requested():
                            break
                        emitted += 1
                        yield event
                    if self.state is not StreamState.STREAMING:
                        break

            if self.state is StreamState.STREAMING:
                self.state = StreamState.DONE
            if buffer.pending.strip():
                # Unterminated final line is dropped; a trailing delta without
                # a newline is lost here.
                LOGGER.debug("Discarding unterminated stream tail (%s chars)", len(buffer.pending))
        finally:
            LOGGER.info("Stream finished: state=%s events=%s", self.state.value, emitted)
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            await self._on_close()

    def _cancel_requested(self) -> bool:
        if self._cancel_event is not None and self._cancel_event.is_set():
            self.state = StreamState.CANCELLED
            return True
        return False

    async def _next_chunk(self, iterator: AsyncIterator[bytes]) -> bytes | None:
        """Next upstream read, or None on end of stream, cancellation or read failure."""
        if self._cancel_requested():
            return None

        read = asyncio.ensure_future(_read_next(iterator))
        waiters: set[asyncio.Future[Any]] = {read}
        stop = None
        if self._cancel_event is not None:
            stop = asyncio.ensure_future(self._cancel_event.wait())
            waiters.add(stop)

        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if stop is not None:
                stop.cancel()
            if not read.done():
                read.cancel()
                await asyncio.wait({read})

        if read.cancelled():
            self.state = StreamState.CANCELLED
            return None
        exc = read.exception()
        if exc is not None:
            LOGGER.warning("Upstream stream read failed, closing: %s", exc)
            return None
        return read.result()
