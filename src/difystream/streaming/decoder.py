"""Incremental decoder for ``data:``-prefixed server-sent event streams."""

from __future__ import annotations

import codecs
import json
from collections.abc import AsyncIterable, AsyncIterator
from typing import Annotated, Any, Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

PARTIAL_ANSWER_EVENTS: frozenset[str] = frozenset({"message", "agent_message"})
END_EVENT = "message_end"

# ── Decoded Events ─────────────────────────────────────────────────────────────


class MessageDelta(BaseModel):
    """A fragment of the answer to append to the running buffer."""

    type: Literal["message_delta"] = "message_delta"
    answer: str


class StreamEnd(BaseModel):
    """End of the assistant message. Carries the conversation id for new conversations."""

    type: Literal["stream_end"] = "stream_end"
    conversation_id: str | None = None


# Discriminated union; the ``type`` field is the discriminator key.
StreamEvent = Annotated[MessageDelta | StreamEnd, Field(discriminator="type")]


class _Record(BaseModel):
    """Shape of one JSON payload on the wire. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    event: str
    answer: str | None = None
    conversation_id: str | None = None


# ── Decoder ────────────────────────────────────────────────────────────────────


class SSEFrameDecoder:
    """
    Turns raw chunks, split at arbitrary positions, into ordered stream events.

    The decoder keeps one residual tail: the text after the last newline seen
    so far. Each :meth:`feed` appends to the tail, processes every complete
    line and keeps the new incomplete remainder. Byte chunks go through an
    incremental UTF-8 decoder, so a multi-byte character split across two
    chunks decodes the same as if it arrived whole.

    Only lines that start with ``data: `` (after trimming) are significant. A
    ``[DONE]`` payload ends the stream and everything after it is ignored.
    A payload that is not valid JSON, or not a recognisable record, is logged
    and skipped; it never aborts the stream.

    Example::

        decoder = SSEFrameDecoder()
        async for chunk in response.aiter_raw():
            for event in decoder.feed(chunk):
                handle(event)
            if decoder.done:
                break
        for event in decoder.close():
            handle(event)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._tail = ""
        self._done = False
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._malformed = 0
        self._logger = logger or structlog.get_logger("difystream.decoder")

    @property
    def done(self) -> bool:
        """``True`` once the ``[DONE]`` sentinel has been seen."""
        return self._done

    @property
    def malformed_count(self) -> int:
        """Number of ``data:`` records skipped because they could not be parsed."""
        return self._malformed

    def feed(self, chunk: bytes | bytearray | str) -> list[StreamEvent]:
        """
        Consume one chunk and return the events completed by it.

        Args:
            chunk: Raw bytes from the response body, or already-decoded text.

        Returns:
            Events in arrival order. Empty when the chunk completed no line,
            or when the stream has already ended.
        """
        if self._done:
            return []
        text = chunk if isinstance(chunk, str) else self._utf8.decode(bytes(chunk))
        if not text:
            return []

        *lines, self._tail = (self._tail + text).split("\n")
        return self._process(lines)

    def close(self) -> list[StreamEvent]:
        """
        Flush at end-of-data, treating any residual tail as a final line.

        Returns:
            Events from the flushed tail (at most one).
        """
        if self._done:
            return []
        line = self._tail + self._utf8.decode(b"", final=True)
        self._tail = ""
        if not line:
            return []
        return self._process([line])

    def _process(self, lines: list[str]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for line in lines:
            stripped = line.strip()
            if not stripped.startswith(DATA_PREFIX):
                continue
            payload = stripped[len(DATA_PREFIX) :]
            if payload == DONE_SENTINEL:
                self._done = True
                self._tail = ""
                break
            event = self._parse(payload)
            if event is not None:
                events.append(event)
        return events

    def _parse(self, payload: str) -> StreamEvent | None:
        try:
            raw: Any = json.loads(payload)
            record = _Record.model_validate(raw)
        except (json.JSONDecodeError, ValidationError) as exc:
            self._malformed += 1
            self._logger.warning(
                "sse_record_malformed",
                error=str(exc).splitlines()[0],
                payload_preview=payload[:80],
            )
            return None

        if record.event in PARTIAL_ANSWER_EVENTS:
            return MessageDelta(answer=record.answer or "")
        if record.event == END_EVENT:
            return StreamEnd(conversation_id=record.conversation_id or None)
        return None


async def decode_stream(
    chunks: AsyncIterable[bytes | str],
    decoder: SSEFrameDecoder | None = None,
) -> AsyncIterator[StreamEvent]:
    """
    Pull chunks from ``chunks`` and yield decoded events until ``[DONE]`` or end-of-data.

    Args:
        chunks: Async iterable of raw body chunks.
        decoder: Optional decoder instance (e.g. to inspect ``malformed_count``).

    Yields:
        Stream events in arrival order.
    """
    decoder = decoder or SSEFrameDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
        if decoder.done:
            return
    for event in decoder.close():
        yield event
