"""Streaming ingestion: SSE decoding and per-send sessions."""

from difystream.streaming.decoder import (
    MessageDelta,
    SSEFrameDecoder,
    StreamEnd,
    StreamEvent,
    decode_stream,
)
from difystream.streaming.session import (
    ChatTransport,
    SessionClosedError,
    SessionStateError,
    StreamSession,
    UpdateCallback,
    make_id,
)

__all__ = [
    "ChatTransport",
    "MessageDelta",
    "SSEFrameDecoder",
    "SessionClosedError",
    "SessionStateError",
    "StreamEnd",
    "StreamEvent",
    "StreamSession",
    "UpdateCallback",
    "decode_stream",
    "make_id",
]
