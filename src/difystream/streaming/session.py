"""StreamSession: one send/receive cycle against the chat-messages endpoint."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol

import structlog
from ulid import ULID

from difystream.api.client import HTTPStatusFault, NetworkFault, ProtocolFault, TransportError
from difystream.events.bus import ChatEvent, EventBus
from difystream.events.payloads import (
    ConversationResolvedPayload,
    InvalidatedPayload,
    SessionFailedPayload,
    SessionStartedPayload,
)
from difystream.models.message import (
    ChatMessageRequest,
    ContentPart,
    SessionError,
    SessionResult,
    SessionState,
    StreamUpdate,
)
from difystream.parsing.think import segment_think_tags
from difystream.streaming.decoder import SSEFrameDecoder, StreamEnd, StreamEvent

UpdateCallback = Callable[[StreamUpdate], None | Awaitable[None]]

_ALLOWED: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.SENDING, SessionState.ABORTED}),
    SessionState.SENDING: frozenset(
        {SessionState.STREAMING, SessionState.FAILED, SessionState.ABORTED}
    ),
    SessionState.STREAMING: frozenset(
        {SessionState.FINALIZING, SessionState.FAILED, SessionState.ABORTED}
    ),
    SessionState.FINALIZING: frozenset({SessionState.DONE}),
    SessionState.DONE: frozenset(),
    SessionState.ABORTED: frozenset(),
    SessionState.FAILED: frozenset(),
}


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Args:
        prefix: Short prefix for readability (e.g. ``"stream"``).

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


async def _pull(chunks: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await anext(chunks)
    except StopAsyncIteration:
        return None


async def _next_chunk(chunks: AsyncIterator[bytes], abort: asyncio.Event) -> bytes | None:
    """
    Await the next body chunk, racing it against ``abort``.

    Returns ``None`` at end-of-data or once ``abort`` is set. A pending read is
    cancelled on abort, so the caller can leave the response context and close
    the connection without waiting for more data.
    """
    pull = asyncio.ensure_future(_pull(chunks))
    aborted = asyncio.ensure_future(abort.wait())
    try:
        await asyncio.wait({pull, aborted}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (pull, aborted):
            task.cancel()
        await asyncio.gather(pull, aborted, return_exceptions=True)
    if abort.is_set() or pull.cancelled():
        return None
    return pull.result()


class SessionStateError(RuntimeError):
    """Raised on an operation the session's current state does not allow."""


class SessionClosedError(SessionStateError):
    """Raised when reading the answer buffer after the session reached a terminal state."""

    def __init__(self, session_id: str, state: SessionState) -> None:
        super().__init__(f"Session {session_id!r} is {state.value}; its buffer was released")
        self.session_id = session_id
        self.state = state


class ChatTransport(Protocol):
    """Anything that can open a streaming chat response. :class:`DifyClient` is one."""

    def stream_chat(
        self, request: ChatMessageRequest
    ) -> AbstractAsyncContextManager[AsyncIterator[bytes]]: ...


class StreamSession:
    """
    Drives a single send: request, streamed answer, terminal state.

    The session owns its answer buffer, its abort handle and its decoder
    exclusively. All three are allocated when :meth:`run` starts and
    released when the session reaches ``done``, ``aborted`` or ``failed``;
    afterwards :attr:`answer` raises :class:`SessionClosedError`. A session
    is single-use: create a new one for every send.

    State machine::

        idle -> sending -> streaming -> finalizing -> done
                   |           |
                   +-----------+--> failed     (transport / protocol fault)
        any non-terminal state -----> aborted  (cancel())

    Cancellation is cooperative. :meth:`cancel` moves the session to
    ``aborted`` at once. A pending chunk read is cancelled, the response is
    closed and no further data is processed. Only ``done`` publishes the
    refresh events (``MESSAGES_INVALIDATED`` and ``CONVERSATIONS_INVALIDATED``).

    Usage::

        session = StreamSession(client, user_id=user_id, conversation_id=conv_id)
        result = await session.run("Hello!", on_update=lambda u: render(u.parts))
        if result.ok:
            print(result.answer)
    """

    def __init__(
        self,
        transport: ChatTransport,
        *,
        user_id: str,
        conversation_id: str | None = None,
        inputs: dict[str, Any] | None = None,
        event_bus: EventBus | None = None,
        session_id: str | None = None,
    ) -> None:
        self._id = session_id or make_id("stream")
        self._transport = transport
        self._user_id = user_id
        self._conversation_id = conversation_id
        self._inputs = dict(inputs or {})
        self._event_bus = event_bus
        self._state = SessionState.IDLE
        self._query: str | None = None
        self._answer: str | None = None
        self._abort: asyncio.Event | None = None
        self._decoder: SSEFrameDecoder | None = None
        self._logger = structlog.get_logger("difystream.session").bind(session_id=self._id)

    # ── Public API ─────────────────────────────────────────────────────────────

    async def run(self, query: str, on_update: UpdateCallback | None = None) -> SessionResult:
        """
        Send ``query`` and consume the streamed answer until a terminal state.

        Args:
            query: The user's message.
            on_update: Optional callback invoked after every answer fragment
                with the accumulated answer and its segmented parts. May be
                sync or async.

        Returns:
            SessionResult describing the terminal state. Transport faults are
            reported in ``result.error``, not raised.

        Raises:
            SessionStateError: If the session has already been run or cancelled.
            asyncio.CancelledError: If the surrounding task is cancelled; the
                session is left ``aborted``.
        """
        if self._state != SessionState.IDLE:
            raise SessionStateError(
                f"Session {self._id!r} is {self._state.value}; sessions are single-use"
            )

        abort = self._begin(query)
        request = ChatMessageRequest(
            query=query,
            inputs=self._inputs,
            user=self._user_id,
            conversation_id=self._conversation_id,
        )

        try:
            async with self._transport.stream_chat(request) as chunks:
                if chunks is None:
                    raise ProtocolFault("No response body")
                await self._consume(chunks, abort, on_update)
        except TransportError as exc:
            if abort.is_set():
                return self._aborted_result()
            return self._fail(exc)
        except BaseException:
            # Task cancellation or an exception from on_update
            if not self._state.is_terminal:
                self.cancel()
            raise

        if abort.is_set():
            return self._aborted_result()
        return self._complete()

    def cancel(self) -> None:
        """
        Abort the session. No-op once the session is terminal.

        The answer buffer is discarded immediately and the refresh events are
        never published for this session.
        """
        if self._state.is_terminal:
            return
        if self._abort is not None:
            self._abort.set()
        self._transition(SessionState.ABORTED)
        self._release()
        self._logger.info("session_aborted")
        self._publish(ChatEvent.SESSION_ABORTED, {"session_id": self._id})

    @property
    def id(self) -> str:
        """The session ID."""
        return self._id

    @property
    def state(self) -> SessionState:
        """The current lifecycle state."""
        return self._state

    @property
    def is_active(self) -> bool:
        """``True`` between :meth:`run` starting and a terminal state."""
        return self._state in (
            SessionState.SENDING,
            SessionState.STREAMING,
            SessionState.FINALIZING,
        )

    @property
    def query(self) -> str | None:
        """The query being sent, for optimistic display. ``None`` once terminal."""
        return self._query

    @property
    def conversation_id(self) -> str | None:
        """The conversation id, known up front or resolved from ``message_end``."""
        return self._conversation_id

    @property
    def answer(self) -> str:
        """The answer accumulated so far."""
        if self._state.is_terminal:
            raise SessionClosedError(self._id, self._state)
        return self._answer or ""

    @property
    def parts(self) -> list[ContentPart]:
        """The accumulated answer split into text and reasoning parts."""
        return segment_think_tags(self.answer)

    # ── Internals ──────────────────────────────────────────────────────────────

    def _begin(self, query: str) -> asyncio.Event:
        self._transition(SessionState.SENDING)
        self._query = query
        self._answer = ""
        self._abort = asyncio.Event()
        self._decoder = SSEFrameDecoder(logger=self._logger)
        self._logger.info("session_started", conversation_id=self._conversation_id)
        started: SessionStartedPayload = {
            "session_id": self._id,
            "query": query,
            "conversation_id": self._conversation_id,
        }
        self._publish(ChatEvent.SESSION_STARTED, dict(started))
        return self._abort

    async def _consume(
        self,
        chunks: AsyncIterator[bytes],
        abort: asyncio.Event,
        on_update: UpdateCallback | None,
    ) -> None:
        decoder = self._decoder
        assert decoder is not None
        iterator = aiter(chunks)
        while True:
            if abort.is_set():
                return
            chunk = await _next_chunk(iterator, abort)
            if abort.is_set():
                return
            if chunk is None:
                break
            self._mark_streaming()
            if await self._apply(decoder.feed(chunk), abort, on_update) or decoder.done:
                return
        # End-of-data without [DONE]: flush a final unterminated line.
        self._mark_streaming()
        await self._apply(decoder.close(), abort, on_update)

    async def _apply(
        self,
        events: list[StreamEvent],
        abort: asyncio.Event,
        on_update: UpdateCallback | None,
    ) -> bool:
        """Apply decoded events in order. Returns ``True`` when reading should stop."""
        for event in events:
            if abort.is_set():
                return True
            if isinstance(event, StreamEnd):
                self._resolve_conversation(event.conversation_id)
                return True
            self._answer = (self._answer or "") + event.answer
            if on_update is not None:
                update = StreamUpdate(
                    fragment=event.answer,
                    answer=self._answer,
                    parts=segment_think_tags(self._answer),
                )
                result = on_update(update)
                if asyncio.iscoroutine(result):
                    await result
        return False

    def _mark_streaming(self) -> None:
        if self._state == SessionState.SENDING:
            self._transition(SessionState.STREAMING)
            self._publish(ChatEvent.SESSION_STREAMING, {"session_id": self._id})

    def _resolve_conversation(self, conversation_id: str | None) -> None:
        if not conversation_id or self._conversation_id:
            return
        self._conversation_id = conversation_id
        self._logger.info("conversation_resolved", conversation_id=conversation_id)
        resolved: ConversationResolvedPayload = {
            "session_id": self._id,
            "conversation_id": conversation_id,
        }
        self._publish(ChatEvent.CONVERSATION_RESOLVED, dict(resolved))

    def _complete(self) -> SessionResult:
        self._transition(SessionState.FINALIZING)
        answer = self._answer or ""
        result = SessionResult(
            session_id=self._id,
            state=SessionState.DONE,
            query=self._query,
            answer=answer,
            parts=segment_think_tags(answer),
            conversation_id=self._conversation_id,
        )
        self._transition(SessionState.DONE)
        self._release()
        self._logger.info(
            "session_completed",
            conversation_id=self._conversation_id,
            answer_chars=len(answer),
        )
        self._publish(ChatEvent.SESSION_COMPLETED, {"session_id": self._id})
        invalidated: InvalidatedPayload = {"conversation_id": self._conversation_id}
        self._publish(ChatEvent.MESSAGES_INVALIDATED, dict(invalidated))
        self._publish(ChatEvent.CONVERSATIONS_INVALIDATED, dict(invalidated))
        return result

    def _fail(self, exc: TransportError) -> SessionResult:
        if isinstance(exc, HTTPStatusFault):
            error = SessionError(kind="http_status", message=str(exc), status_code=exc.status_code)
        elif isinstance(exc, NetworkFault):
            error = SessionError(kind="network", message=str(exc))
        else:
            error = SessionError(kind="protocol", message=str(exc))

        self._transition(SessionState.FAILED)
        self._release()
        self._logger.warning("session_failed", kind=error.kind, error=error.message)
        failed: SessionFailedPayload = {
            "session_id": self._id,
            "kind": error.kind,
            "error": error.message,
        }
        self._publish(ChatEvent.SESSION_FAILED, dict(failed))
        return SessionResult(
            session_id=self._id,
            state=SessionState.FAILED,
            conversation_id=self._conversation_id,
            error=error,
        )

    def _aborted_result(self) -> SessionResult:
        return SessionResult(
            session_id=self._id,
            state=SessionState.ABORTED,
            conversation_id=self._conversation_id,
        )

    def _release(self) -> None:
        self._query = None
        self._answer = None
        self._abort = None
        self._decoder = None

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in _ALLOWED[self._state]:
            raise SessionStateError(
                f"Invalid transition {self._state.value} -> {new_state.value} "
                f"for session {self._id!r}"
            )
        self._state = new_state

    def _publish(self, event: ChatEvent, payload: dict[str, Any]) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event, payload)
