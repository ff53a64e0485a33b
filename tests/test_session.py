"""Tests for StreamSession: lifecycle, cancellation, fault handling."""

from __future__ import annotations

import asyncio

import pytest

from difystream.api.client import HTTPStatusFault, NetworkFault
from difystream.events.bus import ChatEvent
from difystream.models.message import ContentPart, SessionState
from difystream.streaming.session import SessionClosedError, SessionStateError, StreamSession
from tests.conftest import FakeTransport, chunked, sse_body

HELLO_CHUNKS = [
    b'data: {"event":"message","answer":"Hel"}\n',
    b'data: {"event":"message","answer":"lo"}\n',
    b"data: [DONE]\n",
]

REFRESH_EVENTS = {ChatEvent.MESSAGES_INVALIDATED, ChatEvent.CONVERSATIONS_INVALIDATED}


def _events(bus) -> list[ChatEvent]:
    return [event for event, _ in bus.collected]


class TestStreamSessionLifecycle:
    async def test_streams_answer_to_done(self, user_id, event_bus):
        """Three chunks produce updates 'Hel' then 'Hello' and end in done."""
        transport = FakeTransport(HELLO_CHUNKS)
        session = StreamSession(transport, user_id=user_id, event_bus=event_bus)
        updates = []

        result = await session.run("hi", on_update=lambda u: updates.append(u.answer))

        assert updates == ["Hel", "Hello"]
        assert result.state == SessionState.DONE
        assert result.ok
        assert result.answer == "Hello"
        assert result.query == "hi"
        assert result.error is None
        assert session.state == SessionState.DONE
        assert transport.closed

    async def test_single_chunk_body_completes_with_full_answer(self, user_id, event_bus):
        """The whole three-record body in one chunk ends in done with 'Hello'."""
        body = (
            b'data: {"event":"message","answer":"Hel"}\n'
            b'data: {"event":"message","answer":"lo"}\n'
            b"data: [DONE]\n"
        )
        session = StreamSession(FakeTransport([body]), user_id=user_id, event_bus=event_bus)

        result = await session.run("hi")

        assert session.state == SessionState.DONE
        assert result.state == SessionState.DONE
        assert result.answer == "Hello"
        assert REFRESH_EVENTS <= set(_events(event_bus))
        assert ChatEvent.SESSION_ABORTED not in _events(event_bus)

    async def test_state_sequence_and_refresh_events(self, user_id, event_bus):
        """A successful run publishes the lifecycle events and both refresh events."""
        session = StreamSession(FakeTransport(HELLO_CHUNKS), user_id=user_id, event_bus=event_bus)
        await session.run("hi")
        assert _events(event_bus) == [
            ChatEvent.SESSION_STARTED,
            ChatEvent.SESSION_STREAMING,
            ChatEvent.SESSION_COMPLETED,
            ChatEvent.MESSAGES_INVALIDATED,
            ChatEvent.CONVERSATIONS_INVALIDATED,
        ]

    async def test_request_carries_user_and_conversation(self, user_id):
        transport = FakeTransport(HELLO_CHUNKS)
        session = StreamSession(
            transport, user_id=user_id, conversation_id="conv-1", inputs={"lang": "en"}
        )
        await session.run("hi")
        request = transport.requests[0]
        assert request.query == "hi"
        assert request.user == user_id
        assert request.conversation_id == "conv-1"
        assert request.inputs == {"lang": "en"}
        assert request.response_mode == "streaming"

    async def test_session_id_has_prefix(self, user_id):
        session = StreamSession(FakeTransport(), user_id=user_id)
        assert session.id.startswith("stream_")

    async def test_byte_level_chunking_gives_same_answer(self, user_id):
        body = sse_body(
            {"event": "message", "answer": "Grüße, "},
            {"event": "agent_message", "answer": "Welt"},
            "[DONE]",
        )
        session = StreamSession(FakeTransport(chunked(body, 3)), user_id=user_id)
        result = await session.run("hi")
        assert result.answer == "Grüße, Welt"

    async def test_end_of_data_without_done_completes(self, user_id):
        """Body ends without [DONE]: the unterminated last line is still applied."""
        transport = FakeTransport(
            [b'data: {"event":"message","answer":"a"}\n', b'data: {"event":"message","answer":"b"}']
        )
        result = await StreamSession(transport, user_id=user_id).run("hi")
        assert result.state == SessionState.DONE
        assert result.answer == "ab"

    async def test_message_end_resolves_new_conversation(self, user_id, event_bus):
        """message_end assigns the conversation id and stops reading."""
        transport = FakeTransport(
            [
                sse_body(
                    {"event": "message", "answer": "x"},
                    {"event": "message_end", "conversation_id": "conv-new"},
                ),
                sse_body({"event": "message", "answer": "ignored"}),
            ]
        )
        session = StreamSession(transport, user_id=user_id, event_bus=event_bus)
        result = await session.run("hi")

        assert result.conversation_id == "conv-new"
        assert session.conversation_id == "conv-new"
        assert result.answer == "x"
        assert transport.chunks_served == 1
        resolved = [p for e, p in event_bus.collected if e == ChatEvent.CONVERSATION_RESOLVED]
        assert resolved == [{"session_id": session.id, "conversation_id": "conv-new"}]

    async def test_known_conversation_is_not_reassigned(self, user_id, event_bus):
        transport = FakeTransport([sse_body({"event": "message_end", "conversation_id": "other"})])
        session = StreamSession(
            transport, user_id=user_id, conversation_id="conv-1", event_bus=event_bus
        )
        result = await session.run("hi")
        assert result.conversation_id == "conv-1"
        assert ChatEvent.CONVERSATION_RESOLVED not in _events(event_bus)

    async def test_updates_carry_think_parts(self, user_id):
        transport = FakeTransport(
            [
                sse_body({"event": "message", "answer": "<think>plan"}),
                sse_body({"event": "message", "answer": "</think>Answer"}, "[DONE]"),
            ]
        )
        updates = []
        result = await StreamSession(transport, user_id=user_id).run("hi", on_update=updates.append)

        assert updates[0].parts == [ContentPart(kind="think", content="plan", closed=False)]
        assert updates[1].fragment == "</think>Answer"
        assert updates[1].parts == [
            ContentPart(kind="think", content="plan", closed=True),
            ContentPart(kind="text", content="Answer", closed=True),
        ]
        assert result.parts == updates[1].parts

    async def test_async_callback_is_awaited(self, user_id):
        seen = []

        async def on_update(update):
            await asyncio.sleep(0)
            seen.append(update.fragment)

        await StreamSession(FakeTransport(HELLO_CHUNKS), user_id=user_id).run("hi", on_update)
        assert seen == ["Hel", "lo"]

    async def test_answer_readable_while_streaming(self, user_id):
        transport = FakeTransport(HELLO_CHUNKS, pause_before=1)
        session = StreamSession(transport, user_id=user_id)
        task = asyncio.create_task(session.run("hi"))
        await transport.paused.wait()

        assert session.state == SessionState.STREAMING
        assert session.is_active
        assert session.query == "hi"
        assert session.answer == "Hel"

        transport.resume.set()
        result = await task
        assert result.answer == "Hello"

    async def test_run_twice_raises(self, user_id):
        session = StreamSession(FakeTransport(HELLO_CHUNKS), user_id=user_id)
        await session.run("hi")
        with pytest.raises(SessionStateError):
            await session.run("again")

    async def test_buffer_released_after_done(self, user_id):
        session = StreamSession(FakeTransport(HELLO_CHUNKS), user_id=user_id)
        await session.run("hi")
        assert session.query is None
        with pytest.raises(SessionClosedError):
            _ = session.answer


class TestStreamSessionCancellation:
    async def test_cancel_from_callback(self, user_id, event_bus):
        """cancel() during the first update: aborted, no further updates, no refresh."""
        transport = FakeTransport(HELLO_CHUNKS)
        session = StreamSession(transport, user_id=user_id, event_bus=event_bus)
        updates = []

        def on_update(update):
            updates.append(update.answer)
            session.cancel()

        result = await session.run("hi", on_update=on_update)

        assert updates == ["Hel"]
        assert result.state == SessionState.ABORTED
        assert result.answer is None
        assert result.error is None
        assert session.state == SessionState.ABORTED
        with pytest.raises(SessionClosedError):
            _ = session.answer
        assert ChatEvent.SESSION_ABORTED in _events(event_bus)
        assert not REFRESH_EVENTS & set(_events(event_bus))
        assert transport.closed

    async def test_cancel_while_waiting_for_chunk(self, user_id, event_bus):
        """Data arriving after cancel() is never applied."""
        transport = FakeTransport(HELLO_CHUNKS, pause_before=1)
        session = StreamSession(transport, user_id=user_id, event_bus=event_bus)
        updates = []
        task = asyncio.create_task(session.run("hi", on_update=lambda u: updates.append(u.answer)))
        await transport.paused.wait()

        session.cancel()
        assert session.state == SessionState.ABORTED
        transport.resume.set()
        result = await task

        assert result.state == SessionState.ABORTED
        assert updates == ["Hel"]
        assert not REFRESH_EVENTS & set(_events(event_bus))

    async def test_cancel_releases_stalled_body(self, user_id):
        """cancel() ends run() and closes the response without waiting for more data."""
        transport = FakeTransport(HELLO_CHUNKS, pause_before=1)
        session = StreamSession(transport, user_id=user_id)
        task = asyncio.create_task(session.run("hi"))
        await transport.paused.wait()

        session.cancel()
        result = await asyncio.wait_for(task, timeout=1)

        assert result.state == SessionState.ABORTED
        assert transport.closed
        assert transport.chunks_served == 1

    async def test_cancel_is_idempotent(self, user_id, event_bus):
        session = StreamSession(FakeTransport(HELLO_CHUNKS), user_id=user_id, event_bus=event_bus)
        session.cancel()
        session.cancel()
        assert session.state == SessionState.ABORTED
        assert _events(event_bus).count(ChatEvent.SESSION_ABORTED) == 1
        with pytest.raises(SessionStateError):
            await session.run("hi")

    async def test_cancel_after_done_is_noop(self, user_id):
        session = StreamSession(FakeTransport(HELLO_CHUNKS), user_id=user_id)
        await session.run("hi")
        session.cancel()
        assert session.state == SessionState.DONE

    async def test_task_cancellation_leaves_session_aborted(self, user_id, event_bus):
        transport = FakeTransport(HELLO_CHUNKS, pause_before=1)
        session = StreamSession(transport, user_id=user_id, event_bus=event_bus)
        task = asyncio.create_task(session.run("hi"))
        await transport.paused.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert session.state == SessionState.ABORTED
        assert transport.closed
        assert not REFRESH_EVENTS & set(_events(event_bus))

    async def test_callback_error_aborts_and_propagates(self, user_id):
        def on_update(update):
            raise ValueError("render failed")

        session = StreamSession(FakeTransport(HELLO_CHUNKS), user_id=user_id)
        with pytest.raises(ValueError, match="render failed"):
            await session.run("hi", on_update=on_update)
        assert session.state == SessionState.ABORTED


class TestStreamSessionFaults:
    async def test_http_status_fault_fails(self, user_id, event_bus):
        transport = FakeTransport(error=HTTPStatusFault(500, "Internal Server Error", "boom"))
        session = StreamSession(transport, user_id=user_id, event_bus=event_bus)
        result = await session.run("hi")

        assert result.state == SessionState.FAILED
        assert not result.ok
        assert result.error is not None
        assert result.error.kind == "http_status"
        assert result.error.status_code == 500
        assert "boom" in result.error.message
        assert ChatEvent.SESSION_FAILED in _events(event_bus)
        assert not REFRESH_EVENTS & set(_events(event_bus))

    async def test_network_fault_mid_body_fails(self, user_id, event_bus):
        """A broken connection after some data: failed, partial answer discarded."""
        transport = FakeTransport(HELLO_CHUNKS, error=NetworkFault("reset"), error_after=1)
        session = StreamSession(transport, user_id=user_id, event_bus=event_bus)
        result = await session.run("hi")

        assert result.state == SessionState.FAILED
        assert result.error.kind == "network"
        assert result.answer is None
        assert not REFRESH_EVENTS & set(_events(event_bus))

    async def test_missing_body_is_protocol_fault(self, user_id):
        session = StreamSession(FakeTransport(no_body=True), user_id=user_id)
        result = await session.run("hi")
        assert result.state == SessionState.FAILED
        assert result.error.kind == "protocol"
        assert "No response body" in result.error.message

    async def test_malformed_records_do_not_fail(self, user_id):
        transport = FakeTransport(
            [sse_body("{broken", {"event": "message", "answer": "fine"}, "[DONE]")]
        )
        result = await StreamSession(transport, user_id=user_id).run("hi")
        assert result.state == SessionState.DONE
        assert result.answer == "fine"
