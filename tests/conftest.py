"""Shared fixtures for difystream tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import pytest

from difystream.events.bus import ChatEvent, EventBus
from difystream.models.config import AppProfile
from difystream.models.message import ChatMessageRequest, Message, MessagePage


@pytest.fixture
def profile():
    """AppProfile pointing at a fake host (never contacted; tests use MockTransport)."""
    return AppProfile(
        id="test", name="Test app", api_key="app-test-key", base_url="https://dify.test/v1"
    )


@pytest.fixture
def user_id():
    return "user_TEST01"


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[ChatEvent, dict[str, Any]]] = []

    def _collect(event: ChatEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def fake_api():
    """In-memory Dify backend served through httpx.MockTransport."""
    return FakeDifyAPI()


def sse_line(payload: dict[str, Any] | str) -> str:
    """One ``data:`` record, newline-terminated."""
    body = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    return f"data: {body}\n"


def sse_body(*payloads: dict[str, Any] | str) -> bytes:
    """A full SSE body made of ``data:`` records."""
    return "".join(sse_line(p) for p in payloads).encode("utf-8")


def chunked(data: bytes, size: int) -> list[bytes]:
    """Split ``data`` into chunks of ``size`` bytes (the last may be shorter)."""
    return [data[i : i + size] for i in range(0, len(data), size)]


def make_message(
    msg_id: str,
    created_at: int,
    conversation_id: str = "conv-1",
    query: str | None = None,
    answer: str | None = None,
) -> Message:
    """Helper to create a test Message."""
    return Message(
        id=msg_id,
        conversation_id=conversation_id,
        query=query if query is not None else f"question {msg_id}",
        answer=answer if answer is not None else f"answer {msg_id}",
        created_at=created_at,
    )


def message_dict(msg_id: str, created_at: int, conversation_id: str = "conv-1") -> dict[str, Any]:
    return make_message(msg_id, created_at, conversation_id).model_dump()


class FakeTransport:
    """
    Serves a canned chunk sequence to StreamSession.

    With ``pause_before`` set, the body stops before yielding that chunk index,
    sets ``paused`` and waits for ``resume``, so a test can act mid-stream.
    """

    def __init__(
        self,
        chunks: list[bytes | str] | None = None,
        *,
        error: Exception | None = None,
        error_after: int | None = None,
        pause_before: int | None = None,
        no_body: bool = False,
    ) -> None:
        self.chunks = list(chunks or [])
        self.error = error
        self.error_after = error_after
        self.pause_before = pause_before
        self.no_body = no_body
        self.paused = asyncio.Event()
        self.resume = asyncio.Event()
        self.requests: list[ChatMessageRequest] = []
        self.chunks_served = 0
        self.closed = False

    @asynccontextmanager
    async def stream_chat(self, request: ChatMessageRequest) -> AsyncIterator[Any]:
        self.requests.append(request)
        if self.error is not None and self.error_after is None:
            raise self.error
        try:
            yield None if self.no_body else self._body()
        finally:
            self.closed = True

    async def _body(self) -> AsyncIterator[bytes | str]:
        for index, chunk in enumerate(self.chunks):
            if self.pause_before == index:
                self.paused.set()
                await self.resume.wait()
            if self.error is not None and self.error_after == index:
                raise self.error
            self.chunks_served += 1
            yield chunk


class FakePageSource:
    """
    Message page fetcher keyed by cursor, recording every call.

    ``gate`` (when set) makes each fetch wait until it is released, so tests
    can observe in-flight behaviour.
    """

    def __init__(self, pages: dict[str | None, MessagePage] | None = None) -> None:
        self.pages = dict(pages or {})
        self.calls: list[tuple[str, str, str | None]] = []
        self.fail_with: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def __call__(
        self, conversation_id: str, user_id: str, cursor: str | None
    ) -> MessagePage:
        self.calls.append((conversation_id, user_id, cursor))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return self.pages.get(cursor, MessagePage())

    @property
    def cursors(self) -> list[str | None]:
        return [cursor for _, _, cursor in self.calls]


async def _iter_chunks(chunks: list[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


class FakeDifyAPI:
    """Routes httpx requests to canned Dify responses and records them."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.chat_chunks: list[bytes] = []
        self.chat_status = 200
        self.messages_status = 200
        self.message_pages: dict[str | None, dict[str, Any]] = {}
        self.conversations: list[dict[str, Any]] = []

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/v1")

        if request.method == "POST" and path == "/chat-messages":
            if self.chat_status != 200:
                return httpx.Response(
                    self.chat_status, json={"code": "invalid_param", "message": "rejected"}
                )
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=_iter_chunks(self.chat_chunks),
            )

        if request.method == "GET" and path == "/messages":
            if self.messages_status != 200:
                return httpx.Response(self.messages_status, json={"message": "unavailable"})
            cursor = request.url.params.get("first_id")
            page = self.message_pages.get(cursor, {"data": [], "has_more": False, "limit": 20})
            return httpx.Response(200, json=page)

        if request.method == "GET" and path == "/conversations":
            return httpx.Response(
                200, json={"data": self.conversations, "has_more": False, "limit": 20}
            )

        if request.method == "DELETE" and path.startswith("/conversations/"):
            conversation_id = path.rsplit("/", 1)[-1]
            self.conversations = [c for c in self.conversations if c["id"] != conversation_id]
            return httpx.Response(200, json={"result": "success"})

        if request.method == "POST" and path.endswith("/name"):
            conversation_id = path.split("/")[-2]
            name = json.loads(request.content)["name"]
            for conversation in self.conversations:
                if conversation["id"] == conversation_id:
                    conversation["name"] = name
            return httpx.Response(200, json={"result": "success"})

        return httpx.Response(404, json={"message": "not found"})

    def requests_to(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == method and r.url.path.removeprefix("/v1") == path
        ]
