"""Core message, page, and result data models for difystream."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field

# ── Content Parts ──────────────────────────────────────────────────────────────


class ContentPart(BaseModel):
    """
    One segment of an answer as split by :func:`~difystream.parsing.think.segment_think_tags`.

    ``closed`` is ``False`` only for a trailing reasoning segment whose closing
    marker has not arrived yet. Text parts are always closed.
    """

    kind: Literal["text", "think"]
    content: str
    closed: bool = True


# ── Backend Records ────────────────────────────────────────────────────────────


class Message(BaseModel):
    """
    A persisted query/answer pair as returned by the message history endpoint.

    Messages are created server-side and only ever read by this client.
    """

    id: str
    conversation_id: str
    query: str = ""
    answer: str = ""
    created_at: int
    """Unix timestamp (seconds) assigned by the backend. Ordering key for history."""
    feedback: dict[str, Any] | None = None
    retriever_resources: list[dict[str, Any]] = Field(default_factory=list)


class Conversation(BaseModel):
    """A conversation as listed by the conversations endpoint."""

    id: str
    name: str = ""
    inputs: dict[str, Any] = Field(default_factory=dict)
    status: str = "normal"
    created_at: int = 0


class MessagePage(BaseModel):
    """One page of message history."""

    data: list[Message] = Field(default_factory=list)
    has_more: bool = False
    limit: int = 20


class ConversationPage(BaseModel):
    """One page of the conversation list."""

    data: list[Conversation] = Field(default_factory=list)
    has_more: bool = False
    limit: int = 20


class ChatMessageRequest(BaseModel):
    """Request body for ``POST /chat-messages``."""

    query: str
    inputs: dict[str, Any] = Field(default_factory=dict)
    response_mode: Literal["streaming", "blocking"] = "streaming"
    user: str
    conversation_id: str | None = None
    files: list[dict[str, Any]] = Field(default_factory=list)


# ── Session Results ────────────────────────────────────────────────────────────


class SessionState(StrEnum):
    """Lifecycle states of a :class:`~difystream.streaming.session.StreamSession`."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES: frozenset[SessionState] = frozenset(
    {SessionState.DONE, SessionState.ABORTED, SessionState.FAILED}
)


class StreamUpdate(BaseModel):
    """Snapshot handed to ``on_update`` after each answer fragment is applied."""

    fragment: str
    answer: str
    parts: list[ContentPart]


class SessionError(BaseModel):
    """Structured description of the fault that moved a session to ``failed``."""

    kind: Literal["http_status", "network", "protocol"]
    message: str
    status_code: int | None = None


class SessionResult(BaseModel):
    """
    The outcome of a single :meth:`StreamSession.run` call.

    ``answer`` and ``parts`` are only populated when ``state`` is ``done``;
    aborted and failed sessions discard their buffer. ``error`` is set only
    for ``failed``; cancellation is not an error.
    """

    session_id: str
    state: SessionState
    query: str | None = None
    answer: str | None = None
    parts: list[ContentPart] = Field(default_factory=list)
    conversation_id: str | None = None
    error: SessionError | None = None

    @property
    def ok(self) -> bool:
        return self.state == SessionState.DONE


# ── Pagination Results ─────────────────────────────────────────────────────────


class ScrollAnchor(BaseModel):
    """
    Scroll position captured before older content is prepended.

    After the prepended content is rendered, :meth:`restore` returns the
    offset that keeps the previously visible content stationary.
    """

    offset: float
    content_height: float

    def restore(self, new_content_height: float) -> float:
        """Return ``offset`` shifted by the height the prepend introduced."""
        return self.offset + max(0.0, new_content_height - self.content_height)


class PageLoad(BaseModel):
    """
    The outcome of a single page request.

    ``status`` is ``"skipped"`` when the request was a no-op (nothing more to
    load, or a load already in flight), ``"failed"`` when the fetch raised.
    A failed load leaves the already-merged view untouched; retrying is up to
    the caller.
    """

    status: Literal["loaded", "failed", "skipped"]
    added: int = 0
    has_more: bool = False
    error: str | None = None
    anchor: ScrollAnchor | None = None
