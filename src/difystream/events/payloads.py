"""Typed payload definitions for each ChatEvent.

Handlers receive plain dicts; these ``TypedDict`` classes exist so static type
checkers and IDEs know the keys.

Usage example::

    from difystream.events.bus import ChatEvent, EventBus
    from difystream.events.payloads import SessionFailedPayload

    def on_failed(event: ChatEvent, payload: SessionFailedPayload) -> None:
        print(f"send failed ({payload['kind']}): {payload['error']}")

    bus.subscribe(ChatEvent.SESSION_FAILED, on_failed)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import TypedDict

# ── Session lifecycle ─────────────────────────────────────────────────────────


class SessionStartedPayload(TypedDict):
    """Payload for :attr:`ChatEvent.SESSION_STARTED`."""

    session_id: str
    query: str
    """The query text, for optimistic display until history is refreshed."""
    conversation_id: str | None
    """``None`` for the first message of a new conversation."""


class SessionPayload(TypedDict):
    """Payload for ``SESSION_STREAMING``, ``SESSION_COMPLETED`` and ``SESSION_ABORTED``."""

    session_id: str


class SessionFailedPayload(TypedDict):
    """Payload for :attr:`ChatEvent.SESSION_FAILED`."""

    session_id: str
    kind: str
    """``"http_status"``, ``"network"`` or ``"protocol"``."""
    error: str


class ConversationResolvedPayload(TypedDict):
    """Payload for :attr:`ChatEvent.CONVERSATION_RESOLVED`."""

    session_id: str
    conversation_id: str


# ── Refresh contract ──────────────────────────────────────────────────────────


class InvalidatedPayload(TypedDict):
    """Payload for ``MESSAGES_INVALIDATED`` and ``CONVERSATIONS_INVALIDATED``."""

    conversation_id: str | None


# ── History pagination ────────────────────────────────────────────────────────


class PagePayload(TypedDict):
    """Payload for ``PAGE_LOADED`` and ``PAGE_FAILED``."""

    conversation_id: str
    cursor: str | None
    """``None`` for the initial page."""
    added: int
    error: str | None
