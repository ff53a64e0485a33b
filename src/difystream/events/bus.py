"""In-process pub/sub event bus for chat session and history events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["ChatEvent", dict[str, Any]], None | Awaitable[None]]


class ChatEvent(StrEnum):
    """All event types published by difystream components.

    Typed payload definitions for each event live in
    :mod:`difystream.events.payloads`.

    **Payload schemas by event:**

    ``SESSION_STARTED``
        :class:`~difystream.events.payloads.SessionStartedPayload`:
        ``session_id``, ``query``, ``conversation_id``

    ``SESSION_STREAMING``
        :class:`~difystream.events.payloads.SessionPayload`: ``session_id``

    ``SESSION_COMPLETED``, ``SESSION_ABORTED``
        :class:`~difystream.events.payloads.SessionPayload`

    ``SESSION_FAILED``
        :class:`~difystream.events.payloads.SessionFailedPayload`:
        ``session_id``, ``kind``, ``error``

    ``CONVERSATION_RESOLVED``
        :class:`~difystream.events.payloads.ConversationResolvedPayload`:
        ``session_id``, ``conversation_id``. Published once, when the backend
        assigns an id to a new conversation.

    ``MESSAGES_INVALIDATED``, ``CONVERSATIONS_INVALIDATED``
        :class:`~difystream.events.payloads.InvalidatedPayload`:
        ``conversation_id``. The refresh contract: published only when a
        session reaches ``done``.

    ``PAGE_LOADED``, ``PAGE_FAILED``
        :class:`~difystream.events.payloads.PagePayload`:
        ``conversation_id``, ``cursor``, ``added``, ``error``
    """

    # Session lifecycle
    SESSION_STARTED = "session.started"
    SESSION_STREAMING = "session.streaming"
    SESSION_COMPLETED = "session.completed"
    SESSION_ABORTED = "session.aborted"
    SESSION_FAILED = "session.failed"
    CONVERSATION_RESOLVED = "conversation.resolved"

    # Refresh contract
    MESSAGES_INVALIDATED = "messages.invalidated"
    CONVERSATIONS_INVALIDATED = "conversations.invalidated"

    # History pagination
    PAGE_LOADED = "page.loaded"
    PAGE_FAILED = "page.failed"


class EventBus:
    """
    Simple in-process pub/sub event bus.

    - Sync handlers are called inline within ``publish()``.
    - Async handlers are scheduled via ``asyncio.create_task()`` (fire-and-forget).
    - Handler exceptions are logged but never propagate to the publisher.

    Example::

        bus = EventBus()

        def on_done(event, payload):
            print(f"Refresh history for {payload['conversation_id']}")

        bus.subscribe(ChatEvent.MESSAGES_INVALIDATED, on_done)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[ChatEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._logger = logger or structlog.get_logger("difystream.events")

    def subscribe(self, event: ChatEvent, handler: Handler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event: The event type to listen for.
            handler: Callable accepting ``(event, payload)``. May be sync or async.
        """
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register a handler for ALL event types."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: ChatEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    def publish(self, event: ChatEvent, payload: dict[str, Any]) -> None:
        """
        Publish an event to all registered handlers.

        Sync handlers are called immediately in registration order.
        Async handlers are scheduled as background tasks (non-blocking).
        Exceptions from any handler are logged and swallowed.

        Args:
            event: The event type to publish.
            payload: Event-specific data dictionary.
        """
        all_handlers = list(self._handlers.get(event, [])) + list(self._global_handlers)
        for handler in all_handlers:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    self._schedule(result, event, handler)
            except Exception as exc:
                self._log_handler_error(event, handler, exc)

    async def drain(self) -> None:
        """Wait for all scheduled async handlers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _schedule(self, coro: Any, event: ChatEvent, handler: Handler) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running event loop, skip async handler
            coro.close()
            return
        task = loop.create_task(coro)
        self._tasks.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._tasks.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self._log_handler_error(event, handler, t.exception())

        task.add_done_callback(_done)

    def _log_handler_error(
        self, event: ChatEvent, handler: Handler, exc: BaseException | None
    ) -> None:
        self._logger.error(
            "event_handler_error",
            chat_event=str(event),
            handler=getattr(handler, "__qualname__", repr(handler)),
            error=str(exc),
        )
