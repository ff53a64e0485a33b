"""ChatController: the public entry point wiring sessions, history and the conversation list."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from difystream.api.client import DifyClient
from difystream.events.bus import ChatEvent, EventBus
from difystream.history.conversations import ConversationList
from difystream.history.pager import HistoryPager
from difystream.history.scroll import ScrollController
from difystream.models.config import AppProfile, DifyConfig
from difystream.models.message import Message, MessagePage, PageLoad, SessionResult
from difystream.streaming.session import StreamSession, UpdateCallback


class ChatController:
    """
    One chat view bound to an app profile and a user.

    The profile and user id are passed in explicitly; choosing among several
    profiles, and persisting them, is the caller's job. The controller owns:

    - a :class:`DifyClient` for the profile,
    - a :class:`HistoryPager` and :class:`ScrollController` for the open conversation,
    - a :class:`ConversationList` for the sidebar,
    - at most one active :class:`StreamSession`.

    When a session reaches ``done`` the controller adopts the conversation id
    the backend assigned (for a new chat), then reloads the message history
    and the conversation list. Aborted and failed sessions refresh nothing.

    Usage::

        async with ChatController(profile, user_id) as chat:
            await chat.conversations.load()
            await chat.select_conversation(None)          # new chat
            result = await chat.send("Hello!", on_update=render)
            if result is not None and not result.ok:
                show_error(result.error)
    """

    def __init__(
        self,
        profile: AppProfile,
        user_id: str,
        config: DifyConfig | None = None,
        *,
        client: DifyClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._config = config or DifyConfig()
        self._profile = profile
        self._user_id = user_id
        self._owns_client = client is None
        self._client = client or DifyClient(profile, self._config.client, transport=transport)
        self._event_bus = event_bus or EventBus()
        self._scroll = ScrollController(self._config.scroll)
        self._pager = HistoryPager(
            self._fetch_messages,
            user_id,
            self._config.pager,
            scroll=self._scroll,
            event_bus=self._event_bus,
        )
        self._conversations = ConversationList(self._client, user_id, self._config.pager)
        self._conversation_id: str | None = None
        self._session: StreamSession | None = None
        self._logger = structlog.get_logger("difystream.chat").bind(app_id=profile.id)

    # ── Sending ────────────────────────────────────────────────────────────────

    async def send(
        self,
        query: str,
        on_update: UpdateCallback | None = None,
        *,
        inputs: dict[str, Any] | None = None,
    ) -> SessionResult | None:
        """
        Send ``query`` in the current conversation and stream the answer.

        Args:
            query: The user's message. Blank messages are ignored.
            on_update: Optional callback for every answer fragment (see
                :meth:`StreamSession.run`).
            inputs: App input variables for the request.

        Returns:
            The session result, or ``None`` when the send was rejected because
            the query was blank or another send is still in progress.
        """
        if not query.strip():
            return None
        if self._session is not None and self._session.is_active:
            self._logger.info("send_rejected", active_session=self._session.id)
            return None

        session = StreamSession(
            self._client,
            user_id=self._user_id,
            conversation_id=self._conversation_id,
            inputs=inputs,
            event_bus=self._event_bus,
        )
        self._session = session
        try:
            result = await session.run(query, on_update)
        finally:
            if self._session is session:
                self._session = None

        if result.ok:
            await self._refresh_after_done(result)
        return result

    def stop(self) -> bool:
        """
        Cancel the active send, if any.

        Returns:
            ``True`` if a session was cancelled.
        """
        session = self._session
        if session is None or not session.is_active:
            return False
        session.cancel()
        return True

    # ── History ────────────────────────────────────────────────────────────────

    async def select_conversation(self, conversation_id: str | None) -> PageLoad:
        """
        Switch the view to ``conversation_id``, or to a new chat when ``None``.

        An active send belongs to the conversation it started in and is
        cancelled by the switch.
        """
        self.stop()
        self._conversation_id = conversation_id
        self._scroll.reset()
        if conversation_id is None:
            self._pager.reset()
            return PageLoad(status="skipped")
        return await self._pager.load_initial(conversation_id)

    async def on_scroll(
        self, offset: float, viewport_height: float, content_height: float
    ) -> PageLoad | None:
        """
        Report a scroll position from the view.

        Loads older history when the view is near the top and more is
        available. The returned ``PageLoad.anchor`` feeds
        :meth:`ScrollController.restore` once the older items are rendered.

        Returns:
            The older-page load, or ``None`` when no load was attempted.
        """
        self._scroll.observe(offset, viewport_height, content_height)
        if not (self._scroll.near_top and self._pager.has_more):
            return None
        return await self._pager.load_older()

    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation; deselects it first if it is the open one."""
        if conversation_id == self._conversation_id:
            await self.select_conversation(None)
        await self._conversations.delete(conversation_id)

    async def rename_conversation(self, conversation_id: str, name: str) -> None:
        await self._conversations.rename(conversation_id, name)

    # ── Properties ─────────────────────────────────────────────────────────────

    @property
    def profile(self) -> AppProfile:
        return self._profile

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def conversation_id(self) -> str | None:
        """The open conversation; ``None`` for a new chat."""
        return self._conversation_id

    @property
    def history(self) -> list[Message]:
        """The merged message history of the open conversation, oldest first."""
        return self._pager.view

    @property
    def active_session(self) -> StreamSession | None:
        return self._session

    @property
    def pending_query(self) -> str | None:
        """The query of the in-flight send, for optimistic display."""
        return self._session.query if self._session is not None else None

    @property
    def pager(self) -> HistoryPager:
        return self._pager

    @property
    def scroll(self) -> ScrollController:
        return self._scroll

    @property
    def conversations(self) -> ConversationList:
        return self._conversations

    @property
    def event_bus(self) -> EventBus:
        """The event bus for this controller. Subscribe to monitor events."""
        return self._event_bus

    def subscribe(self, event: ChatEvent, handler: Any) -> None:
        """Convenience wrapper for ``chat.event_bus.subscribe()``."""
        self._event_bus.subscribe(event, handler)

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def aclose(self) -> None:
        """Cancel any active send and close the HTTP client if this controller created it."""
        self.stop()
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> ChatController:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # ── Internals ──────────────────────────────────────────────────────────────

    async def _fetch_messages(
        self, conversation_id: str, user_id: str, cursor: str | None
    ) -> MessagePage:
        return await self._client.get_messages(
            conversation_id, user_id, cursor, limit=self._config.pager.page_limit
        )

    async def _refresh_after_done(self, result: SessionResult) -> None:
        if self._conversation_id is None and result.conversation_id:
            self._conversation_id = result.conversation_id
            self._logger.info("conversation_adopted", conversation_id=result.conversation_id)
        if self._conversation_id is not None:
            await self._pager.load_initial(self._conversation_id)
        await self._conversations.refresh()
