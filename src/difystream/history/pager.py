"""Cursor-based backward pagination of conversation history."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, Literal

import structlog

from difystream.events.bus import ChatEvent, EventBus
from difystream.events.payloads import PagePayload
from difystream.history.scroll import ScrollController
from difystream.models.config import PagerConfig
from difystream.models.message import Message, MessagePage, PageLoad

PageFetcher = Callable[[str, str, str | None], Awaitable[MessagePage]]
"""``(conversation_id, user_id, cursor) -> MessagePage``."""

CursorStrategy = Literal["oldest", "last", "first"]


def merge_pages(existing: Sequence[Message], incoming: Iterable[Message]) -> list[Message]:
    """
    Merge a fetched page into an already ordered view.

    Items whose id is already present are dropped, so the first copy seen
    wins. The result is sorted ascending by ``created_at`` with a stable sort:
    items already in ``existing`` never change order relative to each other.

    Args:
        existing: The current view, ascending by ``created_at``.
        incoming: Items from a newly fetched page, in any order.

    Returns:
        A new list; neither argument is modified.
    """
    seen = {message.id for message in existing}
    fresh: list[Message] = []
    for message in incoming:
        if message.id in seen:
            continue
        seen.add(message.id)
        fresh.append(message)
    # Older pages go in front so equal timestamps sort above what is displayed.
    return sorted([*fresh, *existing], key=lambda m: m.created_at)


def select_cursor(items: Sequence[Message], strategy: CursorStrategy = "oldest") -> str | None:
    """
    Pick the id to request the next older page with.

    ``"oldest"`` takes the item with the smallest ``created_at`` and does not
    depend on the order the backend returns; ``"last"`` and ``"first"`` take
    the item at that end of the array.
    """
    if not items:
        return None
    if strategy == "last":
        return items[-1].id
    if strategy == "first":
        return items[0].id
    return min(items, key=lambda m: m.created_at).id


class HistoryPager:
    """
    Loads a conversation's messages newest page first, then older pages on demand.

    The merged :attr:`view` is deduplicated by id and ascending by
    ``created_at``. :meth:`load_older` is single-flight: while one fetch is
    pending, further calls return ``status="skipped"`` without touching the
    network. It is also a no-op once a page has reported ``has_more=False``.

    Fetch errors never raise out of the pager. They come back as
    ``PageLoad(status="failed")`` with the view left exactly as it was;
    calling again is the retry.

    Example::

        pager = HistoryPager(client.get_messages, user_id, scroll=scroll)
        await pager.load_initial(conversation_id)
        ...
        load = await pager.load_older()
        if load.status == "loaded" and load.anchor is not None:
            view.scroll_to(scroll.restore(load.anchor, view.content_height()))
    """

    def __init__(
        self,
        fetch: PageFetcher,
        user_id: str,
        config: PagerConfig | None = None,
        *,
        scroll: ScrollController | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._fetch = fetch
        self._user_id = user_id
        self._config = config or PagerConfig()
        self._scroll = scroll
        self._event_bus = event_bus
        self._conversation_id: str | None = None
        self._view: list[Message] = []
        self._has_more = False
        self._cursor: str | None = None
        self._loading_older = False
        self._generation = 0
        self._error: str | None = None
        self._logger = structlog.get_logger("difystream.pager")

    # ── Public API ─────────────────────────────────────────────────────────────

    async def load_initial(self, conversation_id: str) -> PageLoad:
        """
        Fetch the newest page of ``conversation_id`` and replace the view with it.

        Switching to a different conversation clears the view before the
        fetch. Reloading the same conversation keeps the current view on
        screen until the new page arrives (and keeps it if the fetch fails).
        Any older-page fetch still in flight is discarded when it lands.
        """
        self._generation += 1
        generation = self._generation
        if conversation_id != self._conversation_id:
            self._conversation_id = conversation_id
            self._view = []
            self._has_more = False
            self._cursor = None

        try:
            page = await self._fetch(conversation_id, self._user_id, None)
        except Exception as exc:
            if generation != self._generation:
                return PageLoad(status="skipped", has_more=self._has_more)
            return self._failed(conversation_id, None, exc)

        if generation != self._generation:
            return PageLoad(status="skipped", has_more=self._has_more)

        self._view = merge_pages([], page.data)
        self._cursor = select_cursor(page.data, self._config.cursor_strategy)
        self._has_more = page.has_more and self._cursor is not None
        self._error = None
        self._loaded(conversation_id, None, len(self._view))
        return PageLoad(status="loaded", added=len(self._view), has_more=self._has_more)

    async def load_older(self) -> PageLoad:
        """
        Fetch the page before the oldest one loaded and merge it into the view.

        Returns:
            ``PageLoad`` whose ``anchor`` (when a scroll controller is attached)
            is the position captured before the fetch, for :meth:`ScrollController.restore`.
        """
        conversation_id = self._conversation_id
        if (
            conversation_id is None
            or not self._has_more
            or self._loading_older
            or self._cursor is None
        ):
            return PageLoad(status="skipped", has_more=self._has_more)

        self._loading_older = True
        generation = self._generation
        cursor = self._cursor
        anchor = self._scroll.capture_anchor() if self._scroll is not None else None
        try:
            page = await self._fetch(conversation_id, self._user_id, cursor)
        except Exception as exc:
            if generation != self._generation:
                return PageLoad(status="skipped", has_more=self._has_more)
            load = self._failed(conversation_id, cursor, exc)
            return load.model_copy(update={"anchor": anchor})
        finally:
            self._loading_older = False

        if generation != self._generation:
            self._logger.debug("stale_page_dropped", conversation_id=conversation_id)
            return PageLoad(status="skipped", has_more=self._has_more)

        before = len(self._view)
        self._view = merge_pages(self._view, page.data)
        added = len(self._view) - before
        next_cursor = select_cursor(page.data, self._config.cursor_strategy)

        if page.has_more and (added == 0 or next_cursor is None or next_cursor == cursor):
            # The backend claims more pages but the cursor would not move.
            self._logger.warning(
                "pagination_stalled", conversation_id=conversation_id, cursor=cursor
            )
            self._has_more = False
        else:
            self._has_more = page.has_more
        if next_cursor is not None:
            self._cursor = next_cursor
        self._error = None
        self._loaded(conversation_id, cursor, added)
        return PageLoad(status="loaded", added=added, has_more=self._has_more, anchor=anchor)

    async def refresh(self) -> PageLoad:
        """Reload the newest page of the current conversation."""
        if self._conversation_id is None:
            return PageLoad(status="skipped")
        return await self.load_initial(self._conversation_id)

    def reset(self) -> None:
        """Drop all loaded history, e.g. when starting a new conversation."""
        self._generation += 1
        self._conversation_id = None
        self._view = []
        self._has_more = False
        self._cursor = None
        self._error = None

    @property
    def view(self) -> list[Message]:
        """The merged history, oldest first. A copy; mutating it has no effect."""
        return list(self._view)

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def cursor(self) -> str | None:
        """The id the next :meth:`load_older` will request from."""
        return self._cursor

    @property
    def loading_older(self) -> bool:
        return self._loading_older

    @property
    def error(self) -> str | None:
        """Message of the last failed fetch; cleared by the next successful one."""
        return self._error

    # ── Internals ──────────────────────────────────────────────────────────────

    def _loaded(self, conversation_id: str, cursor: str | None, added: int) -> None:
        self._logger.debug(
            "page_loaded",
            conversation_id=conversation_id,
            cursor=cursor,
            added=added,
            has_more=self._has_more,
        )
        payload: PagePayload = {
            "conversation_id": conversation_id,
            "cursor": cursor,
            "added": added,
            "error": None,
        }
        self._publish(ChatEvent.PAGE_LOADED, dict(payload))

    def _failed(self, conversation_id: str, cursor: str | None, exc: Exception) -> PageLoad:
        self._error = str(exc)
        self._logger.warning(
            "page_load_failed", conversation_id=conversation_id, cursor=cursor, error=self._error
        )
        payload: PagePayload = {
            "conversation_id": conversation_id,
            "cursor": cursor,
            "added": 0,
            "error": self._error,
        }
        self._publish(ChatEvent.PAGE_FAILED, dict(payload))
        return PageLoad(status="failed", has_more=self._has_more, error=self._error)

    def _publish(self, event: ChatEvent, payload: dict[str, Any]) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event, payload)
