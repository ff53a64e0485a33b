"""The user's conversation list: paging, delete, rename."""

from __future__ import annotations

from typing import Protocol

import structlog

from difystream.models.config import PagerConfig
from difystream.models.message import Conversation, ConversationPage, PageLoad


class ConversationBackend(Protocol):
    """The subset of :class:`~difystream.api.client.DifyClient` the list needs."""

    async def get_conversations(
        self, user_id: str, last_id: str | None = None, limit: int = 20
    ) -> ConversationPage: ...

    async def delete_conversation(self, conversation_id: str, user_id: str) -> None: ...

    async def rename_conversation(
        self, conversation_id: str, user_id: str, name: str
    ) -> None: ...


class ConversationList:
    """
    Newest-first list of conversations, extended page by page.

    Fetch failures come back as ``PageLoad(status="failed")`` and leave the
    list unchanged. :meth:`delete` and :meth:`rename` are explicit user actions
    and raise :class:`~difystream.api.client.TransportError` on failure.
    """

    def __init__(
        self,
        backend: ConversationBackend,
        user_id: str,
        config: PagerConfig | None = None,
    ) -> None:
        self._backend = backend
        self._user_id = user_id
        self._config = config or PagerConfig()
        self._items: list[Conversation] = []
        self._has_more = False
        self._loading_more = False
        self._generation = 0
        self._error: str | None = None
        self._logger = structlog.get_logger("difystream.conversations")

    async def load(self) -> PageLoad:
        """Fetch the first page and replace the list."""
        self._generation += 1
        generation = self._generation
        try:
            page = await self._backend.get_conversations(
                self._user_id, None, self._config.page_limit
            )
        except Exception as exc:
            return self._failed(exc)
        if generation != self._generation:
            return PageLoad(status="skipped", has_more=self._has_more)

        self._items = _dedupe([], page.data)
        self._has_more = page.has_more and bool(self._items)
        self._error = None
        return PageLoad(status="loaded", added=len(self._items), has_more=self._has_more)

    async def load_more(self) -> PageLoad:
        """Append the next page. Skipped when nothing is left or a fetch is pending."""
        if not self._has_more or self._loading_more or not self._items:
            return PageLoad(status="skipped", has_more=self._has_more)

        self._loading_more = True
        generation = self._generation
        last_id = self._items[-1].id
        try:
            page = await self._backend.get_conversations(
                self._user_id, last_id, self._config.page_limit
            )
        except Exception as exc:
            return self._failed(exc)
        finally:
            self._loading_more = False
        if generation != self._generation:
            return PageLoad(status="skipped", has_more=self._has_more)

        before = len(self._items)
        self._items = _dedupe(self._items, page.data)
        added = len(self._items) - before
        self._has_more = page.has_more and added > 0
        self._error = None
        return PageLoad(status="loaded", added=added, has_more=self._has_more)

    async def refresh(self) -> PageLoad:
        """Reload from the first page."""
        return await self.load()

    async def delete(self, conversation_id: str) -> None:
        """Delete a conversation on the backend, then reload the list."""
        await self._backend.delete_conversation(conversation_id, self._user_id)
        self._logger.info("conversation_deleted", conversation_id=conversation_id)
        self._items = [c for c in self._items if c.id != conversation_id]
        await self.load()

    async def rename(self, conversation_id: str, name: str) -> None:
        """Rename a conversation on the backend, then reload the list."""
        await self._backend.rename_conversation(conversation_id, self._user_id, name)
        self._logger.info("conversation_renamed", conversation_id=conversation_id)
        await self.load()

    @property
    def items(self) -> list[Conversation]:
        return list(self._items)

    @property
    def has_more(self) -> bool:
        return self._has_more

    @property
    def error(self) -> str | None:
        return self._error

    def _failed(self, exc: Exception) -> PageLoad:
        self._error = str(exc)
        self._logger.warning("conversation_list_failed", error=self._error)
        return PageLoad(status="failed", has_more=self._has_more, error=self._error)


def _dedupe(existing: list[Conversation], incoming: list[Conversation]) -> list[Conversation]:
    seen = {c.id for c in existing}
    merged = list(existing)
    for conversation in incoming:
        if conversation.id not in seen:
            seen.add(conversation.id)
            merged.append(conversation)
    return merged
