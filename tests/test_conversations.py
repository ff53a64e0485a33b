"""Tests for ConversationList."""

from __future__ import annotations

import asyncio

import pytest

from difystream.api.client import HTTPStatusFault, NetworkFault
from difystream.history.conversations import ConversationList
from difystream.models.message import Conversation, ConversationPage


def _conv(conversation_id: str) -> Conversation:
    return Conversation(id=conversation_id, name=f"Chat {conversation_id}")


class FakeConversationBackend:
    """Serves conversation pages keyed by ``last_id`` and records calls."""

    def __init__(self, pages: dict[str | None, ConversationPage]) -> None:
        self.pages = pages
        self.calls: list[tuple[str, str | None, int]] = []
        self.deleted: list[str] = []
        self.renamed: list[tuple[str, str]] = []
        self.fail_with: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def get_conversations(self, user_id, last_id=None, limit=20):
        self.calls.append((user_id, last_id, limit))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return self.pages.get(last_id, ConversationPage())

    async def delete_conversation(self, conversation_id, user_id):
        if self.fail_with is not None:
            raise self.fail_with
        self.deleted.append(conversation_id)
        self.pages[None] = ConversationPage(
            data=[c for c in self.pages[None].data if c.id != conversation_id]
        )

    async def rename_conversation(self, conversation_id, user_id, name):
        if self.fail_with is not None:
            raise self.fail_with
        self.renamed.append((conversation_id, name))


@pytest.fixture
def backend():
    return FakeConversationBackend(
        {
            None: ConversationPage(data=[_conv("c3"), _conv("c2")], has_more=True),
            "c2": ConversationPage(data=[_conv("c2"), _conv("c1")], has_more=False),
        }
    )


class TestConversationList:
    async def test_load_then_more(self, backend, user_id):
        conversations = ConversationList(backend, user_id)
        first = await conversations.load()
        assert first.added == 2
        assert conversations.has_more

        more = await conversations.load_more()
        assert more.added == 1
        assert not conversations.has_more
        assert [c.id for c in conversations.items] == ["c3", "c2", "c1"]
        assert [last_id for _, last_id, _ in backend.calls] == [None, "c2"]

    async def test_load_more_skipped_when_exhausted(self, backend, user_id):
        conversations = ConversationList(backend, user_id)
        await conversations.load()
        await conversations.load_more()
        assert (await conversations.load_more()).status == "skipped"
        assert len(backend.calls) == 2

    async def test_load_more_single_flight(self, backend, user_id):
        conversations = ConversationList(backend, user_id)
        await conversations.load()
        backend.gate = asyncio.Event()
        pending = asyncio.create_task(conversations.load_more())
        await asyncio.sleep(0)
        assert (await conversations.load_more()).status == "skipped"
        backend.gate.set()
        assert (await pending).status == "loaded"

    async def test_page_without_new_items_ends_paging(self, user_id):
        backend = FakeConversationBackend(
            {
                None: ConversationPage(data=[_conv("c1")], has_more=True),
                "c1": ConversationPage(data=[_conv("c1")], has_more=True),
            }
        )
        conversations = ConversationList(backend, user_id)
        await conversations.load()
        load = await conversations.load_more()
        assert load.added == 0
        assert not conversations.has_more

    async def test_failure_leaves_list(self, backend, user_id):
        conversations = ConversationList(backend, user_id)
        await conversations.load()
        backend.fail_with = NetworkFault("offline")
        load = await conversations.load_more()
        assert load.status == "failed"
        assert conversations.error is not None
        assert [c.id for c in conversations.items] == ["c3", "c2"]

    async def test_delete_reloads(self, backend, user_id):
        conversations = ConversationList(backend, user_id)
        await conversations.load()
        await conversations.delete("c3")
        assert backend.deleted == ["c3"]
        assert [c.id for c in conversations.items] == ["c2"]

    async def test_rename_reloads(self, backend, user_id):
        conversations = ConversationList(backend, user_id)
        await conversations.rename("c2", "Renamed")
        assert backend.renamed == [("c2", "Renamed")]
        assert len(backend.calls) == 1

    async def test_delete_failure_raises(self, backend, user_id):
        conversations = ConversationList(backend, user_id)
        await conversations.load()
        backend.fail_with = HTTPStatusFault(403, "Forbidden")
        with pytest.raises(HTTPStatusFault):
            await conversations.delete("c3")
        assert [c.id for c in conversations.items] == ["c3", "c2"]
