"""Conversation history: message pagination, scroll policy, conversation list."""

from difystream.history.conversations import ConversationBackend, ConversationList
from difystream.history.pager import HistoryPager, PageFetcher, merge_pages, select_cursor
from difystream.history.scroll import ScrollController

__all__ = [
    "ConversationBackend",
    "ConversationList",
    "HistoryPager",
    "PageFetcher",
    "ScrollController",
    "merge_pages",
    "select_cursor",
]
