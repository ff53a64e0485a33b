"""
difystream: streaming chat client for Dify-style conversational APIs.

Primary entry point::

    from difystream import AppProfile, ChatController, make_user_id

    profile = AppProfile(id="support", name="Support bot", api_key="app-...")
    async with ChatController(profile, make_user_id()) as chat:
        result = await chat.send("Hello!", on_update=lambda u: print(u.fragment, end=""))
        print(result.answer)
"""

from difystream.api.client import (
    DifyClient,
    HTTPStatusFault,
    NetworkFault,
    ProtocolFault,
    TransportError,
)
from difystream.chat import ChatController
from difystream.events.bus import ChatEvent, EventBus
from difystream.history.conversations import ConversationList
from difystream.history.pager import HistoryPager, merge_pages, select_cursor
from difystream.history.scroll import ScrollController
from difystream.models import (
    AppProfile,
    ChatMessageRequest,
    ClientConfig,
    ConfigError,
    ContentPart,
    Conversation,
    ConversationPage,
    DifyConfig,
    Message,
    MessagePage,
    PageLoad,
    PagerConfig,
    ScrollAnchor,
    ScrollConfig,
    SessionError,
    SessionResult,
    SessionState,
    StreamUpdate,
    make_user_id,
)
from difystream.parsing.think import reconstruct_text, segment_think_tags, visible_text
from difystream.streaming.decoder import MessageDelta, SSEFrameDecoder, StreamEnd, decode_stream
from difystream.streaming.session import (
    SessionClosedError,
    SessionStateError,
    StreamSession,
    make_id,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "ChatController",
    "StreamSession",
    "HistoryPager",
    "ConversationList",
    "ScrollController",
    "make_id",
    "make_user_id",
    # Config
    "AppProfile",
    "ClientConfig",
    "ConfigError",
    "DifyConfig",
    "PagerConfig",
    "ScrollConfig",
    # Models
    "ContentPart",
    "Message",
    "Conversation",
    "MessagePage",
    "ConversationPage",
    "ChatMessageRequest",
    "SessionState",
    "SessionResult",
    "SessionError",
    "StreamUpdate",
    "PageLoad",
    "ScrollAnchor",
    # Streaming
    "SSEFrameDecoder",
    "MessageDelta",
    "StreamEnd",
    "decode_stream",
    "SessionStateError",
    "SessionClosedError",
    # Parsing
    "segment_think_tags",
    "reconstruct_text",
    "visible_text",
    # Pagination helpers
    "merge_pages",
    "select_cursor",
    # Transport
    "DifyClient",
    "TransportError",
    "HTTPStatusFault",
    "NetworkFault",
    "ProtocolFault",
    # Events
    "EventBus",
    "ChatEvent",
]
