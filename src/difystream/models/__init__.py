"""difystream data models."""

from difystream.models.config import (
    AppProfile,
    ClientConfig,
    ConfigError,
    DifyConfig,
    PagerConfig,
    ScrollConfig,
    make_user_id,
)
from difystream.models.message import (
    ChatMessageRequest,
    ContentPart,
    Conversation,
    ConversationPage,
    Message,
    MessagePage,
    PageLoad,
    ScrollAnchor,
    SessionError,
    SessionResult,
    SessionState,
    StreamUpdate,
)

__all__ = [
    # Config
    "AppProfile",
    "ClientConfig",
    "ConfigError",
    "DifyConfig",
    "PagerConfig",
    "ScrollConfig",
    "make_user_id",
    # Content
    "ContentPart",
    # Backend records
    "Message",
    "Conversation",
    "MessagePage",
    "ConversationPage",
    "ChatMessageRequest",
    # Session
    "SessionState",
    "StreamUpdate",
    "SessionError",
    "SessionResult",
    # Pagination
    "ScrollAnchor",
    "PageLoad",
]
