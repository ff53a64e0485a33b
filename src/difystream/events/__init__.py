"""difystream event bus."""

from difystream.events.bus import ChatEvent, EventBus, Handler
from difystream.events.payloads import (
    ConversationResolvedPayload,
    InvalidatedPayload,
    PagePayload,
    SessionFailedPayload,
    SessionPayload,
    SessionStartedPayload,
)

__all__ = [
    "ChatEvent",
    "ConversationResolvedPayload",
    "EventBus",
    "Handler",
    "InvalidatedPayload",
    "PagePayload",
    "SessionFailedPayload",
    "SessionPayload",
    "SessionStartedPayload",
]
