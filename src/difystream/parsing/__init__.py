"""Answer text parsing."""

from difystream.parsing.think import (
    CLOSE_MARKER,
    OPEN_MARKER,
    reconstruct_text,
    segment_think_tags,
    visible_text,
)

__all__ = [
    "CLOSE_MARKER",
    "OPEN_MARKER",
    "reconstruct_text",
    "segment_think_tags",
    "visible_text",
]
