"""Split answer text into visible and ``<think>`` reasoning segments."""

from __future__ import annotations

import re
from collections.abc import Iterable

from difystream.models.message import ContentPart

OPEN_MARKER = "<think>"
CLOSE_MARKER = "</think>"

# Non-greedy body; the closing marker is optional so a region still being
# streamed runs to the end of the text. \Z, not $, so a trailing newline stays
# inside the region.
_THINK_RE = re.compile(
    re.escape(OPEN_MARKER) + r"(.*?)(?:(" + re.escape(CLOSE_MARKER) + r")|\Z)",
    re.DOTALL,
)


def segment_think_tags(text: str) -> list[ContentPart]:
    """
    Split ``text`` into an ordered list of text and reasoning parts.

    The function is stateless: call it again on the full accumulated answer
    every time the answer grows. Only the first closing marker after each
    opening marker is honoured; nested markers are not supported.

    Args:
        text: The full answer text received so far.

    Returns:
        Parts in source order. Empty text parts are never emitted. A reasoning
        region without a closing marker yields a final ``think`` part with
        ``closed=False``.

    Example::

        parts = segment_think_tags("<think>plan</think>Answer")
        # [ContentPart(kind="think", content="plan", closed=True),
        #  ContentPart(kind="text", content="Answer", closed=True)]
    """
    parts: list[ContentPart] = []
    last_index = 0

    for match in _THINK_RE.finditer(text):
        if match.start() > last_index:
            parts.append(ContentPart(kind="text", content=text[last_index : match.start()]))
        parts.append(
            ContentPart(kind="think", content=match.group(1), closed=match.group(2) is not None)
        )
        last_index = match.end()

    if last_index < len(text):
        parts.append(ContentPart(kind="text", content=text[last_index:]))

    return parts


def reconstruct_text(parts: Iterable[ContentPart], *, close_open: bool = False) -> str:
    """
    Rebuild raw answer text from parts produced by :func:`segment_think_tags`.

    Args:
        parts: Parts in source order.
        close_open: Also append a closing marker to reasoning parts that are
            still open. Useful when handing a partial answer to a renderer
            that expects balanced markers.

    Returns:
        The original text (with ``close_open=False``), or the original text
        plus a synthetic closing marker for a trailing open region.
    """
    chunks: list[str] = []
    for part in parts:
        if part.kind == "text":
            chunks.append(part.content)
            continue
        chunks.append(OPEN_MARKER)
        chunks.append(part.content)
        if part.closed or close_open:
            chunks.append(CLOSE_MARKER)
    return "".join(chunks)


def visible_text(parts: Iterable[ContentPart]) -> str:
    """Concatenate only the plain-text parts (reasoning stripped)."""
    return "".join(part.content for part in parts if part.kind == "text")
