"""Scroll bookkeeping for a bottom-anchored chat view."""

from __future__ import annotations

from difystream.models.config import ScrollConfig
from difystream.models.message import ScrollAnchor


class ScrollController:
    """
    Tracks the viewport and decides when the view should move.

    Two policies live here:

    - **Auto-scroll.** The controller remembers whether the user's last
      observed position was within ``bottom_threshold`` of the bottom. When
      content grows (history refreshed, answer streaming in),
      :meth:`on_content_grew` returns the new bottom offset if the view was
      pinned, and ``None`` if the user had scrolled away.
    - **Prepend preservation.** :meth:`capture_anchor` records the offset and
      content height before older history is fetched. After the older items
      are rendered above the viewport, :meth:`restore` shifts the offset by
      the added height so the visible content does not jump.

    Units are whatever the caller measures in (pixels, rows); the controller
    never renders anything.
    """

    def __init__(self, config: ScrollConfig | None = None) -> None:
        self._config = config or ScrollConfig()
        self._offset = 0.0
        self._viewport_height = 0.0
        self._content_height = 0.0
        self._pinned = True

    def observe(self, offset: float, viewport_height: float, content_height: float) -> None:
        """Record a scroll position reported by the view."""
        self._offset = max(0.0, offset)
        self._viewport_height = max(0.0, viewport_height)
        self._content_height = max(0.0, content_height)
        self._pinned = self.distance_from_bottom <= self._config.bottom_threshold

    @property
    def offset(self) -> float:
        return self._offset

    @property
    def distance_from_bottom(self) -> float:
        return max(0.0, self._content_height - self._viewport_height - self._offset)

    @property
    def pinned_to_bottom(self) -> bool:
        """Whether growth should scroll the view to the bottom."""
        return self._pinned

    @property
    def near_top(self) -> bool:
        """Whether the view is close enough to the top to request older history."""
        return self._offset <= self._config.top_threshold

    def on_content_grew(self, content_height: float) -> float | None:
        """
        Apply the auto-scroll policy after the content height changed.

        Returns:
            The offset to scroll to, or ``None`` to leave the viewport alone.
        """
        self._content_height = max(0.0, content_height)
        if not self._pinned:
            return None
        self._offset = max(0.0, self._content_height - self._viewport_height)
        return self._offset

    def capture_anchor(self) -> ScrollAnchor:
        """Snapshot the position before content is prepended."""
        return ScrollAnchor(offset=self._offset, content_height=self._content_height)

    def restore(self, anchor: ScrollAnchor, new_content_height: float) -> float:
        """
        Compensate for content prepended since ``anchor`` was captured.

        Returns:
            The offset that keeps the previously visible content stationary.
        """
        self._content_height = max(0.0, new_content_height)
        self._offset = anchor.restore(self._content_height)
        return self._offset

    def reset(self) -> None:
        """Forget the position, e.g. when switching conversations. The view starts pinned."""
        self._offset = 0.0
        self._content_height = 0.0
        self._pinned = True
