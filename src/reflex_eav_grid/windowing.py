"""Windowed rendering: decide which rows of the logical view to materialise.

Only the rows intersecting the viewport, plus ``overscan`` rows on each
side, are handed to the browser.  Rows have a fixed height, so the
window is plain arithmetic on the scroll offset.

:class:`WindowedRenderer` keeps the scroll position across view
changes.  When the coordinator replaces the view wholesale (a new
``generation``) the offset goes back to the top; when rows are only
appended it stays where it is.
"""

import math

from reflex_eav_grid.coordinator import LogicalView
from reflex_eav_grid.errors import ValidationError
from reflex_eav_grid.models import Row

_DEFAULT_ROW_HEIGHT: int = 36
_DEFAULT_OVERSCAN: int = 10
_DEFAULT_VIEWPORT_HEIGHT: int = 600


def max_scroll_offset(row_count: int, viewport_height: float, row_height: float) -> float:
    return max(0.0, row_count * row_height - viewport_height)


def compute_window(
    row_count: int,
    viewport_height: float,
    scroll_offset: float,
    row_height: float = _DEFAULT_ROW_HEIGHT,
    overscan: int = _DEFAULT_OVERSCAN,
) -> range:
    """Return the contiguous index range to render.

    The range covers every row visible in
    ``[scroll_offset, scroll_offset + viewport_height)`` widened by
    *overscan* rows at both ends and clamped to ``[0, row_count)``.
    An out-of-range *scroll_offset* is clamped first.

    Raises:
        ValidationError: If *row_height* is not positive or *overscan*
            is negative.
    """
    if row_height <= 0:
        raise ValidationError("row_height must be positive")
    if overscan < 0:
        raise ValidationError("overscan must not be negative")
    if row_count <= 0:
        return range(0)

    viewport_height = max(0.0, viewport_height)
    offset = min(max(0.0, scroll_offset), max_scroll_offset(row_count, viewport_height, row_height))

    first_visible = int(offset // row_height)
    last_visible = max(first_visible + 1, math.ceil((offset + viewport_height) / row_height))
    start = max(0, first_visible - overscan)
    stop = min(row_count, last_visible + overscan)
    return range(start, stop)


class WindowedRenderer:
    """Tracks viewport geometry and the window over the current view.

    Args:
        viewport_height: Visible height in pixels.
        row_height: Fixed row height in pixels.
        overscan: Extra rows materialised above and below the viewport.
    """

    def __init__(
        self,
        viewport_height: float = _DEFAULT_VIEWPORT_HEIGHT,
        row_height: float = _DEFAULT_ROW_HEIGHT,
        overscan: int = _DEFAULT_OVERSCAN,
    ) -> None:
        if row_height <= 0:
            raise ValidationError("row_height must be positive")
        self.viewport_height = viewport_height
        self.row_height = row_height
        self.overscan = overscan
        self.scroll_offset: float = 0.0
        self.generation: int | None = None
        self.row_count = 0
        self.window = range(0)

    @property
    def total_height(self) -> float:
        return self.row_count * self.row_height

    @property
    def top_padding(self) -> float:
        """Height of the empty space above the first materialised row."""
        return self.window.start * self.row_height

    def sync(self, view: LogicalView) -> range:
        """Recompute the window for *view*.

        Resets the scroll offset when the view's generation changed and
        clamps it when the view shrank.
        """
        if view.generation != self.generation:
            self.generation = view.generation
            self.scroll_offset = 0.0
        self.row_count = len(view)
        self.scroll_offset = min(
            self.scroll_offset,
            max_scroll_offset(self.row_count, self.viewport_height, self.row_height),
        )
        self.window = compute_window(
            self.row_count,
            self.viewport_height,
            self.scroll_offset,
            self.row_height,
            self.overscan,
        )
        return self.window

    def set_viewport(self, scroll_offset: float, viewport_height: float | None = None) -> None:
        """Record a scroll position reported by the browser."""
        if viewport_height is not None and viewport_height > 0:
            self.viewport_height = viewport_height
        self.scroll_offset = max(0.0, scroll_offset)

    def materialize(self, view: LogicalView) -> list[tuple[int, Row]]:
        """Sync with *view* and return the ``(index, row)`` pairs to render."""
        window = self.sync(view)
        return [(i, view.rows[i]) for i in window]
