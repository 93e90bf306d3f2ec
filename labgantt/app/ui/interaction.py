"""Scroll and selection state for the timeline, independent of Qt widgets."""

from __future__ import annotations

import math
from typing import Optional, Sequence

from labgantt.gitlab.models import Task

from ..layout import NAME_BAND, Layout, ScrollState


class InteractionController:
    """Owns scroll offsets and the selected task for one chart.

    The widget feeds raw pointer/wheel input in and reads offsets back out;
    every offset change goes through :meth:`ScrollState.clamped`.
    """

    def __init__(self) -> None:
        self.layout: Optional[Layout] = None
        self.tasks: list[Task] = []
        self.scroll = ScrollState()
        self.selected: Optional[Task] = None

    # --- model updates ------------------------------------------------------

    def set_layout(self, layout: Layout) -> None:
        self.layout = layout
        self.scroll = self.scroll.clamped(layout)

    def set_tasks(self, tasks: Sequence[Task], *, reset_scroll: bool = False) -> None:
        self.tasks = list(tasks)
        if reset_scroll:
            self.scroll = ScrollState()
        if self.selected is not None:
            self.selected = next((t for t in self.tasks if t.id == self.selected.id), None)

    def _set_scroll(self, offset_x: float, offset_y: float) -> bool:
        updated = ScrollState(offset_x, offset_y)
        if self.layout is not None:
            updated = updated.clamped(self.layout)
        changed = updated != self.scroll
        self.scroll = updated
        return changed

    # --- wheel & sliders ----------------------------------------------------

    def wheel(self, dx: float, dy: float, shift: bool = False) -> bool:
        """Apply a wheel delta (pixels). Returns True when the offsets moved."""
        if self.selected is not None or self.layout is None:
            return False
        if abs(dx) > abs(dy) or shift:
            delta = dx if abs(dx) > abs(dy) else dy
            return self._set_scroll(self.scroll.offset_x + delta, self.scroll.offset_y)
        return self._set_scroll(self.scroll.offset_x, self.scroll.offset_y + dy)

    def slider_horizontal(self, percent: float) -> bool:
        if self.layout is None:
            return False
        return self._set_scroll(percent / 100.0 * self.layout.max_horizontal_scroll, self.scroll.offset_y)

    def slider_vertical(self, percent: float) -> bool:
        if self.layout is None:
            return False
        return self._set_scroll(self.scroll.offset_x, percent / 100.0 * self.layout.max_vertical_scroll)

    def slider_values(self) -> tuple[int, int]:
        if self.layout is None:
            return 0, 0

        def _percent(offset: float, maximum: float) -> int:
            return round(offset / maximum * 100) if maximum > 0 else 0

        return (
            _percent(self.scroll.offset_x, self.layout.max_horizontal_scroll),
            _percent(self.scroll.offset_y, self.layout.max_vertical_scroll),
        )

    # --- pointer ------------------------------------------------------------

    def row_at(self, y: float) -> Optional[int]:
        if self.layout is None or y < self.layout.header_height:
            return None
        row = math.floor((y + self.scroll.offset_y - self.layout.header_height) / self.layout.row_height)
        if 0 <= row < len(self.tasks):
            return row
        return None

    def hit_test(self, x: float, y: float) -> Optional[Task]:
        """Task whose info-column row contains ``(x, y)``, if any."""
        layout = self.layout
        if layout is None:
            return None
        if not (layout.avatar_column_width <= x < layout.fixed_columns_width):
            return None
        row = self.row_at(y)
        return self.tasks[row] if row is not None else None

    def click(self, x: float, y: float) -> Optional[Task]:
        self.selected = self.hit_test(x, y)
        return self.selected

    def hover(self, x: float, y: float) -> bool:
        """True when the pointer is over a task name (pointer cursor)."""
        task = self.hit_test(x, y)
        if task is None or self.layout is None:
            return False
        row = self.row_at(y)
        assert row is not None
        offset = y - self.layout.row_top(row, self.scroll.offset_y)
        return NAME_BAND[0] <= offset <= NAME_BAND[1]

    def clear_selection(self) -> None:
        self.selected = None
