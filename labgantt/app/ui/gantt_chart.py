from __future__ import annotations

import logging
from typing import Optional, Sequence

from PySide6.QtCore import Qt, Signal
from PySide6.QtGui import QPainter
from PySide6.QtWidgets import QGridLayout, QSlider, QWidget

from labgantt.gitlab.models import Task

from ..avatar_cache import AvatarCache
from ..layout import compute_layout
from .gantt_renderer import GanttRenderer, GanttTheme
from .interaction import InteractionController

logger = logging.getLogger(__name__)


class GanttCanvas(QWidget):
    """Painted timeline surface; all geometry comes from the controller's layout."""

    taskClicked = Signal(object)
    scrolled = Signal()

    def __init__(self, controller: InteractionController, avatar_cache: Optional[AvatarCache], parent=None) -> None:
        super().__init__(parent)
        self.controller = controller
        self.avatar_cache = avatar_cache
        self.renderer = GanttRenderer()
        self.status_labels: tuple[str, ...] = ()
        self.theme: Optional[GanttTheme] = None
        self.setMouseTracking(True)
        self.setMinimumSize(600, 240)
        self.setFocusPolicy(Qt.FocusPolicy.WheelFocus)
        if avatar_cache is not None:
            avatar_cache.avatarReady.connect(lambda _url: self.update())

    def relayout(self) -> None:
        self.controller.set_layout(compute_layout(self.controller.tasks, self.width(), self.height()))

    def paintEvent(self, event) -> None:  # type: ignore[override]
        self.relayout()
        layout = self.controller.layout
        assert layout is not None
        painter = QPainter(self)
        try:
            self.renderer.draw(
                painter,
                layout,
                self.controller.tasks,
                self.controller.scroll,
                self.avatar_cache,
                self.theme or GanttTheme.from_palette(self.palette()),
                self.status_labels,
            )
        finally:
            painter.end()

    def resizeEvent(self, event) -> None:  # type: ignore[override]
        super().resizeEvent(event)
        self.relayout()
        self.scrolled.emit()
        self.repaint()

    def wheelEvent(self, event) -> None:  # type: ignore[override]
        pixels = event.pixelDelta()
        delta = pixels if not pixels.isNull() else event.angleDelta()
        shift = bool(event.modifiers() & Qt.KeyboardModifier.ShiftModifier)
        if self.controller.wheel(-delta.x(), -delta.y(), shift):
            self.scrolled.emit()
            self.update()
        event.accept()

    def mousePressEvent(self, event) -> None:  # type: ignore[override]
        if event.button() != Qt.MouseButton.LeftButton:
            super().mousePressEvent(event)
            return
        pos = event.position()
        task = self.controller.click(pos.x(), pos.y())
        if task is not None:
            logger.debug("Selected task %s", task.id)
            self.taskClicked.emit(task)
        event.accept()

    def mouseMoveEvent(self, event) -> None:  # type: ignore[override]
        pos = event.position()
        if self.controller.hover(pos.x(), pos.y()):
            self.setCursor(Qt.CursorShape.PointingHandCursor)
        else:
            self.unsetCursor()
        super().mouseMoveEvent(event)


class GanttChart(QWidget):
    """Timeline canvas with its two 0-100 scroll sliders."""

    taskSelected = Signal(object)

    def __init__(self, avatar_cache: Optional[AvatarCache] = None, parent=None) -> None:
        super().__init__(parent)
        self.controller = InteractionController()
        self.canvas = GanttCanvas(self.controller, avatar_cache, self)

        self.h_slider = QSlider(Qt.Orientation.Horizontal, self)
        self.h_slider.setRange(0, 100)
        self.v_slider = QSlider(Qt.Orientation.Vertical, self)
        self.v_slider.setRange(0, 100)
        # Top of the vertical slider is the top of the list.
        self.v_slider.setInvertedAppearance(True)
        self.v_slider.setInvertedControls(True)

        layout = QGridLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(4)
        layout.addWidget(self.canvas, 0, 0)
        layout.addWidget(self.v_slider, 0, 1)
        layout.addWidget(self.h_slider, 1, 0)

        self.h_slider.valueChanged.connect(self._on_h_slider)
        self.v_slider.valueChanged.connect(self._on_v_slider)
        self.canvas.scrolled.connect(self._sync_sliders)
        self.canvas.taskClicked.connect(self.taskSelected)

    # --- public API ---------------------------------------------------------

    def set_tasks(self, tasks: Sequence[Task], *, reset_scroll: bool = False) -> None:
        self.controller.set_tasks(tasks, reset_scroll=reset_scroll)
        self.canvas.relayout()
        self._sync_sliders()
        self.canvas.update()

    def set_status_labels(self, labels: Sequence[str]) -> None:
        self.canvas.status_labels = tuple(labels)
        self.canvas.update()

    def set_theme(self, theme: Optional[GanttTheme]) -> None:
        self.canvas.theme = theme
        self.canvas.update()

    def clear_selection(self) -> None:
        self.controller.clear_selection()

    def scroll_offsets(self) -> tuple[float, float]:
        return self.controller.scroll.offset_x, self.controller.scroll.offset_y

    # --- sliders ------------------------------------------------------------

    def _on_h_slider(self, value: int) -> None:
        if self.controller.slider_horizontal(value):
            self.canvas.update()

    def _on_v_slider(self, value: int) -> None:
        if self.controller.slider_vertical(value):
            self.canvas.update()

    def _sync_sliders(self) -> None:
        horizontal, vertical = self.controller.slider_values()
        for slider, value in ((self.h_slider, horizontal), (self.v_slider, vertical)):
            slider.blockSignals(True)
            slider.setValue(value)
            slider.blockSignals(False)
