"""Stateless painter for the timeline.

:meth:`GanttRenderer.draw` paints one full frame from a precomputed
:class:`~labgantt.app.layout.Layout`; it never touches the layout, the scroll
state or the tasks, so calling it twice with the same inputs paints the same
pixels.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional, Sequence

from PySide6.QtCore import QPointF, QRectF, Qt
from PySide6.QtGui import QColor, QFont, QFontMetricsF, QPainter, QPainterPath, QPalette, QPen

from labgantt.gitlab.models import Label, Task

from ..avatar_cache import AvatarCache
from ..colors import BarColors, bar_colors, label_background, label_foreground
from ..layout import Layout, ScrollState, next_month

FONT_FAMILY = "Inter"
TASK_NAME_HEIGHT = 15
LABELS_HEIGHT = 18
LABEL_SPACING = 10
LABEL_PADDING = 16
LABEL_GAP = 8
LABEL_RADIUS = 7
BAR_HEIGHT = 32
BAR_PADDING = 6.5
BAR_RADIUS = 6
AVATAR_SIZE = 28
AVATAR_LEFT = 6
MAX_AVATARS = 1
NAME_LEFT = 12
ELLIPSIS = "..."

Measure = Callable[[str], float]


@dataclass(frozen=True)
class GanttTheme:
    background: QColor
    header_background: QColor
    border: QColor
    text: QColor
    text_secondary: QColor
    weekend: QColor
    placeholder: QColor
    unsynced: QColor
    bar: BarColors

    @classmethod
    def light(cls) -> "GanttTheme":
        return cls(
            background=QColor("#ffffff"),
            header_background=QColor("#fafafa"),
            border=QColor(0, 0, 0, 31),
            text=QColor("#2c3e50"),
            text_secondary=QColor("#64748b"),
            weekend=QColor("#fafafa"),
            placeholder=QColor("#e0e0e0"),
            unsynced=QColor("#f57c00"),
            bar=BarColors(background=QColor("#64b5f6"), progress=QColor("#2196f3"), border=QColor("#1976d2")),
        )

    @classmethod
    def dark(cls) -> "GanttTheme":
        return cls(
            background=QColor("#1e1e1e"),
            header_background=QColor("#262626"),
            border=QColor(255, 255, 255, 31),
            text=QColor("#e6e6e6"),
            text_secondary=QColor("#9aa5b1"),
            weekend=QColor("#262626"),
            placeholder=QColor("#4a4a4a"),
            unsynced=QColor("#ffb74d"),
            bar=BarColors(background=QColor("#1976d2"), progress=QColor("#64b5f6"), border=QColor("#2196f3")),
        )

    @classmethod
    def from_palette(cls, palette: QPalette) -> "GanttTheme":
        window = palette.color(QPalette.ColorRole.Window)
        return cls.dark() if window.lightness() < 128 else cls.light()


def truncate_to_width(text: str, max_width: float, measure: Measure) -> str:
    """Chop one character at a time until ``text + '...'`` fits.

    Text that already fits is returned unchanged. The ellipsis keeps a little
    slack (20px) below ``max_width``.
    """
    if measure(text) <= max_width:
        return text
    truncated = text
    width = measure(truncated)
    while width > max_width - 20 and truncated:
        truncated = truncated[:-1]
        width = measure(truncated + ELLIPSIS)
    return truncated + ELLIPSIS


def layout_label_chips(
    labels: Sequence[Label],
    start_x: float,
    right_edge: float,
    measure: Measure,
) -> list[tuple[Label, float, float]]:
    """Place chips left to right as ``(label, x, width)``.

    A chip that would cross ``right_edge`` is skipped; later, narrower chips
    may still fit in the remaining space.
    """
    placed: list[tuple[Label, float, float]] = []
    x = start_x
    for label in labels:
        width = measure(label.name) + LABEL_PADDING
        if x + width > right_edge:
            continue
        placed.append((label, x, width))
        x += width + LABEL_GAP
    return placed


def _font(pixel_size: int, weight: QFont.Weight = QFont.Weight.Normal) -> QFont:
    font = QFont(FONT_FAMILY)
    font.setPixelSize(pixel_size)
    font.setWeight(weight)
    return font


class GanttRenderer:
    def __init__(self) -> None:
        self.header_font = _font(14, QFont.Weight.Medium)
        self.name_font = _font(14, QFont.Weight.Medium)
        self.small_font = _font(12)
        self.placeholder_font = _font(16, QFont.Weight.Medium)

    def draw(
        self,
        painter: QPainter,
        layout: Layout,
        tasks: Sequence[Task],
        scroll: ScrollState,
        avatar_cache: Optional[AvatarCache],
        theme: GanttTheme,
        status_labels: Sequence[str] = (),
    ) -> None:
        painter.save()
        try:
            painter.setRenderHint(QPainter.RenderHint.Antialiasing, True)
            painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform, True)
            width, height = layout.viewport_width, layout.viewport_height
            painter.fillRect(QRectF(0, 0, width, height), theme.background)

            if layout.empty:
                self._draw_placeholder(painter, layout, theme)
                return

            self._draw_header(painter, layout, scroll, theme)
            self._draw_fixed_header(painter, layout, theme)

            painter.save()
            painter.setClipRect(QRectF(0, layout.header_height, width, height - layout.header_height))
            for index, task in enumerate(tasks):
                if not layout.row_visible(index, scroll.offset_y):
                    continue
                self._draw_row(painter, layout, index, task, scroll, avatar_cache, theme, status_labels)
            painter.restore()

            self._draw_weeks(painter, layout, scroll, theme)
            self._draw_final_separator(painter, layout, len(tasks), scroll, theme)
        finally:
            painter.restore()

    # --- frame parts --------------------------------------------------------

    def _draw_placeholder(self, painter: QPainter, layout: Layout, theme: GanttTheme) -> None:
        painter.setFont(self.placeholder_font)
        painter.setPen(theme.text_secondary)
        painter.drawText(
            QRectF(0, 0, layout.viewport_width, layout.viewport_height),
            Qt.AlignmentFlag.AlignCenter,
            "No tasks to display",
        )

    def _timeline_clip(self, layout: Layout) -> QRectF:
        fixed = layout.fixed_columns_width
        return QRectF(fixed, 0, max(0, layout.viewport_width - fixed), layout.viewport_height)

    def _draw_header(self, painter: QPainter, layout: Layout, scroll: ScrollState, theme: GanttTheme) -> None:
        assert layout.min_date is not None and layout.max_date is not None
        painter.save()
        painter.setClipRect(self._timeline_clip(layout))
        fixed = layout.fixed_columns_width
        painter.fillRect(
            QRectF(fixed - scroll.offset_x, 0, layout.content_width, layout.header_height),
            theme.header_background,
        )
        painter.setFont(self.header_font)
        month = layout.min_date
        while month <= layout.max_date:
            following = next_month(month)
            x = layout.x_for(month, scroll.offset_x)
            month_width = (following - month).days * layout.pixels_per_day
            if x + month_width >= fixed and x <= layout.viewport_width:
                painter.fillRect(QRectF(x, 0, month_width, layout.header_height / 2), theme.header_background)
                painter.setPen(theme.text)
                painter.drawText(QPointF(x + 16, 32), f"{month:%B %Y}")
            month = following
        painter.restore()

    def _draw_fixed_header(self, painter: QPainter, layout: Layout, theme: GanttTheme) -> None:
        painter.fillRect(QRectF(0, 0, layout.fixed_columns_width, layout.header_height), theme.header_background)
        painter.setFont(self.small_font)
        painter.setPen(theme.text_secondary)
        baseline = layout.header_height - 16
        painter.drawText(QPointF(4, baseline), "Assignee")
        painter.drawText(QPointF(layout.avatar_column_width + NAME_LEFT, baseline), "Issue")
        self._draw_column_separators(painter, layout, theme)

    def _draw_column_separators(self, painter: QPainter, layout: Layout, theme: GanttTheme) -> None:
        painter.setPen(QPen(theme.border, 1))
        for x in (layout.avatar_column_width, layout.fixed_columns_width):
            painter.drawLine(QPointF(x, 0), QPointF(x, layout.viewport_height))

    def _draw_row(
        self,
        painter: QPainter,
        layout: Layout,
        index: int,
        task: Task,
        scroll: ScrollState,
        avatar_cache: Optional[AvatarCache],
        theme: GanttTheme,
        status_labels: Sequence[str],
    ) -> None:
        y = layout.row_top(index, scroll.offset_y)
        stripe = theme.background if index % 2 == 0 else theme.header_background
        painter.fillRect(QRectF(0, y, layout.viewport_width, layout.row_height), stripe)

        extent = layout.bar_extent(task, scroll.offset_x)
        if extent is not None:
            colors = bar_colors(task.labels, status_labels, theme.bar)
            self._draw_bar(painter, task, extent[0], extent[1], y, colors, theme)

        # Fixed columns sit above the scrolled bars.
        painter.fillRect(QRectF(0, y, layout.fixed_columns_width, layout.row_height), stripe)
        self._draw_assignee(painter, layout, task, y, avatar_cache, theme)
        if task.unsynced:
            painter.setPen(Qt.PenStyle.NoPen)
            painter.setBrush(theme.unsynced)
            painter.drawEllipse(QPointF(layout.avatar_column_width - 6, y + 6), 3, 3)
            painter.setBrush(Qt.BrushStyle.NoBrush)

        painter.setFont(self.name_font)
        painter.setPen(theme.text)
        metrics = QFontMetricsF(self.name_font)
        name = truncate_to_width(task.display_name, layout.info_column_width - 32, metrics.horizontalAdvance)
        painter.drawText(QPointF(layout.avatar_column_width + NAME_LEFT, y + TASK_NAME_HEIGHT), name)

        if task.labels:
            self._draw_labels(painter, layout, task, y)
        self._draw_column_separators(painter, layout, theme)

    def _draw_bar(
        self,
        painter: QPainter,
        task: Task,
        start_x: float,
        end_x: float,
        y: float,
        colors: BarColors,
        theme: GanttTheme,
    ) -> None:
        bar_y = y + BAR_PADDING
        width = end_x - start_x
        rect = QRectF(start_x, bar_y, width, BAR_HEIGHT).normalized()

        painter.setPen(Qt.PenStyle.NoPen)
        painter.setBrush(colors.background)
        painter.drawRoundedRect(rect, BAR_RADIUS, BAR_RADIUS)
        if task.progress > 0:
            painter.setBrush(colors.progress)
            painter.drawRoundedRect(
                QRectF(rect.left(), bar_y, rect.width() * task.progress / 100, BAR_HEIGHT),
                BAR_RADIUS,
                BAR_RADIUS,
            )
        painter.setBrush(Qt.BrushStyle.NoBrush)

        painter.setFont(self.small_font)
        painter.setPen(theme.text)
        text_y = bar_y + BAR_HEIGHT / 2 + 4
        painter.drawText(QPointF(start_x + 8, text_y), task.name)

        painter.setPen(QPen(colors.border, 1))
        painter.drawRoundedRect(rect, BAR_RADIUS, BAR_RADIUS)

        if task.is_closed:
            text_width = QFontMetricsF(self.small_font).horizontalAdvance(task.name)
            strike = QColor(theme.text)
            strike.setAlphaF(0.8)
            painter.setPen(QPen(strike, 1))
            painter.drawLine(QPointF(start_x + 8, text_y - 2), QPointF(start_x + 8 + text_width, text_y - 2))

    def _draw_assignee(
        self,
        painter: QPainter,
        layout: Layout,
        task: Task,
        y: float,
        avatar_cache: Optional[AvatarCache],
        theme: GanttTheme,
    ) -> None:
        if not task.assignees:
            return
        avatar_y = y + (layout.row_height - AVATAR_SIZE) / 2
        for idx, assignee in enumerate(task.assignees[:MAX_AVATARS]):
            if not assignee.avatar_url:
                continue
            avatar_x = AVATAR_LEFT + idx * (AVATAR_SIZE + 4)
            circle = QRectF(avatar_x, avatar_y, AVATAR_SIZE, AVATAR_SIZE)
            painter.setPen(Qt.PenStyle.NoPen)
            painter.setBrush(theme.placeholder)
            painter.drawEllipse(circle)
            painter.setBrush(Qt.BrushStyle.NoBrush)
            if avatar_cache is None:
                continue
            image = avatar_cache.get(assignee.avatar_url)
            if image is None:
                avatar_cache.request(assignee.avatar_url)
                continue
            clip = QPainterPath()
            clip.addEllipse(circle)
            painter.save()
            painter.setClipPath(clip, Qt.ClipOperation.IntersectClip)
            painter.drawImage(circle, image)
            painter.restore()

        extra = len(task.assignees) - MAX_AVATARS
        if extra > 0:
            painter.setFont(self.small_font)
            painter.setPen(theme.text_secondary)
            painter.drawText(QPointF(8 + MAX_AVATARS * (AVATAR_SIZE + 4), avatar_y + AVATAR_SIZE - 6), f"+{extra}")

    def _draw_labels(self, painter: QPainter, layout: Layout, task: Task, y: float) -> None:
        painter.setFont(self.small_font)
        metrics = QFontMetricsF(self.small_font)
        chips = layout_label_chips(
            task.labels,
            layout.avatar_column_width + 8,
            layout.fixed_columns_width - 16,
            metrics.horizontalAdvance,
        )
        chip_y = y + TASK_NAME_HEIGHT + LABEL_SPACING
        for label, x, width in chips:
            rect = QRectF(x, chip_y, width, LABELS_HEIGHT)
            painter.setPen(Qt.PenStyle.NoPen)
            painter.setBrush(label_background(label))
            painter.drawRoundedRect(rect, LABEL_RADIUS, LABEL_RADIUS)
            painter.setBrush(Qt.BrushStyle.NoBrush)
            painter.setPen(label_foreground(label))
            painter.drawText(
                rect.adjusted(8, 0, 0, 0), Qt.AlignmentFlag.AlignVCenter | Qt.AlignmentFlag.AlignLeft, label.name
            )

    def _draw_weeks(self, painter: QPainter, layout: Layout, scroll: ScrollState, theme: GanttTheme) -> None:
        assert layout.min_date is not None and layout.max_date is not None
        painter.save()
        painter.setClipRect(self._timeline_clip(layout))
        painter.setFont(self.small_font)
        week_width = layout.pixels_per_day * 7
        gridline = QColor(theme.border)
        gridline.setAlphaF(0.05)
        half = layout.header_height / 2
        week = layout.min_date
        week_number = 0
        while week <= layout.max_date:
            x = layout.x_for(week, scroll.offset_x)
            if x + week_width >= layout.fixed_columns_width and x <= layout.viewport_width:
                band = theme.weekend if week_number % 2 == 0 else theme.background
                painter.fillRect(QRectF(x, half, week_width, half), band)
                painter.setPen(theme.text_secondary)
                painter.drawText(QPointF(x + 8, layout.header_height - 16), f"{week:%b} {week.day}")
                painter.setPen(QPen(gridline, 1))
                painter.drawLine(QPointF(x, layout.header_height), QPointF(x, layout.viewport_height))
            week += timedelta(days=7)
            week_number += 1
        painter.restore()

    def _draw_final_separator(
        self, painter: QPainter, layout: Layout, row_count: int, scroll: ScrollState, theme: GanttTheme
    ) -> None:
        if row_count <= 0:
            return
        y = layout.row_top(row_count, scroll.offset_y)
        if y < layout.header_height:
            return
        painter.setPen(QPen(theme.border, 1))
        painter.drawLine(QPointF(0, y), QPointF(layout.viewport_width, y))
