"""Coordinate system for the timeline.

Dates map to horizontal pixels relative to ``min_date``; rows map to vertical
pixels below the header. The left avatar and info columns are fixed and sit
over the scrolled timeline.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Sequence

from labgantt.gitlab.models import Task

PIXELS_PER_DAY = 7
ROW_HEIGHT = 45
HEADER_HEIGHT = 80
AVATAR_COLUMN_WIDTH = 40
INFO_COLUMN_WIDTH = 400
TAIL_PADDING_DAYS = 14
# Task-name band inside a row, as (top, bottom) offsets from the row top.
NAME_BAND = (2, 20)

_SECONDS_PER_DAY = 86400.0


def parse_date(value: object) -> Optional[datetime]:
    """Parse a GitLab date or timestamp into a naive UTC datetime.

    Returns None for anything unparseable so callers can skip it.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def days_between(origin: datetime, moment: datetime) -> float:
    return (moment - origin).total_seconds() / _SECONDS_PER_DAY


def month_start(moment: datetime) -> datetime:
    return datetime(moment.year, moment.month, 1)


def next_month(moment: datetime) -> datetime:
    if moment.month == 12:
        return datetime(moment.year + 1, 1, 1)
    return datetime(moment.year, moment.month + 1, 1)


@dataclass(frozen=True)
class Layout:
    """Geometry for one draw cycle. ``empty`` layouts carry no dates."""

    viewport_width: int
    viewport_height: int
    row_count: int
    min_date: Optional[datetime] = None
    max_date: Optional[datetime] = None
    total_days: int = 0
    pixels_per_day: int = PIXELS_PER_DAY
    row_height: int = ROW_HEIGHT
    header_height: int = HEADER_HEIGHT
    avatar_column_width: int = AVATAR_COLUMN_WIDTH
    info_column_width: int = INFO_COLUMN_WIDTH
    max_horizontal_scroll: float = 0.0
    max_vertical_scroll: float = 0.0

    @property
    def empty(self) -> bool:
        return self.min_date is None

    @property
    def fixed_columns_width(self) -> int:
        return self.avatar_column_width + self.info_column_width

    @property
    def content_width(self) -> int:
        return self.total_days * self.pixels_per_day

    @property
    def content_height(self) -> int:
        return self.header_height + self.row_count * self.row_height

    def row_top(self, index: int, scroll_y: float) -> float:
        return self.header_height + index * self.row_height - scroll_y

    def row_visible(self, index: int, scroll_y: float) -> bool:
        top = self.row_top(index, scroll_y)
        return not (top + self.row_height < self.header_height or top > self.viewport_height)

    def x_for(self, moment: datetime, scroll_x: float) -> float:
        assert self.min_date is not None
        return self.fixed_columns_width + days_between(self.min_date, moment) * self.pixels_per_day - scroll_x

    def bar_extent(self, task: Task, scroll_x: float) -> Optional[tuple[float, float]]:
        """Horizontal span of a task's bar, or None when it cannot be placed.

        Open-ended tasks (and tasks whose due date does not parse) get exactly
        one day of width.
        """
        if self.min_date is None:
            return None
        start = parse_date(task.start)
        if start is None:
            return None
        start_x = self.x_for(start, scroll_x)
        end = parse_date(task.end) if task.end else None
        if end is None:
            return start_x, start_x + self.pixels_per_day
        return start_x, self.x_for(end, scroll_x)


def compute_layout(
    tasks: Sequence[Task],
    viewport_width: int,
    viewport_height: int,
    *,
    now: Optional[datetime] = None,
) -> Layout:
    moment_now = parse_date(now) if now is not None else datetime.now(timezone.utc).replace(tzinfo=None)
    dates: list[datetime] = []
    for task in tasks:
        start = parse_date(task.start)
        if start is not None:
            dates.append(start)
        end = parse_date(task.end) if task.end else moment_now
        if end is not None:
            dates.append(end)

    if not dates:
        return Layout(viewport_width=viewport_width, viewport_height=viewport_height, row_count=len(tasks))

    min_date = month_start(min(dates))
    max_date = max(dates) + timedelta(days=TAIL_PADDING_DAYS)
    total_days = max(0, math.ceil(days_between(min_date, max_date)))

    fixed = AVATAR_COLUMN_WIDTH + INFO_COLUMN_WIDTH
    content_width = total_days * PIXELS_PER_DAY
    content_height = HEADER_HEIGHT + len(tasks) * ROW_HEIGHT
    return Layout(
        viewport_width=viewport_width,
        viewport_height=viewport_height,
        row_count=len(tasks),
        min_date=min_date,
        max_date=max_date,
        total_days=total_days,
        max_horizontal_scroll=float(max(0, content_width - (viewport_width - fixed))),
        max_vertical_scroll=float(max(0, content_height - (viewport_height - HEADER_HEIGHT))),
    )


@dataclass(frozen=True)
class ScrollState:
    offset_x: float = 0.0
    offset_y: float = 0.0

    def clamped(self, layout: Layout) -> "ScrollState":
        return ScrollState(
            offset_x=min(max(0.0, self.offset_x), layout.max_horizontal_scroll),
            offset_y=min(max(0.0, self.offset_y), layout.max_vertical_scroll),
        )
