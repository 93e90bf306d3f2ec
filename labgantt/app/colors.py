from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from PySide6.QtGui import QColor

from labgantt.gitlab.models import Label

STATUS_TINT_ALPHA = 0.2
HASH_SATURATION = 90
HASH_LIGHTNESS = 45


def normalize_color(color: str) -> str:
    """Prefix ``#`` when missing; empty input becomes black."""
    if not color:
        return "#000000"
    return color if color.startswith("#") else f"#{color}"


def hex_to_rgb(color: str) -> tuple[int, int, int]:
    value = normalize_color(color)
    try:
        return int(value[1:3], 16), int(value[3:5], 16), int(value[5:7], 16)
    except ValueError:
        return 0, 0, 0


def hex_to_rgba(color: str, alpha: float) -> QColor:
    r, g, b = hex_to_rgb(color)
    return QColor(r, g, b, round(max(0.0, min(1.0, alpha)) * 255))


def string_hash(text: str) -> int:
    """``h = ord(c) + (h << 5) - h`` folded to a signed 32-bit int."""
    value = 0
    for char in text:
        value = (ord(char) + ((value << 5) - value)) & 0xFFFFFFFF
    if value & 0x80000000:
        value -= 0x100000000
    return value


def hue_for(text: str) -> int:
    return string_hash(text) % 360


def color_from_string(text: str) -> QColor:
    """Stable, non-cryptographic color for strings without one of their own."""
    return QColor.fromHsl(hue_for(text), round(HASH_SATURATION * 255 / 100), round(HASH_LIGHTNESS * 255 / 100))


def label_background(label: Label) -> QColor:
    if label.color:
        return QColor(normalize_color(label.color))
    return color_from_string(label.name)


def label_foreground(label: Label) -> QColor:
    if label.text_color:
        return QColor(normalize_color(label.text_color))
    return QColor("#ffffff")


@dataclass(frozen=True)
class BarColors:
    background: QColor
    progress: QColor
    border: QColor


def bar_colors(labels: Iterable[Label], status_labels: Sequence[str], default: BarColors) -> BarColors:
    """Colors for a task bar: the first status label wins, else the default."""
    for label in labels:
        if label.name in status_labels:
            base = normalize_color(label.color) if label.color else color_from_string(label.name).name()
            return BarColors(
                background=hex_to_rgba(base, STATUS_TINT_ALPHA),
                progress=QColor(base),
                border=QColor(base),
            )
    return default
