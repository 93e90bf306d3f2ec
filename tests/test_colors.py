"""Tests for label and bar color derivation."""
import pytest
from PySide6.QtGui import QColor

from labgantt.app.colors import (
    BarColors,
    bar_colors,
    color_from_string,
    hex_to_rgba,
    hue_for,
    label_background,
    label_foreground,
    normalize_color,
    string_hash,
)
from labgantt.gitlab.models import Label

DEFAULT = BarColors(QColor("#64b5f6"), QColor("#2196f3"), QColor("#1976d2"))


class TestHashing:
    def test_known_values(self):
        assert string_hash("") == 0
        assert string_hash("a") == 97
        assert hue_for("ab") == 225

    def test_wraps_to_signed_32_bit(self):
        value = string_hash("a fairly long label name that overflows")
        assert -(2**31) <= value < 2**31
        assert 0 <= hue_for("a fairly long label name that overflows") < 360

    def test_stable(self):
        assert color_from_string("backend") == color_from_string("backend")


@pytest.mark.parametrize(
    "raw, expected",
    [("ff0000", "#ff0000"), ("#00ff00", "#00ff00"), ("", "#000000")],
)
def test_normalize_color(raw, expected):
    assert normalize_color(raw) == expected


def test_hex_to_rgba_alpha():
    color = hex_to_rgba("#102030", 0.2)
    assert (color.red(), color.green(), color.blue(), color.alpha()) == (16, 32, 48, 51)


class TestLabelColors:
    def test_explicit_colors(self):
        label = Label("doing", "ff9900", "#000000")
        assert label_background(label).name() == "#ff9900"
        assert label_foreground(label).name() == "#000000"

    def test_missing_colors(self):
        label = Label("misc")
        assert label_background(label) == color_from_string("misc")
        assert label_foreground(label).name() == "#ffffff"


class TestBarColors:
    def test_default_without_status_label(self):
        assert bar_colors([Label("bug", "#ff0000")], ["doing"], DEFAULT) is DEFAULT

    def test_first_status_label_wins(self):
        labels = [Label("bug", "#ff0000"), Label("review", "#00aa00"), Label("doing", "#0000ff")]
        colors = bar_colors(labels, ["doing", "review"], DEFAULT)
        assert colors.progress.name() == "#00aa00"
        assert colors.border.name() == "#00aa00"
        assert colors.background.alpha() == 51

    def test_status_label_without_color_uses_hash(self):
        colors = bar_colors([Label("doing")], ["doing"], DEFAULT)
        assert colors.progress.name() == color_from_string("doing").name()
