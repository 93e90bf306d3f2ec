"""Tests for the filter bar and auto-refresh wiring of the timeline panel."""
from datetime import datetime

import pytest

from labgantt.app.avatar_cache import AvatarCache
from labgantt.app.config import Preferences
from labgantt.app.edits import EditReconciler
from labgantt.app.filters import FilterState
from labgantt.app.task_store import TaskStore
from labgantt.app.ui.gantt_panel import GanttPanel
from labgantt.app.workers import run_inline


@pytest.fixture
def prefs_path(tmp_path):
    return tmp_path / "prefs.json"


@pytest.fixture
def panel(qtbot, prefs_path, make_task):
    tasks = [
        make_task(i, end="2024-04-20", labels=["backend" if i % 2 else "frontend"])
        for i in range(1, 21)
    ]
    store = TaskStore(tasks)
    reconciler = EditReconciler(store, lambda: None, run_inline)
    cache = AvatarCache(lambda url: b"")
    widget = GanttPanel(store, reconciler, cache, Preferences(prefs_path), lambda: None)
    qtbot.addWidget(widget)
    widget.chart.canvas.resize(600, 300)
    widget.chart.canvas.relayout()
    yield widget
    widget.stop()
    cache.close()


def _check(button, value):
    for action in button.menu().actions():
        if action.isCheckable() and action.data() == value:
            action.setChecked(True)
            return
    raise AssertionError(f"no menu entry for {value!r}")


class TestFilters:
    def test_menus_offer_every_label(self, panel):
        names = [a.data() for a in panel.include_button.menu().actions()]
        assert names == ["backend", "frontend"]
        assert not panel.clear_button.isEnabled()

    def test_filter_change_resets_scroll_and_persists(self, panel, prefs_path):
        panel.chart.controller.wheel(0, 200)
        assert panel.chart.scroll_offsets()[1] > 0

        _check(panel.include_button, "backend")

        assert panel.chart.scroll_offsets() == (0, 0)
        assert {t.id for t in panel.visible_tasks()} == set(range(1, 21, 2))
        assert panel.include_button.text() == "Labels (1)"
        assert panel.clear_button.isEnabled()
        assert Preferences(prefs_path).load_filter_state().include_labels == ("backend",)

    def test_store_edit_keeps_scroll(self, panel):
        panel.chart.controller.wheel(0, 120)
        before = panel.chart.scroll_offsets()
        panel.store.patch(3, name="Renamed")
        assert panel.chart.scroll_offsets() == before

    def test_clear_filters_keeps_show_closed(self, panel):
        panel.show_closed.setChecked(True)
        _check(panel.exclude_button, "frontend")
        panel.clear_filters()

        assert panel.filter_state == FilterState(show_closed=True)
        assert panel.show_closed.isChecked()
        assert not any(a.isChecked() for a in panel.exclude_button.menu().actions())
        assert panel.exclude_button.text() == "Exclude"

    def test_status_labels_reach_the_canvas(self, panel):
        _check(panel.status_button, "backend")
        assert panel.chart.canvas.status_labels == ("backend",)
        # Status labels color bars but do not hide anything.
        assert len(panel.visible_tasks()) == 20


class TestAutoRefresh:
    def test_tick_skipped_while_refreshing(self, panel):
        requests = []
        panel.refreshRequested.connect(lambda: requests.append(True))

        panel.set_refreshing(True)
        panel._on_refresh_tick()
        assert requests == []
        assert not panel.refresh_button.isEnabled()

        panel.set_refreshing(False)
        panel._on_refresh_tick()
        assert requests == [True]

    def test_interval_change_persists(self, panel, prefs_path):
        assert panel.refresh_timer.isActive()
        panel.refresh_combo.setCurrentIndex(panel.refresh_combo.findData(0))
        assert not panel.refresh_timer.isActive()
        assert Preferences(prefs_path).load_auto_refresh_interval() == 0

        panel.refresh_combo.setCurrentIndex(panel.refresh_combo.findData(30_000))
        assert panel.refresh_timer.interval() == 30_000

    def test_mark_updated(self, panel):
        panel.mark_updated(datetime(2024, 1, 5, 9, 7, 3))
        assert panel.last_updated.text() == "Last updated: 09:07:03"
