from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Sequence

from PySide6.QtCore import QTimer, Signal
from PySide6.QtGui import QAction
from PySide6.QtWidgets import (
    QCheckBox,
    QComboBox,
    QHBoxLayout,
    QLabel,
    QMenu,
    QPushButton,
    QToolButton,
    QVBoxLayout,
    QWidget,
)

from labgantt.gitlab.client import GitLabClient
from labgantt.gitlab.models import Task

from ..avatar_cache import AvatarCache
from ..config import AUTO_REFRESH_INTERVALS, Preferences
from ..edits import EditReconciler
from ..filters import Facets, FilterState, filter_tasks
from ..task_store import TaskStore
from ..workers import WorkerPool
from .gantt_chart import GanttChart
from .task_dialog import TaskDialog

logger = logging.getLogger(__name__)


def _toggled(values: tuple, value, checked: bool) -> tuple:
    if checked and value not in values:
        return values + (value,)
    if not checked:
        return tuple(v for v in values if v != value)
    return values


class GanttPanel(QWidget):
    """Filter bar, auto-refresh controls and the timeline for one task store."""

    refreshRequested = Signal()
    filtersChanged = Signal(object)  # FilterState

    def __init__(
        self,
        store: TaskStore,
        reconciler: EditReconciler,
        avatar_cache: AvatarCache,
        preferences: Preferences,
        client_provider: Callable[[], Optional[GitLabClient]],
        parent=None,
    ) -> None:
        super().__init__(parent)
        self.store = store
        self.reconciler = reconciler
        self.avatar_cache = avatar_cache
        self.preferences = preferences
        self._client_provider = client_provider
        self.filter_state = preferences.load_filter_state()
        self.facets = Facets()
        self._visible_ids: tuple[int, ...] = ()
        self._refreshing = False
        self._dialog: Optional[TaskDialog] = None
        self.runner = WorkerPool(self)

        self.chart = GanttChart(avatar_cache, self)
        self.chart.set_status_labels(self.filter_state.status_labels)
        self.chart.taskSelected.connect(self._open_task)

        self.include_button = self._menu_button("Labels", "Show issues carrying any of these labels.")
        self.exclude_button = self._menu_button("Exclude", "Hide issues carrying any of these labels.")
        self.status_button = self._menu_button("Status", "Labels that color the task bars.")
        self.assignee_button = self._menu_button("Assignees", "Show issues assigned to any of these people.")
        self.milestone_button = self._menu_button("Milestones", "Show issues in any of these milestones.")

        self.show_closed = QCheckBox("Show closed")
        self.show_closed.setChecked(self.filter_state.show_closed)
        self.show_closed.toggled.connect(self._on_show_closed_toggled)

        self.clear_button = QPushButton("Clear filters")
        self.clear_button.clicked.connect(self.clear_filters)

        self.refresh_combo = QComboBox()
        current_interval = preferences.load_auto_refresh_interval()
        for label, interval in AUTO_REFRESH_INTERVALS.items():
            self.refresh_combo.addItem(label, interval)
            if interval == current_interval:
                self.refresh_combo.setCurrentIndex(self.refresh_combo.count() - 1)
        self.refresh_combo.currentIndexChanged.connect(self._on_interval_changed)

        self.refresh_button = QPushButton("Refresh")
        self.refresh_button.clicked.connect(self.request_refresh)
        self.last_updated = QLabel("")
        self.last_updated.setStyleSheet("color: palette(mid);")

        bar = QHBoxLayout()
        for widget in (
            self.include_button,
            self.exclude_button,
            self.status_button,
            self.assignee_button,
            self.milestone_button,
            self.show_closed,
            self.clear_button,
        ):
            bar.addWidget(widget)
        bar.addStretch(1)
        bar.addWidget(self.last_updated)
        bar.addWidget(QLabel("Auto refresh:"))
        bar.addWidget(self.refresh_combo)
        bar.addWidget(self.refresh_button)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(6, 6, 6, 6)
        layout.addLayout(bar)
        layout.addWidget(self.chart, 1)

        self.refresh_timer = QTimer(self)
        self.refresh_timer.timeout.connect(self._on_refresh_tick)
        self._apply_interval(current_interval)

        self.store.changed.connect(self._on_store_changed)
        self._on_store_changed()

    def _menu_button(self, text: str, tooltip: str) -> QToolButton:
        button = QToolButton(self)
        button.setText(text)
        button.setToolTip(tooltip)
        button.setPopupMode(QToolButton.ToolButtonPopupMode.InstantPopup)
        button.setMenu(QMenu(button))
        return button

    # --- filters ------------------------------------------------------------

    def visible_tasks(self) -> list[Task]:
        return filter_tasks(self.store.tasks(), self.filter_state)

    def _set_filter(self, state: FilterState) -> None:
        if state == self.filter_state:
            return
        self.filter_state = state
        self.preferences.save_filter_state(state)
        self.chart.set_status_labels(state.status_labels)
        self.filtersChanged.emit(state)
        self._sync_filter_widgets()
        self._update_chart(force_reset=True)

    def _on_store_changed(self) -> None:
        self.facets = Facets.from_tasks(self.store.tasks())
        self._rebuild_menus()
        self._update_chart()

    def _update_chart(self, force_reset: bool = False) -> None:
        tasks = self.visible_tasks()
        ids = tuple(task.id for task in tasks)
        reset = force_reset or ids != self._visible_ids
        self._visible_ids = ids
        self.chart.set_tasks(tasks, reset_scroll=reset)
        self.clear_button.setEnabled(self.filter_state.is_active())

    def _filter_buttons(self) -> list[tuple[QToolButton, str]]:
        return [
            (self.include_button, "include_labels"),
            (self.exclude_button, "exclude_labels"),
            (self.status_button, "status_labels"),
            (self.assignee_button, "assignee_ids"),
            (self.milestone_button, "milestone_ids"),
        ]

    def _rebuild_menus(self) -> None:
        """Repopulate the menus from the facets of the unfiltered task set."""
        label_entries = [(name, name) for name in self.facets.labels]
        entries = {
            "include_labels": label_entries,
            "exclude_labels": label_entries,
            "status_labels": label_entries,
            "assignee_ids": [(user.name, user.id) for user in self.facets.assignees],
            "milestone_ids": [(m.title, m.id) for m in self.facets.milestones],
        }
        for button, field in self._filter_buttons():
            self._fill_menu(button, entries[field], field)
        self._sync_filter_widgets()

    def _fill_menu(self, button: QToolButton, entries: Sequence[tuple], field: str) -> None:
        menu = button.menu()
        menu.clear()
        if not entries:
            empty = QAction("(none)", menu)
            empty.setEnabled(False)
            menu.addAction(empty)
        for text, value in entries:
            action = QAction(str(text), menu)
            action.setCheckable(True)
            action.setData(value)
            action.toggled.connect(lambda checked, v=value, f=field: self._toggle_value(f, v, checked))
            menu.addAction(action)

    def _sync_filter_widgets(self) -> None:
        """Reflect ``filter_state`` in menu checks, button captions and the toggle."""
        for button, field in self._filter_buttons():
            selected = getattr(self.filter_state, field)
            for action in button.menu().actions():
                if not action.isCheckable():
                    continue
                action.blockSignals(True)
                action.setChecked(action.data() in selected)
                action.blockSignals(False)
            base = button.text().split(" (")[0]
            button.setText(f"{base} ({len(selected)})" if selected else base)
        self.show_closed.blockSignals(True)
        self.show_closed.setChecked(self.filter_state.show_closed)
        self.show_closed.blockSignals(False)

    def _toggle_value(self, field: str, value, checked: bool) -> None:
        current = getattr(self.filter_state, field)
        self._set_filter(self.filter_state.with_changes(**{field: _toggled(current, value, checked)}))

    def _on_show_closed_toggled(self, checked: bool) -> None:
        self._set_filter(self.filter_state.with_changes(show_closed=checked))

    def clear_filters(self) -> None:
        self._set_filter(self.filter_state.cleared())

    # --- auto refresh -------------------------------------------------------

    def _on_interval_changed(self, index: int) -> None:
        interval = int(self.refresh_combo.itemData(index) or 0)
        self.preferences.save_auto_refresh_interval(interval)
        self._apply_interval(interval)

    def _apply_interval(self, interval_ms: int) -> None:
        self.refresh_timer.stop()
        if interval_ms > 0:
            self.refresh_timer.start(interval_ms)
        logger.debug("Auto refresh interval set to %s ms", interval_ms)

    def _on_refresh_tick(self) -> None:
        if self._refreshing:
            logger.debug("Auto refresh skipped; previous refresh still running")
            return
        self.request_refresh()

    def request_refresh(self) -> None:
        self.refreshRequested.emit()

    @property
    def refreshing(self) -> bool:
        return self._refreshing

    def set_refreshing(self, refreshing: bool) -> None:
        self._refreshing = refreshing
        self.refresh_button.setEnabled(not refreshing)

    def mark_updated(self, moment: Optional[datetime] = None) -> None:
        moment = moment or datetime.now()
        self.last_updated.setText(f"Last updated: {moment:%H:%M:%S}")

    def stop(self) -> None:
        """Stop the timer and drop pending avatar loads (view is closing)."""
        self.refresh_timer.stop()
        self.avatar_cache.cancel_pending()
        self.runner.shutdown()

    # --- task dialog --------------------------------------------------------

    def _open_task(self, task: Task) -> None:
        if self._dialog is not None:
            return
        dialog = TaskDialog(
            task,
            self.store,
            self.reconciler,
            self._client_provider,
            runner=self.runner,
            status_labels=self.filter_state.status_labels,
            parent=self,
        )
        self._dialog = dialog
        dialog.finished.connect(self._on_dialog_finished)
        dialog.open()

    def _on_dialog_finished(self, _result: int) -> None:
        if self._dialog is not None:
            self._dialog.deleteLater()
        self._dialog = None
        self.chart.clear_selection()
