from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Optional, Sequence

from markdown import markdown as render_markdown
from PySide6.QtCore import QDate, Qt, QUrl
from PySide6.QtGui import QDesktopServices
from PySide6.QtWidgets import (
    QCheckBox,
    QComboBox,
    QDateEdit,
    QDialog,
    QDialogButtonBox,
    QFormLayout,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QListWidget,
    QListWidgetItem,
    QMessageBox,
    QPlainTextEdit,
    QProgressBar,
    QPushButton,
    QTabWidget,
    QTextBrowser,
    QVBoxLayout,
    QWidget,
)

from labgantt.gitlab.client import GitLabClient, GitLabError
from labgantt.gitlab.models import Milestone, Note, Task, TimeStats, format_duration

from ..edits import EditReconciler
from ..filters import unique_assignees, unique_labels
from ..layout import parse_date
from ..task_store import TaskStore
from ..workers import Runner

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = ["extra", "sane_lists", "tables", "fenced_code", "nl2br"]


def render_description(text: str) -> str:
    if not text.strip():
        return "<p><i>No description</i></p>"
    return render_markdown(text, extensions=MARKDOWN_EXTENSIONS)


def labels_after_close(task: Task, status_labels: Sequence[str]) -> list[str]:
    """Label names an issue keeps when it is closed (status labels are dropped)."""
    return [name for name in task.label_names if name not in status_labels]


def _to_qdate(value: Optional[str]) -> Optional[QDate]:
    parsed = parse_date(value)
    if parsed is None:
        return None
    return QDate(parsed.year, parsed.month, parsed.day)


def _iso(qdate: QDate) -> str:
    return date(qdate.year(), qdate.month(), qdate.day()).isoformat()


class TaskDialog(QDialog):
    """Issue editor: fields, notes and time tracking for one task."""

    def __init__(
        self,
        task: Task,
        store: TaskStore,
        reconciler: EditReconciler,
        client_provider: Callable[[], Optional[GitLabClient]],
        *,
        runner: Runner,
        status_labels: Sequence[str] = (),
        parent=None,
    ) -> None:
        super().__init__(parent)
        self.task_id = task.id
        self._initial = task
        self.store = store
        self.reconciler = reconciler
        self._client_provider = client_provider
        self.status_labels = tuple(status_labels)
        self._runner = runner
        self._closed = False
        self.notes: list[Note] = []
        self.milestones: list[Milestone] = []

        self.setWindowTitle(f"#{task.iid} {task.name}")
        self.resize(760, 640)

        tabs = QTabWidget(self)
        tabs.addTab(self._build_details_tab(), "Details")
        tabs.addTab(self._build_notes_tab(), "Comments")
        tabs.addTab(self._build_time_tab(), "Time tracking")

        buttons = QDialogButtonBox(QDialogButtonBox.Close)
        self.open_button = buttons.addButton("Open in GitLab", QDialogButtonBox.ActionRole)
        self.open_button.clicked.connect(self._open_in_browser)
        self.open_button.setEnabled(bool(task.web_url))
        buttons.rejected.connect(self.reject)

        layout = QVBoxLayout(self)
        layout.addWidget(tabs)
        layout.addWidget(buttons)

        self.store.changed.connect(self._refresh_from_store)
        self._refresh_from_store()
        self.load_milestones()
        self.load_notes()

    @property
    def task(self) -> Task:
        return self.store.get(self.task_id) or self._initial

    # --- details ------------------------------------------------------------

    def _build_details_tab(self) -> QWidget:
        page = QWidget(self)
        form = QFormLayout()

        self.title_edit = QLineEdit()
        self.title_edit.editingFinished.connect(self._save_title)
        form.addRow("Title:", self.title_edit)

        self.state_label = QLabel()
        self.state_button = QPushButton()
        self.state_button.clicked.connect(self._toggle_state)
        state_row = QHBoxLayout()
        state_row.addWidget(self.state_label)
        state_row.addStretch(1)
        state_row.addWidget(self.state_button)
        form.addRow("State:", state_row)

        self.assignee_combo = QComboBox()
        self.assignee_combo.activated.connect(self._save_assignee)
        form.addRow("Assignee:", self.assignee_combo)

        self.milestone_combo = QComboBox()
        self.milestone_combo.activated.connect(self._save_milestone)
        form.addRow("Milestone:", self.milestone_combo)

        self.start_edit = QDateEdit()
        self.start_edit.setCalendarPopup(True)
        self.start_edit.setDisplayFormat("yyyy-MM-dd")
        self.start_edit.editingFinished.connect(self._save_start_date)
        form.addRow("Start date:", self.start_edit)

        self.due_edit = QDateEdit()
        self.due_edit.setCalendarPopup(True)
        self.due_edit.setDisplayFormat("yyyy-MM-dd")
        self.due_edit.editingFinished.connect(self._save_due_date)
        self.due_enabled = QCheckBox("Has due date")
        self.due_enabled.toggled.connect(self._on_due_toggled)
        due_row = QHBoxLayout()
        due_row.addWidget(self.due_enabled)
        due_row.addWidget(self.due_edit, 1)
        form.addRow("Due date:", due_row)

        self.label_list = QListWidget()
        self.label_list.setMaximumHeight(120)
        self.label_list.itemChanged.connect(self._save_labels)
        form.addRow("Labels:", self.label_list)

        self.description_view = QTextBrowser()
        self.description_view.setOpenExternalLinks(True)
        self.description_edit = QPlainTextEdit()
        self.description_edit.setVisible(False)
        self.description_button = QPushButton("Edit description")
        self.description_button.clicked.connect(self._toggle_description_edit)

        self.unsynced_label = QLabel()
        self.unsynced_label.setStyleSheet("color: #f57c00;")
        self.unsynced_label.setWordWrap(True)

        layout = QVBoxLayout(page)
        layout.addLayout(form)
        layout.addWidget(self.description_view, 1)
        layout.addWidget(self.description_edit, 1)
        layout.addWidget(self.description_button, 0, Qt.AlignRight)
        layout.addWidget(self.unsynced_label)
        return page

    def _refresh_from_store(self) -> None:
        task = self.task
        if not self.title_edit.hasFocus():
            self.title_edit.setText(task.name)
        self.state_label.setText("Closed" if task.is_closed else "Open")
        self.state_button.setText("Reopen issue" if task.is_closed else "Close issue")

        self._fill_assignees(task)
        self._fill_milestones(task)
        self._fill_labels(task)

        start = _to_qdate(task.start)
        if start is not None:
            self.start_edit.blockSignals(True)
            self.start_edit.setDate(start)
            self.start_edit.blockSignals(False)
        due = _to_qdate(task.due_date)
        self.due_enabled.blockSignals(True)
        self.due_enabled.setChecked(due is not None)
        self.due_enabled.blockSignals(False)
        self.due_edit.setEnabled(due is not None)
        # Open-ended issues start the editor at their start date, not QDateEdit's 2000-01-01.
        seed = due if due is not None else start if start is not None else QDate.currentDate()
        self.due_edit.blockSignals(True)
        self.due_edit.setDate(seed)
        self.due_edit.blockSignals(False)

        if self.description_edit.isHidden():
            self.description_view.setHtml(render_description(task.description))
        if task.unsynced:
            fields = ", ".join(sorted(task.unsynced))
            self.unsynced_label.setText(f"Not saved to GitLab: {fields}")
        else:
            self.unsynced_label.setText("")
        self._refresh_time(task)

    def _fill_combo(self, combo: QComboBox, entries: list[tuple[str, object]], current: object) -> None:
        """Repopulate ``combo`` only when its entries changed; always select ``current``."""
        existing = [(combo.itemText(i), combo.itemData(i)) for i in range(combo.count())]
        combo.blockSignals(True)
        if existing != entries:
            combo.clear()
            for text, data in entries:
                combo.addItem(text, data)
        index = combo.findData(current) if current is not None else 0
        combo.setCurrentIndex(max(0, index))
        combo.blockSignals(False)

    def _fill_assignees(self, task: Task) -> None:
        entries: list[tuple[str, object]] = [("Unassigned", None)]
        entries += [(user.name, user.id) for user in unique_assignees(self.store.tasks())]
        self._fill_combo(self.assignee_combo, entries, task.assignees[0].id if task.assignees else None)

    def _fill_milestones(self, task: Task) -> None:
        choices = list(self.milestones)
        if task.milestone is not None and all(m.id != task.milestone.id for m in choices):
            choices.insert(0, task.milestone)
        entries: list[tuple[str, object]] = [("No milestone", None)]
        entries += [(milestone.title, milestone.id) for milestone in choices]
        self._fill_combo(self.milestone_combo, entries, task.milestone.id if task.milestone else None)

    def _fill_labels(self, task: Task) -> None:
        names = unique_labels(self.store.tasks())
        self.label_list.blockSignals(True)
        if [self.label_list.item(row).text() for row in range(self.label_list.count())] != names:
            self.label_list.clear()
            for name in names:
                item = QListWidgetItem(name)
                item.setFlags(item.flags() | Qt.ItemIsUserCheckable)
                self.label_list.addItem(item)
        for row in range(self.label_list.count()):
            item = self.label_list.item(row)
            item.setCheckState(Qt.Checked if item.text() in task.label_names else Qt.Unchecked)
        self.label_list.blockSignals(False)

    def _save_title(self) -> None:
        title = self.title_edit.text().strip()
        if title and title != self.task.name:
            self.reconciler.set_title(self.task_id, title)

    def _toggle_description_edit(self) -> None:
        if not self.description_edit.isHidden():
            text = self.description_edit.toPlainText().strip()
            if text != self.task.description:
                self.reconciler.set_description(self.task_id, text)
            self.description_edit.setVisible(False)
            self.description_view.setVisible(True)
            self.description_button.setText("Edit description")
            self.description_view.setHtml(render_description(self.task.description))
        else:
            self.description_edit.setPlainText(self.task.description)
            self.description_view.setVisible(False)
            self.description_edit.setVisible(True)
            self.description_button.setText("Save description")

    def _save_assignee(self, index: int) -> None:
        user_id = self.assignee_combo.itemData(index)
        user = next((u for u in unique_assignees(self.store.tasks()) if u.id == user_id), None)
        self.reconciler.set_assignee(self.task_id, user)

    def _save_milestone(self, index: int) -> None:
        milestone_id = self.milestone_combo.itemData(index)
        known = list(self.milestones)
        if self.task.milestone is not None:
            known.append(self.task.milestone)
        milestone = next((m for m in known if m.id == milestone_id), None)
        self.reconciler.set_milestone(self.task_id, milestone)

    def _save_start_date(self) -> None:
        value = _iso(self.start_edit.date())
        current = parse_date(self.task.start)
        if current is None or current.date().isoformat() != value:
            self.reconciler.set_start_date(self.task_id, value)

    def _save_due_date(self) -> None:
        if not self.due_enabled.isChecked():
            return
        value = _iso(self.due_edit.date())
        if value != self.task.due_date:
            self.reconciler.set_due_date(self.task_id, value)

    def _on_due_toggled(self, checked: bool) -> None:
        self.due_edit.setEnabled(checked)
        if checked:
            self._save_due_date()
        elif self.task.due_date:
            self.reconciler.set_due_date(self.task_id, None)

    def _save_labels(self, _item: QListWidgetItem) -> None:
        names = [
            self.label_list.item(row).text()
            for row in range(self.label_list.count())
            if self.label_list.item(row).checkState() == Qt.Checked
        ]
        # Keep the task's existing order, then append new selections.
        ordered = [n for n in self.task.label_names if n in names] + [
            n for n in names if n not in self.task.label_names
        ]
        if ordered != self.task.label_names:
            self.reconciler.set_labels(self.task_id, ordered)

    def _toggle_state(self) -> None:
        task = self.task
        if task.is_closed:
            self.reconciler.set_state(self.task_id, closed=False)
            return
        remaining = labels_after_close(task, self.status_labels)
        if remaining != task.label_names:
            self.reconciler.set_state(self.task_id, closed=True, remaining_labels=remaining)
        else:
            self.reconciler.set_state(self.task_id, closed=True)

    def _open_in_browser(self) -> None:
        if self.task.web_url:
            QDesktopServices.openUrl(QUrl(self.task.web_url))

    # --- remote helpers -----------------------------------------------------

    def _run(self, call: Callable, on_success: Callable, what: str) -> bool:
        client = self._client_provider()
        if client is None:
            logger.warning("Cannot %s: not connected", what)
            return False

        def _succeeded(result) -> None:
            if not self._closed:
                on_success(result)

        def _failed(exc: Exception) -> None:
            logger.warning("Failed to %s for task %s: %s", what, self.task_id, exc)
            if isinstance(exc, GitLabError) and not self._closed:
                self.status_line.setText(f"Failed to {what}: {exc}")

        self._runner(lambda: call(client), _succeeded, _failed)
        return True

    def load_milestones(self) -> None:
        project_id = self.task.project_id

        def _loaded(milestones: list[Milestone]) -> None:
            self.milestones = milestones
            self._fill_milestones(self.task)

        self._run(lambda client: client.fetch_milestones(project_id), _loaded, "load milestones")

    # --- notes --------------------------------------------------------------

    def _build_notes_tab(self) -> QWidget:
        page = QWidget(self)
        self.notes_list = QListWidget()
        self.notes_list.setWordWrap(True)
        self.notes_list.currentRowChanged.connect(self._on_note_selected)
        self.note_edit = QPlainTextEdit()
        self.note_edit.setPlaceholderText("Write a comment…")
        self.note_edit.setMaximumHeight(120)

        self.add_note_button = QPushButton("Comment")
        self.add_note_button.clicked.connect(self.add_note)
        self.update_note_button = QPushButton("Update")
        self.update_note_button.clicked.connect(self.update_selected_note)
        self.delete_note_button = QPushButton("Delete")
        self.delete_note_button.clicked.connect(self.delete_selected_note)
        self.update_note_button.setEnabled(False)
        self.delete_note_button.setEnabled(False)

        self.status_line = QLabel()
        self.status_line.setWordWrap(True)

        row = QHBoxLayout()
        row.addWidget(self.status_line, 1)
        row.addWidget(self.delete_note_button)
        row.addWidget(self.update_note_button)
        row.addWidget(self.add_note_button)

        layout = QVBoxLayout(page)
        layout.addWidget(self.notes_list, 1)
        layout.addWidget(self.note_edit)
        layout.addLayout(row)
        return page

    def load_notes(self) -> None:
        task = self.task
        self._run(lambda client: client.fetch_notes(task), self._show_notes, "load comments")

    def _show_notes(self, notes: list[Note]) -> None:
        self.notes = [note for note in notes if not note.system]
        self.notes_list.clear()
        for note in self.notes:
            author = note.author.name if note.author else "Unknown"
            stamp = note.created_at[:16].replace("T", " ")
            item = QListWidgetItem(f"{author} · {stamp}\n{note.body}")
            item.setData(Qt.UserRole, note.id)
            self.notes_list.addItem(item)
        self.status_line.setText("")

    def _selected_note(self) -> Optional[Note]:
        row = self.notes_list.currentRow()
        if 0 <= row < len(self.notes):
            return self.notes[row]
        return None

    def _on_note_selected(self, _row: int) -> None:
        note = self._selected_note()
        self.update_note_button.setEnabled(note is not None)
        self.delete_note_button.setEnabled(note is not None)
        if note is not None:
            self.note_edit.setPlainText(note.body)

    def add_note(self) -> None:
        body = self.note_edit.toPlainText().strip()
        if not body:
            return
        task = self.task

        def _created(_note) -> None:
            self.note_edit.clear()
            self.load_notes()

        self._run(lambda client: client.create_note(task, body), _created, "add comment")

    def update_selected_note(self) -> None:
        note = self._selected_note()
        body = self.note_edit.toPlainText().strip()
        if note is None or not body or body == note.body:
            return
        task = self.task
        self._run(lambda client: client.update_note(task, note.id, body), lambda _n: self.load_notes(), "update comment")

    def delete_selected_note(self) -> None:
        note = self._selected_note()
        if note is None:
            return
        answer = QMessageBox.question(self, "Delete comment", "Delete this comment?")
        if answer != QMessageBox.Yes:
            return
        task = self.task
        self._run(lambda client: client.delete_note(task, note.id), lambda _r: self.load_notes(), "delete comment")

    # --- time tracking ------------------------------------------------------

    def _build_time_tab(self) -> QWidget:
        page = QWidget(self)
        self.estimate_label = QLabel()
        self.spent_label = QLabel()
        self.time_progress = QProgressBar()
        self.time_progress.setRange(0, 100)
        self.duration_edit = QLineEdit()
        self.duration_edit.setPlaceholderText("e.g. 1h 30m")

        add_spent = QPushButton("Add time spent")
        add_spent.clicked.connect(lambda: self._time_action("add_time_spent"))
        set_estimate = QPushButton("Set estimate")
        set_estimate.clicked.connect(lambda: self._time_action("set_time_estimate"))
        reset_spent = QPushButton("Reset spent")
        reset_spent.clicked.connect(lambda: self._time_action("reset_time_spent"))
        reset_estimate = QPushButton("Reset estimate")
        reset_estimate.clicked.connect(lambda: self._time_action("reset_time_estimate"))

        form = QFormLayout()
        form.addRow("Estimate:", self.estimate_label)
        form.addRow("Spent:", self.spent_label)
        form.addRow("", self.time_progress)
        form.addRow("Duration:", self.duration_edit)

        row = QHBoxLayout()
        for button in (add_spent, set_estimate, reset_spent, reset_estimate):
            row.addWidget(button)

        layout = QVBoxLayout(page)
        layout.addLayout(form)
        layout.addLayout(row)
        layout.addStretch(1)
        return page

    def _refresh_time(self, task: Task) -> None:
        self.estimate_label.setText(format_duration(task.time_estimate) if task.time_estimate else "None")
        self.spent_label.setText(format_duration(task.time_spent) if task.time_spent else "None")
        if task.time_estimate > 0:
            self.time_progress.setValue(min(100, round(task.time_spent / task.time_estimate * 100)))
            self.time_progress.setVisible(True)
        else:
            self.time_progress.setVisible(False)

    def _time_action(self, method: str) -> None:
        duration = self.duration_edit.text().strip()
        needs_duration = method in ("add_time_spent", "set_time_estimate")
        if needs_duration and not duration:
            return
        task = self.task

        def _call(client: GitLabClient) -> TimeStats:
            action = getattr(client, method)
            return action(task, duration) if needs_duration else action(task)

        def _applied(stats: TimeStats) -> None:
            self.store.patch(self.task_id, time_estimate=stats.time_estimate, time_spent=stats.total_time_spent)
            self.duration_edit.clear()

        self._run(_call, _applied, method.replace("_", " "))

    def done(self, result: int) -> None:  # type: ignore[override]
        self._save_title()
        try:
            self.store.changed.disconnect(self._refresh_from_store)
        except (RuntimeError, TypeError):
            pass
        self._closed = True
        super().done(result)
