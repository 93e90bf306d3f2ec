from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from PySide6.QtCore import QByteArray, Qt
from PySide6.QtWidgets import (
    QComboBox,
    QFormLayout,
    QFrame,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QMainWindow,
    QPushButton,
    QToolButton,
    QVBoxLayout,
    QWidget,
)

from labgantt.gitlab.client import (
    PERIODS,
    GitLabAuthError,
    GitLabClient,
    GitLabConnectionError,
    GitLabError,
    split_project_ids,
)
from labgantt.gitlab.models import AuthContext, Task

from ..avatar_cache import AvatarCache
from ..config import ConnectionSettings, Preferences
from ..edits import EditReconciler
from ..task_store import TaskStore
from ..workers import Runner, WorkerPool
from .gantt_panel import GanttPanel

logger = logging.getLogger(__name__)

PERIOD_LABELS = {
    "1month": "Last month",
    "3months": "Last 3 months",
    "6months": "Last 6 months",
    "1year": "Last year",
    "all": "All time",
}


def describe_error(exc: Exception) -> str:
    if isinstance(exc, GitLabAuthError):
        return "Invalid GitLab token"
    if isinstance(exc, GitLabConnectionError):
        return "Unable to connect to GitLab server"
    return str(exc) or exc.__class__.__name__


class MainWindow(QMainWindow):
    def __init__(
        self,
        preferences: Optional[Preferences] = None,
        *,
        avatar_cache: Optional[AvatarCache] = None,
        runner: Optional[Runner] = None,
        client_factory=GitLabClient,
        parent=None,
    ) -> None:
        super().__init__(parent)
        self.setWindowTitle("LabGantt")
        self.preferences = preferences or Preferences()
        self.avatar_cache = avatar_cache or AvatarCache(parent=self)
        self._pool = WorkerPool(self) if runner is None else None
        self._runner: Runner = runner if runner is not None else self._pool
        self._client_factory = client_factory
        self.client: Optional[GitLabClient] = None
        self._source: Optional[tuple[str, tuple[str, ...]]] = None
        self._generation = 0
        self.project_ids: list[str] = []
        self.period = "1year"

        self.store = TaskStore(parent=self)
        self.reconciler = EditReconciler(self.store, lambda: self.client, self._runner, self)
        self.reconciler.editFailed.connect(self._on_edit_failed)

        self.panel = GanttPanel(
            self.store,
            self.reconciler,
            self.avatar_cache,
            self.preferences,
            lambda: self.client,
            self,
        )
        self.panel.refreshRequested.connect(self.refresh)

        central = QWidget(self)
        layout = QVBoxLayout(central)
        layout.setContentsMargins(8, 8, 8, 8)
        layout.addWidget(self._build_connection_form())
        layout.addWidget(self._build_banner())
        layout.addWidget(self.panel, 1)
        self.setCentralWidget(central)

        self._load_connection_fields(self.preferences.load_connection())
        self._restore_geometry()

    # --- widgets ------------------------------------------------------------

    def _build_connection_form(self) -> QWidget:
        box = QFrame(self)
        box.setFrameShape(QFrame.StyledPanel)
        form = QFormLayout()
        self.url_edit = QLineEdit()
        self.url_edit.setPlaceholderText("gitlab.com")
        form.addRow("GitLab URL:", self.url_edit)
        self.projects_edit = QLineEdit()
        self.projects_edit.setPlaceholderText("Project IDs, comma separated")
        form.addRow("Projects:", self.projects_edit)
        self.token_edit = QLineEdit()
        self.token_edit.setEchoMode(QLineEdit.Password)
        self.token_edit.setPlaceholderText("Personal access token")
        form.addRow("Token:", self.token_edit)
        self.period_combo = QComboBox()
        for period in PERIODS:
            self.period_combo.addItem(PERIOD_LABELS[period], period)
        form.addRow("Period:", self.period_combo)

        self.connect_button = QPushButton("Connect")
        self.connect_button.setDefault(True)
        self.connect_button.clicked.connect(self.connect_to_gitlab)
        self.disconnect_button = QPushButton("Disconnect")
        self.disconnect_button.clicked.connect(self.disconnect)
        self.disconnect_button.setEnabled(False)
        self.token_edit.returnPressed.connect(self.connect_to_gitlab)

        buttons = QVBoxLayout()
        buttons.addWidget(self.connect_button)
        buttons.addWidget(self.disconnect_button)
        buttons.addStretch(1)

        row = QHBoxLayout(box)
        row.addLayout(form, 1)
        row.addLayout(buttons)
        return box

    def _build_banner(self) -> QWidget:
        self.banner = QFrame(self)
        self.banner.setStyleSheet(
            "QFrame { background: #fdecea; border: 1px solid #f5c2c0; border-radius: 4px; }"
            "QLabel { color: #b71c1c; border: none; }"
        )
        self.banner_label = QLabel()
        self.banner_label.setWordWrap(True)
        close = QToolButton()
        close.setText("✕")
        close.setAutoRaise(True)
        close.clicked.connect(self.hide_error)
        row = QHBoxLayout(self.banner)
        row.setContentsMargins(8, 4, 4, 4)
        row.addWidget(self.banner_label, 1)
        row.addWidget(close, 0, Qt.AlignTop)
        self.banner.setVisible(False)
        return self.banner

    def show_error(self, message: str) -> None:
        self.banner_label.setText(message)
        self.banner.setVisible(True)

    def hide_error(self) -> None:
        self.banner.setVisible(False)

    # --- connection ---------------------------------------------------------

    def _load_connection_fields(self, settings: ConnectionSettings) -> None:
        self.url_edit.setText(settings.gitlab_url)
        self.projects_edit.setText(settings.project_ids)
        self.token_edit.setText(settings.token)
        index = self.period_combo.findData(settings.period)
        self.period_combo.setCurrentIndex(max(0, index))

    def connection_settings(self, connected: bool = False) -> ConnectionSettings:
        return ConnectionSettings(
            gitlab_url=self.url_edit.text().strip(),
            project_ids=self.projects_edit.text().strip(),
            token=self.token_edit.text().strip(),
            period=self.period_combo.currentData() or "1year",
            connected=connected,
        )

    def startup(self, overrides: Optional[dict] = None) -> None:
        """Apply CLI overrides and reconnect when the last session was connected."""
        settings = self.preferences.load_connection()
        if overrides:
            settings = ConnectionSettings(
                gitlab_url=overrides.get("gitlab_url") or settings.gitlab_url,
                project_ids=overrides.get("project_ids") or settings.project_ids,
                token=settings.token,
                period=overrides.get("period") or settings.period,
                connected=settings.connected,
            )
            self._load_connection_fields(settings)
        if settings.connected and settings.is_complete():
            logger.info("Reconnecting to %s", settings.gitlab_url)
            self.connect_to_gitlab()

    def connect_to_gitlab(self) -> None:
        settings = self.connection_settings()
        if not settings.is_complete():
            self.show_error("GitLab URL, project IDs and token are required")
            return
        try:
            client = self._client_factory(AuthContext(base_url=settings.gitlab_url, token=settings.token))
        except GitLabError as exc:
            self.show_error(describe_error(exc))
            return

        project_ids = split_project_ids(settings.project_ids)
        source = (client.auth.base_url, tuple(project_ids))
        self._generation += 1
        generation = self._generation
        self.connect_button.setEnabled(False)
        self.panel.set_refreshing(True)

        def _connect() -> list[Task]:
            client.test_connection()
            return client.fetch_tasks(project_ids, settings.period)

        self._runner(
            _connect,
            lambda tasks: self._on_connected(generation, client, source, settings, tasks),
            lambda exc: self._on_connect_failed(generation, client, exc),
        )

    def _on_connected(
        self,
        generation: int,
        client: GitLabClient,
        source: tuple[str, tuple[str, ...]],
        settings: ConnectionSettings,
        tasks: list[Task],
    ) -> None:
        if generation != self._generation:
            client.close()
            return
        if self._source is not None and self._source != source:
            logger.debug("GitLab source changed; clearing avatar cache")
            self.avatar_cache.clear()
        self._source = source
        if self.client is not None and self.client is not client:
            self.client.close()
        self.client = client
        self.period = settings.period
        self.project_ids = list(source[1])
        self.store.replace_all(tasks)
        self.preferences.save_connection(
            ConnectionSettings(
                gitlab_url=settings.gitlab_url,
                project_ids=settings.project_ids,
                token=settings.token,
                period=settings.period,
                connected=True,
            )
        )
        self.hide_error()
        self.panel.mark_updated(datetime.now())
        self.panel.set_refreshing(False)
        self.connect_button.setEnabled(True)
        self.disconnect_button.setEnabled(True)
        logger.info("Loaded %d tasks from %d projects", len(tasks), len(source[1]))

    def _on_connect_failed(self, generation: int, client: GitLabClient, exc: Exception) -> None:
        client.close()
        if generation != self._generation:
            return
        logger.warning("Connecting to GitLab failed: %s", exc)
        self.show_error(describe_error(exc))
        self.panel.set_refreshing(False)
        self.connect_button.setEnabled(True)

    def disconnect(self) -> None:
        self._generation += 1
        if self.client is not None:
            self.client.close()
        self.client = None
        self.store.replace_all([])
        self.preferences.save_connection(self.connection_settings(connected=False))
        self.disconnect_button.setEnabled(False)
        self.panel.set_refreshing(False)

    def refresh(self) -> None:
        client = self.client
        if client is None or self.panel.refreshing:
            return
        generation = self._generation
        project_ids = list(self.project_ids)
        period = self.period
        self.panel.set_refreshing(True)

        def _done(tasks: list[Task]) -> None:
            self.panel.set_refreshing(False)
            if generation != self._generation:
                return
            # Replaces the whole collection, including tasks with edits in flight.
            self.store.replace_all(tasks)
            self.panel.mark_updated(datetime.now())

        def _failed(exc: Exception) -> None:
            self.panel.set_refreshing(False)
            logger.warning("Refreshing tasks failed: %s", exc)
            if generation == self._generation:
                self.show_error(describe_error(exc))

        self._runner(lambda: client.fetch_tasks(project_ids, period), _done, _failed)

    def _on_edit_failed(self, task_id: int, field: str, message: str) -> None:
        self.statusBar().showMessage(f"Could not save {field.replace('_', ' ')} to GitLab: {message}", 8000)

    # --- geometry & shutdown ------------------------------------------------

    def _restore_geometry(self) -> None:
        geometry = self.preferences.load_window_geometry()
        if geometry:
            self.restoreGeometry(QByteArray.fromBase64(geometry.encode("ascii")))
        else:
            self.resize(1400, 860)

    def _save_geometry(self) -> None:
        self.preferences.save_window_geometry(self.saveGeometry().toBase64().data().decode("ascii"))

    def closeEvent(self, event) -> None:  # type: ignore[override]
        self._save_geometry()
        self._generation += 1
        self.panel.stop()
        if self._pool is not None:
            self._pool.shutdown()
        self.avatar_cache.close()
        if self.client is not None:
            self.client.close()
        super().closeEvent(event)
