"""Tests for connecting, refreshing and error reporting in the main window."""
import pytest

from labgantt.app.avatar_cache import AvatarCache
from labgantt.app.config import ConnectionSettings, Preferences
from labgantt.app.ui.main_window import MainWindow, describe_error
from labgantt.app.workers import run_inline
from labgantt.gitlab.client import GitLabAuthError, GitLabConnectionError, GitLabRequestError, normalize_base_url
from labgantt.gitlab.models import AuthContext


class FakeClient:
    instances = []

    def __init__(self, auth):
        self.auth = AuthContext(normalize_base_url(auth.base_url), auth.token)
        self.tasks = []
        self.error = None
        self.fetches = []
        self.closed = False
        FakeClient.instances.append(self)

    def test_connection(self):
        if self.error is not None:
            raise self.error
        return {"version": "16.0"}

    def fetch_tasks(self, project_ids, period=None):
        self.fetches.append((list(project_ids), period))
        if self.error is not None:
            raise self.error
        return list(self.tasks)

    def update_task(self, task, fields):
        return None

    def fetch_milestones(self, project_id):
        return []

    def fetch_notes(self, task):
        return []

    def close(self):
        self.closed = True


@pytest.fixture
def prefs(tmp_path):
    return Preferences(tmp_path / "prefs.json")


@pytest.fixture
def window(qtbot, prefs, make_task):
    FakeClient.instances = []
    cache = AvatarCache(lambda url: b"")

    def factory(auth):
        client = FakeClient(auth)
        client.tasks = [make_task(1, end="2024-01-20"), make_task(2, end="2024-02-01")]
        return client

    win = MainWindow(prefs, avatar_cache=cache, runner=run_inline, client_factory=factory)
    qtbot.addWidget(win)
    return win


def _fill(window, projects="12, 34"):
    window.url_edit.setText("gitlab.example.com")
    window.projects_edit.setText(projects)
    window.token_edit.setText("secret")


@pytest.mark.parametrize(
    "exc, message",
    [
        (GitLabAuthError("401"), "Invalid GitLab token"),
        (GitLabConnectionError("dns"), "Unable to connect to GitLab server"),
        (GitLabRequestError("GitLab GET /x failed with 500", 500), "GitLab GET /x failed with 500"),
    ],
)
def test_describe_error(exc, message):
    assert describe_error(exc) == message


class TestConnect:
    def test_incomplete_form_shows_error(self, window):
        window.url_edit.setText("")
        window.connect_to_gitlab()
        assert not window.banner.isHidden()
        assert FakeClient.instances == []

    def test_connect_loads_tasks_and_persists(self, window, prefs):
        _fill(window)
        window.connect_to_gitlab()

        assert [t.id for t in window.store.tasks()] == [1, 2]
        assert window.client is FakeClient.instances[0]
        assert window.client.fetches == [(["12", "34"], "1year")]
        assert window.disconnect_button.isEnabled()
        assert window.panel.last_updated.text().startswith("Last updated:")
        saved = prefs.load_connection()
        assert saved.connected and saved.project_ids == "12, 34"

    def test_failed_connect_keeps_existing_tasks(self, window, prefs):
        _fill(window)
        window.connect_to_gitlab()

        def failing(auth):
            client = FakeClient(auth)
            client.error = GitLabAuthError("Invalid GitLab token")
            return client

        window._client_factory = failing
        window.connect_to_gitlab()

        assert window.banner_label.text() == "Invalid GitLab token"
        assert not window.banner.isHidden()
        assert len(window.store) == 2
        assert FakeClient.instances[-1].closed

    def test_refresh_replaces_store(self, window, make_task):
        _fill(window)
        window.connect_to_gitlab()
        window.client.tasks = [make_task(3)]
        window.panel.request_refresh()
        assert [t.id for t in window.store.tasks()] == [3]
        assert not window.panel.refreshing

    def test_disconnect_clears_tasks(self, window, prefs):
        _fill(window)
        window.connect_to_gitlab()
        client = window.client
        window.disconnect()
        assert window.client is None
        assert client.closed
        assert len(window.store) == 0
        assert not prefs.load_connection().connected

    def test_startup_reconnects_saved_session(self, qtbot, prefs, make_task):
        prefs.save_connection(ConnectionSettings("gitlab.example.com", "5", "tok", "3months", True))
        created = []

        def factory(auth):
            client = FakeClient(auth)
            created.append(client)
            return client

        win = MainWindow(prefs, avatar_cache=AvatarCache(lambda url: b""), runner=run_inline, client_factory=factory)
        qtbot.addWidget(win)
        win.startup({"project_ids": "6"})
        assert created[0].fetches == [(["6"], "3months")]
