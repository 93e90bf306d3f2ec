"""Tests for the GitLab REST adapter using httpx.MockTransport."""
import json
from datetime import datetime, timezone

import httpx
import pytest

from labgantt.gitlab.client import (
    PER_PAGE,
    GitLabAuthError,
    GitLabClient,
    GitLabConnectionError,
    GitLabError,
    GitLabRequestError,
    created_after_for_period,
    normalize_base_url,
    split_project_ids,
)
from labgantt.gitlab.models import AuthContext, Task


def _issue(issue_id: int, **extra) -> dict:
    payload = {
        "id": issue_id,
        "iid": issue_id,
        "title": f"Issue {issue_id}",
        "state": "opened",
        "created_at": "2024-01-05T10:00:00Z",
        "labels": [{"name": "bug", "color": "#ff0000", "text_color": "#ffffff"}],
        "assignees": [],
    }
    payload.update(extra)
    return payload


def _client(handler) -> GitLabClient:
    return GitLabClient(
        AuthContext(base_url="gitlab.example.com", token="secret"),
        transport=httpx.MockTransport(handler),
    )


class TestHelpers:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("gitlab.com", "https://gitlab.com"),
            ("https://gitlab.example.com/", "https://gitlab.example.com"),
            ("http://localhost:8080", "http://localhost:8080"),
            ("  gitlab.example.com:443  ", "https://gitlab.example.com:443"),
        ],
    )
    def test_normalize_base_url(self, raw, expected):
        assert normalize_base_url(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "ftp://gitlab.com", "https://"])
    def test_invalid_base_url(self, raw):
        with pytest.raises(GitLabError, match="Invalid GitLab URL"):
            normalize_base_url(raw)

    def test_split_project_ids(self):
        assert split_project_ids("12, 34 group%2Fproj,,") == ["12", "34", "group%2Fproj"]

    def test_created_after_for_period(self):
        now = datetime(2024, 5, 31, 12, 0, tzinfo=timezone.utc)
        assert created_after_for_period("all", now) is None
        assert created_after_for_period("1month", now).startswith("2024-04-30T12:00:00")
        assert created_after_for_period("3months", now).startswith("2024-02-29")
        assert created_after_for_period("6months", now).startswith("2023-11-30")
        assert created_after_for_period(None, now).startswith("2023-05-31")
        assert created_after_for_period("bogus", now).startswith("2023-05-31")


class TestFetchTasks:
    def test_paginates_until_short_page(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            page = int(request.url.params["page"])
            if page == 1:
                return httpx.Response(200, json=[_issue(i) for i in range(1, PER_PAGE + 1)])
            return httpx.Response(200, json=[_issue(PER_PAGE + 1)])

        with _client(handler) as client:
            tasks = client.fetch_tasks(["5"], "all")

        assert len(tasks) == PER_PAGE + 1
        assert all(isinstance(t, Task) and t.project_id == "5" for t in tasks)
        first = seen[0]
        assert first.url.path == "/api/v4/projects/5/issues"
        assert first.headers["PRIVATE-TOKEN"] == "secret"
        assert first.url.params["with_labels_details"] == "true"
        assert first.url.params["state"] == "all"
        assert "created_after" not in first.url.params
        assert len(seen) == 2

    def test_period_adds_created_after(self):
        captured = {}

        def handler(request):
            captured.update(request.url.params)
            return httpx.Response(200, json=[])

        now = datetime(2024, 6, 15, tzinfo=timezone.utc)
        with _client(handler) as client:
            client.fetch_tasks(["1"], "1year", now=now)
        assert captured["created_after"].startswith("2023-06-15")

    def test_failing_project_is_skipped(self):
        def handler(request):
            if "/projects/2/" in request.url.path:
                return httpx.Response(404, json={"message": "404 Project Not Found"})
            return httpx.Response(200, json=[_issue(1), {"id": "broken"}])

        with _client(handler) as client:
            tasks = client.fetch_tasks(["1", "2"])
        assert [t.id for t in tasks] == [1]

    def test_all_projects_failing_raises(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        with _client(handler) as client:
            with pytest.raises(GitLabRequestError) as excinfo:
                client.fetch_tasks(["1", "2"])
        assert excinfo.value.status_code == 500

    def test_unauthorized(self):
        def handler(request):
            return httpx.Response(401, json={"message": "401 Unauthorized"})

        with _client(handler) as client:
            with pytest.raises(GitLabAuthError):
                client.test_connection()

    def test_transport_error_becomes_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("no route", request=request)

        with _client(handler) as client:
            with pytest.raises(GitLabConnectionError):
                client.fetch_tasks(["1"])


class TestWrites:
    def test_update_task_sends_sparse_put(self):
        captured = {}

        def handler(request):
            captured["method"] = request.method
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json=_issue(3, title="Renamed", updated_at="2024-02-01T00:00:00Z"))

        task = Task(id=3, project_id="9", iid=3, name="Old", start="2024-01-05T10:00:00Z")
        with _client(handler) as client:
            updated = client.update_task(task, {"title": "Renamed"})

        assert captured == {"method": "PUT", "path": "/api/v4/projects/9/issues/3", "body": {"title": "Renamed"}}
        assert updated.name == "Renamed"
        assert updated.updated_at == "2024-02-01T00:00:00Z"

    def test_notes_crud(self):
        calls = []

        def handler(request):
            calls.append((request.method, request.url.path, dict(request.url.params)))
            if request.method == "GET":
                return httpx.Response(
                    200,
                    json=[
                        {"id": 2, "body": "newer", "author": {"id": 1, "name": "Alice"}, "created_at": "2024-01-02"},
                        {"id": 1, "body": "older", "author": None, "created_at": "2024-01-01", "system": True},
                    ],
                )
            if request.method == "DELETE":
                return httpx.Response(204)
            body = json.loads(request.content)
            return httpx.Response(201, json={"id": 3, "body": body["body"], "created_at": "2024-01-03"})

        task = Task(id=3, project_id="9", iid=4, name="x", start="2024-01-05")
        with _client(handler) as client:
            notes = client.fetch_notes(task)
            created = client.create_note(task, "hello")
            edited = client.update_note(task, 3, "hello again")
            client.delete_note(task, 3)

        assert [n.id for n in notes] == [2, 1]
        assert notes[0].author.name == "Alice"
        assert notes[1].system
        assert created.body == "hello"
        assert edited.body == "hello again"
        assert calls[0][2]["sort"] == "desc"
        assert [c[:2] for c in calls[1:]] == [
            ("POST", "/api/v4/projects/9/issues/4/notes"),
            ("PUT", "/api/v4/projects/9/issues/4/notes/3"),
            ("DELETE", "/api/v4/projects/9/issues/4/notes/3"),
        ]

    def test_time_tracking(self):
        paths = []

        def handler(request):
            paths.append(request.url.path.rsplit("/", 1)[-1])
            return httpx.Response(201, json={"time_estimate": 7200, "total_time_spent": 1800})

        task = Task(id=3, project_id="9", iid=4, name="x", start="2024-01-05")
        with _client(handler) as client:
            stats = client.add_time_spent(task, "30m")
            client.set_time_estimate(task, "2h")
            client.reset_time_spent(task)
            client.reset_time_estimate(task)

        assert stats.time_estimate == 7200
        assert stats.total_time_spent == 1800
        assert paths == ["add_spent_time", "time_estimate", "reset_spent_time", "reset_time_estimate"]

    def test_fetch_milestones(self):
        def handler(request):
            return httpx.Response(200, json=[{"id": 1, "title": "v1", "due_date": "2024-03-01"}, {"bad": True}])

        with _client(handler) as client:
            milestones = client.fetch_milestones("9")
        assert [(m.id, m.title, m.due_date) for m in milestones] == [(1, "v1", "2024-03-01")]
