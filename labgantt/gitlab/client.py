from __future__ import annotations

import calendar
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional
from urllib.parse import urlsplit

import httpx

from .models import (
    AuthContext,
    Milestone,
    Note,
    Task,
    TimeStats,
    parse_milestones,
    parse_note,
    parse_notes,
    parse_time_stats,
    task_from_issue,
    tasks_from_issues,
)

logger = logging.getLogger(__name__)

PER_PAGE = 100
DEFAULT_TIMEOUT = 10.0
DEFAULT_PERIOD = "1year"
PERIODS = ("1month", "3months", "6months", "1year", "all")
_PERIOD_MONTHS = {"1month": 1, "3months": 3, "6months": 6, "1year": 12}
ISSUE_FIELDS = (
    "id",
    "iid",
    "title",
    "description",
    "state",
    "created_at",
    "updated_at",
    "closed_at",
    "labels",
    "milestone",
    "assignees",
    "author",
    "project_id",
    "web_url",
    "time_stats",
    "task_completion_status",
    "weight",
    "due_date",
)


class GitLabError(Exception):
    """Base class for failures talking to GitLab."""


class GitLabConnectionError(GitLabError):
    """Host unreachable, DNS failure, TLS failure or timeout."""


class GitLabAuthError(GitLabError):
    """The access token was rejected."""


class GitLabRequestError(GitLabError):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def normalize_base_url(url: str) -> str:
    """Return ``scheme://host[:port][/path]`` without a trailing slash.

    Bare hosts such as ``gitlab.example.com:443`` get an ``https://`` scheme.
    """
    candidate = (url or "").strip()
    if not candidate:
        raise GitLabError("Invalid GitLab URL")
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    parts = urlsplit(candidate)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise GitLabError("Invalid GitLab URL")
    return candidate.rstrip("/")


def split_project_ids(raw: str) -> list[str]:
    """Split a user-entered project list on commas and whitespace."""
    return [token for token in raw.replace(",", " ").split() if token]


def _months_before(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 - months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def created_after_for_period(period: Optional[str], now: Optional[datetime] = None) -> Optional[str]:
    """Map a period name to the ISO lower bound for ``created_after``.

    ``all`` means no bound; unknown or missing periods behave like ``1year``.
    """
    if period == "all":
        return None
    months = _PERIOD_MONTHS.get(period or "", _PERIOD_MONTHS[DEFAULT_PERIOD])
    moment = now or datetime.now(timezone.utc)
    return _months_before(moment, months).isoformat()


class GitLabClient:
    """Thin adapter over the GitLab REST v4 API."""

    def __init__(
        self,
        auth: AuthContext,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.auth = AuthContext(base_url=normalize_base_url(auth.base_url), token=auth.token)
        self.http = httpx.Client(
            base_url=f"{self.auth.base_url}/api/v4",
            timeout=timeout,
            headers={"PRIVATE-TOKEN": auth.token, "Accept": "application/json"},
            transport=transport,
        )

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "GitLabClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # --- transport ----------------------------------------------------------

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = self.http.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise GitLabConnectionError(f"Unable to connect to GitLab server: {exc}") from exc
        if resp.status_code == 401:
            raise GitLabAuthError("Invalid GitLab token")
        if resp.is_error:
            detail = resp.text.strip()[:200]
            raise GitLabRequestError(
                f"GitLab {method} {path} failed with {resp.status_code}: {detail}",
                resp.status_code,
            )
        return resp

    def _json(self, method: str, path: str, **kwargs) -> Any:
        resp = self._request(method, path, **kwargs)
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise GitLabRequestError(f"GitLab returned invalid JSON for {path}", resp.status_code) from exc

    @staticmethod
    def _issue_path(project_id: str, iid: int) -> str:
        return f"/projects/{project_id}/issues/{iid}"

    # --- connection ---------------------------------------------------------

    def test_connection(self) -> dict:
        payload = self._json("GET", "/version")
        return payload if isinstance(payload, dict) else {}

    # --- issues -------------------------------------------------------------

    def _project_issues(self, project_id: str, params: dict) -> list[dict]:
        page = 1
        issues: list[dict] = []
        while True:
            batch = self._json(
                "GET",
                f"/projects/{project_id}/issues",
                params={**params, "per_page": PER_PAGE, "page": page},
            )
            if not isinstance(batch, list) or not batch:
                break
            issues.extend(batch)
            if len(batch) < PER_PAGE:
                break
            page += 1
        return issues

    def fetch_tasks(
        self,
        project_ids: Iterable[str],
        period: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> list[Task]:
        """Fetch and merge issues for every project.

        A project that fails is logged and skipped; when every project fails
        the last error is raised.
        """
        params: dict[str, Any] = {
            "with_labels_details": "true",
            "state": "all",
            "_fields": ",".join(ISSUE_FIELDS),
        }
        created_after = created_after_for_period(period, now)
        if created_after:
            params["created_after"] = created_after

        ids = [str(pid) for pid in project_ids]
        tasks: list[Task] = []
        last_error: Optional[GitLabError] = None
        succeeded = 0
        for project_id in ids:
            try:
                raw = self._project_issues(project_id, params)
            except GitLabError as exc:
                logger.warning("Skipping project %s: %s", project_id, exc)
                last_error = exc
                continue
            succeeded += 1
            tasks.extend(tasks_from_issues(raw, project_id))
        if ids and succeeded == 0 and last_error is not None:
            raise last_error
        logger.debug("Fetched %d tasks from %d/%d projects", len(tasks), succeeded, len(ids))
        return tasks

    def update_task(self, task: Task, fields: dict[str, Any]) -> Optional[Task]:
        """PUT only the keys present in ``fields`` and return the server's view."""
        logger.debug("Updating issue %s#%s with %s", task.project_id, task.iid, sorted(fields))
        payload = self._json("PUT", self._issue_path(task.project_id, task.iid), json=fields)
        return task_from_issue(payload, task.project_id)

    # --- milestones ---------------------------------------------------------

    def fetch_milestones(self, project_id: str) -> list[Milestone]:
        payload = self._json("GET", f"/projects/{project_id}/milestones", params={"per_page": PER_PAGE})
        return parse_milestones(payload)

    # --- notes --------------------------------------------------------------

    def fetch_notes(self, task: Task) -> list[Note]:
        payload = self._json(
            "GET",
            f"{self._issue_path(task.project_id, task.iid)}/notes",
            params={"sort": "desc", "order_by": "created_at"},
        )
        return parse_notes(payload)

    def create_note(self, task: Task, body: str) -> Optional[Note]:
        payload = self._json("POST", f"{self._issue_path(task.project_id, task.iid)}/notes", json={"body": body})
        return parse_note(payload)

    def update_note(self, task: Task, note_id: int, body: str) -> Optional[Note]:
        payload = self._json(
            "PUT",
            f"{self._issue_path(task.project_id, task.iid)}/notes/{note_id}",
            json={"body": body},
        )
        return parse_note(payload)

    def delete_note(self, task: Task, note_id: int) -> None:
        self._request("DELETE", f"{self._issue_path(task.project_id, task.iid)}/notes/{note_id}")

    # --- time tracking ------------------------------------------------------

    def add_time_spent(self, task: Task, duration: str) -> TimeStats:
        payload = self._json(
            "POST", f"{self._issue_path(task.project_id, task.iid)}/add_spent_time", json={"duration": duration}
        )
        return parse_time_stats(payload)

    def reset_time_spent(self, task: Task) -> TimeStats:
        payload = self._json("POST", f"{self._issue_path(task.project_id, task.iid)}/reset_spent_time")
        return parse_time_stats(payload)

    def set_time_estimate(self, task: Task, duration: str) -> TimeStats:
        payload = self._json(
            "POST", f"{self._issue_path(task.project_id, task.iid)}/time_estimate", json={"duration": duration}
        )
        return parse_time_stats(payload)

    def reset_time_estimate(self, task: Task) -> TimeStats:
        payload = self._json("POST", f"{self._issue_path(task.project_id, task.iid)}/reset_time_estimate")
        return parse_time_stats(payload)
