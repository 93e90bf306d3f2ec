from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

OPENED = "opened"
CLOSED = "closed"


@dataclass(frozen=True)
class AuthContext:
    base_url: str
    token: str


@dataclass(frozen=True)
class Label:
    name: str
    color: str = ""
    text_color: str = ""


@dataclass(frozen=True)
class User:
    id: int
    name: str
    avatar_url: str = ""


@dataclass(frozen=True)
class Milestone:
    id: int
    title: str
    due_date: Optional[str] = None


@dataclass(frozen=True)
class Note:
    id: int
    body: str
    author: Optional[User]
    created_at: str
    updated_at: Optional[str] = None
    system: bool = False


@dataclass(frozen=True)
class TimeStats:
    time_estimate: int = 0
    total_time_spent: int = 0


@dataclass(frozen=True)
class Task:
    """One GitLab issue projected into schedulable fields."""

    id: int
    project_id: str
    iid: int
    name: str
    start: str
    description: str = ""
    end: Optional[str] = None
    progress: int = 0
    labels: tuple[Label, ...] = ()
    assignees: tuple[User, ...] = ()
    milestone: Optional[Milestone] = None
    state: str = OPENED
    weight: Optional[int] = None
    time_estimate: int = 0
    time_spent: int = 0
    web_url: str = ""
    author: Optional[User] = None
    created_at: str = ""
    updated_at: str = ""
    due_date: Optional[str] = None
    dependencies: tuple[str, ...] = ()
    unsynced: frozenset[str] = field(default_factory=frozenset)

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels]

    @property
    def is_closed(self) -> bool:
        return self.state == CLOSED

    @property
    def display_name(self) -> str:
        return f"[{self.project_id}] {self.name}" if self.project_id else self.name


# --- fetch boundary -------------------------------------------------------
#
# GitLab payloads are loosely shaped (labels arrive as strings or as detail
# objects depending on `with_labels_details`, milestones and assignees may be
# null). Everything below turns raw JSON into the frozen types above and drops
# entries that cannot be made sense of.


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default


def _as_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return value if isinstance(value, str) else str(value)


def _optional_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def parse_label(raw: Any) -> Optional[Label]:
    if isinstance(raw, str):
        return Label(name=raw) if raw else None
    if not isinstance(raw, dict):
        return None
    name = raw.get("name") or raw.get("title")
    if not isinstance(name, str) or not name:
        return None
    return Label(
        name=name,
        color=_as_str(raw.get("color")),
        text_color=_as_str(raw.get("text_color")),
    )


def parse_labels(raw: Any) -> tuple[Label, ...]:
    """Return labels in payload order with duplicate names dropped."""
    if not isinstance(raw, list):
        return ()
    seen: set[str] = set()
    labels: list[Label] = []
    for entry in raw:
        label = parse_label(entry)
        if label is None or label.name in seen:
            continue
        seen.add(label.name)
        labels.append(label)
    return tuple(labels)


def parse_user(raw: Any) -> Optional[User]:
    if not isinstance(raw, dict):
        return None
    user_id = _as_int(raw.get("id"), default=-1)
    name = raw.get("name") or raw.get("username")
    if user_id < 0 or not isinstance(name, str) or not name:
        return None
    return User(id=user_id, name=name, avatar_url=_as_str(raw.get("avatar_url")))


def parse_users(raw: Any) -> tuple[User, ...]:
    if not isinstance(raw, list):
        return ()
    users = (parse_user(entry) for entry in raw)
    return tuple(user for user in users if user is not None)


def parse_milestone(raw: Any) -> Optional[Milestone]:
    if not isinstance(raw, dict):
        return None
    milestone_id = _as_int(raw.get("id"), default=-1)
    title = raw.get("title")
    if milestone_id < 0 or not isinstance(title, str):
        return None
    return Milestone(id=milestone_id, title=title, due_date=_optional_str(raw.get("due_date")))


def parse_milestones(raw: Any) -> list[Milestone]:
    if not isinstance(raw, list):
        return []
    milestones = (parse_milestone(entry) for entry in raw)
    return [m for m in milestones if m is not None]


def parse_note(raw: Any) -> Optional[Note]:
    if not isinstance(raw, dict):
        return None
    note_id = _as_int(raw.get("id"), default=-1)
    if note_id < 0:
        return None
    return Note(
        id=note_id,
        body=_as_str(raw.get("body")),
        author=parse_user(raw.get("author")),
        created_at=_as_str(raw.get("created_at")),
        updated_at=_optional_str(raw.get("updated_at")),
        system=bool(raw.get("system", False)),
    )


def parse_notes(raw: Any) -> list[Note]:
    if not isinstance(raw, list):
        return []
    notes = (parse_note(entry) for entry in raw)
    return [n for n in notes if n is not None]


def parse_time_stats(raw: Any) -> TimeStats:
    if not isinstance(raw, dict):
        return TimeStats()
    return TimeStats(
        time_estimate=max(0, _as_int(raw.get("time_estimate"))),
        total_time_spent=max(0, _as_int(raw.get("total_time_spent"))),
    )


def compute_progress(raw_issue: dict, time_stats: TimeStats) -> int:
    """Completion ratio of the issue's task list, else time spent vs. estimate."""
    status = raw_issue.get("task_completion_status")
    if isinstance(status, dict):
        count = _as_int(status.get("count"))
        completed = _as_int(status.get("completed_count"))
        if count > 0:
            return max(0, min(100, round(completed / count * 100)))
    if time_stats.time_estimate > 0:
        return max(0, min(100, round(time_stats.total_time_spent / time_stats.time_estimate * 100)))
    return 0


def task_from_issue(raw: Any, project_id: str) -> Optional[Task]:
    """Project a raw GitLab issue payload onto a Task, or None if unusable."""
    if not isinstance(raw, dict):
        return None
    issue_id = _as_int(raw.get("id"), default=-1)
    iid = _as_int(raw.get("iid"), default=-1)
    created_at = raw.get("created_at")
    if issue_id < 0 or iid < 0 or not isinstance(created_at, str):
        return None
    time_stats = parse_time_stats(raw.get("time_stats"))
    due_date = _optional_str(raw.get("due_date"))
    weight = raw.get("weight")
    return Task(
        id=issue_id,
        project_id=str(project_id),
        iid=iid,
        name=_as_str(raw.get("title")),
        description=_as_str(raw.get("description")),
        start=created_at,
        end=due_date,
        progress=compute_progress(raw, time_stats),
        labels=parse_labels(raw.get("labels")),
        assignees=parse_users(raw.get("assignees")),
        milestone=parse_milestone(raw.get("milestone")),
        state=CLOSED if raw.get("state") == CLOSED else OPENED,
        weight=weight if isinstance(weight, int) and not isinstance(weight, bool) else None,
        time_estimate=time_stats.time_estimate,
        time_spent=time_stats.total_time_spent,
        web_url=_as_str(raw.get("web_url")),
        author=parse_user(raw.get("author")),
        created_at=created_at,
        updated_at=_as_str(raw.get("updated_at")),
        due_date=due_date,
    )


def tasks_from_issues(raw: Iterable[Any], project_id: str) -> list[Task]:
    tasks = (task_from_issue(entry, project_id) for entry in raw)
    return [task for task in tasks if task is not None]


def format_duration(seconds: int) -> str:
    """Render seconds as GitLab-style hours/minutes (e.g. ``1h 30m``)."""
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours == 0:
        return f"{minutes}m"
    if minutes == 0:
        return f"{hours}h"
    return f"{hours}h {minutes}m"
