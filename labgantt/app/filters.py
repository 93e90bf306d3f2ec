from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, Sequence

from labgantt.gitlab.models import Label, Milestone, Task, User

from .layout import parse_date


@dataclass(frozen=True)
class FilterState:
    include_labels: tuple[str, ...] = ()
    exclude_labels: tuple[str, ...] = ()
    status_labels: tuple[str, ...] = ()
    assignee_ids: tuple[int, ...] = ()
    milestone_ids: tuple[int, ...] = ()
    show_closed: bool = False

    def is_active(self) -> bool:
        return bool(
            self.include_labels
            or self.exclude_labels
            or self.status_labels
            or self.assignee_ids
            or self.milestone_ids
        )

    def cleared(self) -> "FilterState":
        """Drop every selection but keep the closed-issue toggle."""
        return FilterState(show_closed=self.show_closed)

    def with_changes(self, **changes) -> "FilterState":
        return replace(self, **changes)


def matches(task: Task, state: FilterState) -> bool:
    if task.is_closed and not state.show_closed:
        return False
    names = task.label_names
    if state.exclude_labels and any(name in state.exclude_labels for name in names):
        return False
    if state.include_labels and not any(name in state.include_labels for name in names):
        return False
    if state.assignee_ids and not any(user.id in state.assignee_ids for user in task.assignees):
        return False
    if state.milestone_ids and (task.milestone is None or task.milestone.id not in state.milestone_ids):
        return False
    return True


def filter_tasks(tasks: Iterable[Task], state: FilterState) -> list[Task]:
    """Return the tasks that pass every rule, in their original order."""
    return [task for task in tasks if matches(task, state)]


def sort_tasks(tasks: Iterable[Task]) -> list[Task]:
    """Stable sort by start ascending; tasks with unparseable starts go last."""

    def _key(task: Task) -> tuple[int, datetime]:
        parsed = parse_date(task.start)
        return (0, parsed) if parsed is not None else (1, datetime.min)

    return sorted(tasks, key=_key)


def unique_labels(tasks: Iterable[Task]) -> list[str]:
    return sorted({label.name for task in tasks for label in task.labels})


def known_labels(tasks: Iterable[Task]) -> dict[str, Label]:
    """Label objects by name; the first occurrence supplies the colors."""
    labels: dict[str, Label] = {}
    for task in tasks:
        for label in task.labels:
            labels.setdefault(label.name, label)
    return labels


def unique_assignees(tasks: Iterable[Task]) -> list[User]:
    by_id: dict[int, User] = {}
    for task in tasks:
        for user in task.assignees:
            by_id.setdefault(user.id, user)
    return sorted(by_id.values(), key=lambda user: user.name)


def unique_milestones(tasks: Iterable[Task]) -> list[Milestone]:
    by_id: dict[int, Milestone] = {}
    for task in tasks:
        if task.milestone is not None:
            by_id.setdefault(task.milestone.id, task.milestone)
    return sorted(by_id.values(), key=lambda milestone: milestone.title)


@dataclass
class Facets:
    labels: list[str] = field(default_factory=list)
    assignees: list[User] = field(default_factory=list)
    milestones: list[Milestone] = field(default_factory=list)

    @classmethod
    def from_tasks(cls, tasks: Sequence[Task]) -> "Facets":
        return cls(
            labels=unique_labels(tasks),
            assignees=unique_assignees(tasks),
            milestones=unique_milestones(tasks),
        )
