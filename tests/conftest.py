"""Shared fixtures: offscreen Qt and small task factories."""
import os

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest

from labgantt.gitlab.models import CLOSED, OPENED, Label, Milestone, Task, User


def build_task(
    task_id: int,
    start: str = "2024-01-05T00:00:00Z",
    end=None,
    *,
    name: str = "",
    labels=(),
    assignees=(),
    milestone=None,
    closed: bool = False,
    project_id: str = "42",
    progress: int = 0,
) -> Task:
    return Task(
        id=task_id,
        project_id=project_id,
        iid=task_id,
        name=name or f"Issue {task_id}",
        start=start,
        end=end,
        due_date=end,
        progress=progress,
        labels=tuple(Label(name=label) if isinstance(label, str) else label for label in labels),
        assignees=tuple(assignees),
        milestone=milestone,
        state=CLOSED if closed else OPENED,
        created_at=start,
    )


@pytest.fixture
def make_task():
    return build_task


@pytest.fixture
def alice():
    return User(id=1, name="Alice", avatar_url="https://gitlab.example.com/a.png")


@pytest.fixture
def bob():
    return User(id=2, name="Bob", avatar_url="")


@pytest.fixture
def sprint():
    return Milestone(id=7, title="Sprint 7")
