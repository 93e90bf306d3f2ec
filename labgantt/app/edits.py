"""Optimistic issue edits.

Every edit patches the task store first and then sends the sparse update to
GitLab on a worker. The local value always wins: a rejected update is logged
and the field is flagged as unsynced on the task until a later update of the
same field succeeds.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Optional, Sequence

from PySide6.QtCore import QObject, Signal

from labgantt.gitlab.client import GitLabClient, GitLabError
from labgantt.gitlab.models import CLOSED, OPENED, Label, Milestone, Task, User

from .filters import known_labels
from .task_store import TaskStore
from .workers import Runner, WorkerPool

logger = logging.getLogger(__name__)

ClientProvider = Callable[[], Optional[GitLabClient]]

FIELD_TITLE = "title"
FIELD_DESCRIPTION = "description"
FIELD_LABELS = "labels"
FIELD_ASSIGNEE = "assignee"
FIELD_MILESTONE = "milestone"
FIELD_DUE_DATE = "due_date"
FIELD_START_DATE = "start_date"
FIELD_STATE = "state"


class EditReconciler(QObject):
    editFailed = Signal(int, str, str)  # task id, field, message
    editSynced = Signal(int, str)  # task id, field

    def __init__(
        self,
        store: TaskStore,
        client_provider: ClientProvider,
        runner: Optional[Runner] = None,
        parent=None,
    ) -> None:
        super().__init__(parent)
        self.store = store
        self._client_provider = client_provider
        self._runner: Runner = runner if runner is not None else WorkerPool(self)
        self._generations: dict[tuple[int, str], int] = defaultdict(int)

    # --- field edits --------------------------------------------------------

    def set_title(self, task_id: int, title: str) -> bool:
        return self._apply(task_id, FIELD_TITLE, {"name": title}, {"title": title})

    def set_description(self, task_id: int, description: str) -> bool:
        return self._apply(task_id, FIELD_DESCRIPTION, {"description": description}, {"description": description})

    def set_labels(self, task_id: int, names: Sequence[str]) -> bool:
        """Replace the label set; colors come from labels already seen on other tasks."""
        catalog = known_labels(self.store.tasks())
        ordered: list[str] = []
        for name in names:
            if name and name not in ordered:
                ordered.append(name)
        labels = tuple(catalog.get(name, Label(name=name)) for name in ordered)
        return self._apply(task_id, FIELD_LABELS, {"labels": labels}, {"labels": ",".join(ordered)})

    def set_assignee(self, task_id: int, user: Optional[User]) -> bool:
        assignees = (user,) if user is not None else ()
        # GitLab treats assignee_id 0 as "unassign everyone".
        payload = {"assignee_id": user.id if user is not None else 0}
        return self._apply(task_id, FIELD_ASSIGNEE, {"assignees": assignees}, payload)

    def set_milestone(self, task_id: int, milestone: Optional[Milestone]) -> bool:
        payload = {"milestone_id": milestone.id if milestone is not None else None}
        return self._apply(task_id, FIELD_MILESTONE, {"milestone": milestone}, payload)

    def set_due_date(self, task_id: int, due_date: Optional[str]) -> bool:
        value = due_date or None
        return self._apply(task_id, FIELD_DUE_DATE, {"end": value, "due_date": value}, {"due_date": value})

    def set_start_date(self, task_id: int, start_date: str) -> bool:
        return self._apply(task_id, FIELD_START_DATE, {"start": start_date}, {"created_at": start_date})

    def set_state(self, task_id: int, closed: bool, remaining_labels: Optional[Sequence[str]] = None) -> bool:
        """Close or reopen an issue.

        When ``remaining_labels`` is given the label set is replaced in the same
        request (closing drops status labels this way).
        """
        changes: dict[str, Any] = {"state": CLOSED if closed else OPENED}
        payload: dict[str, Any] = {"state_event": "close" if closed else "reopen"}
        if remaining_labels is not None:
            catalog = known_labels(self.store.tasks())
            changes["labels"] = tuple(catalog.get(name, Label(name=name)) for name in remaining_labels)
            payload["labels"] = ",".join(remaining_labels)
        return self._apply(task_id, FIELD_STATE, changes, payload)

    # --- dispatch -----------------------------------------------------------

    def _apply(self, task_id: int, field: str, changes: dict[str, Any], payload: dict[str, Any]) -> bool:
        if self.store.get(task_id) is None:
            logger.debug("Edit of %s on unknown task %s ignored", field, task_id)
            return False
        task = self.store.patch(task_id, **changes)
        assert task is not None
        key = (task_id, field)
        self._generations[key] += 1
        generation = self._generations[key]

        client = self._client_provider()
        if client is None:
            self._on_failure(task_id, field, generation, GitLabError("Not connected to GitLab"))
            return True

        self._runner(
            lambda: client.update_task(task, payload),
            lambda result: self._on_success(task_id, field, generation, result),
            lambda exc: self._on_failure(task_id, field, generation, exc),
        )
        return True

    def _is_current(self, task_id: int, field: str, generation: int) -> bool:
        return self._generations[(task_id, field)] == generation

    def _on_success(self, task_id: int, field: str, generation: int, result: Optional[Task]) -> None:
        if not self._is_current(task_id, field, generation):
            logger.debug("Ignoring stale %s update for task %s", field, task_id)
            return
        self.store.mark_unsynced(task_id, [field], False)
        if result is not None and result.updated_at:
            self.store.patch(task_id, updated_at=result.updated_at)
        self.editSynced.emit(task_id, field)

    def _on_failure(self, task_id: int, field: str, generation: int, exc: Exception) -> None:
        logger.warning("Updating %s of task %s failed: %s", field, task_id, exc)
        if not self._is_current(task_id, field, generation):
            return
        self.store.mark_unsynced(task_id, [field], True)
        self.editFailed.emit(task_id, field, str(exc))
