from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Optional

from PySide6.QtCore import QObject, Signal

from labgantt.gitlab.models import Task

from .filters import sort_tasks

logger = logging.getLogger(__name__)


class TaskStore(QObject):
    """In-memory task collection keyed by task id.

    Tasks are immutable; every change swaps in a new Task object. Nothing is
    ever removed here except by replacing the whole collection.
    """

    changed = Signal()
    taskChanged = Signal(int)  # task id

    def __init__(self, tasks: Iterable[Task] = (), parent=None) -> None:
        super().__init__(parent)
        self._tasks: list[Task] = sort_tasks(tasks)

    def tasks(self) -> list[Task]:
        return list(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def get(self, task_id: int) -> Optional[Task]:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def replace_all(self, tasks: Iterable[Task]) -> None:
        self._tasks = sort_tasks(tasks)
        logger.debug("Task store replaced with %d tasks", len(self._tasks))
        self.changed.emit()

    def patch(self, task_id: int, **changes) -> Optional[Task]:
        for index, task in enumerate(self._tasks):
            if task.id != task_id:
                continue
            updated = replace(task, **changes)
            self._tasks[index] = updated
            self.taskChanged.emit(task_id)
            self.changed.emit()
            return updated
        logger.debug("Patch for unknown task %s ignored", task_id)
        return None

    def mark_unsynced(self, task_id: int, fields: Iterable[str], unsynced: bool) -> None:
        task = self.get(task_id)
        if task is None:
            return
        names = set(fields)
        flags = task.unsynced | names if unsynced else task.unsynced - names
        if flags != task.unsynced:
            self.patch(task_id, unsynced=frozenset(flags))
