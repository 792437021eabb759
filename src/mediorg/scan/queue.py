"""In-process task queue used to drive scan runs."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from mediorg.state import StateError

LOGGER = logging.getLogger(__name__)

DEFAULT_GROUP = "mediorg"

TaskHandler = Callable[..., None]


class QueuedTask(BaseModel):
    """A task waiting to run.

    Attributes:
        name: Registered handler name.
        args: Keyword arguments passed to the handler.
        group: Group used to unschedule related tasks together.
    """

    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    group: str = DEFAULT_GROUP


class TaskQueue(Protocol):
    """Scheduling operations the scan orchestrator needs."""

    def register(self, name: str, handler: TaskHandler) -> None: ...

    def enqueue(
        self, name: str, args: Mapping[str, Any] | None = None, group: str = DEFAULT_GROUP
    ) -> QueuedTask: ...

    def unschedule_all(self, name: str, group: str = DEFAULT_GROUP) -> int: ...


class InlineTaskQueue:
    """FIFO queue drained synchronously by :meth:`run_pending`.

    When a path is given, queued tasks are stored there so another process can
    pick them up; the file is re-read before every operation.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._handlers: Dict[str, TaskHandler] = {}
        self._tasks: List[QueuedTask] = []

    def register(self, name: str, handler: TaskHandler) -> None:
        """Bind a handler to a task name."""
        self._handlers[name] = handler

    def enqueue(
        self, name: str, args: Mapping[str, Any] | None = None, group: str = DEFAULT_GROUP
    ) -> QueuedTask:
        """Append a task to the end of the queue.

        Args:
            name: Handler name.
            args: Keyword arguments for the handler.
            group: Task group.

        Returns:
            QueuedTask: The queued task.
        """
        tasks = self._load()
        task = QueuedTask(name=name, args=dict(args or {}), group=group)
        tasks.append(task)
        self._store(tasks)
        LOGGER.debug("Enqueued %s %s", name, task.args)
        return task

    def unschedule_all(self, name: str, group: str = DEFAULT_GROUP) -> int:
        """Remove every queued task with the given name and group.

        Returns:
            int: Number of tasks removed.
        """
        tasks = self._load()
        kept = [task for task in tasks if not (task.name == name and task.group == group)]
        self._store(kept)
        return len(tasks) - len(kept)

    def pending(self) -> List[QueuedTask]:
        """Return a copy of the queued tasks in run order."""
        return list(self._load())

    def run_pending(self, limit: Optional[int] = None) -> int:
        """Run queued tasks in FIFO order, including tasks enqueued by handlers.

        A failing handler is logged and its task dropped.

        Args:
            limit: Maximum number of tasks to run; None drains the queue.

        Returns:
            int: Number of tasks run.
        """
        ran = 0
        while limit is None or ran < limit:
            tasks = self._load()
            if not tasks:
                break
            task = tasks.pop(0)
            self._store(tasks)
            ran += 1

            handler = self._handlers.get(task.name)
            if handler is None:
                LOGGER.warning("No handler registered for task %s; dropping it.", task.name)
                continue
            try:
                handler(**task.args)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Task %s failed", task.name)
        return ran

    def _load(self) -> List[QueuedTask]:
        if self._path is None:
            return self._tasks
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return [QueuedTask.model_validate(entry) for entry in data]
        except (json.JSONDecodeError, ValidationError, TypeError) as exc:
            raise StateError(f"Invalid task queue data in {self._path}: {exc}") from exc

    def _store(self, tasks: List[QueuedTask]) -> None:
        if self._path is None:
            self._tasks = tasks
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [task.model_dump(mode="json") for task in tasks]
        self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


__all__ = ["DEFAULT_GROUP", "InlineTaskQueue", "QueuedTask", "TaskHandler", "TaskQueue"]
