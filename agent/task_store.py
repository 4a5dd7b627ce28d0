"""
Task Store

Ordered in-memory mapping of task ID to task state.

State machine:
PENDING → PROCESSING → COMPLETED
                     ↓
                   FAILED

- Creation is append-only; insertion order is creation order
- Transitions are one-directional; no task re-enters PENDING
- Terminal tasks are evicted after the retention window
- Nothing is persisted; all state is lost on restart
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Callable, Set

from .errors import TaskTransitionError

logger = logging.getLogger("task_store")

RETENTION_WINDOW = timedelta(hours=24)
DEFAULT_LIST_LIMIT = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Task lifecycle states."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def terminal_states(cls) -> Set["TaskStatus"]:
        """Return states with no further transitions."""
        return {cls.COMPLETED, cls.FAILED}


ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.PROCESSING},
    TaskStatus.PROCESSING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}


@dataclass
class PostProcessing:
    """Optional secondary automation after the script succeeds."""
    start_server: bool = False
    custom_commands: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PostProcessing":
        commands = data.get("customCommands", data.get("custom_commands")) or []
        if isinstance(commands, str):
            commands = [commands]
        return cls(
            start_server=bool(data.get("startServer", data.get("start_server", False))),
            custom_commands=[str(c) for c in commands],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startServer": self.start_server,
            "customCommands": list(self.custom_commands),
        }


@dataclass
class TaskPayload:
    """
    Repository creation request.

    template and name are required for execution; they may be absent on
    payloads received from the external queue, in which case the task fails
    validation when processed.
    """
    template: Optional[str] = None
    name: Optional[str] = None
    visibility: str = "public"
    no_vscode: bool = False
    post_commands: Optional[str] = None
    post_processing: Optional[PostProcessing] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskPayload":
        """Build a payload from wire (camelCase) or snake_case keys."""
        post_processing = data.get("postProcessing", data.get("post_processing"))
        return cls(
            template=data.get("template") or None,
            name=data.get("name") or None,
            visibility=data.get("visibility") or "public",
            no_vscode=bool(data.get("noVSCode", data.get("no_vscode", False))),
            post_commands=data.get("postCommands", data.get("post_commands")) or None,
            post_processing=(
                PostProcessing.from_dict(post_processing)
                if isinstance(post_processing, dict) else None
            ),
        )

    def missing_fields(self) -> List[str]:
        return [name for name in ("template", "name") if not getattr(self, name)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template": self.template,
            "name": self.name,
            "visibility": self.visibility,
            "noVSCode": self.no_vscode,
            "postCommands": self.post_commands,
            "postProcessing": self.post_processing.to_dict() if self.post_processing else None,
        }


@dataclass
class Task:
    """One repository creation request and its lifecycle record."""
    id: str
    payload: TaskPayload
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TaskStatus.terminal_states()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "payload": self.payload.to_dict(),
            "result": self.result,
            "error": self.error,
        }


class TaskStore:
    """
    In-memory task store.

    All operations are synchronous and serialized through a single lock, so
    HTTP handlers and the periodic loops never interleave mutations.
    """

    def __init__(
        self,
        retention: timedelta = RETENTION_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._tasks: Dict[str, Task] = {}
        self._lock = threading.RLock()
        self._retention = retention
        self._clock = clock

    def add(self, payload: TaskPayload) -> str:
        """Append a new pending task and return its ID."""
        with self._lock:
            task_id = str(uuid.uuid4())
            while task_id in self._tasks:
                task_id = str(uuid.uuid4())
            now = self._clock()
            self._tasks[task_id] = Task(
                id=task_id,
                payload=payload,
                status=TaskStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            logger.info(
                f"Task added: {task_id} (template={payload.template}, name={payload.name}, "
                f"queue size: {len(self._tasks)})"
            )
            return task_id

    def next_pending(self) -> Optional[Task]:
        """Return the oldest pending task, or None."""
        with self._lock:
            for task in self._tasks.values():
                if task.status == TaskStatus.PENDING:
                    return task
            return None

    def set_status(
        self,
        task_id: str,
        status: TaskStatus,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> bool:
        """
        Transition a task in place.

        Returns False when the ID is unknown. Raises TaskTransitionError for a
        transition outside pending -> processing -> completed|failed.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if not task:
                return False

            status = TaskStatus(status)
            if status not in ALLOWED_TRANSITIONS[task.status]:
                raise TaskTransitionError(
                    f"Task {task_id}: invalid transition {task.status.value} -> {status.value}"
                )

            task.status = status
            task.updated_at = self._clock()
            if status == TaskStatus.COMPLETED:
                task.result = result or {}
                task.error = None
            elif status == TaskStatus.FAILED:
                task.error = error or "Unknown error"
                task.result = None
            logger.info(f"Task {task_id} status updated: {status.value}")
            return True

    def get(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self._tasks.get(task_id)

    def list(
        self,
        status: Optional[TaskStatus] = None,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> List[Task]:
        """List tasks in creation order, optionally filtered by status."""
        with self._lock:
            tasks = list(self._tasks.values())
        if status:
            status = TaskStatus(status)
            tasks = [t for t in tasks if t.status == status]
        if limit is not None:
            tasks = tasks[:max(limit, 0)]
        return tasks

    def count(self) -> int:
        with self._lock:
            return len(self._tasks)

    def counts(self) -> Dict[str, int]:
        """Per-status counts plus total."""
        with self._lock:
            counts = {s.value: 0 for s in TaskStatus}
            for task in self._tasks.values():
                counts[task.status.value] += 1
            counts["total"] = len(self._tasks)
            return counts

    def has_processing(self) -> bool:
        with self._lock:
            return any(t.status == TaskStatus.PROCESSING for t in self._tasks.values())

    def evict_stale(self) -> int:
        """
        Remove terminal tasks whose last update is older than the retention
        window. Pending and processing tasks are kept regardless of age.
        """
        with self._lock:
            cutoff = self._clock() - self._retention
            stale = [
                task_id for task_id, task in self._tasks.items()
                if task.is_terminal and task.updated_at < cutoff
            ]
            for task_id in stale:
                del self._tasks[task_id]
        if stale:
            logger.info(f"Evicted {len(stale)} stale tasks")
        return len(stale)
