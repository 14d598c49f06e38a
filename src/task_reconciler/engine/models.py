"""Domain models for the task document, subtasks, and complexity reports."""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from task_reconciler.engine.errors import InvalidDocument, NotFoundError, ValidationError

TaskId = int | float | str


class TaskStatus(str, Enum):
    """Known task/subtask statuses. Documents may carry others."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    COMPLETED = "completed"
    DEFERRED = "deferred"
    REVIEW = "review"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    """Task priority levels."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


TERMINAL_STATUSES = frozenset({TaskStatus.DONE.value, TaskStatus.COMPLETED.value})

_SUBTASK_KEYS = frozenset({"id", "title", "description", "details", "status", "dependencies"})
_TASK_KEYS = frozenset(
    {
        "id",
        "title",
        "description",
        "details",
        "testStrategy",
        "status",
        "dependencies",
        "priority",
        "subtasks",
    },
)
_COMPLEXITY_KEYS = frozenset(
    {"id", "taskId", "complexityScore", "justification", "recommendExpansion"},
)


@dataclass(slots=True)
class Subtask:
    """One subtask; `id` is the 1-based position within its parent."""

    id: int
    title: str = ""
    description: str = ""
    details: str = ""
    status: str = TaskStatus.PENDING.value
    dependencies: list[TaskId] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], *, default_id: int | None = None) -> Subtask:
        """Build a subtask from a JSON mapping, validating field types."""

        if not isinstance(raw, Mapping):
            raise ValidationError("subtask must be an object")
        raw_id = raw.get("id", default_id)
        subtask_id = coerce_task_id(raw_id, label="subtask.id")
        if not isinstance(subtask_id, int):
            raise ValidationError(f"subtask.id must be an integer, got {raw_id!r}")
        return cls(
            id=subtask_id,
            title=_text(raw, "title", "subtask"),
            description=_text(raw, "description", "subtask"),
            details=_text(raw, "details", "subtask"),
            status=_status(raw, "subtask"),
            dependencies=_dependencies(raw, "subtask"),
            extra={key: value for key, value in raw.items() if key not in _SUBTASK_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "dependencies": list(self.dependencies),
            "details": self.details,
            "status": self.status,
        }
        for key, value in self.extra.items():
            payload.setdefault(key, value)
        return payload


@dataclass(slots=True)
class Task:
    """Top-level task with an ordered subtask list."""

    id: TaskId
    title: str = ""
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    status: str = TaskStatus.PENDING.value
    dependencies: list[TaskId] = field(default_factory=list)
    priority: str = TaskPriority.MEDIUM.value
    subtasks: list[Subtask] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any], *, default_id: TaskId | None = None) -> Task:
        """Build a task from a JSON mapping, validating field types."""

        if not isinstance(raw, Mapping):
            raise ValidationError("task must be an object")
        task_id = coerce_task_id(raw.get("id", default_id), label="task.id")
        priority = raw.get("priority", TaskPriority.MEDIUM.value)
        if priority is None:
            priority = TaskPriority.MEDIUM.value
        if not isinstance(priority, str):
            raise ValidationError(f"task {task_id}: priority must be a string")

        raw_subtasks = raw.get("subtasks", [])
        if raw_subtasks is None:
            raw_subtasks = []
        if not isinstance(raw_subtasks, list):
            raise ValidationError(f"task {task_id}: subtasks must be an array")
        subtasks = [
            Subtask.from_dict(item, default_id=index + 1) for index, item in enumerate(raw_subtasks)
        ]
        return cls(
            id=task_id,
            title=_text(raw, "title", "task"),
            description=_text(raw, "description", "task"),
            details=_text(raw, "details", "task"),
            test_strategy=_text(raw, "testStrategy", "task"),
            status=_status(raw, "task"),
            dependencies=_dependencies(raw, "task"),
            priority=priority,
            subtasks=subtasks,
            extra={key: value for key, value in raw.items() if key not in _TASK_KEYS},
        )

    @property
    def is_completed(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "dependencies": list(self.dependencies),
            "priority": self.priority,
            "details": self.details,
            "testStrategy": self.test_strategy,
            "subtasks": [subtask.to_dict() for subtask in self.subtasks],
        }
        for key, value in self.extra.items():
            payload.setdefault(key, value)
        return payload


@dataclass(slots=True)
class Document:
    """The persisted task collection."""

    tasks: list[Task] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: object) -> Document:
        if not isinstance(raw, Mapping):
            raise InvalidDocument("Task document must be a JSON object.")
        raw_tasks = raw.get("tasks")
        if not isinstance(raw_tasks, list):
            raise InvalidDocument("Task document must contain a tasks array.")
        metadata = raw.get("metadata", {})
        if metadata is None:
            metadata = {}
        if not isinstance(metadata, Mapping):
            raise InvalidDocument("Task document metadata must be an object.")
        try:
            tasks = [Task.from_dict(item) for item in raw_tasks]
        except ValidationError as error:
            raise InvalidDocument(f"Invalid task entry: {error.message}") from error
        return cls(
            tasks=tasks,
            metadata=dict(metadata),
            extra={key: value for key, value in raw.items() if key not in {"tasks", "metadata"}},
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "tasks": [task.to_dict() for task in self.tasks],
            "metadata": dict(self.metadata),
        }
        for key, value in self.extra.items():
            payload.setdefault(key, value)
        return payload

    def find_task(self, task_id: TaskId) -> Task | None:
        key = str(task_id)
        for task in self.tasks:
            if str(task.id) == key:
                return task
        return None

    def require_task(self, task_id: TaskId) -> Task:
        task = self.find_task(task_id)
        if task is None:
            raise NotFoundError(f"Task with ID {task_id} not found")
        return task

    def with_tasks(self, tasks: list[Task]) -> Document:
        """Return a copy holding `tasks`; metadata is shared, not copied."""

        return dataclasses.replace(self, tasks=tasks)

    def with_task(self, task: Task) -> Document:
        """Return a copy where the task with the same id is replaced in place."""

        key = str(task.id)
        tasks = list(self.tasks)
        for index, existing in enumerate(tasks):
            if str(existing.id) == key:
                tasks[index] = task
                return self.with_tasks(tasks)
        raise NotFoundError(f"Task with ID {task.id} not found")


@dataclass(slots=True)
class ComplexityEntry:
    """Complexity assessment for one task."""

    task_id: TaskId
    complexity_score: float
    justification: str = ""
    recommend_expansion: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ComplexityEntry:
        if not isinstance(raw, Mapping):
            raise ValidationError("complexity entry must be an object")
        task_id = coerce_task_id(raw.get("id", raw.get("taskId")), label="complexity.id")
        score = raw.get("complexityScore")
        if isinstance(score, bool) or not isinstance(score, int | float):
            raise ValidationError(f"complexity entry {task_id}: complexityScore must be a number")
        justification = raw.get("justification") or ""
        if not isinstance(justification, str):
            raise ValidationError(f"complexity entry {task_id}: justification must be a string")
        return cls(
            task_id=task_id,
            complexity_score=float(score),
            justification=justification,
            recommend_expansion=bool(raw.get("recommendExpansion", False)),
            extra={key: value for key, value in raw.items() if key not in _COMPLEXITY_KEYS},
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.task_id,
            "complexityScore": self.complexity_score,
            "justification": self.justification,
            "recommendExpansion": self.recommend_expansion,
        }
        for key, value in self.extra.items():
            payload.setdefault(key, value)
        return payload


@dataclass(slots=True)
class ComplexityReport:
    """Optional per-task complexity signal used to size expansions."""

    entries: list[ComplexityEntry] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: object) -> ComplexityReport:
        """Accept `{"complexityAnalysis": [...]}` or a bare entry array."""

        meta: dict[str, Any] = {}
        if isinstance(raw, Mapping):
            raw_meta = raw.get("meta", {})
            if isinstance(raw_meta, Mapping):
                meta = dict(raw_meta)
            raw = raw.get("complexityAnalysis")
        if not isinstance(raw, list):
            raise ValidationError("complexity report must contain a complexityAnalysis array")
        return cls(entries=[ComplexityEntry.from_dict(item) for item in raw], meta=meta)

    def to_dict(self) -> dict[str, Any]:
        return {
            "meta": dict(self.meta),
            "complexityAnalysis": [entry.to_dict() for entry in self.entries],
        }

    def entry_for(self, task_id: TaskId) -> ComplexityEntry | None:
        key = str(task_id)
        for entry in self.entries:
            if str(entry.task_id) == key:
                return entry
        return None


def coerce_task_id(value: object, *, label: str = "id") -> TaskId:
    """Normalize an id: digit strings and integral floats become int."""

    if value is None or isinstance(value, bool):
        raise ValidationError(f"{label} is required")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{label} must not be empty")
        if stripped.isdigit():
            return int(stripped)
        return stripped
    raise ValidationError(f"{label} must be a number or string, got {type(value).__name__}")


def _text(raw: Mapping[str, Any], key: str, owner: str) -> str:
    value = raw.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"{owner}.{key} must be a string")
    return value


def _status(raw: Mapping[str, Any], owner: str) -> str:
    value = raw.get("status")
    if value is None or value == "":
        return TaskStatus.PENDING.value
    if not isinstance(value, str):
        raise ValidationError(f"{owner}.status must be a string")
    return value


def _dependencies(raw: Mapping[str, Any], owner: str) -> list[TaskId]:
    value = raw.get("dependencies")
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{owner}.dependencies must be an array")
    return [coerce_task_id(item, label=f"{owner}.dependencies[]") for item in value]
