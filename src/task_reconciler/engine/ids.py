"""Identifier allocation for tasks and parent-scoped subtasks."""

from __future__ import annotations

import dataclasses
import math
from collections.abc import Iterable, Mapping, Sequence

from task_reconciler.engine.errors import ValidationError
from task_reconciler.engine.models import Subtask, Task, TaskId


def next_subtask_id(existing: Sequence[Subtask]) -> int:
    """Next id for a subtask appended after `existing`."""

    return len(existing) + 1


def renumber_subtasks(subtasks: Iterable[Subtask]) -> list[Subtask]:
    """Renumber by position and point integer sibling dependencies at the new ids.

    Items already at the right id with nothing to remap are returned as is. When
    ids repeat, a dependency follows the first subtask carrying that id.
    Dependencies on ids absent from the list are dropped.
    """

    items = list(subtasks)
    mapping: dict[int, int] = {}
    for position, subtask in enumerate(items, start=1):
        mapping.setdefault(subtask.id, position)
    return [
        remap_sibling_dependencies(subtask, position, mapping)
        for position, subtask in enumerate(items, start=1)
    ]


def remap_sibling_dependencies(
    subtask: Subtask,
    new_id: int,
    mapping: Mapping[int, int],
) -> Subtask:
    """Copy of `subtask` at `new_id` with integer dependencies translated by `mapping`.

    Unmapped integer dependencies and self references are dropped; dotted
    and task-level references are kept as they are.
    """

    dependencies: list[TaskId] = []
    for dep in subtask.dependencies:
        if isinstance(dep, int) and not isinstance(dep, bool):
            target = mapping.get(dep)
            if target is None or target == new_id:
                continue
            dep = target
        dependencies.append(dep)
    if subtask.id == new_id and dependencies == subtask.dependencies:
        return subtask
    return dataclasses.replace(subtask, id=new_id, dependencies=dependencies)


def has_contiguous_subtask_ids(task: Task) -> bool:
    return [subtask.id for subtask in task.subtasks] == list(range(1, len(task.subtasks) + 1))


def next_task_id(tasks: Iterable[Task]) -> int:
    """Highest integral numeric task id plus one; 1 for an empty document."""

    highest = 0
    for task in tasks:
        value = parse_numeric_id(task.id)
        if value is None:
            continue
        highest = max(highest, math.floor(value))
    return highest + 1


def parse_numeric_id(value: object) -> float | None:
    """Parse a task id as float; non-numeric ids yield None."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def numeric_sort_key(task: Task) -> tuple[int, float]:
    """Sort numerically; non-numeric ids go last, preserving their order."""

    value = parse_numeric_id(task.id)
    if value is None:
        return (1, 0.0)
    return (0, value)


def select_from_id(
    tasks: Iterable[Task],
    from_id: object,
    *,
    exclude_statuses: frozenset[str] = frozenset(),
) -> list[Task]:
    """Tasks whose numeric id is >= `from_id`, skipping non-numeric ids."""

    threshold = parse_numeric_id(from_id)
    if threshold is None:
        raise ValidationError(f"Invalid task ID {from_id!r}: expected a number")
    selected: list[Task] = []
    for task in tasks:
        value = parse_numeric_id(task.id)
        if value is None or value < threshold:
            continue
        if task.status in exclude_statuses:
            continue
        selected.append(task)
    return selected


def parse_task_id_argument(value: object) -> TaskId:
    """Parse a caller-supplied single task id (for example, a CLI argument)."""

    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    raise ValidationError(f"Invalid task ID {value!r}: expected a positive integer")


def subtask_key(parent_id: TaskId, subtask_id: int) -> str:
    """Dotted composite key, for example `7.2`."""

    return f"{parent_id}.{subtask_id}"


def parse_subtask_key(key: str) -> tuple[TaskId, int]:
    parent, separator, child = key.rpartition(".")
    if not separator or not parent or not child.isdigit():
        raise ValidationError(f"Invalid subtask key {key!r}: expected <parentId>.<subtaskId>")
    parent_id: TaskId = int(parent) if parent.isdigit() else parent
    return parent_id, int(child)


def dangling_dependencies(tasks: Sequence[Task]) -> dict[str, list[TaskId]]:
    """Map of task id to dependency ids that reference nothing in `tasks`.

    Subtask dependencies are checked too: plain integers refer to siblings,
    dotted keys to another task's subtask.
    """

    by_id = {str(task.id): task for task in tasks}
    dangling: dict[str, list[TaskId]] = {}
    for task in tasks:
        missing = [dep for dep in task.dependencies if str(dep) not in by_id]
        for subtask in task.subtasks:
            for dep in subtask.dependencies:
                if not _subtask_dependency_exists(dep, task, by_id):
                    missing.append(subtask_key(task.id, subtask.id) + f"->{dep}")
        if missing:
            dangling[str(task.id)] = missing
    return dangling


def _subtask_dependency_exists(dep: TaskId, parent: Task, by_id: dict[str, Task]) -> bool:
    if isinstance(dep, int):
        return 1 <= dep <= len(parent.subtasks)
    if isinstance(dep, str) and "." in dep:
        try:
            parent_id, child_id = parse_subtask_key(dep)
        except ValidationError:
            return False
        target = by_id.get(str(parent_id))
        return target is not None and 1 <= child_id <= len(target.subtasks)
    return str(dep) in by_id
