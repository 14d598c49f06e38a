"""Merge externally produced task replacements into a document."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from task_reconciler.engine.errors import ValidationError
from task_reconciler.engine.guard import ProtectionPolicy, enforce_protection
from task_reconciler.engine.ids import (
    dangling_dependencies,
    has_contiguous_subtask_ids,
    numeric_sort_key,
    renumber_subtasks,
    subtask_key,
)
from task_reconciler.engine.models import Document, Task, TaskId

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MergeReport:
    """What a merge did, for envelopes and logs."""

    replaced_ids: list[TaskId] = field(default_factory=list)
    appended_ids: list[TaskId] = field(default_factory=list)
    restored_subtasks: list[str] = field(default_factory=list)
    discarded_subtasks: list[str] = field(default_factory=list)
    dangling_dependencies: dict[str, list[TaskId]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "replacedIds": list(self.replaced_ids),
            "appendedIds": list(self.appended_ids),
            "restoredSubtasks": list(self.restored_subtasks),
            "discardedSubtasks": list(self.discarded_subtasks),
            "danglingDependencies": {
                key: list(values) for key, values in self.dangling_dependencies.items()
            },
        }


def merge_tasks(
    document: Document,
    updates: object,
    *,
    policy: ProtectionPolicy = ProtectionPolicy.REPAIR,
) -> tuple[Document, MergeReport]:
    """Replace tasks named in `updates` wholesale; keep every other task as is.

    Updates for ids missing from the document are appended, after which the
    task list is sorted by numeric id. The input document is not mutated.
    """

    report = MergeReport()
    pending = _index_updates(updates)
    if not pending:
        return document, report

    merged: list[Task] = []
    for existing in document.tasks:
        update = pending.pop(str(existing.id), None)
        if update is None:
            merged.append(existing)
            continue
        replacement, restored, discarded = enforce_protection(existing, update, policy=policy)
        merged.append(_with_positional_subtasks(replacement))
        report.replaced_ids.append(existing.id)
        report.restored_subtasks.extend(subtask_key(existing.id, item.id) for item in restored)
        report.discarded_subtasks.extend(subtask_key(existing.id, item.id) for item in discarded)
        logger.info("Merging updated task ID: %s", existing.id)

    if pending:
        logger.warning(
            "Found %d updated tasks not present in the document; appending them.",
            len(pending),
        )
        for update in pending.values():
            merged.append(_with_positional_subtasks(update))
            report.appended_ids.append(update.id)
        merged.sort(key=numeric_sort_key)

    report.dangling_dependencies = dangling_dependencies(merged)
    for task_id, missing in report.dangling_dependencies.items():
        logger.warning("Task %s references unknown dependencies: %s", task_id, missing)
    return document.with_tasks(merged), report


def _index_updates(updates: object) -> dict[str, Task]:
    if not isinstance(updates, list):
        raise ValidationError("updates must be an array of tasks")
    indexed: dict[str, Task] = {}
    for position, item in enumerate(updates):
        if isinstance(item, Task):
            task = item
        elif isinstance(item, Mapping):
            try:
                task = Task.from_dict(item)
            except ValidationError as error:
                raise ValidationError(f"updates[{position}]: {error.message}") from error
        else:
            raise ValidationError(f"updates[{position}] must be a task object")
        key = str(task.id)
        if key in indexed:
            raise ValidationError(f"updates contains task ID {task.id} more than once")
        indexed[key] = task
    return indexed


def _with_positional_subtasks(task: Task) -> Task:
    """Renumber subtasks by position; sibling dependencies follow the new ids."""

    if has_contiguous_subtask_ids(task):
        return task
    return dataclasses.replace(task, subtasks=renumber_subtasks(task.subtasks))
