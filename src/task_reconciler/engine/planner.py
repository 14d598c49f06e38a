"""Expansion planning: subtask target sizing and attaching generated subtasks."""

from __future__ import annotations

import dataclasses
import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from task_reconciler.engine.errors import ErrorCode, ValidationError
from task_reconciler.engine.ids import next_subtask_id
from task_reconciler.engine.models import ComplexityReport, Subtask, Task, TaskStatus

logger = logging.getLogger(__name__)

DEFAULT_SUBTASK_COUNT = 5
HIGH_COMPLEXITY_THRESHOLD = 8
COMPLEXITY_SCORE_DIVISOR = 1.5
MIN_COMPLEXITY_SUBTASKS = 3
MAX_COMPLEXITY_SUBTASKS = 10
LOW_COMPLEXITY_SUBTASKS = 3


@dataclass(slots=True)
class ExpansionOutcome:
    """Result of attaching generated subtasks to one task."""

    task: Task
    subtasks_added: int
    skipped: bool
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(),
            "subtasksAdded": self.subtasks_added,
            "skipped": self.skipped,
            "message": self.message,
        }


def resolve_target_count(
    task: Task,
    requested_count: int | None = None,
    complexity_report: ComplexityReport | None = None,
    *,
    default_count: int = DEFAULT_SUBTASK_COUNT,
) -> int:
    """How many subtasks to ask the generator for; first match wins."""

    if requested_count is not None:
        if isinstance(requested_count, bool) or not isinstance(requested_count, int):
            raise ValidationError(f"Subtask count must be an integer, got {requested_count!r}")
        if requested_count <= 0:
            raise ValidationError(f"Subtask count must be positive, got {requested_count}")
        return requested_count

    entry = complexity_report.entry_for(task.id) if complexity_report is not None else None
    if entry is not None:
        if entry.complexity_score >= HIGH_COMPLEXITY_THRESHOLD:
            suggested = math.ceil(entry.complexity_score / COMPLEXITY_SCORE_DIVISOR)
            return max(MIN_COMPLEXITY_SUBTASKS, min(MAX_COMPLEXITY_SUBTASKS, suggested))
        return LOW_COMPLEXITY_SUBTASKS

    return default_count


def ensure_expandable(task: Task) -> None:
    if task.is_completed:
        raise ValidationError(
            f"Task {task.id} is already completed",
            code=ErrorCode.TASK_COMPLETED,
        )


def apply_subtasks(
    task: Task,
    generated: Sequence[Subtask | Mapping[str, Any]],
    target_count: int,
    force_overwrite: bool = False,
    *,
    append: bool = False,
) -> ExpansionOutcome:
    """Attach generated subtasks to `task` without mutating it.

    Existing subtasks make this a skip unless `force_overwrite` (discard the
    whole list, completed subtasks included) or `append` (keep them and add
    after) is set.
    """

    existing = list(task.subtasks)
    if existing and not force_overwrite and not append:
        logger.info("Task %s already has subtasks. Use force to overwrite.", task.id)
        return ExpansionOutcome(
            task=task,
            subtasks_added=0,
            skipped=True,
            message=f"Task {task.id} already has subtasks. Skipped.",
        )

    survivors = [] if force_overwrite else existing
    if force_overwrite and existing:
        logger.info("Replacing %d existing subtasks of task %s.", len(existing), task.id)

    start = next_subtask_id(survivors)
    total = start - 1 + len(generated)
    new_subtasks = [
        _prepare_generated(item, subtask_id=start + offset, total=total)
        for offset, item in enumerate(generated)
    ]
    if len(new_subtasks) != target_count:
        logger.warning(
            "Expected %d subtasks but received %d for task %s.",
            target_count,
            len(new_subtasks),
            task.id,
        )

    updated = dataclasses.replace(task, subtasks=survivors + new_subtasks)
    return ExpansionOutcome(
        task=updated,
        subtasks_added=len(new_subtasks),
        skipped=False,
        message=f"Added {len(new_subtasks)} subtasks to task {task.id}.",
    )


def _prepare_generated(
    item: Subtask | Mapping[str, Any],
    *,
    subtask_id: int,
    total: int,
) -> Subtask:
    if isinstance(item, Subtask):
        subtask = dataclasses.replace(item, id=subtask_id)
    else:
        subtask = Subtask.from_dict({**item, "id": subtask_id})
    if not subtask.status:
        subtask.status = TaskStatus.PENDING.value
    # Sibling references must land inside the renumbered list.
    subtask.dependencies = [
        dep
        for dep in subtask.dependencies
        if not isinstance(dep, int) or (1 <= dep <= total and dep != subtask_id)
    ]
    return subtask
