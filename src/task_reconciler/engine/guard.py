"""Completion guard: completed subtasks must survive regeneration."""

from __future__ import annotations

import dataclasses
import logging
from enum import Enum

from task_reconciler.engine.errors import ErrorCode, ValidationError
from task_reconciler.engine.ids import remap_sibling_dependencies, subtask_key
from task_reconciler.engine.models import TERMINAL_STATUSES, Subtask, Task

logger = logging.getLogger(__name__)


class ProtectionPolicy(str, Enum):
    """How a merge treats a replacement that drops a protected subtask."""

    TRUST = "trust"
    REPAIR = "repair"
    REJECT = "reject"


def is_protected(subtask: Subtask) -> bool:
    """True iff the subtask status is exactly `done` or `completed`."""

    return subtask.status in TERMINAL_STATUSES


def protected_subtasks(task: Task) -> list[Subtask]:
    return [subtask for subtask in task.subtasks if is_protected(subtask)]


def missing_protected(original: Task, replacement: Task) -> list[Subtask]:
    """Protected subtasks of `original` not found unmodified at their position."""

    missing: list[Subtask] = []
    for index, subtask in enumerate(original.subtasks):
        if not is_protected(subtask):
            continue
        if index < len(replacement.subtasks) and replacement.subtasks[index] == subtask:
            continue
        missing.append(subtask)
    return missing


def enforce_protection(
    original: Task,
    replacement: Task,
    *,
    policy: ProtectionPolicy,
) -> tuple[Task, list[Subtask], list[Subtask]]:
    """Apply `policy`.

    Returns the task to store, the protected subtasks restored and the
    replacement subtasks discarded because they claimed a protected slot.
    """

    if policy is ProtectionPolicy.TRUST:
        return replacement, [], []

    missing = missing_protected(original, replacement)
    if not missing:
        return replacement, [], []

    keys = ", ".join(subtask_key(original.id, subtask.id) for subtask in missing)
    if policy is ProtectionPolicy.REJECT:
        raise ValidationError(
            f"Update for task {original.id} drops or modifies completed subtasks: {keys}",
            code=ErrorCode.PROTECTED_SUBTASK_CONFLICT,
        )

    logger.warning("Restoring completed subtasks dropped by update: %s", keys)
    repaired, discarded = restore_protected(original, replacement)
    if discarded:
        logger.warning(
            "Discarding completed replacement subtasks that reuse protected ids: %s",
            ", ".join(subtask_key(original.id, subtask.id) for subtask in discarded),
        )
    return repaired, missing, discarded


def restore_protected(original: Task, replacement: Task) -> tuple[Task, list[Subtask]]:
    """Put protected subtasks back at their original positions.

    A replacement subtask is dropped only when it is itself done or completed
    and reuses a protected id. Every other replacement subtask fills the free
    slots in order and any surplus is appended, with its integer sibling
    dependencies following it to the new ids. When the replacement runs short
    before the last protected slot, the original non-protected subtask keeps
    its slot. Returns the task and the dropped subtasks that differed from the
    protected one they collided with.
    """

    protected_at = {
        index: subtask for index, subtask in enumerate(original.subtasks) if is_protected(subtask)
    }
    if not protected_at:
        return replacement, []

    slot_by_id = {subtask.id: index + 1 for index, subtask in protected_at.items()}
    fillers: list[Subtask] = []
    dropped: list[Subtask] = []
    discarded: list[Subtask] = []
    for subtask in replacement.subtasks:
        slot = slot_by_id.get(subtask.id)
        if slot is None or not is_protected(subtask):
            fillers.append(subtask)
            continue
        dropped.append(subtask)
        if subtask != original.subtasks[slot - 1]:
            discarded.append(subtask)

    placed: list[tuple[Subtask, bool]] = []
    remaining = iter(fillers)
    for index, original_subtask in enumerate(original.subtasks[: max(protected_at) + 1]):
        filler = None if index in protected_at else next(remaining, None)
        placed.append((original_subtask, False) if filler is None else (filler, True))
    placed.extend((filler, True) for filler in remaining)

    mapping: dict[int, int] = {}
    for position, (subtask, is_filler) in enumerate(placed, start=1):
        if is_filler:
            mapping.setdefault(subtask.id, position)
    for subtask in dropped:
        mapping.setdefault(subtask.id, slot_by_id[subtask.id])

    subtasks = [
        remap_sibling_dependencies(subtask, position, mapping)
        if is_filler
        else _at_position(subtask, position)
        for position, (subtask, is_filler) in enumerate(placed, start=1)
    ]
    return dataclasses.replace(replacement, subtasks=subtasks), discarded


def _at_position(subtask: Subtask, position: int) -> Subtask:
    if subtask.id == position:
        return subtask
    return dataclasses.replace(subtask, id=position)
