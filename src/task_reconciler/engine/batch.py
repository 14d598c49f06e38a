"""Batch expansion across a filtered subset of tasks."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from task_reconciler.engine.errors import EngineError, ErrorCode, GeneratorError
from task_reconciler.engine.models import (
    ComplexityReport,
    Document,
    Subtask,
    Task,
    TaskId,
    TaskStatus,
)
from task_reconciler.engine.planner import (
    DEFAULT_SUBTASK_COUNT,
    apply_subtasks,
    ensure_expandable,
    resolve_target_count,
)

logger = logging.getLogger(__name__)

SubtaskGenerator = Callable[[Task, int], Awaitable[list[Subtask]]]
Eligibility = Callable[[Task], bool]


@dataclass(slots=True)
class BatchItemResult:
    task_id: TaskId
    subtask_count: int


@dataclass(slots=True)
class BatchFailure:
    task_id: TaskId
    reason: str
    code: str = ErrorCode.GENERATOR_ERROR.value


@dataclass(slots=True)
class BatchExpansionReport:
    """Per-task outcomes of one batch run."""

    results: list[BatchItemResult] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)
    skipped: list[TaskId] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "results": [
                {"taskId": item.task_id, "subtaskCount": item.subtask_count}
                for item in self.results
            ],
            "failures": [
                {"taskId": item.task_id, "reason": item.reason, "code": item.code}
                for item in self.failures
            ],
            "skipped": list(self.skipped),
        }


def default_eligibility(*, force: bool = False) -> Eligibility:
    """Pending tasks without subtasks, or every pending task when forcing."""

    def _eligible(task: Task) -> bool:
        return task.status == TaskStatus.PENDING.value and (not task.subtasks or force)

    return _eligible


async def expand_all(  # noqa: PLR0913
    document: Document,
    generate: SubtaskGenerator,
    *,
    eligible: Eligibility | None = None,
    requested_count: int | None = None,
    complexity_report: ComplexityReport | None = None,
    force: bool = False,
    default_count: int = DEFAULT_SUBTASK_COUNT,
) -> tuple[Document, BatchExpansionReport]:
    """Expand every eligible task in order; one failure never stops the batch."""

    predicate = eligible or default_eligibility(force=force)
    candidates = [task for task in document.tasks if predicate(task)]
    report = BatchExpansionReport()
    if not candidates:
        report.message = "No pending tasks eligible for expansion found."
        return document, report

    logger.info("Found %d tasks eligible for expansion.", len(candidates))
    working = document
    for task in candidates:
        try:
            ensure_expandable(task)
            target = resolve_target_count(
                task,
                requested_count,
                complexity_report,
                default_count=default_count,
            )
            generated = await generate(task, target)
            if not generated:
                raise GeneratorError(
                    f"Generator returned no subtasks for task {task.id}",
                    code=ErrorCode.EMPTY_COMPLETION,
                )
            outcome = apply_subtasks(task, generated, target, force_overwrite=force)
        except EngineError as error:
            logger.warning("Skipping task %s: %s", task.id, error.message)
            report.failures.append(
                BatchFailure(task_id=task.id, reason=error.message, code=error.code.value),
            )
            continue
        except Exception as error:
            logger.exception("Unexpected failure expanding task %s", task.id)
            report.failures.append(BatchFailure(task_id=task.id, reason=str(error)))
            continue

        if outcome.skipped:
            report.skipped.append(task.id)
            continue
        working = working.with_task(outcome.task)
        report.results.append(
            BatchItemResult(task_id=task.id, subtask_count=outcome.subtasks_added),
        )
        logger.info("Generated %d subtasks for task %s", outcome.subtasks_added, task.id)

    report.message = _summary(report)
    return working, report


def _summary(report: BatchExpansionReport) -> str:
    if not report.results and report.failures:
        return f"Expansion failed for all {len(report.failures)} eligible tasks."
    if not report.results:
        return "No tasks were expanded."
    return f"Expanded {len(report.results)} tasks; {len(report.failures)} failed."
