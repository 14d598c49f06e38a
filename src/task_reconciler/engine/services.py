"""Task graph operations: load, transform with generator help, save."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

from task_reconciler.engine import batch
from task_reconciler.engine.artifacts import ArtifactRegenerator, regenerate_best_effort
from task_reconciler.engine.backend.base import CompletionSource
from task_reconciler.engine.contracts import OperationResult
from task_reconciler.engine.errors import (
    ArtifactRegenerationWarning,
    EngineError,
    ErrorCode,
    GeneratorError,
    ValidationError,
)
from task_reconciler.engine.guard import ProtectionPolicy
from task_reconciler.engine.ids import (
    next_task_id,
    parse_task_id_argument,
    select_from_id,
)
from task_reconciler.engine.models import (
    TERMINAL_STATUSES,
    ComplexityReport,
    Document,
    Subtask,
    Task,
    TaskId,
    TaskPriority,
    TaskStatus,
    coerce_task_id,
)
from task_reconciler.engine.parser import (
    ParseErr,
    ParseResult,
    parse_complexity_report,
    parse_single_task,
    parse_subtasks,
    parse_task_batch,
)
from task_reconciler.engine.planner import (
    DEFAULT_SUBTASK_COUNT,
    apply_subtasks,
    ensure_expandable,
    resolve_target_count,
)
from task_reconciler.engine.prompts import (
    PromptPair,
    build_add_task_prompt,
    build_complexity_prompt,
    build_expand_prompt,
    build_update_task_prompt,
    build_update_tasks_prompt,
)
from task_reconciler.engine.reconcile import MergeReport, merge_tasks
from task_reconciler.engine.store import TaskStore, load_complexity_report, save_complexity_report

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_COMPLEXITY_THRESHOLD = 5.0


class TaskGraphService:
    """Public operations over one task document.

    Every operation returns an `OperationResult`; engine and OS errors are
    converted into failure envelopes here and never escape.
    """

    def __init__(  # noqa: PLR0913
        self,
        store: TaskStore,
        completion_source: CompletionSource | None = None,
        *,
        artifacts: ArtifactRegenerator | None = None,
        complexity_report_path: Path | None = None,
        policy: ProtectionPolicy = ProtectionPolicy.REPAIR,
        default_subtasks: int = DEFAULT_SUBTASK_COUNT,
        complexity_threshold: float = DEFAULT_COMPLEXITY_THRESHOLD,
    ) -> None:
        self.store = store
        self.completion_source = completion_source
        self.artifacts = artifacts
        self.complexity_report_path = complexity_report_path
        self.policy = policy
        self.default_subtasks = default_subtasks
        self.complexity_threshold = complexity_threshold

    async def save_updated_tasks(self, updates: object) -> OperationResult:
        """Merge a ready-made batch of replacement tasks."""

        return await self._run("save_updated_tasks", lambda: self._save_updated_tasks(updates))

    async def update_tasks(self, from_id: object, prompt: str) -> OperationResult:
        """Rewrite every non-done task with id >= `from_id`."""

        return await self._run("update_tasks", lambda: self._update_tasks(from_id, prompt))

    async def update_task(self, task_id: object, prompt: str) -> OperationResult:
        return await self._run("update_task", lambda: self._update_task(task_id, prompt))

    async def add_task(
        self,
        prompt: str,
        dependencies: Sequence[object] = (),
        priority: str = TaskPriority.MEDIUM.value,
    ) -> OperationResult:
        return await self._run(
            "add_task",
            lambda: self._add_task(prompt, dependencies, priority),
        )

    async def expand_task(  # noqa: PLR0913
        self,
        task_id: object,
        num: int | None = None,
        prompt: str = "",
        force: bool = False,
        append: bool = False,
    ) -> OperationResult:
        return await self._run(
            "expand_task",
            lambda: self._expand_task(task_id, num, prompt, force=force, append=append),
        )

    async def expand_all(
        self,
        num: int | None = None,
        prompt: str = "",
        force: bool = False,
    ) -> OperationResult:
        return await self._run("expand_all", lambda: self._expand_all(num, prompt, force=force))

    async def analyze_complexity(self, threshold: float | None = None) -> OperationResult:
        return await self._run("analyze_complexity", lambda: self._analyze_complexity(threshold))

    async def generate_artifacts(self) -> OperationResult:
        return await self._run("generate_artifacts", self._generate_artifacts)

    async def _run(
        self,
        name: str,
        operation: Callable[[], Awaitable[OperationResult]],
    ) -> OperationResult:
        try:
            return await operation()
        except EngineError as error:
            logger.warning("%s failed [%s]: %s", name, error.code.value, error.message)
            return OperationResult.fail(error)
        except OSError as error:
            logger.warning("%s failed with OS error: %s", name, error)
            return OperationResult.fail_with(ErrorCode.PERSISTENCE_ERROR, f"{name}: {error}")

    async def _save_updated_tasks(self, updates: object) -> OperationResult:
        if updates is None:
            raise ValidationError("updates is required", code=ErrorCode.MISSING_ARGUMENT)
        document = self.store.load()
        merged, report = merge_tasks(document, updates, policy=self.policy)
        if not report.replaced_ids and not report.appended_ids:
            return OperationResult.ok({"message": "No updates to apply.", **report.to_dict()})
        warnings = self._save(merged)
        return _merge_result(merged, report, warnings)

    async def _update_tasks(self, from_id: object, prompt: str) -> OperationResult:
        _require_text(prompt, "prompt")
        document = self.store.load()
        selected = select_from_id(document.tasks, from_id, exclude_statuses=TERMINAL_STATUSES)
        if not selected:
            return OperationResult.ok(
                {
                    "message": f"No tasks to update (ID >= {from_id} and not done).",
                    "replacedIds": [],
                },
            )

        logger.info("Updating %d tasks from ID %s", len(selected), from_id)
        text = await self._complete(build_update_tasks_prompt(selected, prompt, from_id))
        updates = _unwrap(parse_task_batch(text))
        selected_ids = {str(task.id) for task in selected}
        relevant = [task for task in updates if str(task.id) in selected_ids]
        if len(relevant) != len(updates):
            logger.warning(
                "Ignoring %d returned tasks outside the requested range.",
                len(updates) - len(relevant),
            )
        merged, report = merge_tasks(document, relevant, policy=self.policy)
        warnings = self._save(merged) if report.replaced_ids else []
        return _merge_result(merged, report, warnings)

    async def _update_task(self, task_id: object, prompt: str) -> OperationResult:
        _require_text(prompt, "prompt")
        document = self.store.load()
        task = document.require_task(_task_id(task_id))
        if task.is_completed:
            return OperationResult.ok(
                {
                    "message": f"Task {task.id} is already completed; nothing updated.",
                    "updated": False,
                    "task": task.to_dict(),
                },
            )

        text = await self._complete(build_update_task_prompt(task, prompt))
        updated = _unwrap(parse_single_task(text, fallback_id=task.id))
        if str(updated.id) != str(task.id):
            raise GeneratorError(
                f"Completion returned task ID {updated.id}, expected {task.id}",
                code=ErrorCode.PARSE_ERROR,
            )
        merged, report = merge_tasks(document, [updated], policy=self.policy)
        warnings = self._save(merged)
        stored = merged.require_task(task.id)
        return OperationResult.ok(
            {
                "message": f"Successfully updated task {task.id}.",
                "updated": True,
                "task": stored.to_dict(),
                "restoredSubtasks": report.restored_subtasks,
                "discardedSubtasks": report.discarded_subtasks,
            },
            warnings=warnings + _restored_warnings(report),
        )

    async def _add_task(
        self,
        prompt: str,
        dependencies: Sequence[object],
        priority: str,
    ) -> OperationResult:
        _require_text(prompt, "prompt")
        if priority not in {item.value for item in TaskPriority}:
            allowed = ", ".join(item.value for item in TaskPriority)
            raise ValidationError(f"Invalid priority {priority!r}: expected one of {allowed}")
        document = self.store.load()
        dependency_ids = [coerce_task_id(dep, label="dependency") for dep in dependencies]
        missing = [dep for dep in dependency_ids if document.find_task(dep) is None]
        if missing:
            raise ValidationError(
                "Dependency task(s) not found: " + ", ".join(str(dep) for dep in missing),
            )

        new_id = next_task_id(document.tasks)
        context = [document.require_task(dep) for dep in dependency_ids] or document.tasks
        text = await self._complete(build_add_task_prompt(prompt, context, new_id))
        drafted = _unwrap(parse_single_task(text, fallback_id=new_id))
        new_task = dataclasses.replace(
            drafted,
            id=new_id,
            status=TaskStatus.PENDING.value,
            dependencies=dependency_ids,
            priority=priority,
            subtasks=[],
        )
        updated = document.with_tasks([*document.tasks, new_task])
        warnings = self._save(updated)
        logger.info("Added task %s: %s", new_id, new_task.title)
        return OperationResult.ok(
            {
                "message": f"Successfully added new task #{new_id}.",
                "taskId": new_id,
                "task": new_task.to_dict(),
            },
            warnings=warnings,
        )

    async def _expand_task(
        self,
        task_id: object,
        num: int | None,
        prompt: str,
        *,
        force: bool,
        append: bool,
    ) -> OperationResult:
        if force and append:
            raise ValidationError("force and append cannot be combined")
        document = self.store.load()
        task = document.require_task(_task_id(task_id))
        ensure_expandable(task)
        if task.subtasks and not force and not append:
            outcome = apply_subtasks(task, [], 0)
            return OperationResult.ok(outcome.to_dict())

        complexity = self._complexity_report()
        target = resolve_target_count(
            task,
            num,
            complexity,
            default_count=self.default_subtasks,
        )
        generated = await self._generate_subtasks(task, target, prompt, complexity)
        if not generated:
            raise GeneratorError(
                f"Generator returned no subtasks for task {task.id}",
                code=ErrorCode.EMPTY_COMPLETION,
            )
        outcome = apply_subtasks(task, generated, target, force, append=append)
        warnings = self._save(document.with_task(outcome.task))
        return OperationResult.ok(outcome.to_dict(), warnings=warnings)

    async def _expand_all(self, num: int | None, prompt: str, *, force: bool) -> OperationResult:
        document = self.store.load()
        complexity = self._complexity_report()

        async def generate(task: Task, target: int) -> list[Subtask]:
            return await self._generate_subtasks(task, target, prompt, complexity)

        updated, report = await batch.expand_all(
            document,
            generate,
            requested_count=num,
            complexity_report=complexity,
            force=force,
            default_count=self.default_subtasks,
        )
        warnings = self._save(updated) if report.results else []
        return OperationResult.ok(report.to_dict(), warnings=warnings)

    async def _analyze_complexity(self, threshold: float | None) -> OperationResult:
        if threshold is None:
            threshold = self.complexity_threshold
        if isinstance(threshold, bool) or not isinstance(threshold, int | float):
            raise ValidationError(f"Threshold must be a number, got {threshold!r}")
        if not 1 <= threshold <= 10:
            raise ValidationError(f"Threshold must be between 1 and 10, got {threshold}")
        if self.complexity_report_path is None:
            raise ValidationError(
                "No complexity report path configured",
                code=ErrorCode.MISSING_ARGUMENT,
            )
        document = self.store.load()
        candidates = [task for task in document.tasks if not task.is_completed]
        if not candidates:
            return OperationResult.ok({"message": "No active tasks to analyze.", "entries": []})

        text = await self._complete(build_complexity_prompt(candidates, threshold))
        parsed = _unwrap(parse_complexity_report(text))
        known = {str(task.id) for task in candidates}
        entries = [
            dataclasses.replace(entry, recommend_expansion=entry.complexity_score >= threshold)
            for entry in parsed.entries
            if str(entry.task_id) in known
        ]
        missing = known - {str(entry.task_id) for entry in entries}
        if missing:
            logger.warning("Complexity analysis missing tasks: %s", ", ".join(sorted(missing)))
        report = ComplexityReport(
            entries=entries,
            meta={
                "generatedAt": datetime.now(UTC).isoformat(),
                "tasksAnalyzed": len(entries),
                "thresholdScore": threshold,
            },
        )
        save_complexity_report(self.complexity_report_path, report)
        logger.info("Saved complexity report to %s", self.complexity_report_path)
        return OperationResult.ok(
            {
                "message": f"Analyzed {len(entries)} tasks.",
                "reportPath": str(self.complexity_report_path),
                "recommendedForExpansion": [
                    entry.task_id for entry in entries if entry.recommend_expansion
                ],
                "report": report.to_dict(),
            },
        )

    async def _generate_artifacts(self) -> OperationResult:
        if self.artifacts is None:
            raise ValidationError(
                "No artifact directory configured",
                code=ErrorCode.MISSING_ARGUMENT,
            )
        document = self.store.load()
        try:
            written = self.artifacts.regenerate(document)
        except ArtifactRegenerationWarning as warning:
            return OperationResult.fail_with(ErrorCode.PERSISTENCE_ERROR, str(warning))
        return OperationResult.ok(
            {
                "message": f"Generated {len(written)} task files.",
                "files": [str(path) for path in written],
            },
        )

    async def _generate_subtasks(
        self,
        task: Task,
        target: int,
        additional_context: str,
        complexity: ComplexityReport | None,
    ) -> list[Subtask]:
        entry = complexity.entry_for(task.id) if complexity is not None else None
        text = await self._complete(
            build_expand_prompt(task, target, additional_context, entry),
        )
        return _unwrap(parse_subtasks(text, parent_id=task.id))

    async def _complete(self, prompt: PromptPair) -> str:
        if self.completion_source is None:
            raise GeneratorError("No completion source configured")
        try:
            text = await self.completion_source.complete(prompt.user, system=prompt.system)
        except EngineError:
            raise
        except Exception as error:
            raise GeneratorError(f"Completion source failed: {error}") from error
        if not text or not text.strip():
            raise GeneratorError(
                "Received empty completion text.",
                code=ErrorCode.EMPTY_COMPLETION,
            )
        return text

    def _complexity_report(self) -> ComplexityReport | None:
        if self.complexity_report_path is None:
            return None
        return load_complexity_report(self.complexity_report_path)

    def _save(self, document: Document) -> list[str]:
        self.store.save(document)
        return regenerate_best_effort(self.artifacts, document)


def _merge_result(document: Document, report: MergeReport, warnings: list[str]) -> OperationResult:
    changed = len(report.replaced_ids) + len(report.appended_ids)
    data: dict[str, Any] = {
        "message": f"Merged {changed} tasks.",
        "taskCount": len(document.tasks),
        **report.to_dict(),
    }
    return OperationResult.ok(data, warnings=warnings + _restored_warnings(report))


def _restored_warnings(report: MergeReport) -> list[str]:
    warnings: list[str] = []
    if report.restored_subtasks:
        warnings.append("Restored completed subtasks: " + ", ".join(report.restored_subtasks))
    if report.discarded_subtasks:
        warnings.append(
            "Discarded completed replacement subtasks: " + ", ".join(report.discarded_subtasks),
        )
    return warnings


def _unwrap(result: ParseResult[T]) -> T:
    if isinstance(result, ParseErr):
        raise GeneratorError(result.reason, code=ErrorCode.PARSE_ERROR)
    return result.value


def _require_text(value: object, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required", code=ErrorCode.MISSING_ARGUMENT)


def _task_id(value: object) -> TaskId:
    if value is None:
        raise ValidationError("task id is required", code=ErrorCode.MISSING_ARGUMENT)
    try:
        return parse_task_id_argument(value)
    except ValidationError:
        return coerce_task_id(value, label="task id")
