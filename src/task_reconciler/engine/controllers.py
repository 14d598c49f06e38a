"""Controllers for task reconciliation CLI commands."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from task_reconciler.config import Settings
from task_reconciler.engine.artifacts import ArtifactRegenerator
from task_reconciler.engine.backend import CliCompletionSource
from task_reconciler.engine.contracts import OperationResult, dump_json, load_json
from task_reconciler.engine.errors import ErrorCode
from task_reconciler.engine.services import TaskGraphService
from task_reconciler.engine.store import TaskStore


@dataclass(slots=True)
class MergeCommand:
    """CLI inputs for merging a ready-made update batch."""

    tasks_path: Path | None
    updates_path: Path


@dataclass(slots=True)
class UpdateTasksCommand:
    """CLI inputs for updating tasks from an id onward."""

    tasks_path: Path | None
    from_id: str
    prompt: str


@dataclass(slots=True)
class UpdateTaskCommand:
    """CLI inputs for updating one task."""

    tasks_path: Path | None
    task_id: str
    prompt: str


@dataclass(slots=True)
class AddTaskCommand:
    """CLI inputs for drafting a new task."""

    tasks_path: Path | None
    prompt: str
    dependencies: tuple[str, ...]
    priority: str


@dataclass(slots=True)
class ExpandCommand:
    """CLI inputs for expanding one task."""

    tasks_path: Path | None
    task_id: str
    num: int | None
    prompt: str
    force: bool
    append: bool


@dataclass(slots=True)
class ExpandAllCommand:
    """CLI inputs for batch expansion."""

    tasks_path: Path | None
    num: int | None
    prompt: str
    force: bool


@dataclass(slots=True)
class AnalyzeCommand:
    """CLI inputs for complexity analysis."""

    tasks_path: Path | None
    threshold: float | None


@dataclass(slots=True)
class GenerateCommand:
    """CLI inputs for task file regeneration."""

    tasks_path: Path | None


@dataclass(slots=True)
class CommandResult:
    """Envelope rendered for the CLI."""

    lines: list[str]
    success: bool


class TaskCliController:
    """Coordinates task command execution."""

    def merge(self, command: MergeCommand) -> CommandResult:
        try:
            raw = load_json(command.updates_path)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
            return _render(
                OperationResult.fail_with(
                    ErrorCode.INPUT_VALIDATION_ERROR,
                    f"Cannot read updates file {command.updates_path}: {error}",
                ),
            )
        updates = raw.get("tasks") if isinstance(raw, dict) else raw
        return self._execute(
            command.tasks_path,
            lambda service: service.save_updated_tasks(updates),
            needs_generator=False,
        )

    def update_tasks(self, command: UpdateTasksCommand) -> CommandResult:
        return self._execute(
            command.tasks_path,
            lambda service: service.update_tasks(command.from_id, command.prompt),
        )

    def update_task(self, command: UpdateTaskCommand) -> CommandResult:
        return self._execute(
            command.tasks_path,
            lambda service: service.update_task(command.task_id, command.prompt),
        )

    def add_task(self, command: AddTaskCommand) -> CommandResult:
        return self._execute(
            command.tasks_path,
            lambda service: service.add_task(
                command.prompt,
                dependencies=_split_ids(command.dependencies),
                priority=command.priority,
            ),
        )

    def expand(self, command: ExpandCommand) -> CommandResult:
        return self._execute(
            command.tasks_path,
            lambda service: service.expand_task(
                command.task_id,
                num=command.num,
                prompt=command.prompt,
                force=command.force,
                append=command.append,
            ),
        )

    def expand_all(self, command: ExpandAllCommand) -> CommandResult:
        return self._execute(
            command.tasks_path,
            lambda service: service.expand_all(
                num=command.num,
                prompt=command.prompt,
                force=command.force,
            ),
        )

    def analyze(self, command: AnalyzeCommand) -> CommandResult:
        return self._execute(
            command.tasks_path,
            lambda service: service.analyze_complexity(command.threshold),
        )

    def generate(self, command: GenerateCommand) -> CommandResult:
        return self._execute(
            command.tasks_path,
            lambda service: service.generate_artifacts(),
            needs_generator=False,
        )

    def _execute(
        self,
        tasks_path: Path | None,
        operation: Callable[[TaskGraphService], Awaitable[OperationResult]],
        *,
        needs_generator: bool = True,
    ) -> CommandResult:
        try:
            settings = Settings.from_env(tasks_path=tasks_path)
            if needs_generator:
                settings.validate_for_generator()
            else:
                settings.validate()
        except ValueError as error:
            return _render(
                OperationResult.fail_with(ErrorCode.INPUT_VALIDATION_ERROR, str(error)),
            )
        service = build_service(settings, with_generator=needs_generator)
        return _render(asyncio.run(operation(service)))


def build_service(settings: Settings, *, with_generator: bool = True) -> TaskGraphService:
    source = (
        CliCompletionSource(
            settings.generator.command_template,
            timeout_seconds=settings.generator.timeout_seconds,
        )
        if with_generator
        else None
    )
    return TaskGraphService(
        TaskStore(settings.tasks_path),
        source,
        artifacts=ArtifactRegenerator(settings.resolved_artifacts_dir),
        complexity_report_path=settings.complexity_report_path,
        policy=settings.protection_policy,
        default_subtasks=settings.expansion.default_subtasks,
        complexity_threshold=settings.expansion.complexity_threshold,
    )


def _render(result: OperationResult) -> CommandResult:
    return CommandResult(
        lines=[dump_json(result.to_dict()).rstrip("\n")],
        success=result.success,
    )


def _split_ids(values: tuple[str, ...]) -> list[str]:
    """Flatten repeated and comma-separated id options."""

    return [part.strip() for value in values for part in value.split(",") if part.strip()]
