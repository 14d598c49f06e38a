"""CLI entrypoint for task-reconciler."""

import logging
import os
from pathlib import Path

import rich_click as click

from task_reconciler import __version__
from task_reconciler.engine.controllers import (
    AddTaskCommand,
    AnalyzeCommand,
    CommandResult,
    ExpandAllCommand,
    ExpandCommand,
    GenerateCommand,
    MergeCommand,
    TaskCliController,
    UpdateTaskCommand,
    UpdateTasksCommand,
)
from task_reconciler.engine.models import TaskPriority

click.rich_click.USE_MARKDOWN = True
CONTROLLER = TaskCliController()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

tasks_path_option = click.option(
    "--tasks-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Task document path. Defaults to TASK_RECONCILER_TASKS_PATH or tasks/tasks.json.",
)


@click.group()
@click.version_option(version=__version__, prog_name="task-reconciler")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Logging level. Defaults to TASK_RECONCILER_LOG_LEVEL or INFO.",
)
def task_reconciler(log_level: str | None) -> None:
    """Reconcile and expand a task document with an external generator.

    Every command prints a JSON envelope with `success`, `data` or `error`,
    and optional `warnings`.
    """

    _configure_logging(log_level or os.getenv("TASK_RECONCILER_LOG_LEVEL", "INFO"))


@task_reconciler.command("merge")
@tasks_path_option
@click.option(
    "--updates",
    "updates_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    required=True,
    help='JSON file holding a task array or `{"tasks": [...]}`.',
)
def merge(tasks_path: Path | None, updates_path: Path) -> None:
    """Merge ready-made replacement tasks into the document."""

    _finish(CONTROLLER.merge(MergeCommand(tasks_path=tasks_path, updates_path=updates_path)))


@task_reconciler.command("update")
@tasks_path_option
@click.option("--from", "from_id", required=True, help="Update tasks with ID >= this value.")
@click.option("--prompt", required=True, help="Description of the change to apply.")
def update(tasks_path: Path | None, from_id: str, prompt: str) -> None:
    """Rewrite every unfinished task from an ID onward."""

    _finish(
        CONTROLLER.update_tasks(
            UpdateTasksCommand(tasks_path=tasks_path, from_id=from_id, prompt=prompt),
        ),
    )


@task_reconciler.command("update-task")
@tasks_path_option
@click.option("--id", "task_id", required=True, help="Task ID to update.")
@click.option("--prompt", required=True, help="Description of the change to apply.")
def update_task(tasks_path: Path | None, task_id: str, prompt: str) -> None:
    """Rewrite a single task."""

    _finish(
        CONTROLLER.update_task(
            UpdateTaskCommand(tasks_path=tasks_path, task_id=task_id, prompt=prompt),
        ),
    )


@task_reconciler.command("add-task")
@tasks_path_option
@click.option("--prompt", required=True, help="What the new task should cover.")
@click.option(
    "--dependencies",
    multiple=True,
    help="Dependency task IDs, comma-separated or repeated.",
)
@click.option(
    "--priority",
    type=click.Choice([item.value for item in TaskPriority]),
    default=TaskPriority.MEDIUM.value,
    show_default=True,
)
def add_task(
    tasks_path: Path | None,
    prompt: str,
    dependencies: tuple[str, ...],
    priority: str,
) -> None:
    """Draft a new task with the generator and append it."""

    _finish(
        CONTROLLER.add_task(
            AddTaskCommand(
                tasks_path=tasks_path,
                prompt=prompt,
                dependencies=dependencies,
                priority=priority,
            ),
        ),
    )


@task_reconciler.command("expand")
@tasks_path_option
@click.option("--id", "task_id", required=True, help="Task ID to expand.")
@click.option("--num", type=click.IntRange(min=1), default=None, help="Subtask count.")
@click.option("--prompt", default="", help="Additional context for the generator.")
@click.option("--force", is_flag=True, help="Replace existing subtasks, completed ones too.")
@click.option("--append", is_flag=True, help="Keep existing subtasks and add new ones after.")
def expand(  # noqa: PLR0913
    tasks_path: Path | None,
    task_id: str,
    num: int | None,
    prompt: str,
    force: bool,
    append: bool,
) -> None:
    """Generate subtasks for one task.

    Without `--force` or `--append`, a task that already has subtasks is skipped.
    """

    _finish(
        CONTROLLER.expand(
            ExpandCommand(
                tasks_path=tasks_path,
                task_id=task_id,
                num=num,
                prompt=prompt,
                force=force,
                append=append,
            ),
        ),
    )


@task_reconciler.command("expand-all")
@tasks_path_option
@click.option("--num", type=click.IntRange(min=1), default=None, help="Subtask count per task.")
@click.option("--prompt", default="", help="Additional context for the generator.")
@click.option("--force", is_flag=True, help="Also re-expand pending tasks that have subtasks.")
def expand_all(tasks_path: Path | None, num: int | None, prompt: str, force: bool) -> None:
    """Generate subtasks for every eligible pending task."""

    _finish(
        CONTROLLER.expand_all(
            ExpandAllCommand(tasks_path=tasks_path, num=num, prompt=prompt, force=force),
        ),
    )


@task_reconciler.command("analyze")
@tasks_path_option
@click.option(
    "--threshold",
    type=click.FloatRange(min=1, max=10),
    default=None,
    help="Score at which expansion is recommended. Defaults to settings.",
)
def analyze(tasks_path: Path | None, threshold: float | None) -> None:
    """Score task complexity and save the report."""

    _finish(CONTROLLER.analyze(AnalyzeCommand(tasks_path=tasks_path, threshold=threshold)))


@task_reconciler.command("generate")
@tasks_path_option
def generate(tasks_path: Path | None) -> None:
    """Regenerate per-task text files from the document."""

    _finish(CONTROLLER.generate(GenerateCommand(tasks_path=tasks_path)))


def _configure_logging(level_name: str) -> None:
    level = level_name.strip().upper()
    if level not in LOG_LEVELS:
        raise click.BadParameter(f"Unsupported log level: {level_name!r}")
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _finish(result: CommandResult) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Operation failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    task_reconciler()
