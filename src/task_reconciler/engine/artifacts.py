"""Derived per-task text files regenerated from the task document."""

from __future__ import annotations

import logging
from pathlib import Path

from task_reconciler.engine.contracts import atomic_write_text
from task_reconciler.engine.errors import ArtifactRegenerationWarning
from task_reconciler.engine.ids import subtask_key
from task_reconciler.engine.models import Document, Task

logger = logging.getLogger(__name__)


class ArtifactRegenerator:
    """Writes one `task_NNN.txt` file per task."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = output_dir

    def regenerate(self, document: Document) -> list[Path]:
        written: list[Path] = []
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            for task in document.tasks:
                path = self.output_dir / artifact_name(task)
                atomic_write_text(path, render_task(task))
                written.append(path)
        except OSError as error:
            raise ArtifactRegenerationWarning(
                f"Failed to regenerate task files in {self.output_dir}: {error}",
            ) from error
        return written


def regenerate_best_effort(
    regenerator: ArtifactRegenerator | None,
    document: Document,
) -> list[str]:
    """Run the regenerator; failures are logged and returned as warnings."""

    if regenerator is None:
        return []
    try:
        written = regenerator.regenerate(document)
    except ArtifactRegenerationWarning as warning:
        logger.warning("%s", warning)
        return [str(warning)]
    logger.info("Generated %d task files in %s", len(written), regenerator.output_dir)
    return []


def artifact_name(task: Task) -> str:
    if isinstance(task.id, int):
        return f"task_{task.id:03d}.txt"
    return f"task_{task.id}.txt"


def render_task(task: Task) -> str:
    dependencies = ", ".join(str(dep) for dep in task.dependencies) or "None"
    lines = [
        f"# Task ID: {task.id}",
        f"# Title: {task.title}",
        f"# Status: {task.status}",
        f"# Dependencies: {dependencies}",
        f"# Priority: {task.priority}",
        f"# Description: {task.description}",
        "# Details:",
        task.details,
        "",
        "# Test Strategy:",
        task.test_strategy,
    ]
    if task.subtasks:
        lines.extend(["", "# Subtasks:"])
        for subtask in task.subtasks:
            key = subtask_key(task.id, subtask.id)
            lines.append(f"## {key}. {subtask.title} [{subtask.status}]")
            if subtask.dependencies:
                deps = ", ".join(str(dep) for dep in subtask.dependencies)
                lines.append(f"### Dependencies: {deps}")
            lines.append(f"### Description: {subtask.description}")
            if subtask.details:
                lines.append("### Details:")
                lines.append(subtask.details)
            lines.append("")
    return "\n".join(lines).rstrip() + "\n"
