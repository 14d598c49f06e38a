"""Prompt templates for generator calls."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass

from task_reconciler.engine.models import ComplexityEntry, Task, TaskId

_JSON_ONLY = "Respond with the JSON only, no explanations before or after it."

SUBTASK_SCHEMA = """\
[
  {
    "title": "<short imperative title>",
    "description": "<one or two sentences>",
    "details": "<implementation notes>",
    "dependencies": [<ids of earlier subtasks in this list>]
  }
]"""

TASK_SCHEMA = """\
{
  "id": <number>,
  "title": "<title>",
  "description": "<description>",
  "status": "<status>",
  "dependencies": [<task ids>],
  "priority": "high" | "medium" | "low",
  "details": "<implementation details>",
  "testStrategy": "<how to verify>",
  "subtasks": [<subtask objects>]
}"""

COMPLEXITY_SCHEMA = """\
[
  {
    "id": <task id>,
    "complexityScore": <1-10>,
    "justification": "<why>",
    "recommendExpansion": true | false
  }
]"""

_PRESERVE_COMPLETED = (
    "Subtasks whose status is \"done\" or \"completed\" are finished work: copy them "
    "unchanged, in the same position. You may add new subtasks after them."
)


@dataclass(slots=True)
class PromptPair:
    system: str | None
    user: str


def build_expand_prompt(
    task: Task,
    target_count: int,
    additional_context: str = "",
    complexity: ComplexityEntry | None = None,
) -> PromptPair:
    complexity_info = ""
    if complexity is not None:
        complexity_info = (
            f"\nComplexity analysis: score {complexity.complexity_score:g}/10. "
            f"{complexity.justification}\n"
        )
    context = f"\nAdditional context: {additional_context}\n" if additional_context else ""
    user = (
        f"Break down the following task into approximately {target_count} subtasks.\n\n"
        f"Task {task.id}: {task.title}\n"
        f"Description: {task.description}\n"
        f"Details: {task.details}\n"
        f"{complexity_info}{context}\n"
        f"Return a JSON array of subtask objects following this schema:\n"
        f"{SUBTASK_SCHEMA}\n\n{_JSON_ONLY}"
    )
    return PromptPair(system=None, user=user)


def build_update_tasks_prompt(
    tasks: Sequence[Task],
    update_prompt: str,
    from_id: TaskId,
) -> PromptPair:
    system = (
        "You update software development tasks to reflect new context. Keep every task id, "
        f"keep done tasks as they are. {_PRESERVE_COMPLETED}"
    )
    user = (
        f"Apply this change to every task with ID >= {from_id}:\n{update_prompt}\n\n"
        f"Tasks:\n{_dump([task.to_dict() for task in tasks])}\n\n"
        f'Return {{"tasks": [...]}} where each task follows:\n{TASK_SCHEMA}\n\n{_JSON_ONLY}'
    )
    return PromptPair(system=system, user=user)


def build_update_task_prompt(task: Task, update_prompt: str) -> PromptPair:
    system = (
        "You update one software development task to reflect new context. Keep its id. "
        f"{_PRESERVE_COMPLETED}"
    )
    user = (
        f"Change requested:\n{update_prompt}\n\n"
        f"Task:\n{_dump(task.to_dict())}\n\n"
        f"Return the updated task object following:\n{TASK_SCHEMA}\n\n{_JSON_ONLY}"
    )
    return PromptPair(system=system, user=user)


def build_add_task_prompt(
    user_prompt: str,
    context_tasks: Sequence[Task],
    new_task_id: int,
) -> PromptPair:
    summary = [
        {"id": task.id, "title": task.title, "status": task.status} for task in context_tasks
    ]
    system = (
        "You structure a new software development task from a request. Produce a single "
        "task object with title, description, details and testStrategy."
    )
    user = (
        f"New task (it will get ID {new_task_id}):\n{user_prompt}\n\n"
        f"Existing tasks for context:\n{_dump(summary) if summary else 'None provided.'}\n\n"
        f"{TASK_SCHEMA}\n\n{_JSON_ONLY}"
    )
    return PromptPair(system=system, user=user)


def build_complexity_prompt(tasks: Sequence[Task], threshold: float) -> PromptPair:
    user = (
        "Analyze the complexity of the following development tasks. Give each a score "
        "from 1 (trivial) to 10 (highly complex) with a short justification, and set "
        f"recommendExpansion when the score is {threshold:g} or higher.\n\n"
        f"Tasks:\n{_dump([_brief(task) for task in tasks])}\n\n"
        f"Return a JSON array:\n{COMPLEXITY_SCHEMA}\n\n{_JSON_ONLY}"
    )
    return PromptPair(system=None, user=user)


def _brief(task: Task) -> dict[str, object]:
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "details": task.details,
    }


def _dump(payload: object) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)
