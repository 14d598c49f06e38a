"""Best-effort recovery of structured task data from generator output."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from task_reconciler.engine.errors import ValidationError
from task_reconciler.engine.models import ComplexityReport, Subtask, Task, TaskId

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
_BRACKETS = {dict: ("{", "}"), list: ("[", "]")}


@dataclass(frozen=True, slots=True)
class ParseOk(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class ParseErr:
    reason: str


ParseResult = ParseOk[T] | ParseErr


def extract_json(text: str, expected: type[dict] | type[list]) -> Any | None:
    """Find a JSON value of type `expected` in free text.

    Tries the whole text, then fenced code blocks, then the outermost
    bracket span.
    """

    stripped = text.strip()
    if not stripped:
        return None
    direct = _try_load(stripped, expected)
    if direct is not None:
        return direct

    for match in _FENCED_JSON.finditer(stripped):
        fenced = _try_load(match.group(1), expected)
        if fenced is not None:
            return fenced

    opener, closer = _BRACKETS[expected]
    start = stripped.find(opener)
    end = stripped.rfind(closer)
    if start == -1 or end == -1 or end <= start:
        return None
    return _try_load(stripped[start : end + 1], expected)


def parse_task_batch(text: str) -> ParseResult[list[Task]]:
    """Parse `{"tasks": [...]}` (or a bare array) into tasks."""

    payload = extract_json(text, dict)
    raw_tasks = payload.get("tasks") if isinstance(payload, dict) else None
    if not isinstance(raw_tasks, list):
        raw_tasks = extract_json(text, list)
    if not isinstance(raw_tasks, list):
        return ParseErr("No JSON object with a tasks array found in completion.")
    try:
        return ParseOk([Task.from_dict(item) for item in raw_tasks])
    except ValidationError as error:
        return ParseErr(f"Invalid task in completion: {error.message}")


def parse_single_task(text: str, *, fallback_id: TaskId | None = None) -> ParseResult[Task]:
    """Parse one task object; `fallback_id` fills a missing id."""

    payload = extract_json(text, dict)
    if not isinstance(payload, dict):
        return ParseErr("No JSON object found in completion.")
    if isinstance(payload.get("task"), dict) and "title" not in payload:
        payload = payload["task"]
    if not isinstance(payload.get("title"), str) or not isinstance(
        payload.get("description"),
        str,
    ):
        return ParseErr("Task object must have string title and description.")
    try:
        return ParseOk(Task.from_dict(payload, default_id=fallback_id))
    except ValidationError as error:
        return ParseErr(f"Invalid task in completion: {error.message}")


def parse_subtasks(text: str, *, parent_id: TaskId | None = None) -> ParseResult[list[Subtask]]:
    """Parse a JSON array of subtasks; ids are assigned by position."""

    raw_items = extract_json(text, list)
    if raw_items is None:
        payload = extract_json(text, dict)
        if isinstance(payload, dict) and isinstance(payload.get("subtasks"), list):
            raw_items = payload["subtasks"]
    if not isinstance(raw_items, list):
        return ParseErr(f"No JSON array of subtasks found for parent task {parent_id}.")

    subtasks: list[Subtask] = []
    for index, item in enumerate(raw_items):
        if not isinstance(item, dict):
            return ParseErr(f"subtasks[{index}] must be an object.")
        if not isinstance(item.get("title"), str) or not isinstance(item.get("description"), str):
            return ParseErr(f"subtasks[{index}] must have string title and description.")
        try:
            subtasks.append(Subtask.from_dict({**item, "id": index + 1}))
        except ValidationError as error:
            return ParseErr(f"subtasks[{index}]: {error.message}")
    logger.debug("Parsed %d subtasks for parent task %s", len(subtasks), parent_id)
    return ParseOk(subtasks)


def parse_complexity_report(text: str) -> ParseResult[ComplexityReport]:
    payload: Any = extract_json(text, dict)
    if not isinstance(payload, dict) or "complexityAnalysis" not in payload:
        payload = extract_json(text, list)
    if payload is None:
        return ParseErr("No JSON complexity analysis found in completion.")
    try:
        return ParseOk(ComplexityReport.from_dict(payload))
    except ValidationError as error:
        return ParseErr(f"Invalid complexity analysis: {error.message}")


def _try_load(raw: str, expected: type[dict] | type[list]) -> Any | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, expected):
        return None
    return parsed
