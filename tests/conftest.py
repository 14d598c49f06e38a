"""Shared test fixtures."""

from __future__ import annotations

import json
import os
import shlex
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from task_reconciler.engine.errors import GeneratorError
from task_reconciler.engine.models import Document

ECHO_AGENT_COMMAND = f"{shlex.quote(sys.executable)} -m task_reconciler.engine.backend.echo_agent"


class ScriptedCompletionSource:
    """In-process completion source returning queued responses in order."""

    def __init__(self, responses: list[str | Exception]) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str | None, str]] = []

    async def complete(self, prompt: str, *, system: str | None = None) -> str:
        self.calls.append((system, prompt))
        if not self.responses:
            raise GeneratorError("No scripted response left.")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _task_dict(task_id: Any, **fields: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": task_id,
        "title": f"Task {task_id}",
        "description": f"Description {task_id}",
        "status": "pending",
        "dependencies": [],
        "priority": "medium",
        "details": "",
        "testStrategy": "",
        "subtasks": [],
    }
    payload.update(fields)
    return payload


def _subtask_dict(subtask_id: int, status: str = "pending", **fields: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": subtask_id,
        "title": f"Subtask {subtask_id}",
        "description": f"Subtask description {subtask_id}",
        "dependencies": [],
        "details": "",
        "status": status,
    }
    payload.update(fields)
    return payload


@pytest.fixture()
def make_task() -> Callable[..., dict[str, Any]]:
    return _task_dict


@pytest.fixture()
def make_subtask() -> Callable[..., dict[str, Any]]:
    return _subtask_dict


@pytest.fixture()
def sample_payload() -> dict[str, Any]:
    return {
        "tasks": [
            _task_dict(1, status="done"),
            _task_dict(2, dependencies=[1]),
            _task_dict(
                3,
                subtasks=[
                    _subtask_dict(1, "done", title="Schema"),
                    _subtask_dict(2, title="Endpoints", dependencies=[1]),
                    _subtask_dict(3, "completed", title="Docs"),
                ],
            ),
            _task_dict(4, status="in-progress", dependencies=[2, 3]),
        ],
        "metadata": {"projectName": "demo"},
    }


@pytest.fixture()
def sample_document(sample_payload: dict[str, Any]) -> Document:
    return Document.from_dict(sample_payload)


@pytest.fixture()
def write_tasks(tmp_path: Path) -> Callable[[dict[str, Any]], Path]:
    """Write a task payload to tmp_path/tasks/tasks.json and return the path."""

    def _write(payload: dict[str, Any]) -> Path:
        path = tmp_path / "tasks" / "tasks.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), "utf-8")
        return path

    return _write


@pytest.fixture()
def scripted_source() -> Callable[..., ScriptedCompletionSource]:
    def _make(*responses: str | Exception) -> ScriptedCompletionSource:
        return ScriptedCompletionSource(list(responses))

    return _make


@pytest.fixture()
def echo_agent_command() -> str:
    """Command prefix running the local echo agent with the current interpreter."""

    return ECHO_AGENT_COMMAND


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Drop TASK_RECONCILER_* variables inherited from the shell."""

    for name in list(os.environ):
        if name.startswith("TASK_RECONCILER_"):
            monkeypatch.delenv(name, raising=False)
    return monkeypatch
