from __future__ import annotations

import asyncio
import json
from pathlib import Path

import allure

from task_reconciler.engine.artifacts import ArtifactRegenerator
from task_reconciler.engine.errors import GeneratorError
from task_reconciler.engine.guard import ProtectionPolicy
from task_reconciler.engine.services import TaskGraphService
from task_reconciler.engine.store import TaskStore

pytestmark = [
    allure.epic("Operations"),
    allure.feature("Task Graph Service"),
]


def _service(path: Path, source=None, **kwargs) -> TaskGraphService:
    kwargs.setdefault("artifacts", ArtifactRegenerator(path.parent))
    kwargs.setdefault("complexity_report_path", path.parent / "complexity.json")
    return TaskGraphService(TaskStore(path), source, **kwargs)


def _saved(path: Path) -> dict:
    return json.loads(path.read_text("utf-8"))


def _subtasks_json(count: int) -> str:
    return json.dumps(
        [
            {"title": f"Step {index}", "description": f"Do {index}", "details": "..."}
            for index in range(1, count + 1)
        ],
    )


def test_save_updated_tasks_merges_saves_and_regenerates(
    write_tasks,
    sample_payload,
    make_task,
) -> None:
    path = write_tasks(sample_payload)

    result = asyncio.run(_service(path).save_updated_tasks([make_task(2, title="Two v2")]))

    assert result.success
    assert result.data["replacedIds"] == [2]
    assert result.data["taskCount"] == 4
    assert result.warnings == []
    assert _saved(path)["tasks"][1]["title"] == "Two v2"
    assert _saved(path)["metadata"] == {"projectName": "demo"}
    assert "# Title: Two v2" in (path.parent / "task_002.txt").read_text("utf-8")


def test_save_updated_tasks_reports_restored_subtasks(
    write_tasks,
    sample_payload,
    make_task,
) -> None:
    path = write_tasks(sample_payload)

    result = asyncio.run(_service(path).save_updated_tasks([make_task(3, subtasks=[])]))

    assert result.success
    assert result.data["restoredSubtasks"] == ["3.1", "3.3"]
    assert result.warnings == ["Restored completed subtasks: 3.1, 3.3"]
    assert [item["title"] for item in _saved(path)["tasks"][2]["subtasks"]] == [
        "Schema",
        "Endpoints",
        "Docs",
    ]


def test_save_updated_tasks_warns_about_discarded_rewrites(
    write_tasks,
    sample_payload,
    make_task,
) -> None:
    path = write_tasks(sample_payload)
    update = make_task(3, subtasks=[{"id": 3, "title": "Docs v2", "status": "completed"}])

    result = asyncio.run(_service(path).save_updated_tasks([update]))

    assert result.success
    assert result.data["discardedSubtasks"] == ["3.3"]
    assert result.warnings == [
        "Restored completed subtasks: 3.1, 3.3",
        "Discarded completed replacement subtasks: 3.3",
    ]


def test_save_updated_tasks_reject_policy_leaves_file_untouched(
    write_tasks,
    sample_payload,
    make_task,
) -> None:
    path = write_tasks(sample_payload)
    before = path.read_text("utf-8")
    service = _service(path, policy=ProtectionPolicy.REJECT)

    result = asyncio.run(service.save_updated_tasks([make_task(3, subtasks=[])]))

    assert not result.success
    assert result.error.code == "PROTECTED_SUBTASK_CONFLICT"
    assert path.read_text("utf-8") == before


def test_save_updated_tasks_error_envelopes(tmp_path: Path, write_tasks) -> None:
    missing = asyncio.run(_service(tmp_path / "none.json").save_updated_tasks([]))
    required = asyncio.run(_service(tmp_path / "none.json").save_updated_tasks(None))
    invalid_path = write_tasks({"tasks": "nope"})
    invalid = asyncio.run(_service(invalid_path).save_updated_tasks([]))

    assert missing.to_dict()["error"]["code"] == "PERSISTENCE_ERROR"
    assert required.error.code == "MISSING_ARGUMENT"
    assert invalid.error.code == "INVALID_TASKS_FILE"


def test_non_utf8_tasks_file_is_error_envelope(tmp_path: Path) -> None:
    path = tmp_path / "tasks.json"
    path.write_bytes(b'{"tasks": [], "x": "\xff\xfe"}')

    result = asyncio.run(_service(path).save_updated_tasks([]))

    assert not result.success
    assert result.error.code == "INVALID_TASKS_FILE"
    assert "not valid UTF-8" in result.error.message


def test_save_updated_tasks_without_changes_does_not_write(write_tasks, sample_payload) -> None:
    path = write_tasks(sample_payload)
    before = path.read_text("utf-8")

    result = asyncio.run(_service(path).save_updated_tasks([]))

    assert result.success
    assert result.data["message"] == "No updates to apply."
    assert path.read_text("utf-8") == before


def test_update_tasks_merges_generator_output(
    write_tasks,
    sample_payload,
    make_task,
    scripted_source,
) -> None:
    path = write_tasks(sample_payload)
    response = json.dumps(
        {
            "tasks": [
                make_task(2, title="Two v2"),
                make_task(3, title="Three v2", subtasks=[]),
                make_task(9, title="Invented"),
            ],
        },
    )
    source = scripted_source(f"Here you go:\n```json\n{response}\n```")

    result = asyncio.run(_service(path, source).update_tasks("2", "Switch to Postgres"))

    assert result.success, result.to_dict()
    assert result.data["replacedIds"] == [2, 3]
    assert result.data["appendedIds"] == []
    assert result.warnings == ["Restored completed subtasks: 3.1, 3.3"]
    saved = _saved(path)
    assert [task["id"] for task in saved["tasks"]] == [1, 2, 3, 4]
    assert saved["tasks"][2]["title"] == "Three v2"
    assert len(saved["tasks"][2]["subtasks"]) == 3
    system, prompt = source.calls[0]
    assert "ID >= 2" in prompt
    assert "Switch to Postgres" in prompt
    assert system is not None


def test_update_tasks_without_candidates_skips_generator(
    write_tasks,
    sample_payload,
    scripted_source,
) -> None:
    path = write_tasks(sample_payload)
    source = scripted_source()

    result = asyncio.run(_service(path, source).update_tasks(10, "Anything"))

    assert result.success
    assert result.data["replacedIds"] == []
    assert source.calls == []


def test_update_tasks_parse_failure_is_error_envelope(
    write_tasks,
    sample_payload,
    scripted_source,
) -> None:
    path = write_tasks(sample_payload)
    before = path.read_text("utf-8")

    result = asyncio.run(
        _service(path, scripted_source("Sorry, no JSON today.")).update_tasks(1, "x"),
    )

    assert not result.success
    assert result.error.code == "PARSE_ERROR"
    assert path.read_text("utf-8") == before


def test_update_tasks_empty_completion(write_tasks, sample_payload, scripted_source) -> None:
    path = write_tasks(sample_payload)

    result = asyncio.run(_service(path, scripted_source("  \n")).update_tasks(1, "x"))

    assert result.error.code == "EMPTY_COMPLETION"


def test_update_tasks_requires_prompt_and_valid_from_id(write_tasks, sample_payload) -> None:
    path = write_tasks(sample_payload)

    missing_prompt = asyncio.run(_service(path).update_tasks(1, ""))
    bad_id = asyncio.run(_service(path).update_tasks("abc", "x"))

    assert missing_prompt.error.code == "MISSING_ARGUMENT"
    assert bad_id.error.code == "INPUT_VALIDATION_ERROR"


def test_update_task_replaces_single_task(
    write_tasks,
    sample_payload,
    make_task,
    scripted_source,
) -> None:
    path = write_tasks(sample_payload)
    source = scripted_source(json.dumps(make_task(2, title="Two v2", details="Use JWT")))

    result = asyncio.run(_service(path, source).update_task("2", "Use JWT"))

    assert result.success
    assert result.data["updated"] is True
    assert result.data["task"]["details"] == "Use JWT"
    assert _saved(path)["tasks"][1]["title"] == "Two v2"


def test_update_task_rejects_mismatched_id(
    write_tasks,
    sample_payload,
    make_task,
    scripted_source,
) -> None:
    path = write_tasks(sample_payload)
    source = scripted_source(json.dumps(make_task(4, title="Wrong task")))

    result = asyncio.run(_service(path, source).update_task(2, "x"))

    assert result.error.code == "PARSE_ERROR"
    assert "expected 2" in result.error.message


def test_update_task_on_completed_task_is_a_no_op(
    write_tasks,
    sample_payload,
    scripted_source,
) -> None:
    path = write_tasks(sample_payload)
    source = scripted_source()

    result = asyncio.run(_service(path, source).update_task(1, "x"))

    assert result.success
    assert result.data["updated"] is False
    assert source.calls == []


def test_update_task_unknown_id(write_tasks, sample_payload, scripted_source) -> None:
    path = write_tasks(sample_payload)

    result = asyncio.run(_service(path, scripted_source()).update_task(99, "x"))

    assert result.error.code == "TASK_NOT_FOUND"


def test_add_task_assigns_next_id_and_caller_fields(
    write_tasks,
    sample_payload,
    scripted_source,
) -> None:
    path = write_tasks(sample_payload)
    drafted = {
        "id": 77,
        "title": "Add auth",
        "description": "JWT login",
        "status": "done",
        "details": "Use a middleware",
        "testStrategy": "Login tests",
        "dependencies": [4],
        "subtasks": [{"id": 1, "title": "x"}],
    }
    source = scripted_source(json.dumps(drafted))

    result = asyncio.run(
        _service(path, source).add_task("Add auth", dependencies=["1", 2], priority="high"),
    )

    assert result.success
    assert result.data["taskId"] == 5
    saved_task = _saved(path)["tasks"][-1]
    assert saved_task["id"] == 5
    assert saved_task["status"] == "pending"
    assert saved_task["dependencies"] == [1, 2]
    assert saved_task["priority"] == "high"
    assert saved_task["subtasks"] == []
    assert saved_task["testStrategy"] == "Login tests"
    assert "ID 5" in source.calls[0][1]


def test_add_task_validates_dependencies_and_priority(
    write_tasks,
    sample_payload,
    scripted_source,
) -> None:
    path = write_tasks(sample_payload)
    source = scripted_source()

    missing_dep = asyncio.run(_service(path, source).add_task("x", dependencies=[42]))
    bad_priority = asyncio.run(_service(path, source).add_task("x", priority="urgent"))

    assert missing_dep.error.code == "INPUT_VALIDATION_ERROR"
    assert "42" in missing_dep.error.message
    assert bad_priority.error.code == "INPUT_VALIDATION_ERROR"
    assert source.calls == []


def test_expand_task_generates_numbered_subtasks(
    write_tasks,
    sample_payload,
    scripted_source,
) -> None:
    path = write_tasks(sample_payload)
    source = scripted_source(_subtasks_json(3))

    result = asyncio.run(_service(path, source).expand_task(2, num=3, prompt="Focus on tests"))

    assert result.success
    assert result.data["subtasksAdded"] == 3
    subtasks = _saved(path)["tasks"][1]["subtasks"]
    assert [item["id"] for item in subtasks] == [1, 2, 3]
    assert {item["status"] for item in subtasks} == {"pending"}
    assert "approximately 3 subtasks" in source.calls[0][1]
    assert "Focus on tests" in source.calls[0][1]


def test_expand_task_uses_complexity_report(
    write_tasks,
    sample_payload,
    scripted_source,
) -> None:
    path = write_tasks(sample_payload)
    report_path = path.parent / "complexity.json"
    report_path.write_text(
        json.dumps({"complexityAnalysis": [{"id": 2, "complexityScore": 9}]}),
        "utf-8",
    )
    source = scripted_source(_subtasks_json(6))

    result = asyncio.run(_service(path, source).expand_task(2))

    assert result.success
    assert "approximately 6 subtasks" in source.calls[0][1]
    assert "score 9/10" in source.calls[0][1]


def test_expand_task_skips_existing_subtasks_without_calling_generator(
    write_tasks,
    sample_payload,
    scripted_source,
) -> None:
    path = write_tasks(sample_payload)
    source = scripted_source()

    result = asyncio.run(_service(path, source).expand_task(3))

    assert result.success
    assert result.data["skipped"] is True
    assert source.calls == []


def test_expand_task_append_keeps_completed_subtasks(
    write_tasks,
    sample_payload,
    scripted_source,
) -> None:
    path = write_tasks(sample_payload)
    source = scripted_source(_subtasks_json(2))

    result = asyncio.run(_service(path, source).expand_task(3, num=2, append=True))

    assert result.success
    subtasks = _saved(path)["tasks"][2]["subtasks"]
    assert [(item["id"], item["title"]) for item in subtasks] == [
        (1, "Schema"),
        (2, "Endpoints"),
        (3, "Docs"),
        (4, "Step 1"),
        (5, "Step 2"),
    ]


def test_expand_task_error_envelopes(write_tasks, sample_payload, scripted_source) -> None:
    path = write_tasks(sample_payload)

    completed = asyncio.run(_service(path, scripted_source()).expand_task(1))
    missing = asyncio.run(_service(path, scripted_source()).expand_task(99))
    conflicting = asyncio.run(
        _service(path, scripted_source()).expand_task(2, force=True, append=True),
    )
    empty = asyncio.run(_service(path, scripted_source("[]")).expand_task(2))

    assert completed.error.code == "TASK_COMPLETED"
    assert missing.error.code == "TASK_NOT_FOUND"
    assert conflicting.error.code == "INPUT_VALIDATION_ERROR"
    assert empty.error.code == "EMPTY_COMPLETION"


def test_unexpected_completion_source_failure_is_generator_error(
    write_tasks,
    sample_payload,
    scripted_source,
) -> None:
    path = write_tasks(sample_payload)
    before = path.read_text("utf-8")

    expanded = asyncio.run(
        _service(path, scripted_source(RuntimeError("network down"))).expand_task(2, num=2),
    )
    updated = asyncio.run(
        _service(path, scripted_source(RuntimeError("network down"))).update_task(2, "x"),
    )

    for result in (expanded, updated):
        assert not result.success
        assert result.error.code == "GENERATOR_ERROR"
        assert "network down" in result.error.message
    assert path.read_text("utf-8") == before


def test_expand_all_records_failures_and_saves_once(
    write_tasks,
    make_task,
    scripted_source,
) -> None:
    path = write_tasks({"tasks": [make_task(task_id) for task_id in range(1, 6)]})
    source = scripted_source(
        _subtasks_json(2),
        _subtasks_json(2),
        GeneratorError("CLI backend claude exited with code 1: rate limited"),
        _subtasks_json(2),
        "not json",
    )

    result = asyncio.run(_service(path, source).expand_all(num=2))

    assert result.success
    assert [item["taskId"] for item in result.data["results"]] == [1, 2, 4]
    assert [(item["taskId"], item["code"]) for item in result.data["failures"]] == [
        (3, "GENERATOR_ERROR"),
        (5, "PARSE_ERROR"),
    ]
    saved = _saved(path)
    assert [len(task["subtasks"]) for task in saved["tasks"]] == [2, 2, 0, 2, 0]


def test_expand_all_without_successes_does_not_write(
    write_tasks,
    make_task,
    scripted_source,
) -> None:
    path = write_tasks({"tasks": [make_task(1), make_task(2)]})
    before = path.read_text("utf-8")

    result = asyncio.run(_service(path, scripted_source("?", "?")).expand_all())

    assert result.success
    assert result.data["message"] == "Expansion failed for all 2 eligible tasks."
    assert path.read_text("utf-8") == before


def test_analyze_complexity_saves_report(write_tasks, sample_payload, scripted_source) -> None:
    path = write_tasks(sample_payload)
    response = json.dumps(
        [
            {"id": 1, "complexityScore": 10, "justification": "done already"},
            {"id": 2, "complexityScore": 9, "justification": "auth"},
            {"id": 3, "complexityScore": 3, "justification": "small"},
            {"id": 4, "complexityScore": 5, "justification": "medium"},
        ],
    )
    source = scripted_source(response)

    result = asyncio.run(_service(path, source).analyze_complexity(threshold=5))

    assert result.success
    assert result.data["recommendedForExpansion"] == [2, 4]
    saved = json.loads((path.parent / "complexity.json").read_text("utf-8"))
    assert [entry["id"] for entry in saved["complexityAnalysis"]] == [2, 3, 4]
    assert saved["meta"]["thresholdScore"] == 5
    assert saved["meta"]["tasksAnalyzed"] == 3
    assert '"id": 1,' not in source.calls[0][1]


def test_analyze_complexity_rejects_out_of_range_threshold(write_tasks, sample_payload) -> None:
    path = write_tasks(sample_payload)

    result = asyncio.run(_service(path).analyze_complexity(threshold=11))

    assert result.error.code == "INPUT_VALIDATION_ERROR"


def test_generate_artifacts_writes_task_files(write_tasks, sample_payload) -> None:
    path = write_tasks(sample_payload)

    result = asyncio.run(_service(path).generate_artifacts())

    assert result.success
    assert len(result.data["files"]) == 4
    content = (path.parent / "task_003.txt").read_text("utf-8")
    assert "## 3.1. Schema [done]" in content
    assert "### Dependencies: 1" in content


def test_generate_artifacts_requires_output_dir(write_tasks, sample_payload) -> None:
    path = write_tasks(sample_payload)

    result = asyncio.run(_service(path, artifacts=None).generate_artifacts())

    assert result.error.code == "MISSING_ARGUMENT"


def test_artifact_failure_is_warning_not_rollback(
    tmp_path: Path,
    write_tasks,
    sample_payload,
    make_task,
) -> None:
    path = write_tasks(sample_payload)
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", "utf-8")
    service = _service(path, artifacts=ArtifactRegenerator(blocker))

    result = asyncio.run(service.save_updated_tasks([make_task(2, title="Two v2")]))

    assert result.success
    assert len(result.warnings) == 1
    assert "Failed to regenerate task files" in result.warnings[0]
    assert _saved(path)["tasks"][1]["title"] == "Two v2"
