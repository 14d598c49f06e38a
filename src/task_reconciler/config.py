"""Runtime configuration for the task reconciliation engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from task_reconciler.engine.guard import ProtectionPolicy
from task_reconciler.engine.planner import DEFAULT_SUBTASK_COUNT

DEFAULT_TASKS_PATH = Path("tasks/tasks.json")
DEFAULT_COMPLEXITY_REPORT_PATH = Path("scripts/task-complexity-report.json")
DEFAULT_COMMAND_TEMPLATE = "claude -p {prompt}"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class GeneratorSettings:
    """External completion command settings."""

    command_template: str = DEFAULT_COMMAND_TEMPLATE
    timeout_seconds: float | None = None


@dataclass(slots=True)
class ExpansionSettings:
    """Subtask expansion defaults."""

    default_subtasks: int = DEFAULT_SUBTASK_COUNT
    complexity_threshold: float = 5.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    tasks_path: Path = DEFAULT_TASKS_PATH
    complexity_report_path: Path = DEFAULT_COMPLEXITY_REPORT_PATH
    artifacts_dir: Path | None = None
    protection_policy: ProtectionPolicy = ProtectionPolicy.REPAIR
    log_level: str = "INFO"
    generator: GeneratorSettings = field(default_factory=GeneratorSettings)
    expansion: ExpansionSettings = field(default_factory=ExpansionSettings)

    @property
    def resolved_artifacts_dir(self) -> Path:
        return self.artifacts_dir or self.tasks_path.parent

    @classmethod
    def from_env(cls, tasks_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local use."""

        artifacts_dir = os.getenv("TASK_RECONCILER_ARTIFACTS_DIR", "").strip()
        timeout_raw = os.getenv("TASK_RECONCILER_GENERATOR_TIMEOUT_SECONDS", "").strip()
        return cls(
            tasks_path=tasks_path
            or Path(os.getenv("TASK_RECONCILER_TASKS_PATH", str(DEFAULT_TASKS_PATH))),
            complexity_report_path=Path(
                os.getenv(
                    "TASK_RECONCILER_COMPLEXITY_REPORT_PATH",
                    str(DEFAULT_COMPLEXITY_REPORT_PATH),
                ),
            ),
            artifacts_dir=Path(artifacts_dir) if artifacts_dir else None,
            protection_policy=_env_policy("TASK_RECONCILER_PROTECTION_POLICY"),
            log_level=os.getenv("TASK_RECONCILER_LOG_LEVEL", "INFO").strip().upper(),
            generator=GeneratorSettings(
                command_template=os.getenv(
                    "TASK_RECONCILER_GENERATOR_COMMAND",
                    DEFAULT_COMMAND_TEMPLATE,
                ),
                timeout_seconds=float(timeout_raw) if timeout_raw else None,
            ),
            expansion=ExpansionSettings(
                default_subtasks=int(
                    os.getenv("TASK_RECONCILER_DEFAULT_SUBTASKS", str(DEFAULT_SUBTASK_COUNT)),
                ),
                complexity_threshold=float(
                    os.getenv("TASK_RECONCILER_COMPLEXITY_THRESHOLD", "5"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the engine cannot use."""

        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"TASK_RECONCILER_LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}.",
            )
        if self.expansion.default_subtasks <= 0:
            raise ValueError("TASK_RECONCILER_DEFAULT_SUBTASKS must be a positive integer.")
        if not 1 <= self.expansion.complexity_threshold <= 10:
            raise ValueError("TASK_RECONCILER_COMPLEXITY_THRESHOLD must be between 1 and 10.")

    def validate_for_generator(self) -> None:
        """Raise configuration error if the generator command cannot be run."""

        self.validate()
        template = self.generator.command_template.strip()
        if not template:
            raise ValueError("TASK_RECONCILER_GENERATOR_COMMAND must not be empty.")
        if "{prompt}" not in template and "{prompt_file}" not in template:
            raise ValueError(
                "TASK_RECONCILER_GENERATOR_COMMAND must include {prompt} or {prompt_file}.",
            )
        if self.generator.timeout_seconds is not None and self.generator.timeout_seconds <= 0:
            raise ValueError("TASK_RECONCILER_GENERATOR_TIMEOUT_SECONDS must be > 0.")


def _env_policy(name: str) -> ProtectionPolicy:
    value = os.getenv(name)
    if value is None or not value.strip():
        return ProtectionPolicy.REPAIR
    try:
        return ProtectionPolicy(value.strip().lower())
    except ValueError as error:
        allowed = ", ".join(policy.value for policy in ProtectionPolicy)
        raise ValueError(f"Invalid value for {name}: {value!r} (expected {allowed})") from error
