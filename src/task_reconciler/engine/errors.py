"""Error taxonomy shared by reconciliation, expansion, and persistence."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Stable error codes surfaced in operation envelopes."""

    MISSING_ARGUMENT = "MISSING_ARGUMENT"
    INPUT_VALIDATION_ERROR = "INPUT_VALIDATION_ERROR"
    PROTECTED_SUBTASK_CONFLICT = "PROTECTED_SUBTASK_CONFLICT"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    GENERATOR_ERROR = "GENERATOR_ERROR"
    EMPTY_COMPLETION = "EMPTY_COMPLETION"
    PARSE_ERROR = "PARSE_ERROR"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    INVALID_TASKS_FILE = "INVALID_TASKS_FILE"


class EngineError(Exception):
    """Base error carrying a structured code."""

    default_code: ErrorCode = ErrorCode.INPUT_VALIDATION_ERROR

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class ValidationError(EngineError):
    """Malformed caller input."""

    default_code = ErrorCode.INPUT_VALIDATION_ERROR


class NotFoundError(EngineError):
    """Referenced task or subtask is absent from the document."""

    default_code = ErrorCode.TASK_NOT_FOUND


class GeneratorError(EngineError):
    """Completion call failed or returned empty/unparseable content."""

    default_code = ErrorCode.GENERATOR_ERROR


class PersistenceError(EngineError):
    """Document read or write failure."""

    default_code = ErrorCode.PERSISTENCE_ERROR


class InvalidDocument(PersistenceError):
    """Document content is not an object holding a tasks array."""

    default_code = ErrorCode.INVALID_TASKS_FILE


class ArtifactRegenerationWarning(Warning):
    """Best-effort artifact regeneration failed; logged, never fatal."""
