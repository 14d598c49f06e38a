"""Operation envelopes and JSON file helpers."""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from task_reconciler.engine.errors import EngineError, ErrorCode


@dataclass(slots=True)
class ErrorInfo:
    """Structured error payload."""

    code: str
    message: str

    @classmethod
    def from_error(cls, error: EngineError) -> ErrorInfo:
        return cls(code=error.code.value, message=error.message)

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass(slots=True)
class OperationResult:
    """Uniform envelope returned by every public operation."""

    success: bool
    data: dict[str, Any] | None = None
    error: ErrorInfo | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, data: dict[str, Any], *, warnings: list[str] | None = None) -> OperationResult:
        return cls(success=True, data=data, warnings=list(warnings or []))

    @classmethod
    def fail(cls, error: EngineError) -> OperationResult:
        return cls(success=False, error=ErrorInfo.from_error(error))

    @classmethod
    def fail_with(cls, code: ErrorCode, message: str) -> OperationResult:
        return cls(success=False, error=ErrorInfo(code=code.value, message=message))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.success:
            payload["data"] = self.data or {}
        else:
            payload["error"] = self.error.to_dict() if self.error else None
        if self.warnings:
            payload["warnings"] = list(self.warnings)
        return payload


def dump_json(payload: object) -> str:
    """Serialize JSON using the document formatting."""

    return json.dumps(payload, ensure_ascii=False, indent=2) + "\n"


def load_json(path: Path) -> Any:
    return json.loads(path.read_text("utf-8"))


def write_json(path: Path, payload: object) -> None:
    """Persist JSON atomically."""

    atomic_write_text(path, dump_json(payload))


def atomic_write_text(path: Path, text: str) -> None:
    """Write through a temporary sibling file and `os.replace` it into place."""

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise
