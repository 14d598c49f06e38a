"""Task document persistence with whole-document replace semantics."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from task_reconciler.engine.contracts import load_json, write_json
from task_reconciler.engine.errors import InvalidDocument, PersistenceError, ValidationError
from task_reconciler.engine.models import ComplexityReport, Document

logger = logging.getLogger(__name__)


class TaskStore:
    """Loads and saves one task document.

    There is no locking: two overlapping load/save cycles against the same
    path resolve as last-writer-wins.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Document:
        try:
            raw = load_json(self.path)
        except FileNotFoundError as error:
            raise PersistenceError(f"Tasks file not found: {self.path}") from error
        except json.JSONDecodeError as error:
            raise InvalidDocument(f"Tasks file is not valid JSON: {self.path}: {error}") from error
        except UnicodeDecodeError as error:
            raise InvalidDocument(f"Tasks file is not valid UTF-8: {self.path}: {error}") from error
        except OSError as error:
            raise PersistenceError(f"Failed to read tasks file {self.path}: {error}") from error
        return Document.from_dict(raw)

    def save(self, document: Document) -> None:
        """Overwrite the file with the complete document."""

        try:
            write_json(self.path, document.to_dict())
        except OSError as error:
            raise PersistenceError(f"Failed to write tasks file {self.path}: {error}") from error
        logger.info("Saved %d tasks to %s", len(document.tasks), self.path)


def load_complexity_report(path: Path) -> ComplexityReport | None:
    """Read an optional complexity report; unreadable reports are ignored."""

    if not path.exists():
        return None
    try:
        return ComplexityReport.from_dict(load_json(path))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as error:
        logger.warning("Could not read complexity report at %s: %s", path, error)
        return None


def save_complexity_report(path: Path, report: ComplexityReport) -> None:
    try:
        write_json(path, report.to_dict())
    except OSError as error:
        raise PersistenceError(f"Failed to write complexity report {path}: {error}") from error
