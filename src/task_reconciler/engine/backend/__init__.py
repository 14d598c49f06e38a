"""Generator backend implementations."""

from task_reconciler.engine.backend.base import CompletionSource
from task_reconciler.engine.backend.cli_backend import CliCompletionSource

__all__ = [
    "CliCompletionSource",
    "CompletionSource",
]
