"""Completion source interface for generator calls."""

from __future__ import annotations

from typing import Protocol


class CompletionSource(Protocol):
    """Protocol implemented by generator backends.

    Implementations raise `GeneratorError` on failure or empty output; they
    never retry on their own.
    """

    async def complete(self, prompt: str, *, system: str | None = None) -> str:
        """Return the raw completion text for `prompt`."""
