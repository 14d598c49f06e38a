"""Subprocess-based completion source for CLI agents."""

from __future__ import annotations

import asyncio
import logging
import shlex
import tempfile
from pathlib import Path

from task_reconciler.engine.errors import ErrorCode, GeneratorError

logger = logging.getLogger(__name__)

_STDERR_TAIL_CHARS = 500


class CliCompletionSource:
    """Run a CLI agent command template and return its stdout.

    The template supports `{prompt}`, `{prompt_file}` and `{system}`
    placeholders. Without `{system}` the system prompt is prepended to the
    user prompt.
    """

    def __init__(self, command_template: str, *, timeout_seconds: float | None = None) -> None:
        self.command_template = command_template
        self.timeout_seconds = timeout_seconds

    async def complete(self, prompt: str, *, system: str | None = None) -> str:
        if system and "{system}" not in self.command_template:
            prompt = f"{system}\n\n{prompt}"

        with tempfile.TemporaryDirectory(prefix="task-reconciler-") as tmp:
            prompt_file = Path(tmp) / "prompt.txt"
            prompt_file.write_text(prompt, "utf-8")
            run_args, command_head = build_run_args(
                command_template=self.command_template,
                prompt=prompt,
                prompt_file=prompt_file,
                system=system or "",
            )
            logger.info("Requesting completion via %s", command_head)
            stdout, stderr, returncode = await self._run(run_args, command_head)

        if returncode != 0:
            tail = stderr.strip()[-_STDERR_TAIL_CHARS:]
            raise GeneratorError(
                f"CLI backend {command_head} exited with code {returncode}: {tail}",
            )
        if not stdout.strip():
            raise GeneratorError(
                "Received empty completion text from CLI backend.",
                code=ErrorCode.EMPTY_COMPLETION,
            )
        return stdout

    async def _run(self, run_args: list[str], command_head: str) -> tuple[str, str, int]:
        try:
            process = await asyncio.create_subprocess_exec(
                *run_args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as error:
            raise GeneratorError(f"CLI backend command not found: {command_head}") from error
        except OSError as error:
            raise GeneratorError(f"CLI backend failed to start: {error}") from error

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as error:
            process.kill()
            await process.wait()
            raise GeneratorError(
                f"CLI backend {command_head} timed out after {self.timeout_seconds}s",
            ) from error
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
            logger.warning("Completion via %s cancelled; killed child process", command_head)
            raise
        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            process.returncode if process.returncode is not None else -1,
        )


def build_run_args(
    *,
    command_template: str,
    prompt: str,
    prompt_file: Path,
    system: str = "",
) -> tuple[list[str], str]:
    """Render the template into argv; values are shell-quoted before splitting."""

    stripped = command_template.strip()
    if not stripped:
        raise GeneratorError("CLI backend command template is empty.")
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise GeneratorError(
            "CLI backend command template must include {prompt} or {prompt_file}.",
        )

    try:
        rendered = stripped.format(
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
            system=shlex.quote(system),
        )
    except (KeyError, IndexError) as error:
        raise GeneratorError(f"Unsupported command template placeholder: {error}") from error

    argv = shlex.split(rendered)
    if not argv:
        raise GeneratorError("CLI backend command template rendered empty command.")
    return argv, argv[0]
