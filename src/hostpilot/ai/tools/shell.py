"""Shell command execution and the default process runner."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Any, ClassVar, Sequence

from .base import BaseTool, ProcessOutput, ToolContext, ToolFamily, ToolOutput
from .errors import ExecutionToolError, TimeoutToolError, ValidationToolError

LOGGER = logging.getLogger(__name__)

# Output beyond this many characters is cut before it reaches the conversation.
MAX_OUTPUT_CHARS = 20_000

_SHELL_ARGV: dict[str, tuple[str, ...]] = {
    "bash": ("bash", "-c"),
    "sh": ("sh", "-c"),
    "zsh": ("zsh", "-c"),
    "powershell": ("powershell", "-NoProfile", "-NonInteractive", "-Command"),
    "pwsh": ("pwsh", "-NoProfile", "-NonInteractive", "-Command"),
    "cmd": ("cmd", "/C"),
}


def default_shell() -> str:
    return "powershell" if os.name == "nt" else "bash"


def shell_argv(shell: str, command: str) -> list[str]:
    """Build the argv that runs ``command`` through ``shell``."""
    prefix = _SHELL_ARGV.get(shell.lower())
    if prefix is None:
        raise ExecutionToolError(message=f"Unsupported shell '{shell}'")
    return [*prefix, command]


def _truncate(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    omitted = len(text) - MAX_OUTPUT_CHARS
    return f"{text[:MAX_OUTPUT_CHARS]}\n... [{omitted} characters truncated]"


async def _kill_and_reap(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


class AsyncProcessRunner:
    """Spawns real processes with asyncio and captures their output."""

    async def run(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> ProcessOutput:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ExecutionToolError(message=f"Executable not found: {argv[0]}") from exc
        except OSError as exc:
            raise ExecutionToolError(message=f"Failed to spawn {argv[0]}: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError as exc:
            await _kill_and_reap(process)
            raise TimeoutToolError(
                message=f"Process {argv[0]} did not finish in time",
                timeout_seconds=timeout,
            ) from exc
        except asyncio.CancelledError:
            await asyncio.shield(_kill_and_reap(process))
            raise

        return ProcessOutput(
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )


@dataclass
class ShellExecuteTool(BaseTool):
    """Run a command through the configured shell.

    A non-zero exit status is reported as ``execution_error`` with the exit
    code and captured streams attached.
    """

    name: ClassVar[str] = "shell_execute"
    family: ClassVar[ToolFamily] = ToolFamily.SHELL

    def validate(self, params: dict[str, Any]) -> None:
        if not str(params.get("command", "")).strip():
            raise ValidationToolError(message="Command must not be empty", parameter="command")

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> ToolOutput:
        command = params["command"]
        argv = shell_argv(context.shell, command)
        LOGGER.info("Executing shell command via %s (call %s)", context.shell, context.request_id)

        result = await context.process_runner.run(argv, cwd=context.working_directory)
        stdout = _truncate(result.stdout)
        stderr = _truncate(result.stderr)

        if result.returncode != 0:
            raise ExecutionToolError(
                message=f"Command exited with status {result.returncode}",
                exit_code=result.returncode,
                details={"stdout": stdout, "stderr": stderr},
            )

        text = stdout if stdout.strip() else "(no output)"
        if stderr.strip():
            text = f"{text}\n[stderr]\n{stderr}"
        return ToolOutput(
            text=text,
            data={"exit_code": result.returncode, "stdout": stdout, "stderr": stderr},
        )


__all__ = [
    "AsyncProcessRunner",
    "MAX_OUTPUT_CHARS",
    "ShellExecuteTool",
    "default_shell",
    "shell_argv",
]
