"""Base classes for agent tools.

This module provides the abstract base class every capability handler derives
from, the uniform result record the executor hands back to the loop, and the
runtime context (process spawning, URL handoff, data store connections) that
handlers receive instead of reaching for globals.
"""

from __future__ import annotations

import inspect
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, ClassVar, Mapping, Protocol, Sequence

from .errors import ExecutionToolError, ToolError

if TYPE_CHECKING:
    from .sql.connections import ConnectionRegistry


LOGGER = logging.getLogger(__name__)


class ToolFamily(Enum):
    """Closed set of capability families the executor knows how to run."""

    SHELL = "shell"
    FILES = "files"
    SYSTEM = "system"
    WEB = "web"
    DATASTORE = "datastore"


# -----------------------------------------------------------------------------
# Side-effect hooks
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ProcessOutput:
    """Captured output of a spawned process."""

    returncode: int
    stdout: str
    stderr: str


class ProcessRunner(Protocol):
    """Protocol for spawning a process and capturing its output."""

    async def run(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> ProcessOutput:
        """Run ``argv`` to completion and return its captured output."""
        ...


class UrlOpener(Protocol):
    """Protocol for handing a URL to the operating system."""

    def __call__(self, url: str) -> bool:
        """Return True when the OS accepted the handoff."""
        ...


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolOutput:
    """What a handler returns on success.

    Attributes:
        text: Human/model-readable rendering of the result.
        data: Structured payload (rows, entries, ...).
        side_effect: Externally visible effect the engine observed.
    """

    text: str
    data: dict[str, Any] | None = None
    side_effect: str | None = None


@dataclass(slots=True)
class ToolResult:
    """Standardized outcome of executing (or rejecting) a tool call.

    Attributes:
        tool_name: Name of the tool the call addressed.
        success: False when ``error`` is set.
        output: Text output if successful.
        data: Structured result data if successful.
        error: Classified error if unsuccessful.
        side_effect: Optional descriptor such as ``"opened URL ..."``.
        duration_ms: Wall time spent in the handler.
        call_id: Identifier of the originating call.
    """

    tool_name: str
    success: bool
    output: str = ""
    data: dict[str, Any] | None = None
    error: ToolError | None = None
    side_effect: str | None = None
    duration_ms: float = 0.0
    call_id: str | None = None

    @classmethod
    def failure(
        cls,
        tool_name: str,
        error: ToolError,
        *,
        call_id: str | None = None,
        duration_ms: float = 0.0,
    ) -> ToolResult:
        """Build a failed result for ``error``."""
        return cls(
            tool_name=tool_name,
            success=False,
            error=error,
            call_id=call_id,
            duration_ms=duration_ms,
        )

    @property
    def error_kind(self) -> str | None:
        return self.error.error_code if self.error is not None else None

    @property
    def error_message(self) -> str | None:
        return self.error.message if self.error is not None else None

    def to_dict(self) -> dict[str, Any]:
        """Serialize the result for JSON payloads."""
        payload: dict[str, Any] = {"tool": self.tool_name, "success": self.success}
        if self.success:
            payload["output"] = self.output
            if self.data:
                payload["data"] = dict(self.data)
        else:
            payload.update(
                self.error.to_dict() if self.error else {"error": "unknown", "message": "Unknown error"}
            )
        if self.side_effect:
            payload["side_effect"] = self.side_effect
        return payload

    def to_message(self) -> str:
        """Render the result as the content of a hidden conversation turn."""
        if self.success:
            lines = [f"**Tool result:** {self.tool_name} (success)"]
            if self.side_effect:
                lines.append(f"Side effect: {self.side_effect}")
            lines.append("```")
            lines.append(self.output)
            lines.append("```")
            return "\n".join(lines)
        error = self.error.to_dict() if self.error else {"error": "unknown", "message": "Unknown error"}
        return "\n".join(
            [
                f"**Tool result:** {self.tool_name} (failed: {error.get('error')})",
                "```json",
                json.dumps(error, ensure_ascii=False, indent=2, default=str),
                "```",
            ]
        )


# -----------------------------------------------------------------------------
# Context
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolContext:
    """Side-effect hooks and per-call state handed to every handler.

    Attributes:
        process_runner: Spawns shell/system processes.
        url_opener: Hands URLs to the operating system.
        connections: Registry of live data store sessions.
        working_directory: Directory used for process spawns.
        shell: Shell used for ``shell_execute`` (``bash``, ``sh``, ``powershell``, ``cmd``).
        request_id: Identifier of the call being executed (for tracing).
    """

    process_runner: ProcessRunner
    url_opener: UrlOpener
    connections: ConnectionRegistry | None = None
    working_directory: str | None = None
    shell: str = "bash"
    request_id: str | None = None

    def require_connections(self) -> ConnectionRegistry:
        if self.connections is None:
            raise ExecutionToolError(message="No data store registry is configured for this session")
        return self.connections


# -----------------------------------------------------------------------------
# Tools
# -----------------------------------------------------------------------------


class BaseTool(ABC):
    """A capability handler.

    Concrete tools set the ``name`` and ``family`` class attributes and
    implement :meth:`execute`, sync or async, returning a :class:`ToolOutput`
    or plain text. :meth:`run` wraps it: it times the call, runs
    :meth:`validate` before any side effect, and turns every exception into a
    failed :class:`ToolResult`, so handlers never raise past it.
    """

    name: ClassVar[str] = ""
    family: ClassVar[ToolFamily]

    async def run(self, context: ToolContext, params: Mapping[str, Any] | None = None) -> ToolResult:
        started = time.perf_counter()
        arguments = dict(params or {})
        try:
            self.validate(arguments)
            produced = self.execute(context, arguments)
            if inspect.isawaitable(produced):
                produced = await produced
        except ToolError as exc:
            error: ToolError = exc
        except Exception as exc:
            LOGGER.exception("Tool %s raised an unexpected error", self.name)
            error = ExecutionToolError(message=f"{type(exc).__name__}: {exc}")
        else:
            output = ToolOutput(text=produced) if isinstance(produced, str) else produced
            return ToolResult(
                tool_name=self.name,
                success=True,
                output=output.text,
                data=output.data,
                side_effect=output.side_effect,
                duration_ms=_elapsed_ms(started),
                call_id=context.request_id,
            )
        return ToolResult.failure(self.name, error, call_id=context.request_id, duration_ms=_elapsed_ms(started))

    @abstractmethod
    def execute(
        self, context: ToolContext, params: dict[str, Any]
    ) -> ToolOutput | str | Awaitable[ToolOutput | str]:
        """Do the work. Raise a :class:`ToolError` subclass for expected failures."""

    def validate(self, params: dict[str, Any]) -> None:
        """Checks the parameter schema cannot express; raise ``ValidationToolError``."""


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


__all__ = [
    "BaseTool",
    "ProcessOutput",
    "ProcessRunner",
    "ToolContext",
    "ToolFamily",
    "ToolOutput",
    "ToolResult",
    "UrlOpener",
]
