"""Classified failures for agent tools.

Every failure that crosses the tool boundary carries a kind (``error_code``)
the model can branch on, plus a message meant only for display. Subclasses
add one or two structured fields; ``payload_fields`` maps each of them to
the key it gets in :meth:`ToolError.to_dict`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping


class ErrorCode:
    """Error kinds reported in tool results."""

    # Extraction
    PARSE_ERROR = "parse_error"
    UNKNOWN_TOOL = "unknown_tool"

    VALIDATION_ERROR = "validation_error"
    PERMISSION_DENIED = "permission_denied"

    EXECUTION_ERROR = "execution_error"
    TIMEOUT = "timeout"

    # Data store
    WRITE_OPERATION_REJECTED = "write_operation_rejected"
    CONNECTION_ERROR = "connection_error"

    ITERATION_LIMIT_EXCEEDED = "iteration_limit_exceeded"


@dataclass
class ToolError(Exception):
    """Base class of every error a tool call can end with.

    Attributes:
        error_code: One of the :class:`ErrorCode` kinds.
        message: Text for the model and the operator.
        details: Extra structured context (connection ids, paths, ...).
        suggestion: What the model could try instead.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    payload_fields: ClassVar[Mapping[str, str]] = {}

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        """The error as it appears inside a tool result payload."""
        payload: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        for attribute, key in self.payload_fields.items():
            value = getattr(self, attribute)
            if value is not None:
                payload[key] = value
        return payload

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class UnknownToolError(ToolError):
    """The call names a tool that is not registered."""

    error_code: str = ErrorCode.UNKNOWN_TOOL
    message: str = "Tool is not registered"
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = "Use one of the tools listed in the system prompt"
    tool_name: str | None = None

    payload_fields: ClassVar[Mapping[str, str]] = {"tool_name": "tool"}


@dataclass
class ValidationToolError(ToolError):
    """A parameter is missing, unknown, or of the wrong type."""

    error_code: str = ErrorCode.VALIDATION_ERROR
    message: str = "Invalid tool parameters"
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = "Check the parameter list for this tool and retry"
    parameter: str | None = None
    expected: str | None = None

    payload_fields: ClassVar[Mapping[str, str]] = {"parameter": "parameter", "expected": "expected"}


@dataclass
class PermissionDeniedError(ToolError):
    """A dangerous call was not approved."""

    error_code: str = ErrorCode.PERMISSION_DENIED
    message: str = "denied by operator"
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = "Ask the user how to proceed or choose a safer action"
    tool_name: str | None = None

    payload_fields: ClassVar[Mapping[str, str]] = {"tool_name": "tool"}


@dataclass
class ExecutionToolError(ToolError):
    """The underlying process, file, browser or data store operation failed."""

    error_code: str = ErrorCode.EXECUTION_ERROR
    message: str = "Tool execution failed"
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""
    exit_code: int | None = None

    payload_fields: ClassVar[Mapping[str, str]] = {"exit_code": "exit_code"}


@dataclass
class TimeoutToolError(ToolError):
    error_code: str = ErrorCode.TIMEOUT
    message: str = "Operation timed out"
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = "Try again with a narrower request"
    timeout_seconds: float | None = None

    payload_fields: ClassVar[Mapping[str, str]] = {"timeout_seconds": "timeout_seconds"}


@dataclass
class WriteOperationRejected(ToolError):
    """The statement guard refused a query before it reached the server."""

    error_code: str = ErrorCode.WRITE_OPERATION_REJECTED
    message: str = "Only read-only SELECT statements are allowed"
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = "Rewrite the statement as a single read-only SELECT"
    keyword: str | None = None

    payload_fields: ClassVar[Mapping[str, str]] = {"keyword": "keyword"}


@dataclass
class ConnectionToolError(ToolError):
    """A data store connection could not be opened or used."""

    error_code: str = ErrorCode.CONNECTION_ERROR
    message: str = "Connection error"
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""
    connection_id: str | None = None

    payload_fields: ClassVar[Mapping[str, str]] = {"connection_id": "connection_id"}


@dataclass
class ConnectionNotFoundError(ConnectionToolError):
    """The connection id is unknown or already closed."""

    message: str = "connection not found"
    suggestion: str = "Call sql_connect to open a new connection"


def error_from_dict(data: Mapping[str, Any]) -> ToolError:
    """Rebuild a plain :class:`ToolError` from :meth:`ToolError.to_dict` output."""
    return ToolError(
        error_code=data.get("error", ErrorCode.EXECUTION_ERROR),
        message=data.get("message", "Unknown error"),
        details=dict(data.get("details") or {}),
        suggestion=data.get("suggestion", ""),
    )


__all__ = [
    "ErrorCode",
    "ToolError",
    "UnknownToolError",
    "ValidationToolError",
    "PermissionDeniedError",
    "ExecutionToolError",
    "TimeoutToolError",
    "WriteOperationRejected",
    "ConnectionToolError",
    "ConnectionNotFoundError",
    "error_from_dict",
]
