"""Agent tools: registry, built-in capabilities and their error types."""

from .base import (
    BaseTool,
    ProcessOutput,
    ProcessRunner,
    ToolContext,
    ToolFamily,
    ToolOutput,
    ToolResult,
    UrlOpener,
)
from .catalog import build_default_registry
from .errors import (
    ConnectionNotFoundError,
    ConnectionToolError,
    ErrorCode,
    ExecutionToolError,
    PermissionDeniedError,
    TimeoutToolError,
    ToolError,
    UnknownToolError,
    ValidationToolError,
    WriteOperationRejected,
)
from .shell import AsyncProcessRunner
from .tool_registry import ParameterSchema, RegistrationError, ToolRegistry, ToolSchema
from .web import open_in_browser

__all__ = [
    "AsyncProcessRunner",
    "BaseTool",
    "ConnectionNotFoundError",
    "ConnectionToolError",
    "ErrorCode",
    "ExecutionToolError",
    "ParameterSchema",
    "PermissionDeniedError",
    "ProcessOutput",
    "ProcessRunner",
    "RegistrationError",
    "TimeoutToolError",
    "ToolContext",
    "ToolError",
    "ToolFamily",
    "ToolOutput",
    "ToolRegistry",
    "ToolResult",
    "ToolSchema",
    "UnknownToolError",
    "UrlOpener",
    "ValidationToolError",
    "WriteOperationRejected",
    "build_default_registry",
    "open_in_browser",
]
