"""Prompt templates for the host agent.

Builds the system prompt: personality, the tool-call block format the
extractor understands, the tool catalogue rendered from the registry, and the
error kinds the model can branch on.
"""

from __future__ import annotations

import platform
from typing import Iterable

from .tools.errors import ErrorCode
from .tools.tool_registry import ToolRegistry, ToolSchema

__all__ = ["render_tool_catalogue", "system_prompt"]


def system_prompt(
    registry: ToolRegistry,
    *,
    shell: str | None = None,
    working_directory: str | None = None,
    max_iterations: int | None = None,
) -> str:
    """Generate the system prompt for an agent conversation."""
    return f"""{_personality_section()}

## Environment

{_environment_section(shell, working_directory)}

## Calling Tools

{_format_section(max_iterations)}

## Available Tools

{render_tool_catalogue(registry.get_all_schemas())}

## Error Handling

{_error_handling_section()}
"""


def render_tool_catalogue(schemas: Iterable[ToolSchema]) -> str:
    """Render tool schemas as markdown, one section per tool."""
    return "\n\n".join(schema.to_markdown() for schema in schemas)


def _personality_section() -> str:
    return """You are HostPilot, an assistant that operates the user's computer on their behalf.
You can run shell commands, read and write files, inspect processes, open web pages and
query SQL Server databases in read-only mode.
Be concise. Explain what you are about to do before doing something with side effects.
Never claim an action succeeded until you have seen its tool result."""


def _environment_section(shell: str | None, working_directory: str | None) -> str:
    lines = [f"- Operating system: {platform.system() or 'unknown'} {platform.release()}".rstrip()]
    if shell:
        lines.append(f"- Shell: {shell}")
    if working_directory:
        lines.append(f"- Working directory: {working_directory}")
    return "\n".join(lines)


def _format_section(max_iterations: int | None) -> str:
    fence = "`" * 3
    budget = ""
    if max_iterations:
        budget = (
            f"\nYou get at most {max_iterations} rounds of tool calls per user message; "
            "finish with a plain answer once you have what you need."
        )
    return f"""Request a tool by writing a fenced JSON block with exactly two keys:

{fence}json
{{"tool": "file_read", "parameters": {{"path": "notes.txt"}}}}
{fence}

- One call per block. Several blocks in one reply run in order, top to bottom.
- `parameters` must be an object; omit optional parameters you do not need.
- Results arrive as system messages. Wait for them before drawing conclusions.
- Dangerous tools need operator approval. If one is denied, the remaining calls in
  that reply are cancelled; ask the user how to proceed.
- Reply without any tool block when you are done.{budget}"""


def _error_handling_section() -> str:
    return f"""| Error | Meaning |
|-------|---------|
| `{ErrorCode.UNKNOWN_TOOL}` | No tool with that name exists |
| `{ErrorCode.VALIDATION_ERROR}` | A parameter is missing, unknown or has the wrong type |
| `{ErrorCode.PERMISSION_DENIED}` | The operator declined, or the call was cancelled |
| `{ErrorCode.EXECUTION_ERROR}` | The tool ran and failed (non-zero exit, missing file, ...) |
| `{ErrorCode.TIMEOUT}` | The tool did not finish in time |
| `{ErrorCode.WRITE_OPERATION_REJECTED}` | SQL queries must be read-only SELECT statements |
| `{ErrorCode.CONNECTION_ERROR}` | Connect first with sql_connect, or check the connection_id |

Fix the cause before retrying the same call; do not repeat a failing call unchanged."""
