"""File system tools: file_read, file_write and file_list."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

from ...utils.file_io import looks_binary, read_text, write_text
from .base import BaseTool, ToolContext, ToolFamily, ToolOutput
from .errors import ExecutionToolError, ValidationToolError

LOGGER = logging.getLogger(__name__)

MAX_READ_BYTES = 1_000_000
MAX_LIST_DEPTH = 5
MAX_LIST_ENTRIES = 2_000


def resolve_path(context: ToolContext, raw: str) -> Path:
    """Resolve ``raw`` against the context working directory."""
    path = Path(os.path.expandvars(raw)).expanduser()
    if not path.is_absolute() and context.working_directory:
        path = Path(context.working_directory) / path
    return path


def _require_path(params: dict[str, Any]) -> None:
    if not str(params.get("path", "")).strip():
        raise ValidationToolError(message="Path must not be empty", parameter="path")


# -----------------------------------------------------------------------------
# file_read
# -----------------------------------------------------------------------------


@dataclass
class FileReadTool(BaseTool):
    """Return the text content of a file."""

    name: ClassVar[str] = "file_read"
    family: ClassVar[ToolFamily] = ToolFamily.FILES

    max_bytes: int = MAX_READ_BYTES

    def validate(self, params: dict[str, Any]) -> None:
        _require_path(params)

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> ToolOutput:
        path = resolve_path(context, params["path"])
        return await asyncio.to_thread(self._read, path)

    def _read(self, path: Path) -> ToolOutput:
        if not path.exists():
            raise ExecutionToolError(message=f"File not found: {path}")
        if path.is_dir():
            raise ExecutionToolError(message=f"Path is a directory: {path}", suggestion="Use file_list instead")

        try:
            size = path.stat().st_size
            with path.open("rb") as handle:
                head = handle.read(8192)
            if looks_binary(head):
                raise ExecutionToolError(message=f"File appears to be binary: {path}")
            text = read_text(path, errors="replace")
        except OSError as exc:
            raise ExecutionToolError(message=f"Unable to read {path}: {exc.strerror or exc}") from exc

        truncated = len(text) > self.max_bytes
        if truncated:
            text = text[: self.max_bytes]
        return ToolOutput(
            text=text,
            data={"path": str(path), "size": size, "truncated": truncated},
        )


# -----------------------------------------------------------------------------
# file_write
# -----------------------------------------------------------------------------


@dataclass
class FileWriteTool(BaseTool):
    """Create or overwrite a file with the given content."""

    name: ClassVar[str] = "file_write"
    family: ClassVar[ToolFamily] = ToolFamily.FILES

    def validate(self, params: dict[str, Any]) -> None:
        _require_path(params)

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> ToolOutput:
        path = resolve_path(context, params["path"])
        content = params["content"]
        if path.is_dir():
            raise ExecutionToolError(message=f"Path is a directory: {path}")
        try:
            written = await asyncio.to_thread(write_text, path, content)
        except OSError as exc:
            raise ExecutionToolError(message=f"Unable to write {path}: {exc.strerror or exc}") from exc

        LOGGER.info("Wrote %d bytes to %s", written, path)
        return ToolOutput(
            text=f"File written: {path} ({written} bytes)",
            data={"path": str(path), "bytes": written},
            side_effect=f"wrote file {path}",
        )


# -----------------------------------------------------------------------------
# file_list
# -----------------------------------------------------------------------------


@dataclass
class FileListTool(BaseTool):
    """List a directory, optionally walking up to five levels deep."""

    name: ClassVar[str] = "file_list"
    family: ClassVar[ToolFamily] = ToolFamily.FILES

    max_depth: int = MAX_LIST_DEPTH
    max_entries: int = MAX_LIST_ENTRIES

    def validate(self, params: dict[str, Any]) -> None:
        _require_path(params)

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> ToolOutput:
        path = resolve_path(context, params["path"])
        recursive = bool(params.get("recursive", False))
        return await asyncio.to_thread(self._list, path, recursive)

    def _list(self, root: Path, recursive: bool) -> ToolOutput:
        if not root.exists():
            raise ExecutionToolError(message=f"Directory not found: {root}")
        if not root.is_dir():
            raise ExecutionToolError(message=f"Not a directory: {root}")

        entries: list[dict[str, Any]] = []
        truncated = False
        depth_limit = self.max_depth if recursive else 1

        def walk(directory: Path, depth: int) -> None:
            nonlocal truncated
            try:
                children = sorted(directory.iterdir(), key=lambda item: item.name.lower())
            except OSError as exc:
                if directory == root:
                    raise ExecutionToolError(message=f"Unable to list {root}: {exc.strerror or exc}") from exc
                LOGGER.debug("Skipping unreadable directory %s: %s", directory, exc)
                return
            for child in children:
                if len(entries) >= self.max_entries:
                    truncated = True
                    return
                is_dir = child.is_dir()
                entries.append({"path": str(child), "type": "directory" if is_dir else "file", "depth": depth})
                if is_dir and not child.is_symlink() and depth < depth_limit:
                    walk(child, depth + 1)

        walk(root, 1)

        lines = [entry["path"] + ("/" if entry["type"] == "directory" else "") for entry in entries]
        if truncated:
            lines.append(f"... listing truncated after {self.max_entries} entries")
        return ToolOutput(
            text="\n".join(lines) if lines else "(empty directory)",
            data={"root": str(root), "entries": entries, "truncated": truncated},
        )


__all__ = [
    "FileListTool",
    "FileReadTool",
    "FileWriteTool",
    "MAX_LIST_DEPTH",
    "resolve_path",
]
