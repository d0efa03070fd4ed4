"""Host introspection tools: process_list and system_info."""

from __future__ import annotations

import asyncio
import csv
import io
import logging
import os
import platform
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ClassVar

from .base import BaseTool, ToolContext, ToolFamily, ToolOutput
from .errors import ExecutionToolError

LOGGER = logging.getLogger(__name__)

MAX_PROCESSES = 50

_POSIX_PS = ("ps", "-axo", "pid=,pcpu=,rss=,comm=")
_WINDOWS_TASKLIST = ("tasklist", "/FO", "CSV", "/NH")


def parse_ps_output(text: str) -> list[dict[str, Any]]:
    """Parse ``ps -axo pid=,pcpu=,rss=,comm=`` output."""
    processes: list[dict[str, Any]] = []
    for line in text.splitlines():
        parts = line.split(None, 3)
        if len(parts) < 4:
            continue
        pid, cpu, rss, command = parts
        try:
            processes.append(
                {
                    "pid": int(pid),
                    "name": os.path.basename(command.strip()),
                    "cpu_percent": float(cpu),
                    "memory_mb": int(rss) // 1024,
                }
            )
        except ValueError:
            continue
    return processes


def parse_tasklist_output(text: str) -> list[dict[str, Any]]:
    """Parse ``tasklist /FO CSV /NH`` output."""
    processes: list[dict[str, Any]] = []
    for row in csv.reader(io.StringIO(text)):
        if len(row) < 5:
            continue
        name, pid, _session, _session_no, memory = row[:5]
        digits = "".join(ch for ch in memory if ch.isdigit())
        try:
            processes.append(
                {
                    "pid": int(pid),
                    "name": name,
                    "cpu_percent": None,
                    "memory_mb": int(digits or 0) // 1024,
                }
            )
        except ValueError:
            continue
    return processes


@dataclass
class ProcessListTool(BaseTool):
    """List running processes, heaviest first, capped at fifty entries."""

    name: ClassVar[str] = "process_list"
    family: ClassVar[ToolFamily] = ToolFamily.SYSTEM

    limit: int = MAX_PROCESSES

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> ToolOutput:
        windows = platform.system() == "Windows"
        argv = _WINDOWS_TASKLIST if windows else _POSIX_PS
        result = await context.process_runner.run(list(argv))
        if result.returncode != 0:
            raise ExecutionToolError(
                message=f"{argv[0]} exited with status {result.returncode}",
                exit_code=result.returncode,
                details={"stderr": result.stderr.strip()},
            )

        processes = parse_tasklist_output(result.stdout) if windows else parse_ps_output(result.stdout)
        processes.sort(key=lambda item: (item["cpu_percent"] or 0.0, item["memory_mb"]), reverse=True)
        total = len(processes)
        processes = processes[: self.limit]

        lines = []
        for proc in processes:
            cpu = f"{proc['cpu_percent']:.1f}%" if proc["cpu_percent"] is not None else "n/a"
            lines.append(f"PID: {proc['pid']} | Name: {proc['name']} | CPU: {cpu} | Memory: {proc['memory_mb']} MB")
        return ToolOutput(
            text="\n".join(lines) if lines else "(no processes reported)",
            data={"processes": processes, "total": total},
        )


def _memory_info() -> dict[str, int] | None:
    meminfo = Path("/proc/meminfo")
    if not meminfo.exists():
        return None
    values: dict[str, int] = {}
    for line in meminfo.read_text().splitlines():
        key, _, rest = line.partition(":")
        fields = rest.split()
        if fields and fields[0].isdigit():
            values[key] = int(fields[0])
    if "MemTotal" not in values:
        return None
    total = values["MemTotal"] // 1024
    available = values.get("MemAvailable", values.get("MemFree", 0)) // 1024
    return {"total_mb": total, "used_mb": total - available}


@dataclass
class SystemInfoTool(BaseTool):
    """Summarize the host operating system, CPU, memory and disk."""

    name: ClassVar[str] = "system_info"
    family: ClassVar[ToolFamily] = ToolFamily.SYSTEM

    async def execute(self, context: ToolContext, params: dict[str, Any]) -> ToolOutput:
        uname = platform.uname()
        info: dict[str, Any] = {
            "system": uname.system or "Unknown",
            "release": uname.release or "Unknown",
            "version": uname.version,
            "machine": uname.machine,
            "hostname": uname.node,
            "cpu_count": os.cpu_count() or 0,
            "python": platform.python_version(),
        }

        lines = [
            f"System: {info['system']} {info['release']}",
            f"Kernel: {info['version']}",
            f"Machine: {info['machine']}",
            f"Hostname: {info['hostname']}",
            f"CPU: {info['cpu_count']} cores",
        ]

        memory = await asyncio.to_thread(_memory_info)
        if memory:
            info["memory"] = memory
            percent = memory["used_mb"] / memory["total_mb"] * 100.0 if memory["total_mb"] else 0.0
            lines.append(f"RAM: {memory['used_mb']} MB / {memory['total_mb']} MB ({percent:.1f}%)")

        disk_root = context.working_directory or str(Path.home())
        try:
            usage = await asyncio.to_thread(shutil.disk_usage, disk_root)
        except OSError as exc:
            LOGGER.debug("Disk usage unavailable for %s: %s", disk_root, exc)
        else:
            info["disk"] = {
                "path": disk_root,
                "total_gb": round(usage.total / 1024**3, 1),
                "free_gb": round(usage.free / 1024**3, 1),
            }
            lines.append(f"Disk ({disk_root}): {info['disk']['free_gb']} GB free of {info['disk']['total_gb']} GB")

        return ToolOutput(text="\n".join(lines), data=info)


__all__ = [
    "MAX_PROCESSES",
    "ProcessListTool",
    "SystemInfoTool",
    "parse_ps_output",
    "parse_tasklist_output",
]
