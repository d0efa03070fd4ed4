"""Shared test helpers and stub classes.

Import from here instead of duplicating fakes in individual test files.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from types import SimpleNamespace
from typing import Any, Iterable, Sequence

from hostpilot.ai.tools.base import ProcessOutput
from hostpilot.ai.tools.sql.backend import CredentialMode, DataStoreTarget, QueryResult


class FakeProcessRunner:
    """Records argv and replays canned :class:`ProcessOutput` objects."""

    def __init__(self, outputs: Iterable[ProcessOutput | BaseException] = ()) -> None:
        self._outputs = deque(outputs)
        self.calls: list[SimpleNamespace] = []

    async def run(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> ProcessOutput:
        self.calls.append(SimpleNamespace(argv=list(argv), cwd=cwd, timeout=timeout))
        if not self._outputs:
            return ProcessOutput(returncode=0, stdout="", stderr="")
        outcome = self._outputs.popleft()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class RecordingOpener:
    """URL opener that remembers every URL it was handed."""

    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.urls: list[str] = []

    def __call__(self, url: str) -> bool:
        self.urls.append(url)
        return self.accept


class FakeSession:
    """In-memory data store session with call accounting."""

    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        *,
        delay: float = 0.0,
        columns: dict[str, list[dict[str, Any]]] | None = None,
    ) -> None:
        self.rows = rows if rows is not None else [{"name": "master"}, {"name": "tempdb"}]
        self.delay = delay
        self.columns = columns or {}
        self.queries: list[str] = []
        self.closed = False
        self.active = 0
        self.max_active = 0

    def execute_query(self, text: str, max_rows: int) -> QueryResult:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            self.queries.append(text)
            columns = list(self.rows[0]) if self.rows else []
            return QueryResult(
                columns=columns,
                rows=[dict(row) for row in self.rows[:max_rows]],
                truncated=len(self.rows) > max_rows,
            )
        finally:
            self.active -= 1

    def list_objects(self) -> list[dict[str, Any]]:
        return [{"schema": "dbo", "name": "customers", "kind": "table"}]

    def describe_object(self, schema: str | None, name: str) -> list[dict[str, Any]]:
        return list(self.columns.get(name, []))

    def close(self) -> None:
        self.closed = True


class FakeBackend:
    """Backend that hands out :class:`FakeSession` objects."""

    def __init__(self, session_factory: Any = FakeSession, *, fail_with: Exception | None = None) -> None:
        self._session_factory = session_factory
        self.fail_with = fail_with
        self.opened: list[SimpleNamespace] = []
        self.sessions: list[FakeSession] = []

    def open(
        self,
        target: DataStoreTarget,
        mode: CredentialMode,
        username: str | None = None,
        password: str | None = None,
    ) -> FakeSession:
        self.opened.append(SimpleNamespace(target=target, mode=mode, username=username, password=password))
        if self.fail_with is not None:
            raise self.fail_with
        session = self._session_factory()
        self.sessions.append(session)
        return session


def sequential_ids(prefix: str = "conn") -> Any:
    counter = iter(range(1, 10_000))
    return lambda: f"{prefix}-{next(counter)}"


async def settle() -> None:
    """Yield control until pending callbacks have run."""
    for _ in range(5):
        await asyncio.sleep(0)
