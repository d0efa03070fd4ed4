"""Connection registry for data store sessions.

The registry is owned by the runtime that created it; nothing here is
module-global. Connection ids are opaque. Every query is classified by the
statement guard before the handle is even looked up, so a rejected statement
never reaches a session.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

from ..errors import (
    ConnectionNotFoundError,
    ConnectionToolError,
    ExecutionToolError,
    TimeoutToolError,
    ToolError,
)
from .backend import (
    CredentialMode,
    DataStoreBackend,
    DataStoreSession,
    DataStoreTarget,
    QueryResult,
)
from .guard import ensure_read_only

LOGGER = logging.getLogger(__name__)

_T = TypeVar("_T")

DEFAULT_QUERY_TIMEOUT = 30.0
DEFAULT_MAX_ROWS = 500


@dataclass(slots=True)
class ConnectionHandle:
    """A live session and what is known about it.

    Passwords are used once to open the session and never kept here.
    """

    connection_id: str
    target: DataStoreTarget
    credential_mode: CredentialMode
    session: DataStoreSession = field(repr=False)
    username: str | None = None
    read_only_enforced: bool = True
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def describe(self) -> dict[str, Any]:
        return {
            "connection_id": self.connection_id,
            "target": self.target.describe(),
            "credential_mode": self.credential_mode.value,
            "username": self.username,
            "read_only_enforced": self.read_only_enforced,
            "opened_at": self.opened_at.isoformat(),
        }


class ConnectionRegistry:
    """Maps connection ids to live :class:`ConnectionHandle` objects.

    The id map is guarded by a :class:`threading.Lock`; queries on the same id
    are serialized through the handle's :class:`asyncio.Lock`, while different
    ids proceed concurrently.
    """

    def __init__(
        self,
        backend: DataStoreBackend,
        *,
        query_timeout: float | None = DEFAULT_QUERY_TIMEOUT,
        max_rows: int = DEFAULT_MAX_ROWS,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._backend = backend
        self._query_timeout = query_timeout
        self._max_rows = max_rows
        self._id_factory = id_factory or (lambda: f"conn-{uuid.uuid4().hex[:12]}")
        self._handles: dict[str, ConnectionHandle] = {}
        self._order: list[str] = []
        self._lock = threading.Lock()
        self._background: set[asyncio.Future[Any]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(
        self,
        target: DataStoreTarget,
        credential_mode: CredentialMode | str,
        username: str | None = None,
        password: str | None = None,
    ) -> ConnectionHandle:
        """Open a session and register it under a fresh id."""
        try:
            mode = CredentialMode.parse(credential_mode)
        except ValueError as exc:
            raise ConnectionToolError(message=str(exc)) from exc
        if mode is CredentialMode.EXPLICIT and (not username or password is None):
            raise ConnectionToolError(
                message="Username and password are required for 'sql' authentication",
                suggestion="Pass username and password, or use auth_method 'windows'",
            )

        opening = asyncio.ensure_future(self._call(self._backend.open, target, mode, username, password))
        try:
            session = await asyncio.shield(opening)
        except asyncio.CancelledError:
            # The open keeps running in its thread; close whatever it returns.
            opening.add_done_callback(self._close_orphan)
            raise
        except ToolError as exc:
            raise ConnectionToolError(message=exc.message, details=dict(exc.details)) from exc
        except Exception as exc:
            LOGGER.warning("Connection to %s failed: %s", target.describe(), type(exc).__name__)
            raise ConnectionToolError(
                message=f"Unable to connect to {target.describe()}: {exc}",
            ) from exc

        handle = ConnectionHandle(
            connection_id=self._id_factory(),
            target=target,
            credential_mode=mode,
            session=session,
            username=username if mode is CredentialMode.EXPLICIT else None,
        )
        with self._lock:
            self._handles[handle.connection_id] = handle
            self._order.append(handle.connection_id)
        LOGGER.info("Registered connection %s (%s)", handle.connection_id, target.describe())
        return handle

    async def disconnect(self, connection_id: str) -> ConnectionHandle:
        """Remove and close a session.

        Raises:
            ConnectionNotFoundError: If the id is unknown or already closed.
        """
        with self._lock:
            handle = self._handles.pop(connection_id, None)
            if handle is not None:
                self._order.remove(connection_id)
        if handle is None:
            raise ConnectionNotFoundError(connection_id=connection_id)

        async with handle.lock:
            try:
                await self._call(handle.session.close)
            except Exception:
                LOGGER.warning("Error while closing connection %s", connection_id, exc_info=True)
        LOGGER.info("Closed connection %s", connection_id)
        return handle

    async def close_all(self) -> None:
        for connection_id in self.ids():
            try:
                await self.disconnect(connection_id)
            except ConnectionNotFoundError:
                continue

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, connection_id: str) -> ConnectionHandle:
        with self._lock:
            handle = self._handles.get(connection_id)
        if handle is None:
            raise ConnectionNotFoundError(connection_id=connection_id)
        return handle

    def resolve(self, connection_id: str | None) -> ConnectionHandle:
        """Return the handle for ``connection_id``, or the most recent one when omitted."""
        if connection_id:
            return self.get(connection_id)
        with self._lock:
            latest = self._order[-1] if self._order else None
        if latest is None:
            raise ConnectionNotFoundError(
                message="connection not found",
                suggestion="No connection is open; call sql_connect first",
            )
        return self.get(latest)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._order)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._handles

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def query(self, connection_id: str | None, text: str) -> QueryResult:
        """Run a read-only statement.

        Raises:
            WriteOperationRejected: Before the handle is touched, for any
                statement the guard does not classify as read-only.
            ConnectionNotFoundError: For an unknown id.
            TimeoutToolError: When the statement exceeds the query timeout.
            ExecutionToolError: When the data store reports an error.
        """
        ensure_read_only(text)
        handle = self.resolve(connection_id)
        return await self._exclusive(handle, "query", handle.session.execute_query, text, self._max_rows)

    async def list_objects(self, connection_id: str | None) -> list[dict[str, Any]]:
        handle = self.resolve(connection_id)
        return await self._exclusive(handle, "list_objects", handle.session.list_objects)

    async def describe_object(
        self, connection_id: str | None, schema: str | None, name: str
    ) -> list[dict[str, Any]]:
        handle = self.resolve(connection_id)
        columns = await self._exclusive(handle, "describe_object", handle.session.describe_object, schema, name)
        if not columns:
            qualified = f"{schema}.{name}" if schema else name
            raise ExecutionToolError(message=f"Object '{qualified}' was not found or has no columns")
        return columns

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _call(self, func: Callable[..., _T], *args: Any) -> _T:
        return await asyncio.to_thread(func, *args)

    async def _exclusive(
        self,
        handle: ConnectionHandle,
        operation: str,
        func: Callable[..., _T],
        *args: Any,
    ) -> _T:
        """Run ``func`` on the handle's session with the handle locked.

        A worker thread cannot be interrupted, so the lock is held until the
        thread returns even when the caller stops waiting (query timeout or
        cancellation). The next operation on the same id, and ``disconnect``,
        wait for it.
        """
        await handle.lock.acquire()
        try:
            work = asyncio.ensure_future(self._call(func, *args))
        except BaseException:
            handle.lock.release()
            raise
        work.add_done_callback(lambda done: _release_after(handle, done))

        try:
            return await asyncio.wait_for(asyncio.shield(work), self._query_timeout)
        except asyncio.TimeoutError as exc:
            LOGGER.warning(
                "%s on %s exceeded %.1fs", operation, handle.connection_id, self._query_timeout or 0.0
            )
            raise TimeoutToolError(
                message=f"{operation} did not complete within {self._query_timeout} seconds",
                timeout_seconds=self._query_timeout,
                details={"connection_id": handle.connection_id},
            ) from exc
        except ToolError:
            raise
        except Exception as exc:
            LOGGER.info("%s on %s failed: %s", operation, handle.connection_id, exc)
            raise ExecutionToolError(
                message=f"{operation} failed: {exc}",
                details={"connection_id": handle.connection_id},
            ) from exc

    def _close_orphan(self, opening: asyncio.Future[DataStoreSession]) -> None:
        """Close a session whose ``connect`` call was cancelled before it arrived."""
        if opening.cancelled() or opening.exception() is not None:
            return
        session = opening.result()
        LOGGER.info("Closing a session that finished opening after its connect call was cancelled")
        closing = asyncio.ensure_future(self._call(session.close))
        self._background.add(closing)
        closing.add_done_callback(self._forget_background)

    def _forget_background(self, task: asyncio.Future[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.warning("Closing an orphaned session failed: %s", task.exception())


def _release_after(handle: ConnectionHandle, work: asyncio.Future[Any]) -> None:
    handle.lock.release()
    if not work.cancelled():
        # Marks the outcome as retrieved when nobody is awaiting it any more.
        work.exception()


__all__ = [
    "ConnectionHandle",
    "ConnectionRegistry",
    "DEFAULT_MAX_ROWS",
    "DEFAULT_QUERY_TIMEOUT",
]
