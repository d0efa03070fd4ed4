"""Data store sessions backed by SQLAlchemy.

The backend is synchronous; :class:`~hostpilot.ai.tools.sql.connections.ConnectionRegistry`
moves every call onto a worker thread and applies the query deadline.
"""

from __future__ import annotations

import base64
import datetime as _dt
import logging
import math
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import URL, Connection, Engine, make_url
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

LOGGER = logging.getLogger(__name__)

DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"

_SYSTEM_SCHEMAS = frozenset({"information_schema", "sys", "guest", "pg_catalog", "pg_toast"})


class CredentialMode(Enum):
    """How a data store session authenticates."""

    INTEGRATED = "windows"
    EXPLICIT = "sql"

    @classmethod
    def parse(cls, value: str | CredentialMode) -> CredentialMode:
        if isinstance(value, CredentialMode):
            return value
        normalized = str(value).strip().lower()
        for mode in cls:
            if normalized in {mode.value, mode.name.lower()}:
                return mode
        raise ValueError(f"Unknown credential mode '{value}' (expected 'windows' or 'sql')")


@dataclass(slots=True, frozen=True)
class DataStoreTarget:
    """Where to connect.

    ``url`` takes precedence over ``server``/``database`` when given; any
    SQLAlchemy URL is accepted there (``sqlite://`` is handy for local use).
    """

    server: str = ""
    database: str = ""
    url: str | None = None
    driver: str = DEFAULT_ODBC_DRIVER
    trust_server_certificate: bool = False

    def describe(self) -> str:
        if self.url:
            return make_url(self.url).render_as_string(hide_password=True)
        return f"{self.server}/{self.database}"


@dataclass(slots=True)
class QueryResult:
    """Rows returned by a read-only statement."""

    columns: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)
    truncated: bool = False

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "columns": list(self.columns),
            "rows": [dict(row) for row in self.rows],
            "row_count": self.row_count,
            "truncated": self.truncated,
        }


def json_safe(value: Any) -> Any:
    """Convert a driver value into something ``json.dumps`` accepts."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Decimal):
        if value.is_finite() and value == value.to_integral_value() and abs(value) < 2**53:
            return int(value)
        as_float = float(value)
        return as_float if math.isfinite(as_float) else str(value)
    if isinstance(value, (_dt.datetime, _dt.date, _dt.time)):
        return value.isoformat()
    if isinstance(value, _dt.timedelta):
        return value.total_seconds()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, uuid.UUID):
        return str(value)
    return str(value)


# -----------------------------------------------------------------------------
# Backend protocol
# -----------------------------------------------------------------------------


class DataStoreSession(Protocol):
    """A live session against one data store."""

    def execute_query(self, text: str, max_rows: int) -> QueryResult: ...

    def list_objects(self) -> list[dict[str, Any]]: ...

    def describe_object(self, schema: str | None, name: str) -> list[dict[str, Any]]: ...

    def close(self) -> None: ...


class DataStoreBackend(Protocol):
    """Factory for :class:`DataStoreSession` objects."""

    def open(
        self,
        target: DataStoreTarget,
        mode: CredentialMode,
        username: str | None = None,
        password: str | None = None,
    ) -> DataStoreSession: ...


# -----------------------------------------------------------------------------
# SQLAlchemy implementation
# -----------------------------------------------------------------------------


class SqlAlchemySession:
    """One held :class:`~sqlalchemy.engine.Connection` plus its engine."""

    def __init__(self, engine: Engine, connection: Connection) -> None:
        self._engine = engine
        self._connection = connection

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    def execute_query(self, text: str, max_rows: int) -> QueryResult:
        result = self._connection.exec_driver_sql(text)
        try:
            if not result.returns_rows:
                return QueryResult(columns=[])
            columns = [str(column) for column in result.keys()]
            fetched = result.fetchmany(max_rows + 1)
        finally:
            result.close()
        # Read-only sessions never commit; end the implicit transaction.
        self._connection.rollback()

        truncated = len(fetched) > max_rows
        rows = [
            {column: json_safe(value) for column, value in zip(columns, row)}
            for row in fetched[:max_rows]
        ]
        return QueryResult(columns=columns, rows=rows, truncated=truncated)

    def list_objects(self) -> list[dict[str, Any]]:
        inspector = inspect(self._connection)
        objects: list[dict[str, Any]] = []
        for schema in inspector.get_schema_names():
            if schema.lower() in _SYSTEM_SCHEMAS or schema.lower().startswith("db_"):
                continue
            for table in inspector.get_table_names(schema=schema):
                objects.append({"schema": schema, "name": table, "kind": "table"})
            for view in inspector.get_view_names(schema=schema):
                objects.append({"schema": schema, "name": view, "kind": "view"})
        self._connection.rollback()
        objects.sort(key=lambda item: (item["schema"], item["name"]))
        return objects

    def describe_object(self, schema: str | None, name: str) -> list[dict[str, Any]]:
        inspector = inspect(self._connection)
        try:
            columns = inspector.get_columns(name, schema=schema or None)
        except NoSuchTableError:
            columns = []
        finally:
            self._connection.rollback()
        return [
            {
                "column": column["name"],
                "type": str(column["type"]),
                "nullable": bool(column.get("nullable", True)),
                "max_length": getattr(column["type"], "length", None),
                "default": json_safe(column.get("default")),
            }
            for column in columns
        ]

    def close(self) -> None:
        try:
            self._connection.close()
        finally:
            self._engine.dispose()


class SqlAlchemyBackend:
    """Opens :class:`SqlAlchemySession` objects.

    Targets without an explicit URL are reached through ``mssql+pyodbc``.
    Integrated credentials map to ``Trusted_Connection=yes``.
    """

    def __init__(
        self,
        *,
        driver: str = DEFAULT_ODBC_DRIVER,
        trust_server_certificate: bool = False,
        connect_timeout: int = 15,
    ) -> None:
        self._driver = driver
        self._trust_server_certificate = trust_server_certificate
        self._connect_timeout = connect_timeout

    def build_url(
        self,
        target: DataStoreTarget,
        mode: CredentialMode,
        username: str | None = None,
        password: str | None = None,
    ) -> URL:
        if target.url:
            url = make_url(target.url)
            if mode is CredentialMode.EXPLICIT and username:
                url = url.set(username=username, password=password)
            return url

        query: dict[str, str] = {"driver": target.driver or self._driver}
        if mode is CredentialMode.INTEGRATED:
            query["trusted_connection"] = "yes"
        if target.trust_server_certificate or self._trust_server_certificate:
            query["TrustServerCertificate"] = "yes"
        return URL.create(
            "mssql+pyodbc",
            username=username if mode is CredentialMode.EXPLICIT else None,
            password=password if mode is CredentialMode.EXPLICIT else None,
            host=target.server,
            database=target.database,
            query=query,
        )

    def open(
        self,
        target: DataStoreTarget,
        mode: CredentialMode,
        username: str | None = None,
        password: str | None = None,
    ) -> SqlAlchemySession:
        url = self.build_url(target, mode, username, password)
        kwargs: dict[str, Any] = {}
        if url.get_backend_name() == "sqlite":
            kwargs["connect_args"] = {"check_same_thread": False}
            kwargs["poolclass"] = StaticPool
        elif url.get_backend_name() == "mssql":
            kwargs["connect_args"] = {"timeout": self._connect_timeout}

        engine = create_engine(url, **kwargs)
        try:
            connection = engine.connect()
        except SQLAlchemyError:
            engine.dispose()
            raise
        LOGGER.info("Opened %s session to %s", engine.dialect.name, target.describe())
        return SqlAlchemySession(engine, connection)


__all__ = [
    "CredentialMode",
    "DataStoreBackend",
    "DataStoreSession",
    "DataStoreTarget",
    "QueryResult",
    "SqlAlchemyBackend",
    "SqlAlchemySession",
    "json_safe",
]
